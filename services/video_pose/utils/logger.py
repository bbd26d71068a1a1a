import os
import sys
import logging

# --------------------------------------------------------
# One shared logger for all video_pose modules
# --------------------------------------------------------
LOGGER_NAME = "video_pose"
logger = logging.getLogger(LOGGER_NAME)
logger.setLevel(getattr(logging, os.getenv("VIDEO_POSE_LOG_LEVEL", "INFO").upper(), logging.INFO))

# Install the handler once (module may be re-imported by test runners)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)

    formatter = logging.Formatter(
        '[%(asctime)s] [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

logger.propagate = False
