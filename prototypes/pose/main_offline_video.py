import argparse
import json
import sys

from services.video_pose.core.Errors import PoseModuleError
from services.video_pose.core.PipelineConfig import load_config
from services.video_pose.core.PoseVideoModule import PoseVideoModule


def main(argv=None):
    parser = argparse.ArgumentParser(description="Extract pose landmarks and previews from a video file.")
    parser.add_argument("video", help="path to the video (or file:// URI)")
    parser.add_argument("--config", default=None, help="optional JSON config file")
    parser.add_argument("--output", default=None, help="write the JSON result here instead of stdout")
    args = parser.parse_args(argv)

    module = PoseVideoModule(config=load_config(args.config))
    try:
        print(module.initialize(), file=sys.stderr)
        frames = module.process_video(args.video)
    except PoseModuleError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        return 1
    finally:
        module.close()

    print(f"Processed {len(frames)} frames with landmarks", file=sys.stderr)
    if frames:
        first = frames[0]
        print("First frame time (ms):", first["timestamp"], file=sys.stderr)
        print("Num landmarks:", len(first["landmarks"]), file=sys.stderr)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as fh:
            json.dump(frames, fh)
    else:
        json.dump(frames, sys.stdout)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
