import os
import shutil
import tempfile
from pathlib import Path

from services.video_pose.core.Errors import AssetIOError, AssetMissingError
from services.video_pose.utils.logger import logger


class AssetStager:
    def __init__(self, bundle_dir: str, data_dir: str):
        """
        bundle_dir: read-only directory the model assets ship in
        data_dir: writable per-application directory assets are staged to
        """
        self.bundle_dir = Path(bundle_dir)
        self.data_dir = Path(data_dir)

    def stage(self, asset_name: str) -> str:
        """
        Copy `asset_name` from the bundle into the data directory unless it is
        already there, and return its absolute path.

        The copy goes through a temp file in the destination directory and is
        moved into place only once complete, so an interrupted copy never leaves
        a truncated model behind.
        """
        dest = (self.data_dir / asset_name).resolve()
        if dest.is_file():
            logger.debug(f"Asset already staged: {dest}")
            return str(dest)

        src = self.bundle_dir / asset_name
        if not src.is_file():
            raise AssetMissingError(f"Asset not found in bundle: {src}")

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise AssetIOError(f"Cannot create asset directory {dest.parent}: {exc}") from exc

        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=dest.parent)
            with os.fdopen(fd, "wb") as out, src.open("rb") as fh:
                shutil.copyfileobj(fh, out)
            os.replace(tmp_path, dest)
            tmp_path = None
        except OSError as exc:
            raise AssetIOError(f"Failed to stage {asset_name} to {dest}: {exc}") from exc
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)

        logger.info(f"Staged asset {asset_name} -> {dest}")
        return str(dest)
