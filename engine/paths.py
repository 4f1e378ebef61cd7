import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from config.settings import WORK_DIR_PREFIX
from engine.tasks import TrackKind

logger = logging.getLogger(__name__)

WORK_ROOT = Path(os.environ.get("LIVEGRAB_WORK_ROOT", ".")).resolve()

_TRACK_DIRS = {
    TrackKind.VIDEO: "video_download",
    TrackKind.AUDIO: "audio_download",
}


@dataclass(frozen=True)
class WorkPaths:
    root: str
    video_dir: str
    audio_dir: str

    def track_dir(self, kind):
        return self.video_dir if kind is TrackKind.VIDEO else self.audio_dir

    def chunk_path(self, kind, chunk_id):
        return os.path.join(self.track_dir(kind), str(chunk_id))

    def list_path(self, kind, stamp, index):
        return os.path.join(self.root, f"{kind.value}_files_{stamp}_{index}.txt")

    def merge_path(self, kind, index):
        return os.path.join(self.track_dir(kind), f"{kind.value}_merge_{index}.mp4")


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def build_work_paths(root=None, stamp_ms=None):
    """Create a uniquely named working directory with per-track download dirs."""
    base = Path(root).resolve() if root else WORK_ROOT
    stamp = int(stamp_ms if stamp_ms is not None else time.time() * 1000)
    work_root = base / f"{WORK_DIR_PREFIX}{stamp}"
    while work_root.exists():
        stamp += 1
        work_root = base / f"{WORK_DIR_PREFIX}{stamp}"

    paths = WorkPaths(
        root=str(work_root),
        video_dir=str(work_root / _TRACK_DIRS[TrackKind.VIDEO]),
        audio_dir=str(work_root / _TRACK_DIRS[TrackKind.AUDIO]),
    )
    for d in (paths.root, paths.video_dir, paths.audio_dir):
        ensure_dir(d)
    return paths


def remove_work_dir(path):
    if not path or not os.path.isdir(path):
        return False
    shutil.rmtree(path)
    logger.info("Removed temporary files at %s", path)
    return True
