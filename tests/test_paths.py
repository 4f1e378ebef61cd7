import os

from engine.paths import build_work_paths, remove_work_dir
from engine.tasks import TrackKind


def test_build_work_paths_creates_track_dirs(tmp_path):
    paths = build_work_paths(tmp_path, stamp_ms=1234)

    assert os.path.basename(paths.root) == "livegrab_download_1234"
    assert os.path.isdir(paths.video_dir)
    assert os.path.isdir(paths.audio_dir)
    assert paths.chunk_path(TrackKind.AUDIO, 12) == os.path.join(paths.audio_dir, "12")
    assert paths.list_path(TrackKind.VIDEO, 99, 2) == os.path.join(paths.root, "video_files_99_2.txt")
    assert paths.merge_path(TrackKind.VIDEO, 1).startswith(paths.video_dir)


def test_build_work_paths_never_reuses_existing_dir(tmp_path):
    first = build_work_paths(tmp_path, stamp_ms=1234)
    second = build_work_paths(tmp_path, stamp_ms=1234)

    assert first.root != second.root
    assert os.path.basename(second.root) == "livegrab_download_1235"


def test_remove_work_dir(tmp_path):
    paths = build_work_paths(tmp_path, stamp_ms=1)
    with open(paths.chunk_path(TrackKind.VIDEO, 0), "wb") as handle:
        handle.write(b"x")

    assert remove_work_dir(paths.root) is True
    assert not os.path.exists(paths.root)
    assert remove_work_dir(paths.root) is False
