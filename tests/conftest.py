import sys
from pathlib import Path

import pytest

# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from engine.paths import build_work_paths  # noqa: E402
from engine.tasks import ChunkTask, TrackKind  # noqa: E402


@pytest.fixture
def make_task():
    def _make(kind, chunk_id, *, retry_count=0):
        kind = TrackKind(kind)
        return ChunkTask(
            kind=kind,
            id=chunk_id,
            url=f"https://media.example.test/{kind.value}/sq/{chunk_id}",
            destination=f"/work/{kind.value}_download/{chunk_id}",
            retry_count=retry_count,
        )

    return _make


@pytest.fixture
def work_paths(tmp_path):
    return build_work_paths(tmp_path, stamp_ms=1_700_000_000_000)
