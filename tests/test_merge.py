from __future__ import annotations

import asyncio
import os

from engine.merge import MergeStrategy, SequenceMerger
from engine.reassembly import plan_reassembly
from engine.tasks import ChunkTask, TrackKind
from media import ffmpeg


def _capture(work_paths, ids):
    finished = []
    for kind in TrackKind:
        for chunk_id in ids:
            destination = work_paths.chunk_path(kind, chunk_id)
            with open(destination, "wb") as handle:
                handle.write(f"{kind.value}-{chunk_id};".encode())
            finished.append(ChunkTask(kind=kind, id=chunk_id, url="", destination=destination))
    return finished


def _fake_mux(calls):
    def _mux(first, second, output_path):
        calls.append((first, second, output_path))
        with open(output_path, "wb") as handle:
            handle.write(b"muxed")
        return output_path

    return _mux


def test_list_based_merge_writes_reference_lists(monkeypatch, tmp_path, work_paths) -> None:
    calls = []
    monkeypatch.setattr(ffmpeg, "mux_track_lists", _fake_mux(calls))
    plan = plan_reassembly(_capture(work_paths, [1, 2, 3]))
    merger = SequenceMerger(
        work_paths, output_dir=str(tmp_path), output_name="Show", validator=None
    )

    report = asyncio.run(merger.merge_all(plan))

    assert report.failed == []
    assert [item.path for item in report.outputs] == [str(tmp_path / "Show.mp4")]
    video_list, audio_list, _ = calls[0]
    assert os.path.dirname(video_list) == work_paths.root
    with open(video_list, encoding="utf-8") as handle:
        lines = handle.read().splitlines()
    assert lines == [f"file '{work_paths.chunk_path(TrackKind.VIDEO, i)}'" for i in (1, 2, 3)]
    with open(audio_list, encoding="utf-8") as handle:
        assert handle.read().count("audio_download") == 3


def test_gapped_plan_produces_suffixed_outputs(monkeypatch, tmp_path, work_paths) -> None:
    calls = []
    monkeypatch.setattr(ffmpeg, "mux_track_lists", _fake_mux(calls))
    plan = plan_reassembly(_capture(work_paths, [1, 2, 3, 7, 8, 10]))
    merger = SequenceMerger(
        work_paths, output_dir=str(tmp_path), output_name="Show", validator=None
    )

    report = asyncio.run(merger.merge_all(plan))

    assert [os.path.basename(item.path) for item in report.outputs] == [
        "Show_1.mp4",
        "Show_2.mp4",
        "Show_3.mp4",
    ]
    assert [item.description for item in report.outputs] == ["#1 - #3", "#7 - #8", "#10 - #10"]
    list_names = {os.path.basename(call[0]) for call in calls}
    assert len(list_names) == 3


def test_failed_sequence_does_not_stop_the_rest(monkeypatch, tmp_path, work_paths) -> None:
    calls = []
    succeed = _fake_mux(calls)

    def _flaky(video_list, audio_list, output_path):
        if output_path.endswith("_2.mp4"):
            raise ffmpeg.MuxError("broken container")
        return succeed(video_list, audio_list, output_path)

    monkeypatch.setattr(ffmpeg, "mux_track_lists", _flaky)
    plan = plan_reassembly(_capture(work_paths, [1, 2, 5, 9]))
    merger = SequenceMerger(
        work_paths, output_dir=str(tmp_path), output_name="Show", validator=None
    )

    report = asyncio.run(merger.merge_all(plan))

    assert [os.path.basename(item.path) for item in report.outputs] == ["Show_1.mp4", "Show_3.mp4"]
    assert [sequence.ids for sequence in report.failed] == [(5,)]


def test_direct_binary_merge_concatenates_chunks(monkeypatch, tmp_path, work_paths) -> None:
    calls = []
    monkeypatch.setattr(ffmpeg, "mux_tracks", _fake_mux(calls))
    plan = plan_reassembly(_capture(work_paths, [4, 5, 6]))
    merger = SequenceMerger(
        work_paths,
        output_dir=str(tmp_path),
        output_name="Show",
        strategy=MergeStrategy.DIRECT_BINARY,
        validator=None,
    )

    report = asyncio.run(merger.merge_all(plan))

    assert len(report.outputs) == 1
    video_path, audio_path, output_path = calls[0]
    with open(video_path, "rb") as handle:
        assert handle.read() == b"video-4;video-5;video-6;"
    with open(audio_path, "rb") as handle:
        assert handle.read() == b"audio-4;audio-5;audio-6;"
    assert output_path == str(tmp_path / "Show.mp4")


def test_existing_output_is_not_overwritten(monkeypatch, tmp_path, work_paths) -> None:
    (tmp_path / "Show.mp4").write_bytes(b"earlier capture")
    monkeypatch.setattr(ffmpeg, "mux_track_lists", _fake_mux([]))
    plan = plan_reassembly(_capture(work_paths, [1]))
    merger = SequenceMerger(
        work_paths, output_dir=str(tmp_path), output_name="Show", validator=None
    )

    report = asyncio.run(merger.merge_all(plan))

    assert report.outputs[0].path == str(tmp_path / "Show (2).mp4")
    assert (tmp_path / "Show.mp4").read_bytes() == b"earlier capture"


def test_output_failing_validation_counts_as_failed(monkeypatch, tmp_path, work_paths) -> None:
    monkeypatch.setattr(ffmpeg, "mux_track_lists", _fake_mux([]))
    plan = plan_reassembly(_capture(work_paths, [1, 2]))
    merger = SequenceMerger(
        work_paths, output_dir=str(tmp_path), output_name="Show", validator=lambda path: False
    )

    report = asyncio.run(merger.merge_all(plan))

    assert report.outputs == []
    assert len(report.failed) == 1


def test_strategy_follows_latency_class() -> None:
    assert MergeStrategy.for_stream(True) is MergeStrategy.DIRECT_BINARY
    assert MergeStrategy.for_stream(False) is MergeStrategy.LIST_BASED


def test_missing_output_dir_is_created(monkeypatch, tmp_path, work_paths) -> None:
    monkeypatch.setattr(ffmpeg, "mux_track_lists", _fake_mux([]))
    output_dir = tmp_path / "missing" / "out"
    plan = plan_reassembly(_capture(work_paths, [1, 2]))
    merger = SequenceMerger(
        work_paths, output_dir=str(output_dir), output_name="Show", validator=None
    )

    report = asyncio.run(merger.merge_all(plan))

    assert report.failed == []
    assert (output_dir / "Show.mp4").read_bytes() == b"muxed"
