from __future__ import annotations

import asyncio
import os
from collections import Counter

import pytest

from download.worker import ChunkFetchError
from engine.config import CaptureOptions
from engine.core import CaptureStatus, LiveCapture
from engine.merge import MergeReport, MergeStrategy, OutputItem
from engine.tasks import StreamInfo, TrackKind
from source.base import ChannelChunkSource, SourceError


def _url(kind, chunk_id):
    return f"https://media.example.test/{kind.value}/sq/{chunk_id}"


def _publish(source, ids, kinds=tuple(TrackKind)):
    for kind in kinds:
        source.publish_entries(kind, [(i, _url(kind, i)) for i in ids])


class FakeFetcher:
    """Writes a small file per chunk; ``failures`` maps url -> attempts that fail."""

    def __init__(self, failures=None, on_fetch=None, block=False):
        self.failures = Counter(failures or {})
        self.on_fetch = on_fetch
        self.block = block
        self.calls = []
        self.active = 0
        self.peak = 0

    async def fetch(self, url, destination, timeout_ms):
        self.calls.append((url, timeout_ms))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.on_fetch is not None:
                self.on_fetch(len(self.calls))
            if self.block:
                await asyncio.Event().wait()
            await asyncio.sleep(0)
            if self.failures[url] != 0:
                self.failures[url] -= 1
                raise ChunkFetchError(f"503 for {url}")
            with open(destination, "wb") as handle:
                handle.write(url.encode())
        finally:
            self.active -= 1

    def timeouts_for(self, url):
        return [timeout for called, timeout in self.calls if called == url]


class RecordingMerger:
    instances = []

    def __init__(self, paths, *, output_dir, output_name, strategy, fail=False):
        self.paths = paths
        self.output_dir = output_dir
        self.output_name = output_name
        self.strategy = strategy
        self.fail = fail
        self.plans = []
        RecordingMerger.instances.append(self)

    async def merge_all(self, plan):
        self.plans.append(plan)
        if self.fail:
            return MergeReport(outputs=[], failed=list(plan.sequences))
        outputs = [
            OutputItem(
                description=sequence.description,
                path=os.path.join(self.output_dir, f"{self.output_name}_{index}.mp4"),
            )
            for index, sequence in enumerate(plan.sequences, start=1)
        ]
        return MergeReport(outputs=outputs, failed=[])


@pytest.fixture(autouse=True)
def _reset_mergers():
    RecordingMerger.instances = []


@pytest.fixture
def options(tmp_path):
    return CaptureOptions(work_root=str(tmp_path), output_dir=str(tmp_path / "out"))


def _run(source_factory, fetcher, options, **kwargs):
    kwargs.setdefault("ffmpeg_available", True)
    kwargs.setdefault("merger_factory", RecordingMerger)
    state = {}

    async def _scenario():
        source = source_factory()
        capture = LiveCapture(source, fetcher, options, **kwargs)
        state["capture"] = capture
        state["source"] = source
        return await capture.run()

    outcome = asyncio.run(_scenario())
    return outcome, state["capture"], state["source"]


def _closed_source(ids, *, title="Launch: Day", low_latency=False):
    def _factory():
        source = ChannelChunkSource(StreamInfo(title=title, low_latency=low_latency))
        _publish(source, ids)
        source.close()
        return source

    return _factory


def test_complete_capture_merges_and_cleans_up(options) -> None:
    fetcher = FakeFetcher()
    outcome, capture, _ = _run(_closed_source([1, 2, 3]), fetcher, options)

    assert outcome.status is CaptureStatus.COMPLETED
    assert outcome.exit_code == 0
    assert outcome.finished_count == 6
    assert outcome.work_dir_removed is True
    assert not os.path.exists(outcome.work_dir)
    assert capture.finalize_count == 1

    (merger,) = RecordingMerger.instances
    assert merger.output_name == "Launch Day"
    assert merger.strategy is MergeStrategy.LIST_BASED
    assert [sequence.ids for sequence in merger.plans[0].sequences] == [(1, 2, 3)]


def test_concurrency_cap_is_never_exceeded(options) -> None:
    options = CaptureOptions(work_root=options.work_root, output_dir=options.output_dir, max_concurrency=3)
    fetcher = FakeFetcher()
    outcome, capture, _ = _run(_closed_source(range(20)), fetcher, options)

    assert outcome.status is CaptureStatus.COMPLETED
    assert fetcher.peak == 3
    assert capture.peak_in_flight == 3
    assert len(fetcher.calls) == 40


def test_failed_chunk_is_retried_with_growing_timeout(options) -> None:
    flaky = _url(TrackKind.VIDEO, 2)
    fetcher = FakeFetcher(failures={flaky: 3})
    outcome, _, _ = _run(_closed_source([1, 2, 3]), fetcher, options)

    assert outcome.status is CaptureStatus.COMPLETED
    assert outcome.dropped_count == 0
    assert fetcher.timeouts_for(flaky) == [15_000, 30_000, 45_000, 45_000]


def test_dropped_chunks_on_both_tracks_split_the_output(options) -> None:
    options = CaptureOptions(work_root=options.work_root, output_dir=options.output_dir, retry_budget=1)
    failures = {_url(kind, 2): -1 for kind in TrackKind}
    fetcher = FakeFetcher(failures=failures)
    outcome, _, _ = _run(_closed_source([1, 2, 3, 4]), fetcher, options)

    assert outcome.status is CaptureStatus.COMPLETED
    assert outcome.dropped_count == 2
    assert len(fetcher.timeouts_for(_url(TrackKind.AUDIO, 2))) == 2
    (merger,) = RecordingMerger.instances
    assert [sequence.ids for sequence in merger.plans[0].sequences] == [(1,), (3, 4)]
    assert [os.path.basename(item.path) for item in outcome.outputs] == [
        "Launch Day_1.mp4",
        "Launch Day_2.mp4",
    ]


def test_parity_mismatch_keeps_work_dir(options) -> None:
    options = CaptureOptions(work_root=options.work_root, output_dir=options.output_dir, retry_budget=0)
    fetcher = FakeFetcher(failures={_url(TrackKind.VIDEO, 2): -1})
    outcome, _, _ = _run(_closed_source([1, 2, 3]), fetcher, options)

    assert outcome.status is CaptureStatus.PARITY_MISMATCH
    assert outcome.exit_code == 1
    assert os.path.isdir(outcome.work_dir)
    assert RecordingMerger.instances == []


def test_merge_failure_keeps_work_dir(options) -> None:
    def _failing_merger(*args, **kwargs):
        return RecordingMerger(*args, fail=True, **kwargs)

    outcome, _, _ = _run(
        _closed_source([1, 2]), FakeFetcher(), options, merger_factory=_failing_merger
    )

    assert outcome.status is CaptureStatus.MERGE_FAILED
    assert outcome.work_dir_removed is False
    assert os.path.isdir(outcome.work_dir)


def test_missing_ffmpeg_leaves_chunks_for_manual_merge(options) -> None:
    outcome, capture, _ = _run(
        _closed_source([1, 2]), FakeFetcher(), options, ffmpeg_available=False
    )

    assert outcome.status is CaptureStatus.DOWNLOAD_ONLY
    assert os.path.isfile(capture.paths.chunk_path(TrackKind.VIDEO, 2))
    assert RecordingMerger.instances == []


def test_empty_capture_removes_work_dir(options) -> None:
    outcome, capture, _ = _run(_closed_source([]), FakeFetcher(), options)

    assert outcome.status is CaptureStatus.EMPTY
    assert outcome.exit_code == 0
    assert outcome.work_dir_removed is True
    assert capture.finalize_count == 1


def test_keep_flag_preserves_work_dir(options) -> None:
    options = CaptureOptions(
        work_root=options.work_root, output_dir=options.output_dir, keep_temporary_files=True
    )
    outcome, _, _ = _run(_closed_source([1]), FakeFetcher(), options)

    assert outcome.status is CaptureStatus.COMPLETED
    assert outcome.work_dir_removed is False
    assert os.path.isdir(outcome.work_dir)


def test_low_latency_stream_uses_direct_binary_merge(options) -> None:
    _run(_closed_source([1], low_latency=True), FakeFetcher(), options)
    (merger,) = RecordingMerger.instances
    assert merger.strategy is MergeStrategy.DIRECT_BINARY


def test_first_interrupt_stops_discovery_and_drains_queue(options) -> None:
    state = {}

    def _factory():
        source = ChannelChunkSource(StreamInfo(title="show"))
        _publish(source, [1, 2, 3, 4])
        state["source"] = source
        return source

    def _on_fetch(call_number):
        if call_number == 1:
            state["cancel_state"] = state["capture"].request_cancel()
            state["late_publish"] = state["source"].publish_entries(
                TrackKind.VIDEO, [(5, _url(TrackKind.VIDEO, 5))]
            )

    fetcher = FakeFetcher(on_fetch=_on_fetch)

    async def _scenario():
        capture = LiveCapture(
            _factory(), fetcher, options, ffmpeg_available=True, merger_factory=RecordingMerger
        )
        state["capture"] = capture
        return await capture.run()

    outcome = asyncio.run(_scenario())

    assert state["cancel_state"].value == "draining"
    assert state["late_publish"] is False
    assert outcome.status is CaptureStatus.COMPLETED
    assert outcome.finished_count == 8
    assert state["capture"].finalize_count == 1


def test_second_interrupt_terminates_without_finalizing(options) -> None:
    state = {}

    def _on_fetch(call_number):
        if call_number == 1:
            capture = state["capture"]
            loop = asyncio.get_running_loop()
            loop.call_soon(capture.request_cancel)
            loop.call_soon(capture.request_cancel)

    fetcher = FakeFetcher(on_fetch=_on_fetch, block=True)

    async def _scenario():
        source = ChannelChunkSource(StreamInfo(title="show"))
        _publish(source, [1, 2, 3])
        capture = LiveCapture(
            source, fetcher, options, ffmpeg_available=True, merger_factory=RecordingMerger
        )
        state["capture"] = capture
        return await capture.run()

    outcome = asyncio.run(_scenario())

    assert outcome.status is CaptureStatus.FORCED
    assert outcome.exit_code == 130
    assert outcome.finished_count == 0
    assert os.path.isdir(outcome.work_dir)
    assert state["capture"].finalize_count == 0
    assert RecordingMerger.instances == []


def test_connect_failure_removes_work_dir(tmp_path, options) -> None:
    class _OfflineSource(ChannelChunkSource):
        async def connect(self):
            raise SourceError("not live")

    async def _scenario():
        capture = LiveCapture(_OfflineSource(), FakeFetcher(), options, ffmpeg_available=True)
        await capture.run()

    with pytest.raises(SourceError):
        asyncio.run(_scenario())
    assert not any(path.name.startswith("livegrab_download_") for path in tmp_path.iterdir())
