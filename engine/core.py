"""Live capture controller.

Wires a chunk source, the scheduler, a chunk fetcher and the reassembly steps
together on one asyncio event loop:

    source batches -> ChunkScheduler -> fetcher (per task) -> ChunkScheduler
    -> [stream ended and drained] -> plan_reassembly -> SequenceMerger

Everything runs on the loop thread. Fetch completions re-enter the drive step;
it hands out work through :meth:`ChunkScheduler.take_ready`, so re-entry
never over-commits the concurrency cap.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

from engine.config import CaptureOptions
from engine.events import log_event
from engine.lifecycle import LifecycleController, LifecycleState
from engine.merge import MergeStrategy, OutputItem, SequenceMerger
from engine.paths import WorkPaths, build_work_paths, remove_work_dir
from engine.reassembly import ParityMismatchError, plan_reassembly
from engine.scheduler import ChunkScheduler, fetch_timeout_ms
from engine.tasks import ChunkTask, DiscoveryBatch, StreamInfo
from media import ffmpeg
from media.naming import sanitize_component

logger = logging.getLogger(__name__)

__all__ = [
    "CaptureOutcome",
    "CaptureStatus",
    "LiveCapture",
    "OutputItem",
]


class CaptureStatus(str, Enum):
    COMPLETED = "completed"
    MERGE_FAILED = "merge_failed"
    EMPTY = "empty"
    DOWNLOAD_ONLY = "download_only"
    PARITY_MISMATCH = "parity_mismatch"
    FORCED = "forced"


_EXIT_CODES = {
    CaptureStatus.COMPLETED: 0,
    CaptureStatus.EMPTY: 0,
    CaptureStatus.MERGE_FAILED: 1,
    CaptureStatus.DOWNLOAD_ONLY: 1,
    CaptureStatus.PARITY_MISMATCH: 1,
    CaptureStatus.FORCED: 130,
}


@dataclass
class CaptureOutcome:
    status: CaptureStatus
    work_dir: Optional[str]
    outputs: list[OutputItem] = field(default_factory=list)
    work_dir_removed: bool = False
    finished_count: int = 0
    dropped_count: int = 0
    orphan_count: int = 0

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self.status]


class LiveCapture:
    def __init__(
        self,
        source,
        fetcher,
        options: Optional[CaptureOptions] = None,
        *,
        ffmpeg_available: Optional[bool] = None,
        merger_factory: Optional[Callable[..., SequenceMerger]] = None,
    ) -> None:
        self.options = options or CaptureOptions()
        self._source = source
        self._fetcher = fetcher
        self.scheduler = ChunkScheduler(
            max_concurrency=self.options.max_concurrency,
            retry_budget=self.options.retry_budget,
        )
        self.lifecycle = LifecycleController(on_drain=self._on_drain)
        self.paths: Optional[WorkPaths] = None
        self.stream_info: Optional[StreamInfo] = None
        self.outputs: list[OutputItem] = []
        self._output_name = "livestream"
        self.peak_in_flight = 0
        self.finalize_count = 0
        self._ffmpeg_available = ffmpeg_available
        self._merger_factory = merger_factory or SequenceMerger
        self._fetches: set[asyncio.Task] = set()
        self._consumer: Optional[asyncio.Task] = None
        self._finalizer: Optional[asyncio.Task] = None
        self._done: Optional[asyncio.Future] = None

    # -- entry points ---------------------------------------------------------------

    async def run(self) -> CaptureOutcome:
        """Capture until the stream ends (or the operator stops it) and reassemble."""
        self._done = asyncio.get_running_loop().create_future()

        if self._ffmpeg_available is None:
            self._ffmpeg_available = await asyncio.to_thread(ffmpeg.is_ffmpeg_available)
        if not self._ffmpeg_available:
            logger.warning("ffmpeg is not available; chunks will be downloaded but not merged")

        self.paths = build_work_paths(self.options.work_root)
        logger.info("Working directory: %s", self.paths.root)
        try:
            self.stream_info = await self._source.connect()
        except Exception:
            remove_work_dir(self.paths.root)
            raise
        self._output_name = sanitize_component(self.stream_info.title)
        logger.info(
            "Connected to %r (low latency: %s)", self.stream_info.title, self.stream_info.low_latency
        )
        if not self.lifecycle.accepting_work:
            # interrupted while connecting
            self._source.disconnect()

        self._consumer = asyncio.create_task(self._consume())
        try:
            return await self._done
        finally:
            if self._consumer is not None and not self._consumer.done():
                self._consumer.cancel()
            self._source.disconnect()

    def request_cancel(self) -> LifecycleState:
        """Operator interrupt: first call drains, any later call terminates immediately."""
        state = self.lifecycle.request_cancel()
        if state is LifecycleState.DRAINING:
            logger.info("Interrupt received; finishing queued chunks (interrupt again to quit)")
        elif state is LifecycleState.TERMINATED and self.lifecycle.forced:
            logger.warning(
                "Forced exit; temporary files left at %s", self.paths.root if self.paths else "(none)"
            )
            self._terminate_forced()
        return state

    # -- discovery ------------------------------------------------------------------

    async def _consume(self) -> None:
        try:
            async for batch in self._source.batches():
                if not self.lifecycle.accepting_work:
                    continue
                added = self.scheduler.enqueue(self._tasks_for(batch))
                logger.debug("Queued %d %s chunks", added, batch.kind.value)
                self._drive()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Chunk source failed; treating as end of stream")
        self.lifecycle.stream_ended()
        self.scheduler.notify_stream_end()
        self._drive()

    def _tasks_for(self, batch: DiscoveryBatch) -> Iterable[ChunkTask]:
        for entry in batch.entries:
            yield ChunkTask(
                kind=batch.kind,
                id=entry.id,
                url=entry.url,
                destination=self.paths.chunk_path(batch.kind, entry.id),
            )

    def _on_drain(self) -> None:
        self._source.disconnect()
        self.scheduler.notify_stream_end()
        self._drive()

    # -- scheduling -----------------------------------------------------------------

    def _drive(self) -> None:
        if self.lifecycle.state is LifecycleState.TERMINATED:
            return
        for task in self.scheduler.take_ready():
            fetch = asyncio.create_task(self._fetch(task))
            self._fetches.add(fetch)
            fetch.add_done_callback(self._fetches.discard)
        self.peak_in_flight = max(self.peak_in_flight, self.scheduler.in_flight_count)
        if self.scheduler.is_drained() and self.lifecycle.begin_finalize():
            self._finalizer = asyncio.create_task(self._finalize())

    async def _fetch(self, task: ChunkTask) -> None:
        timeout = fetch_timeout_ms(
            task.retry_count,
            base_ms=self.options.fetch_timeout_base_ms,
            step_ms=self.options.fetch_timeout_step_ms,
            ceiling_ms=self.options.fetch_timeout_ceiling_ms,
        )
        try:
            await self._fetcher.fetch(task.url, task.destination, timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self.scheduler.mark_failed(task):
                logger.warning("%s failed, will retry: %s", task.label, exc)
                log_event(logging.DEBUG, "chunk_failed", chunk=task.label, retry_count=task.retry_count)
            else:
                logger.error("%s dropped after %d failed attempts", task.label, task.retry_count)
                log_event(logging.DEBUG, "chunk_dropped", chunk=task.label, retry_count=task.retry_count)
        else:
            self.scheduler.mark_done(task)
            logger.info("%s downloaded", task.label)
            log_event(logging.DEBUG, "chunk_finished", chunk=task.label, timeout_ms=timeout)
        self._drive()

    # -- termination ----------------------------------------------------------------

    def _terminate_forced(self) -> None:
        for pending in (self._consumer, self._finalizer, *self._fetches):
            if pending is not None and not pending.done():
                pending.cancel()
        self._source.disconnect()
        self._resolve(
            CaptureOutcome(
                status=CaptureStatus.FORCED,
                work_dir=self.paths.root if self.paths else None,
                finished_count=len(self.scheduler.finished_snapshot()),
                dropped_count=len(self.scheduler.dropped_snapshot()),
            )
        )

    def _resolve(self, outcome: CaptureOutcome) -> None:
        if self._done is not None and not self._done.done():
            self._done.set_result(outcome)

    async def _finalize(self) -> None:
        self.finalize_count += 1
        try:
            outcome = await self._reassemble()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Reassembly failed; temporary files are at %s", self.paths.root)
            self.lifecycle.mark_terminated()
            if self._done is not None and not self._done.done():
                self._done.set_exception(exc)
            return
        self.lifecycle.mark_terminated()
        self._resolve(outcome)

    async def _reassemble(self) -> CaptureOutcome:
        root = self.paths.root
        finished = self.scheduler.finished_snapshot()
        dropped = self.scheduler.dropped_snapshot()
        if dropped:
            logger.warning("%d chunks were dropped after exhausting retries", len(dropped))

        def _outcome(status, **extra):
            return CaptureOutcome(
                status=status,
                work_dir=root,
                finished_count=len(finished),
                dropped_count=len(dropped),
                **extra,
            )

        if not finished:
            logger.info("No chunks were captured")
            return _outcome(CaptureStatus.EMPTY, work_dir_removed=await self._cleanup())

        if not self._ffmpeg_available:
            logger.warning("ffmpeg is unavailable; captured chunks are at %s for manual merging", root)
            return _outcome(CaptureStatus.DOWNLOAD_ONLY)

        try:
            plan = plan_reassembly(finished)
        except ParityMismatchError as exc:
            logger.error("Video and audio chunk counts differ (%s); merge manually", exc)
            logger.error("Temporary files are at: %s", root)
            return _outcome(CaptureStatus.PARITY_MISMATCH)

        if not plan.sequences:
            logger.error("No video chunk has a matching audio chunk; temporary files are at: %s", root)
            return _outcome(CaptureStatus.MERGE_FAILED, orphan_count=plan.dropped_orphans)

        merger = self._merger_factory(
            self.paths,
            output_dir=self.options.output_dir,
            output_name=self._output_name,
            strategy=MergeStrategy.for_stream(self.stream_info.low_latency),
        )
        report = await merger.merge_all(plan)
        self.outputs = list(report.outputs)

        removed = False
        if report.failed:
            logger.error(
                "%d of %d outputs failed to merge; temporary files kept at %s",
                len(report.failed),
                len(plan.sequences),
                root,
            )
        else:
            removed = await self._cleanup()
        self._report_outputs(report.outputs)

        status = CaptureStatus.COMPLETED if report.outputs else CaptureStatus.MERGE_FAILED
        return _outcome(
            status,
            outputs=list(report.outputs),
            work_dir_removed=removed,
            orphan_count=plan.dropped_orphans,
        )

    async def _cleanup(self) -> bool:
        if self.options.keep_temporary_files:
            logger.info("Temporary files kept at %s", self.paths.root)
            return False
        logger.info("Cleaning up temporary files")
        try:
            return await asyncio.to_thread(remove_work_dir, self.paths.root)
        except OSError:
            logger.exception("Failed to remove temporary files at %s", self.paths.root)
            return False

    @staticmethod
    def _report_outputs(outputs: list[OutputItem]) -> None:
        if not outputs:
            return
        if len(outputs) == 1:
            logger.info("Output file: %s", outputs[0].path)
            return
        logger.info("Wrote %d output files:", len(outputs))
        for item in outputs:
            logger.info("%s -> %s", item.description, item.path)
