"""Per-sequence merge dispatch.

Each :class:`~engine.reassembly.ChunkSequence` becomes one output file. Two
strategies exist: low-latency captures are byte-contiguous, so their chunks
are concatenated as raw bytes and the two resulting files are muxed; every
other capture hands ffmpeg a concat reference list per track.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from engine.paths import WorkPaths, ensure_dir
from engine.reassembly import ChunkSequence, ReassemblyPlan
from engine.tasks import TrackKind
from media import ffmpeg
from media.concat import concatenate_files, write_concat_list
from media.naming import build_output_filename, resolve_collision_path
from media.validation import validate_output

logger = logging.getLogger(__name__)


class MergeStrategy(str, Enum):
    DIRECT_BINARY = "direct_binary"
    LIST_BASED = "list_based"

    @classmethod
    def for_stream(cls, low_latency: bool) -> "MergeStrategy":
        return cls.DIRECT_BINARY if low_latency else cls.LIST_BASED


@dataclass(frozen=True)
class OutputItem:
    description: str
    path: str


@dataclass
class MergeReport:
    outputs: list[OutputItem]
    failed: list[ChunkSequence]


class SequenceMerger:
    def __init__(
        self,
        paths: WorkPaths,
        *,
        output_dir: str,
        output_name: str,
        strategy: MergeStrategy = MergeStrategy.LIST_BASED,
        validator: Optional[Callable[[str], bool]] = validate_output,
    ) -> None:
        self.paths = paths
        self.output_dir = output_dir
        self.output_name = output_name
        self.strategy = strategy
        self._validator = validator

    async def merge_all(self, plan: ReassemblyPlan) -> MergeReport:
        """Merge every sequence of ``plan``; one failure never stops the rest."""
        report = MergeReport(outputs=[], failed=[])
        ensure_dir(self.output_dir)
        stamp = int(time.time() * 1000)
        total = len(plan.sequences)
        for index, sequence in enumerate(plan.sequences, start=1):
            suffix = index if plan.needs_suffix else None
            logger.info("Merging output %d/%d (%s)", index, total, sequence.description)
            try:
                path = await self.merge_sequence(sequence, index, suffix=suffix, stamp=stamp)
            except (ffmpeg.MuxError, OSError) as exc:
                logger.debug("merge failure detail", exc_info=True)
                logger.error("Failed to merge output %d (%s): %s", index, sequence.description, exc)
                report.failed.append(sequence)
                continue
            report.outputs.append(OutputItem(description=sequence.description, path=path))
        return report

    async def merge_sequence(
        self,
        sequence: ChunkSequence,
        index: int,
        *,
        suffix: Optional[int] = None,
        stamp: Optional[int] = None,
    ) -> str:
        output_path = resolve_collision_path(
            os.path.join(self.output_dir, build_output_filename(self.output_name, suffix))
        )
        video_chunks = [self.paths.chunk_path(TrackKind.VIDEO, chunk_id) for chunk_id in sequence.ids]
        audio_chunks = [self.paths.chunk_path(TrackKind.AUDIO, chunk_id) for chunk_id in sequence.ids]

        if self.strategy is MergeStrategy.DIRECT_BINARY:
            video_path = self.paths.merge_path(TrackKind.VIDEO, index)
            audio_path = self.paths.merge_path(TrackKind.AUDIO, index)
            logger.info("Concatenating video for output %d", index)
            await asyncio.to_thread(concatenate_files, video_chunks, video_path)
            logger.info("Concatenating audio for output %d", index)
            await asyncio.to_thread(concatenate_files, audio_chunks, audio_path)
            logger.info("Muxing output %d", index)
            await asyncio.to_thread(ffmpeg.mux_tracks, video_path, audio_path, output_path)
        else:
            stamp = stamp if stamp is not None else int(time.time() * 1000)
            video_list = write_concat_list(video_chunks, self.paths.list_path(TrackKind.VIDEO, stamp, index))
            audio_list = write_concat_list(audio_chunks, self.paths.list_path(TrackKind.AUDIO, stamp, index))
            logger.info("Muxing output %d", index)
            await asyncio.to_thread(ffmpeg.mux_track_lists, video_list, audio_list, output_path)

        if self._validator is not None:
            valid = await asyncio.to_thread(self._validator, output_path)
            if not valid:
                raise ffmpeg.MuxError(f"merged output failed validation: {output_path}")
        return output_path
