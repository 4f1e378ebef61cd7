"""Reassembly planning for captured chunks.

Given the finished tasks of a capture, decide which video chunks can be merged
and how to split them into contiguous runs. Planning is pure: it reads the
finished snapshot and never touches scheduler state or the filesystem.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from engine.tasks import ChunkTask, TrackKind

logger = logging.getLogger(__name__)


class ParityMismatchError(RuntimeError):
    """Raised when the finished video and audio chunk counts differ."""

    def __init__(self, video_count: int, audio_count: int) -> None:
        super().__init__(
            f"captured {video_count} video chunks but {audio_count} audio chunks"
        )
        self.video_count = video_count
        self.audio_count = audio_count


@dataclass(frozen=True)
class ChunkSequence:
    """A maximal run of consecutive chunk ids, merged into one output."""

    tasks: tuple[ChunkTask, ...]

    @property
    def ids(self) -> tuple[int, ...]:
        return tuple(task.id for task in self.tasks)

    @property
    def first_id(self) -> int:
        return self.tasks[0].id

    @property
    def last_id(self) -> int:
        return self.tasks[-1].id

    @property
    def description(self) -> str:
        return f"#{self.first_id} - #{self.last_id}"

    def __len__(self) -> int:
        return len(self.tasks)


@dataclass(frozen=True)
class ReassemblyPlan:
    sequences: tuple[ChunkSequence, ...]
    dropped_orphans: int

    @property
    def needs_suffix(self) -> bool:
        return len(self.sequences) > 1


def split_by_kind(finished: Iterable[ChunkTask]) -> tuple[list[ChunkTask], list[ChunkTask]]:
    video: list[ChunkTask] = []
    audio: list[ChunkTask] = []
    for task in finished:
        if task.kind is TrackKind.VIDEO:
            video.append(task)
        else:
            audio.append(task)
    return video, audio


def check_parity(video: Sequence[ChunkTask], audio: Sequence[ChunkTask]) -> None:
    if len(video) != len(audio):
        raise ParityMismatchError(len(video), len(audio))


def filter_orphans(
    video: Iterable[ChunkTask], audio: Iterable[ChunkTask]
) -> tuple[list[ChunkTask], int]:
    """Keep video chunks that have an audio chunk with the same id.

    Returns the kept video tasks and the number discarded.
    """
    audio_ids = {task.id for task in audio}
    kept: list[ChunkTask] = []
    dropped = 0
    for task in video:
        if task.id in audio_ids:
            kept.append(task)
        else:
            dropped += 1
    return kept, dropped


def partition_contiguous(tasks: Iterable[ChunkTask]) -> list[ChunkSequence]:
    """Sort by id and split wherever the next id is not previous + 1."""
    ordered = sorted(tasks, key=lambda task: task.id)
    runs: list[list[ChunkTask]] = []
    for task in ordered:
        if runs and task.id == runs[-1][-1].id + 1:
            runs[-1].append(task)
        else:
            runs.append([task])
    return [ChunkSequence(tuple(run)) for run in runs]


def plan_reassembly(finished: Iterable[ChunkTask]) -> ReassemblyPlan:
    """Build the merge plan for a finished capture.

    Steps run in order: parity check (raises :class:`ParityMismatchError`),
    orphan filtering, contiguity partitioning, and a log of the resulting
    sequences when there is more than one.
    """
    video, audio = split_by_kind(finished)
    check_parity(video, audio)

    kept, dropped = filter_orphans(video, audio)
    if dropped:
        logger.warning("Dropped %d video chunks without a matching audio chunk", dropped)

    sequences = partition_contiguous(kept)
    if len(sequences) > 1:
        logger.info("Capture is not contiguous; %d output files will be produced", len(sequences))
        for index, sequence in enumerate(sequences, start=1):
            logger.info("Output %d: #%d-#%d", index, sequence.first_id, sequence.last_id)

    return ReassemblyPlan(sequences=tuple(sequences), dropped_orphans=dropped)
