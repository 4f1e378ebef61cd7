"""Chunk task and discovery value types shared by the capture engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TrackKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


@dataclass(frozen=True)
class ChunkEntry:
    id: int
    url: str


@dataclass(frozen=True)
class DiscoveryBatch:
    """One discovery event from a chunk source: new chunks of a single track."""

    kind: TrackKind
    entries: tuple[ChunkEntry, ...]


@dataclass(frozen=True)
class StreamInfo:
    title: str
    low_latency: bool = False


@dataclass(eq=False)
class ChunkTask:
    """A single chunk download tracked by the scheduler.

    Identity is object identity: the same (kind, id) discovered twice yields two
    tasks, and the scheduler tracks each one independently.
    """

    kind: TrackKind
    id: int
    url: str
    destination: str
    retry_count: int = 0

    @property
    def label(self) -> str:
        return f"{self.kind.value}#{self.id}"
