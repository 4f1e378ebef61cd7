"""Chunk source contract and the channel every source publishes through."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Iterable, Protocol

from engine.tasks import ChunkEntry, DiscoveryBatch, StreamInfo, TrackKind


class SourceError(RuntimeError):
    """Raised when a stream cannot be connected to."""


class ChunkSource(Protocol):
    async def connect(self) -> StreamInfo:
        """Start discovery and describe the stream."""

    def batches(self) -> AsyncIterator[DiscoveryBatch]:
        """Yield discovery batches; finishing means end-of-stream."""

    def disconnect(self) -> None:
        """Stop discovery; the batch iterator then finishes."""


_CLOSED = object()


class ChannelChunkSource:
    """A chunk source backed by an unbounded ``asyncio.Queue``.

    Producers call :meth:`publish` and finally :meth:`close`; the consumer
    iterates :meth:`batches` until closure. Subclasses implement discovery by
    overriding :meth:`connect` and :meth:`disconnect`.
    """

    def __init__(self, info: StreamInfo | None = None) -> None:
        self._info = info or StreamInfo(title="livestream")
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    async def connect(self) -> StreamInfo:
        return self._info

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, batch: DiscoveryBatch) -> bool:
        if self._closed:
            return False
        if batch.entries:
            self._queue.put_nowait(batch)
        return True

    def publish_entries(self, kind: TrackKind, entries: Iterable[tuple[int, str]]) -> bool:
        batch = DiscoveryBatch(kind=kind, entries=tuple(ChunkEntry(id=i, url=u) for i, u in entries))
        return self.publish(batch)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def disconnect(self) -> None:
        self.close()

    async def batches(self) -> AsyncIterator[DiscoveryBatch]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
