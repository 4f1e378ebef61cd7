from .base import ChannelChunkSource, ChunkSource, SourceError

__all__ = [
    "ChannelChunkSource",
    "ChunkSource",
    "SourceError",
]
