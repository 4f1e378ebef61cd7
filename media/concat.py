"""Chunk file concatenation helpers used before muxing."""

from __future__ import annotations

import logging
import os
import shutil
from typing import Iterable

logger = logging.getLogger(__name__)

_COPY_BUFFER_BYTES = 1024 * 1024


def concatenate_files(paths: Iterable[str], output_path: str) -> str:
    """Append the raw bytes of ``paths`` into ``output_path`` in order.

    Only valid for byte-contiguous fragments (low-latency captures), where
    each chunk continues the container stream of the previous one.
    """
    count = 0
    with open(output_path, "wb") as out:
        for path in paths:
            with open(path, "rb") as chunk:
                shutil.copyfileobj(chunk, out, _COPY_BUFFER_BYTES)
            count += 1
    logger.debug("Concatenated %d chunks into %s", count, output_path)
    return output_path


def _quote_concat_path(path: str) -> str:
    # ffmpeg concat demuxer quoting: close the quote, escape, reopen.
    return "'" + path.replace("'", "'\\''") + "'"


def write_concat_list(paths: Iterable[str], list_path: str) -> str:
    """Write an ffmpeg concat-demuxer list referencing ``paths`` by absolute path."""
    lines = [f"file {_quote_concat_path(os.path.abspath(path))}" for path in paths]
    with open(list_path, "w", encoding="utf-8") as handle:
        handle.write("\n".join(lines))
        handle.write("\n")
    return list_path
