"""HTTP transfer of a single live-stream chunk."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Protocol

import requests
from requests.adapters import HTTPAdapter

from config.settings import DEFAULT_MAX_CONCURRENCY

logger = logging.getLogger(__name__)

_DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
}
_STREAM_BLOCK_BYTES = 64 * 1024
_CONNECT_TIMEOUT_SECONDS = 10.0


def _request_timeout(deadline: float) -> tuple[float, float]:
    remaining = max(0.001, deadline - time.monotonic())
    return (min(_CONNECT_TIMEOUT_SECONDS, remaining), remaining)


class ChunkFetchError(RuntimeError):
    """Raised when a chunk could not be transferred; timeouts included."""


class ChunkFetcher(Protocol):
    async def fetch(self, url: str, destination: str, timeout_ms: int) -> None:
        """Transfer ``url`` to ``destination`` or raise :class:`ChunkFetchError`."""


class HttpChunkFetcher:
    """Streams chunks with ``requests`` on a thread pool sized to the concurrency cap.

    The body is written to ``<destination>.part`` and moved into place only
    once it is complete, so a destination file always holds a whole chunk.
    """

    def __init__(
        self,
        *,
        max_workers: int = DEFAULT_MAX_CONCURRENCY,
        session: Optional[requests.Session] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="chunk-fetch")
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=max_workers, pool_maxsize=max_workers)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            session.headers.update(_DEFAULT_HEADERS)
        if headers:
            session.headers.update(headers)
        self._session = session

    async def fetch(self, url: str, destination: str, timeout_ms: int) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self.download, url, destination, timeout_ms / 1000.0)

    def download(self, url: str, destination: str, timeout_seconds: float) -> None:
        """Transfer one chunk within roughly ``timeout_seconds``.

        The budget is checked before every block. A read that is already blocked
        when the budget runs out is bounded by the read timeout, which is the
        remaining budget at request time, so a stalled transfer fails within
        twice ``timeout_seconds`` at most.
        """
        deadline = time.monotonic() + timeout_seconds
        part_path = f"{destination}.part"
        written = 0
        try:
            with self._session.get(url, stream=True, timeout=_request_timeout(deadline)) as response:
                response.raise_for_status()
                with open(part_path, "wb") as handle:
                    for block in response.iter_content(chunk_size=_STREAM_BLOCK_BYTES):
                        if time.monotonic() > deadline:
                            raise ChunkFetchError(f"timed out after {timeout_seconds:.0f}s: {url}")
                        if block:
                            handle.write(block)
                            written += len(block)
            if written == 0:
                raise ChunkFetchError(f"empty response body: {url}")
            os.replace(part_path, destination)
        except requests.RequestException as exc:
            raise ChunkFetchError(f"request failed for {url}: {exc}") from exc
        except OSError as exc:
            raise ChunkFetchError(f"could not write {destination}: {exc}") from exc
        finally:
            if os.path.exists(part_path):
                try:
                    os.remove(part_path)
                except OSError:
                    logger.warning("Failed to remove partial chunk %s", part_path)

    def close(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
        self._session.close()
