"""YouTube live chunk discovery.

Stream metadata and the adaptive (DASH) format URLs come from yt-dlp. Each
live DASH format serves numbered fragments (``sq``); every fragment response
carries the newest available sequence number in ``X-Head-Seqnum``. The source
probes that header on both tracks and publishes every id up to the lower of
the two heads to both tracks at once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import requests
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError, ExtractorError

from config.settings import SOURCE_IDLE_END_SECONDS, SOURCE_POLL_INTERVAL_SECONDS
from engine.tasks import StreamInfo, TrackKind
from source.base import ChannelChunkSource, SourceError

logger = logging.getLogger(__name__)

_CAPTURABLE_LIVE_STATUSES = {"is_live", "post_live"}
_HEAD_SEQ_HEADER = "X-Head-Seqnum"
_PROBE_TIMEOUT_SECONDS = 10


class _YtDlpLogger:
    def debug(self, msg):
        logger.debug("(yt-dlp) %s", msg)

    def info(self, msg):
        logger.debug("(yt-dlp) %s", msg)

    def warning(self, msg):
        logger.warning("(yt-dlp) %s", msg)

    def error(self, msg):
        logger.error("(yt-dlp) %s", msg)


def add_url_param(url: str, key: str, value: Any) -> str:
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    query[key] = [str(value)]
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))


def chunk_url(fmt: dict, sequence: int) -> str:
    base = fmt.get("fragment_base_url")
    if base:
        return f"{base.rstrip('/')}/sq/{sequence}"
    return add_url_param(fmt["url"], "sq", sequence)


def _has_codec(value) -> bool:
    return value not in (None, "", "none")


def _is_fragmented(fmt: dict) -> bool:
    protocol = str(fmt.get("protocol") or "")
    if "m3u8" in protocol:
        return False
    return bool(fmt.get("fragment_base_url") or fmt.get("url"))


def _video_rank(fmt: dict):
    return (fmt.get("height") or 0, fmt.get("fps") or 0, fmt.get("tbr") or 0)


def _audio_rank(fmt: dict):
    return (fmt.get("abr") or 0, fmt.get("tbr") or 0)


def select_formats(formats: list[dict], format_hint: Optional[str] = None) -> dict[TrackKind, dict]:
    """Pick one video-only and one audio-only fragmented format.

    ``format_hint`` is ``"<video format_id>"`` or ``"<video>+<audio>"``; without
    it the highest-resolution video and highest-bitrate audio are chosen.
    """
    usable = [f for f in formats if _is_fragmented(f)]
    video = [f for f in usable if _has_codec(f.get("vcodec")) and not _has_codec(f.get("acodec"))]
    audio = [f for f in usable if _has_codec(f.get("acodec")) and not _has_codec(f.get("vcodec"))]
    if not video or not audio:
        raise SourceError("stream has no separate video and audio DASH formats")

    wanted_video, wanted_audio = None, None
    if format_hint:
        parts = [part.strip() for part in format_hint.split("+")]
        wanted_video = parts[0] or None
        wanted_audio = parts[1] if len(parts) > 1 and parts[1] else None

    def _pick(candidates, wanted, rank):
        if wanted is None:
            return max(candidates, key=rank)
        for fmt in candidates:
            if str(fmt.get("format_id")) == wanted:
                return fmt
        raise SourceError(f"requested format {wanted!r} is not available")

    return {
        TrackKind.VIDEO: _pick(video, wanted_video, _video_rank),
        TrackKind.AUDIO: _pick(audio, wanted_audio, _audio_rank),
    }


class YouTubeLiveSource(ChannelChunkSource):
    def __init__(
        self,
        video_url: str,
        *,
        format_hint: Optional[str] = None,
        low_latency: bool = False,
        poll_interval: float = SOURCE_POLL_INTERVAL_SECONDS,
        idle_end_seconds: float = SOURCE_IDLE_END_SECONDS,
        session: Optional[requests.Session] = None,
        ytdlp_opts: Optional[dict] = None,
    ) -> None:
        super().__init__()
        self.video_url = video_url
        self.format_hint = format_hint
        self.low_latency = low_latency
        self.poll_interval = poll_interval
        self.idle_end_seconds = idle_end_seconds
        self._session = session or requests.Session()
        self._ytdlp_opts = dict(ytdlp_opts or {})
        self._formats: dict[TrackKind, dict] = {}
        self._last_published: Optional[int] = None
        self._poll_task: Optional[asyncio.Task] = None

    async def connect(self) -> StreamInfo:
        info = await asyncio.to_thread(self._extract_info)
        live_status = info.get("live_status")
        if live_status not in _CAPTURABLE_LIVE_STATUSES:
            raise SourceError(f"{self.video_url} is not a live stream (live_status={live_status})")
        self._formats = select_formats(info.get("formats") or [], self.format_hint)
        logger.info(
            "Selected formats video=%s audio=%s",
            self._formats[TrackKind.VIDEO].get("format_id"),
            self._formats[TrackKind.AUDIO].get("format_id"),
        )
        self._info = StreamInfo(
            title=str(info.get("title") or info.get("id") or "livestream"),
            low_latency=self.low_latency,
        )
        self._poll_task = asyncio.create_task(self._poll_loop())
        return self._info

    def disconnect(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
        self.close()

    def _extract_info(self) -> dict:
        opts = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "logger": _YtDlpLogger(),
            # live DASH formats are what expose numbered fragments
            "extractor_args": {"youtube": {"include_live_dash": [""]}},
        }
        opts.update(self._ytdlp_opts)
        try:
            with YoutubeDL(opts) as ydl:
                info = ydl.extract_info(self.video_url, download=False)
        except (DownloadError, ExtractorError) as exc:
            raise SourceError(f"could not read stream metadata for {self.video_url}: {exc}") from exc
        if not info:
            raise SourceError(f"no metadata returned for {self.video_url}")
        return info

    def _still_live(self) -> bool:
        try:
            info = self._extract_info()
        except SourceError:
            logger.warning("Live status check failed; continuing to poll", exc_info=True)
            return True
        return info.get("live_status") == "is_live"

    def probe_head(self, kind: TrackKind) -> Optional[int]:
        """Return the newest sequence number the server reports for ``kind``."""
        fmt = self._formats[kind]
        last = self._last_published
        url = chunk_url(fmt, last + 1 if last is not None else 0)
        try:
            response = self._session.head(url, timeout=_PROBE_TIMEOUT_SECONDS, allow_redirects=True)
        except requests.RequestException as exc:
            logger.debug("Head probe failed for %s: %s", kind.value, exc)
            return None
        value = response.headers.get(_HEAD_SEQ_HEADER)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.debug("Unparseable %s header: %r", _HEAD_SEQ_HEADER, value)
            return None

    def publish_up_to(self, head: int) -> bool:
        """Publish every unpublished id up to ``head`` on both tracks.

        Both batches are published in one step, so the tracks always hold the
        same id range. The first call starts at ``head``.
        """
        last = self._last_published
        start = head if last is None else last + 1
        if start > head or self.closed:
            return False
        for kind in TrackKind:
            fmt = self._formats[kind]
            self.publish_entries(kind, ((seq, chunk_url(fmt, seq)) for seq in range(start, head + 1)))
        self._last_published = head
        logger.debug("Discovered chunks #%d-#%d", start, head)
        return True

    async def _probe_common_head(self) -> Optional[int]:
        heads = []
        for kind in TrackKind:
            head = await asyncio.to_thread(self.probe_head, kind)
            if head is None:
                return None
            heads.append(head)
        return min(heads)

    async def _poll_loop(self) -> None:
        last_progress = time.monotonic()
        try:
            while not self.closed:
                head = await self._probe_common_head()
                advanced = head is not None and self.publish_up_to(head)
                now = time.monotonic()
                if advanced:
                    last_progress = now
                elif now - last_progress >= self.idle_end_seconds:
                    if not await asyncio.to_thread(self._still_live):
                        logger.info("Live stream has ended")
                        self.close()
                        return
                    last_progress = now
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Chunk discovery failed; treating as end of stream")
            self.close()
