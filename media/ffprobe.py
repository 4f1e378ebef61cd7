"""ffprobe inspection of merged capture outputs."""

from __future__ import annotations

import json
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional

FFPROBE_BINARY = "ffprobe"
PROBE_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class ProbeResult:
    duration: Optional[float]
    has_video: bool
    has_audio: bool


def is_ffprobe_available() -> bool:
    return shutil.which(FFPROBE_BINARY) is not None


def _parse_duration(value) -> Optional[float]:
    if value in (None, "", "N/A"):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def probe_output(file_path: str) -> ProbeResult:
    """Read container duration and stream types of ``file_path``.

    Raises:
        RuntimeError: If ``ffprobe`` is missing, times out, or rejects the file.
        ValueError: If the output is not JSON.
    """
    command = [
        FFPROBE_BINARY,
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        file_path,
    ]
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=True,
            timeout=PROBE_TIMEOUT_SECONDS,
        )
    except FileNotFoundError as exc:
        raise RuntimeError("ffprobe is not installed or not available in PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(f"ffprobe timed out on {file_path}") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip()
        raise RuntimeError(f"ffprobe rejected {file_path}: {detail or exc}") from exc

    try:
        payload = json.loads(completed.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError(f"ffprobe output for {file_path} is not JSON") from exc

    codec_types = {stream.get("codec_type") for stream in payload.get("streams") or []}
    return ProbeResult(
        duration=_parse_duration((payload.get("format") or {}).get("duration")),
        has_video="video" in codec_types,
        has_audio="audio" in codec_types,
    )
