"""Wrapper utilities for muxing captured tracks with ffmpeg."""

from __future__ import annotations

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)

FFMPEG_BINARY = "ffmpeg"
MUX_TIMEOUT_SECONDS = 3600


class MuxError(RuntimeError):
    """Raised when ffmpeg cannot produce an output container."""


def is_ffmpeg_available(binary: str = FFMPEG_BINARY) -> bool:
    """Return ``True`` when ``ffmpeg`` can be located and executed."""
    if shutil.which(binary) is None:
        return False
    try:
        subprocess.run(
            [binary, "-version"],
            capture_output=True,
            check=True,
            timeout=15,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return True


def _run_ffmpeg(arguments: list[str], output_path: str) -> str:
    command = [FFMPEG_BINARY, "-hide_banner", "-loglevel", "error", "-y", *arguments, output_path]
    logger.debug("Running ffmpeg: %s", " ".join(command))
    try:
        subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=True,
            timeout=MUX_TIMEOUT_SECONDS,
        )
    except FileNotFoundError as exc:
        raise MuxError("ffmpeg is not installed or not available in PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise MuxError(f"ffmpeg timed out while writing: {output_path}") from exc
    except subprocess.CalledProcessError as exc:
        stderr_text = (exc.stderr or "").strip()
        raise MuxError(f"ffmpeg failed for {output_path}: {stderr_text or exc}") from exc
    return output_path


def mux_tracks(video_path: str, audio_path: str, output_path: str) -> str:
    """Mux one video file and one audio file into ``output_path`` without re-encoding."""
    return _run_ffmpeg(
        [
            "-i", video_path,
            "-i", audio_path,
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c", "copy",
        ],
        output_path,
    )


def mux_track_lists(video_list_path: str, audio_list_path: str, output_path: str) -> str:
    """Mux two concat-demuxer reference lists (video, audio) into ``output_path``."""
    return _run_ffmpeg(
        [
            "-f", "concat", "-safe", "0", "-i", video_list_path,
            "-f", "concat", "-safe", "0", "-i", audio_list_path,
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c", "copy",
        ],
        output_path,
    )
