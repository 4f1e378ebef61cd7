"""Merged output validation."""

from __future__ import annotations

import logging
import os

from media.ffprobe import is_ffprobe_available, probe_output

logger = logging.getLogger(__name__)


def validate_output(file_path: str) -> bool:
    """Check that a merged file is non-empty and, when ffprobe is present, playable.

    A playable output carries both a video and an audio stream and a positive
    duration. Probe errors count as invalid.
    """
    try:
        if os.path.getsize(file_path) <= 0:
            logger.warning("Merged output is empty: %s", file_path)
            return False
    except OSError:
        logger.warning("Merged output is missing: %s", file_path)
        return False

    if not is_ffprobe_available():
        return True

    try:
        result = probe_output(file_path)
    except (RuntimeError, ValueError):
        logger.exception("Failed to probe merged output path=%s", file_path)
        return False

    missing = [name for name, present in (("video", result.has_video), ("audio", result.has_audio)) if not present]
    if missing:
        logger.warning("Merged output %s has no %s stream", file_path, " or ".join(missing))
        return False
    if result.duration is not None and result.duration <= 0:
        logger.warning("Merged output has no duration: %s", file_path)
        return False
    logger.debug("Merged output %s duration=%s", file_path, result.duration)
    return True
