"""Output file naming helpers."""

from __future__ import annotations

import os
import re
import unicodedata
from typing import Any, Optional

from config.settings import OUTPUT_EXTENSION

_INVALID_FS_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_MULTISPACE_RE = re.compile(r"\s+")


def sanitize_component(text: Any, maxlen: int = 180) -> str:
    """Return an OS-safe filesystem component with stable fallback."""
    sanitized = _INVALID_FS_CHARS_RE.sub("", unicodedata.normalize("NFC", str(text or "")))
    sanitized = _MULTISPACE_RE.sub(" ", sanitized).strip()
    sanitized = sanitized[:maxlen].rstrip(" .")
    return sanitized or "livestream"


def build_output_filename(
    base_name: str, suffix: Optional[int] = None, ext: str = OUTPUT_EXTENSION
) -> str:
    """``base_name[_suffix].ext``; the suffix is only used for multi-part captures."""
    stem = f"{base_name}_{suffix}" if suffix is not None else base_name
    return f"{stem}.{ext.lstrip('.')}"


def resolve_collision_path(path: str) -> str:
    if not os.path.exists(path):
        return path
    stem, ext = os.path.splitext(path)
    attempt = 2
    while True:
        candidate = f"{stem} ({attempt}){ext}"
        if not os.path.exists(candidate):
            return candidate
        attempt += 1
