import json
from dataclasses import dataclass, fields, replace

from config.settings import (
    CHUNK_RETRY_BUDGET,
    DEFAULT_MAX_CONCURRENCY,
    FETCH_TIMEOUT_BASE_MS,
    FETCH_TIMEOUT_CEILING_MS,
    FETCH_TIMEOUT_STEP_MS,
    SOURCE_IDLE_END_SECONDS,
    SOURCE_POLL_INTERVAL_SECONDS,
)


@dataclass(frozen=True)
class CaptureOptions:
    video_url: str | None = None
    format: str | None = None
    verbose: bool = False
    keep_temporary_files: bool = False
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    retry_budget: int = CHUNK_RETRY_BUDGET
    fetch_timeout_base_ms: int = FETCH_TIMEOUT_BASE_MS
    fetch_timeout_step_ms: int = FETCH_TIMEOUT_STEP_MS
    fetch_timeout_ceiling_ms: int = FETCH_TIMEOUT_CEILING_MS
    low_latency: bool = False
    output_dir: str = "."
    work_root: str | None = None
    poll_interval_seconds: float = SOURCE_POLL_INTERVAL_SECONDS
    idle_end_seconds: float = SOURCE_IDLE_END_SECONDS


_OPTION_NAMES = {f.name for f in fields(CaptureOptions)}
_BOOL_KEYS = ("verbose", "keep_temporary_files", "low_latency")
_STR_KEYS = ("video_url", "format", "output_dir", "work_root")
_POSITIVE_INT_KEYS = (
    "max_concurrency",
    "fetch_timeout_base_ms",
    "fetch_timeout_ceiling_ms",
)
_NON_NEGATIVE_INT_KEYS = ("retry_budget", "fetch_timeout_step_ms")
_POSITIVE_NUMBER_KEYS = ("poll_interval_seconds", "idle_end_seconds")


def load_config(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def validate_config(config):
    errors = []
    if not isinstance(config, dict):
        return ["config must be a JSON object"]

    for key in sorted(set(config) - _OPTION_NAMES):
        errors.append(f"unknown config key: {key}")

    for key in _BOOL_KEYS:
        value = config.get(key)
        if value is not None and not isinstance(value, bool):
            errors.append(f"{key} must be true/false")

    for key in _STR_KEYS:
        value = config.get(key)
        if value is not None and not isinstance(value, str):
            errors.append(f"{key} must be a string")

    for key in _POSITIVE_INT_KEYS:
        value = config.get(key)
        if value is None:
            continue
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{key} must be an integer")
        elif value < 1:
            errors.append(f"{key} must be >= 1")

    for key in _NON_NEGATIVE_INT_KEYS:
        value = config.get(key)
        if value is None:
            continue
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{key} must be an integer")
        elif value < 0:
            errors.append(f"{key} must be >= 0")

    for key in _POSITIVE_NUMBER_KEYS:
        value = config.get(key)
        if value is None:
            continue
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{key} must be a number")
        elif value <= 0:
            errors.append(f"{key} must be > 0")

    base = config.get("fetch_timeout_base_ms")
    ceiling = config.get("fetch_timeout_ceiling_ms")
    if isinstance(base, int) and isinstance(ceiling, int) and ceiling < base:
        errors.append("fetch_timeout_ceiling_ms must be >= fetch_timeout_base_ms")

    return errors


def build_capture_options(config=None, **overrides):
    """Merge a validated config dict with CLI overrides; ``None`` overrides are ignored."""
    config = dict(config or {})
    errors = validate_config(config)
    if errors:
        raise ValueError("; ".join(errors))
    values = {key: value for key, value in config.items() if value is not None}
    for key, value in overrides.items():
        if key not in _OPTION_NAMES:
            raise TypeError(f"unknown capture option: {key}")
        if value is not None:
            values[key] = value
    errors = validate_config(values)
    if errors:
        raise ValueError("; ".join(errors))
    return replace(CaptureOptions(), **values)
