"""Application settings constants."""

from __future__ import annotations

# Number of chunk fetches allowed in flight at once.
DEFAULT_MAX_CONCURRENCY = 16

# A chunk is dropped once its failure count exceeds this budget.
CHUNK_RETRY_BUDGET = 10

# Per-fetch timeout: base + step * retry_count, capped at the ceiling.
FETCH_TIMEOUT_BASE_MS = 15_000
FETCH_TIMEOUT_STEP_MS = 15_000
FETCH_TIMEOUT_CEILING_MS = 45_000

# Live source polling.
SOURCE_POLL_INTERVAL_SECONDS = 2.0
SOURCE_IDLE_END_SECONDS = 30.0

WORK_DIR_PREFIX = "livegrab_download_"
OUTPUT_EXTENSION = "mp4"
