#!/usr/bin/env python3
"""
Live stream capture: download a live stream's video/audio chunks as they appear
and stitch whatever was captured into playable files.
- Bounded parallel chunk downloads with per-chunk retries and growing timeouts.
- Ctrl+C once stops discovery and waits for queued chunks; twice quits at once.
- Gaps in the capture produce one output file per contiguous run of chunks.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from download.worker import HttpChunkFetcher
from engine.config import build_capture_options, load_config, validate_config
from engine.core import CaptureStatus, LiveCapture
from engine.runtime import get_runtime_info
from source.base import SourceError
from source.youtube import YouTubeLiveSource

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def configure_logging(verbose=False, log_dir="logs"):
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger("")
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    os.makedirs(log_dir, exist_ok=True)
    file_handler = logging.FileHandler(os.path.join(log_dir, "livegrab.log"), encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.setLevel(level)
    root.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    console.setLevel(level)
    root.addHandler(console)

    # urllib3 connection chatter drowns out chunk progress at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_parser():
    parser = argparse.ArgumentParser(description="Capture a live stream chunk by chunk.")
    parser.add_argument("video_url", help="Live stream URL.")
    parser.add_argument("-f", "--format", help="Video format id, or 'video+audio' format ids.")
    parser.add_argument("-v", "--verbose", action="store_true", default=None, help="Enable debug logging.")
    parser.add_argument(
        "-k", "--keep", dest="keep_temporary_files", action="store_true", default=None,
        help="Keep the temporary chunk directory after merging.",
    )
    parser.add_argument(
        "-c", "--concurrency", dest="max_concurrency", type=int,
        help="Maximum number of chunk downloads in flight (default 16).",
    )
    parser.add_argument("--config", help="Optional JSON config file.")
    parser.add_argument("--output-dir", help="Directory for merged output files.")
    parser.add_argument("--work-root", help="Parent directory for the temporary chunk directory.")
    parser.add_argument(
        "--low-latency", action="store_true", default=None,
        help="Treat chunks as byte-contiguous fragments and merge by raw concatenation.",
    )
    return parser


def resolve_options(args):
    config = {}
    if args.config:
        if not os.path.exists(args.config):
            raise ValueError(f"Config file not found: {args.config}")
        config = load_config(args.config)
        errors = validate_config(config)
        if errors:
            raise ValueError("Invalid config: " + "; ".join(errors))
    return build_capture_options(
        config,
        video_url=args.video_url,
        format=args.format,
        verbose=args.verbose,
        keep_temporary_files=args.keep_temporary_files,
        max_concurrency=args.max_concurrency,
        output_dir=args.output_dir,
        work_root=args.work_root,
        low_latency=args.low_latency,
    )


def _install_interrupt_handler(loop, capture):
    try:
        loop.add_signal_handler(signal.SIGINT, capture.request_cancel)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no add_signal_handler
        signal.signal(signal.SIGINT, lambda *_: loop.call_soon_threadsafe(capture.request_cancel))


async def run_capture(options):
    source = YouTubeLiveSource(
        options.video_url,
        format_hint=options.format,
        low_latency=options.low_latency,
        poll_interval=options.poll_interval_seconds,
        idle_end_seconds=options.idle_end_seconds,
    )
    fetcher = HttpChunkFetcher(max_workers=options.max_concurrency)
    capture = LiveCapture(source, fetcher, options)
    _install_interrupt_handler(asyncio.get_running_loop(), capture)
    try:
        outcome = await capture.run()
    finally:
        fetcher.close(wait=False)
    if outcome.status is CaptureStatus.FORCED:
        # Transfers and probes still running on worker threads are abandoned.
        logging.shutdown()
        os._exit(outcome.exit_code)
    return outcome


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        options = resolve_options(args)
    except ValueError as exc:
        parser.error(str(exc))

    configure_logging(options.verbose)
    logging.debug("runtime %s", get_runtime_info())

    try:
        outcome = asyncio.run(run_capture(options))
    except SourceError as exc:
        logging.error("Could not start capture: %s", exc)
        return 1
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
