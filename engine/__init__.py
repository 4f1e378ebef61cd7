from .config import CaptureOptions, build_capture_options, load_config, validate_config
from .core import CaptureOutcome, CaptureStatus, LiveCapture, OutputItem
from .lifecycle import LifecycleController, LifecycleState
from .paths import WorkPaths
from .reassembly import ChunkSequence, ParityMismatchError, ReassemblyPlan, plan_reassembly
from .runtime import get_runtime_info
from .scheduler import ChunkScheduler, fetch_timeout_ms

__all__ = [
    "CaptureOptions",
    "CaptureOutcome",
    "CaptureStatus",
    "ChunkScheduler",
    "ChunkSequence",
    "LifecycleController",
    "LifecycleState",
    "LiveCapture",
    "OutputItem",
    "ParityMismatchError",
    "ReassemblyPlan",
    "WorkPaths",
    "build_capture_options",
    "fetch_timeout_ms",
    "get_runtime_info",
    "load_config",
    "plan_reassembly",
    "validate_config",
]
