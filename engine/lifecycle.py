"""Cooperative shutdown state machine for a capture run."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from engine.events import log_event

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    FINALIZING = "finalizing"
    TERMINATED = "terminated"


class LifecycleController:
    """Tracks RUNNING -> DRAINING -> FINALIZING -> TERMINATED.

    ``on_drain`` runs once, on the transition into DRAINING (the capture
    controller disconnects the chunk source there). Every transition happens
    under a lock so concurrent callers observe a single winner.
    """

    def __init__(self, on_drain: Optional[Callable[[], None]] = None) -> None:
        self._state = LifecycleState.RUNNING
        self._forced = False
        self._on_drain = on_drain
        self._lock = threading.Lock()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def forced(self) -> bool:
        """True when the run ended through a second interrupt."""
        return self._forced

    @property
    def accepting_work(self) -> bool:
        return self._state is LifecycleState.RUNNING

    def request_cancel(self) -> LifecycleState:
        """Handle an operator interrupt.

        The first interrupt while running starts draining; any interrupt after
        that terminates immediately without finalizing.
        """
        with self._lock:
            if self._state is LifecycleState.RUNNING:
                self._transition(LifecycleState.DRAINING, reason="cancel")
                drain = True
            else:
                if self._state is not LifecycleState.TERMINATED:
                    self._forced = True
                    self._transition(LifecycleState.TERMINATED, reason="forced")
                drain = False
            state = self._state
        if drain:
            self._run_drain_hook()
        return state

    def stream_ended(self) -> LifecycleState:
        """Handle natural end-of-stream from the source."""
        with self._lock:
            drain = self._state is LifecycleState.RUNNING
            if drain:
                self._transition(LifecycleState.DRAINING, reason="stream_end")
            state = self._state
        if drain:
            self._run_drain_hook()
        return state

    def begin_finalize(self) -> bool:
        """Latch DRAINING -> FINALIZING; returns True for exactly one caller."""
        with self._lock:
            if self._state is not LifecycleState.DRAINING:
                return False
            self._transition(LifecycleState.FINALIZING, reason="drained")
            return True

    def mark_terminated(self) -> None:
        with self._lock:
            if self._state is not LifecycleState.TERMINATED:
                self._transition(LifecycleState.TERMINATED, reason="finalized")

    def _transition(self, new_state: LifecycleState, *, reason: str) -> None:
        previous = self._state
        self._state = new_state
        log_event(
            logging.DEBUG,
            "lifecycle_transition",
            previous=previous.value,
            state=new_state.value,
            reason=reason,
        )

    def _run_drain_hook(self) -> None:
        if self._on_drain is None:
            return
        try:
            self._on_drain()
        except Exception:
            logger.exception("drain hook failed")
