"""
Shared state for the bulk operation (run, winterize, test) in progress.
Thread-safe: written by the controller's worker thread, read by REST and MQTT.
"""
from threading import Lock, Event
from typing import Optional, Dict, Any
from datetime import datetime


class RunState:
    """Snapshot of the current bulk run plus its cancel flag."""

    def __init__(self):
        self._lock = Lock()
        self._cancel = Event()
        self._current: Dict[str, Any] = {
            "active": False,
            "name": None,
            "step": None,
            "started_at": None,
            "ends_at": None,
            "last_result": None,
        }

    # ========================================================================
    # Current run
    # ========================================================================

    def try_begin(self, name: str) -> bool:
        """Mark a run as started. Returns False if one is already active."""
        with self._lock:
            if self._current["active"]:
                return False
            self._cancel.clear()
            self._current.update(
                active=True,
                name=name,
                step="starting",
                started_at=datetime.now(),
                ends_at=None,
            )
            return True

    def set_step(self, step: Optional[str], ends_at: Optional[datetime] = None):
        """Update current run progress."""
        with self._lock:
            self._current["step"] = step
            if ends_at is not None:
                self._current["ends_at"] = ends_at

    def finish(self, result: str):
        with self._lock:
            self._current.update(
                active=False,
                name=None,
                step=None,
                started_at=None,
                ends_at=None,
                last_result=result,
            )

    def is_active(self) -> bool:
        with self._lock:
            return self._current["active"]

    def get_current_run(self) -> Dict[str, Any]:
        """Get a snapshot of current run state."""
        with self._lock:
            return self._current.copy()

    # ========================================================================
    # Cancellation
    # ========================================================================

    def request_cancel(self):
        """Request cancellation of current run."""
        self._cancel.set()

    def is_cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def wait(self, seconds: float) -> bool:
        """
        Sleep up to ``seconds``, waking early on cancel.

        Returns True if cancellation was requested.
        """
        return self._cancel.wait(seconds)
