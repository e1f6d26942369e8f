"""
Auto-off timers: at most one pending deferred deactivation per zone.

Every scheduled timer carries a generation token. A timer that has been
cancelled or replaced may still wake up (threading.Timer.cancel cannot stop
a callback that already started); it then finds its token stale and does
nothing. The manager's lock is shared with Zone.activate/deactivate so the
token check and the pin change happen as one step.
"""
import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class PendingTimer:
    """Book-keeping for one scheduled auto-off."""

    token: int
    deadline: datetime
    timer: threading.Timer


class AutoOffTimers:
    """Tracks one cancellable auto-off task per zone id."""

    def __init__(self, timer_factory: Callable[..., threading.Timer] = threading.Timer):
        self.lock = threading.RLock()
        self._pending: Dict[int, PendingTimer] = {}
        self._tokens = itertools.count(1)
        self._timer_factory = timer_factory

    def schedule(self, zone_id: int, delay: float, action: Callable[[], None]) -> datetime:
        """
        Schedule ``action`` to run after ``delay`` seconds for ``zone_id``.

        Any timer already pending for the zone is cancelled first.

        Returns:
            The deadline of the new timer
        """
        with self.lock:
            self.cancel(zone_id)

            token = next(self._tokens)
            deadline = datetime.now() + timedelta(seconds=delay)
            # Lock waits longer than TIMEOUT_MAX raise OverflowError in the timer thread
            timer = self._timer_factory(
                min(delay, threading.TIMEOUT_MAX), self._fire, args=(zone_id, token, action)
            )
            timer.daemon = True
            timer.name = f"auto-off-{zone_id}"
            self._pending[zone_id] = PendingTimer(token, deadline, timer)
            timer.start()

        logger.info(
            f"[TIMERS] Zone {zone_id} auto-off in {delay:.0f}s "
            f"(at {deadline.strftime('%H:%M:%S')})"
        )
        return deadline

    def cancel(self, zone_id: int) -> bool:
        """Cancel the pending timer for ``zone_id``. Returns True if one existed."""
        with self.lock:
            entry = self._pending.pop(zone_id, None)
            if entry is None:
                return False
            entry.timer.cancel()

        logger.info(f"[TIMERS] Cancelled auto-off for zone {zone_id}")
        return True

    def cancel_all(self):
        with self.lock:
            for zone_id in list(self._pending):
                self.cancel(zone_id)

    def is_pending(self, zone_id: int) -> bool:
        with self.lock:
            return zone_id in self._pending

    def deadline(self, zone_id: int) -> Optional[datetime]:
        with self.lock:
            entry = self._pending.get(zone_id)
            return entry.deadline if entry else None

    def pending(self) -> Dict[int, datetime]:
        """Snapshot of zone id -> deadline for every scheduled timer."""
        with self.lock:
            return {zone_id: e.deadline for zone_id, e in self._pending.items()}

    def wait(self, zone_id: int, timeout: Optional[float] = None) -> bool:
        """
        Block until the pending timer for ``zone_id`` has finished.

        Returns True if no timer is left running for the zone.
        """
        with self.lock:
            entry = self._pending.get(zone_id)
        if entry is None:
            return True
        entry.timer.join(timeout)
        return not entry.timer.is_alive()

    def _fire(self, zone_id: int, token: int, action: Callable[[], None]):
        with self.lock:
            entry = self._pending.get(zone_id)
            if entry is None or entry.token != token:
                logger.debug(f"[TIMERS] Ignoring superseded auto-off for zone {zone_id}")
                return

            del self._pending[zone_id]
            logger.info(f"[TIMERS] Auto-off firing for zone {zone_id}")
            try:
                action()
            except Exception:
                # Runs on the timer thread, there is no caller to raise to
                logger.exception(f"[TIMERS] Auto-off for zone {zone_id} failed")
