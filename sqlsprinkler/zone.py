"""
Zones: one persisted zone definition plus the runtime behaviour of its valve.
"""
import logging
import time
from contextlib import nullcontext
from dataclasses import asdict, dataclass
from typing import Any, Callable, ContextManager, Dict, Optional

from .hardware import PinFactory
from .timers import AutoOffTimers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZoneDefinition:
    """
    The persisted fields of a zone.

    ``run_duration`` is in seconds; the store converts from the minutes
    kept in the database.
    """

    id: int
    name: str
    pin: int
    run_duration: int
    enabled: bool = True
    auto_off: bool = True
    system_order: int = 0


class Zone:
    """
    A zone bound to the pin factory and the shared auto-off timers.

    Zone objects are rebuilt from the store on every registry refresh, so
    anything that must outlive a refresh (pending timers) lives in
    AutoOffTimers, keyed by zone id. The pin is the only record of whether
    the valve is open.
    """

    def __init__(self, definition: ZoneDefinition, pins: PinFactory, timers: AutoOffTimers,
                 sleep: Callable[[float], Any] = time.sleep):
        self.definition = definition
        self._pins = pins
        self._timers = timers
        self._sleep = sleep

    # Definition fields

    @property
    def id(self) -> int:
        return self.definition.id

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def pin(self) -> int:
        return self.definition.pin

    @property
    def run_duration(self) -> int:
        return self.definition.run_duration

    @property
    def enabled(self) -> bool:
        return self.definition.enabled

    @property
    def auto_off(self) -> bool:
        return self.definition.auto_off

    @property
    def system_order(self) -> int:
        return self.definition.system_order

    # Valve control

    @property
    def _pin(self):
        # Opened on first use, cached by the factory
        return self._pins.get(self.definition.pin)

    def is_active(self) -> bool:
        return self._pin.is_active()

    def activate(self):
        """Open the valve. Cancels any pending auto-off for this zone."""
        with self._timers.lock:
            self._timers.cancel(self.id)
            self._pin.set_active(True)
        logger.info(f"[ZONE] Turned on {self}")

    def deactivate(self):
        """Close the valve. Cancels any pending auto-off for this zone."""
        with self._timers.lock:
            self._timers.cancel(self.id)
            self._pin.set_active(False)
        logger.info(f"[ZONE] Turned off {self}")

    def run_for(self, duration: Optional[float] = None,
                guard: Optional[ContextManager] = None,
                sleep: Optional[Callable[[float], Any]] = None):
        """
        Water for ``duration`` seconds and return once the valve is closed.

        Args:
            duration: Seconds to run; defaults to the zone's run duration
            guard: Context manager held while the valve is opened
            sleep: Wait function; may raise to abort the run early

        The valve is closed even if the wait raises.
        """
        if duration is None:
            duration = self.run_duration

        with guard if guard is not None else nullcontext():
            self.activate()
        try:
            (sleep or self._sleep)(duration)
        finally:
            self.deactivate()

    def run_unattended(self, duration: Optional[float] = None):
        """
        Open the valve and return immediately.

        With ``auto_off`` set, a deferred deactivation is scheduled after
        ``duration`` seconds (default: the zone's run duration), replacing
        any earlier one. Without it the zone stays on until turned off.
        """
        if duration is None:
            duration = self.run_duration

        with self._timers.lock:
            self.activate()
            if self.auto_off:
                self._timers.schedule(self.id, duration, self._auto_off)

    def _auto_off(self):
        logger.info(f"[ZONE] Auto-off reached for {self.name}")
        self.deactivate()

    # Status

    def status(self) -> Dict[str, Any]:
        """Definition fields plus live ``active`` state read from the pin."""
        deadline = self._timers.deadline(self.id)
        data = asdict(self.definition)
        data["active"] = self.is_active()
        data["pending_auto_off"] = deadline is not None
        data["auto_off_at"] = deadline
        return data

    def __eq__(self, other):
        if not isinstance(other, Zone):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def __str__(self):
        d = self.definition
        return (
            f"Name: {d.name} | Gpio: {d.pin} | Time: {d.run_duration}s | "
            f"Enabled: {d.enabled} | AutoOff: {d.auto_off} | "
            f"Order: {d.system_order} | Id: {d.id}"
        )

    def __repr__(self):
        return f"Zone(id={self.id}, name={self.name!r}, pin={self.pin})"
