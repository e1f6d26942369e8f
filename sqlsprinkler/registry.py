"""
Zone registry: the ordered set of zones and the one lock that keeps at most
one valve open.

Turning a zone on always switches every known zone off first, then opens the
requested one, both under the same lock. The manifold cannot safely feed two
solenoids at once.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from .hardware import PinFactory
from .store import NotFound, ZoneStore
from .timers import AutoOffTimers
from .zone import Zone

logger = logging.getLogger(__name__)


class ZoneBusy(Exception):
    """The requested change is not allowed while the zone is watering."""
    pass


class ZoneRegistry:
    """
    Read-through cache of the store's zones, refreshed on every operation.

    Args:
        store: Persistence for zone definitions
        pins: Factory for the pin drivers
        timers: Shared auto-off timers
        sleep: Default wait used by blocking runs
    """

    def __init__(self, store: ZoneStore, pins: PinFactory, timers: AutoOffTimers,
                 sleep: Callable[[float], Any] = time.sleep):
        self.store = store
        self.pins = pins
        self.timers = timers
        self._sleep = sleep
        self._lock = threading.RLock()
        self._zones: List[Zone] = []

    # ========================================================================
    # Lookup
    # ========================================================================

    def refresh(self) -> List[Zone]:
        """Reload zone definitions from the store."""
        zones = [
            Zone(definition, self.pins, self.timers, sleep=self._sleep)
            for definition in self.store.list_zones()
        ]
        self._zones = zones
        return list(zones)

    def zones(self) -> List[Zone]:
        """All zones in system order."""
        return self.refresh()

    def get(self, zone_id: int) -> Zone:
        for zone in self.refresh():
            if zone.id == zone_id:
                return zone
        raise NotFound(f"Zone {zone_id}")

    def by_order(self, index: int) -> Zone:
        """The zone at position ``index`` of the system ordering."""
        zones = self.refresh()
        if 0 <= index < len(zones):
            return zones[index]
        raise NotFound(f"Zone at position {index}")

    # ========================================================================
    # Mutual Exclusion
    # ========================================================================

    def _sweep(self):
        """Switch off every known zone. Caller holds the lock."""
        for zone in self._zones:
            zone.deactivate()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the registry lock with every zone switched off."""
        with self._lock:
            self._sweep()
            yield

    def activate(self, zone_id: int, duration: Optional[float] = None) -> Zone:
        """
        Turn a zone on unattended, after turning every zone off.

        The zone stays on until its auto-off timer (if enabled) or an
        explicit deactivation.
        """
        with self._lock:
            zone = self.get(zone_id)
            logger.info(f"[REGISTRY] Exclusive activation: {zone.name}")
            with self.exclusive():
                zone.run_unattended(duration)
        return zone

    def run_zone(self, zone: Zone, duration: Optional[float] = None,
                 sleep: Optional[Callable[[float], Any]] = None):
        """Blocking exclusive run of an already resolved zone."""
        logger.info(f"[REGISTRY] Exclusive run: {zone.name}")
        zone.run_for(duration, guard=self.exclusive(), sleep=sleep)

    def run_for(self, zone_id: int, duration: Optional[float] = None,
                sleep: Optional[Callable[[float], Any]] = None) -> Zone:
        """Turn a zone on exclusively, wait, and turn it off again."""
        zone = self.get(zone_id)
        self.run_zone(zone, duration, sleep)
        return zone

    def deactivate(self, zone_id: int) -> Zone:
        with self._lock:
            zone = self.get(zone_id)
            zone.deactivate()
        return zone

    def all_off(self):
        """
        Switch off every zone, plus any opened pin no zone refers to any more
        (a zone deleted or re-pinned while this process held its pin).
        """
        logger.info("[REGISTRY] Turning off all zones")
        with self._lock:
            zones = self.refresh()
            self._sweep()
            known = {zone.pin for zone in zones}
            for number, driver in self.pins.opened().items():
                if number not in known:
                    driver.set_active(False)

    # ========================================================================
    # Status
    # ========================================================================

    def status(self, zone_id: int) -> Dict[str, Any]:
        return self.get(zone_id).status()

    def statuses(self) -> List[Dict[str, Any]]:
        return [zone.status() for zone in self.zones()]

    def active_zones(self) -> List[Zone]:
        return [zone for zone in self.zones() if zone.is_active()]

    # ========================================================================
    # Guarded Changes
    # ========================================================================

    def create_zone(self, fields: Dict[str, Any]) -> int:
        return self.store.create_zone(fields)

    def update_zone(self, zone_id: int, fields: Dict[str, Any]):
        """
        Persist changes to a zone.

        Raises:
            NotFound: No such zone
            ZoneBusy: The pin would change while the zone is on
        """
        with self._lock:
            zone = self.get(zone_id)
            pin_changes = "pin" in fields and fields["pin"] != zone.pin
            if pin_changes and zone.is_active():
                raise ZoneBusy(f"Zone {zone_id} is on; turn it off before changing its pin")

            self.store.update_zone(zone_id, fields)
            if pin_changes:
                self.timers.cancel(zone_id)

    def delete_zone(self, zone_id: int):
        """Switch the zone off, then delete it."""
        with self._lock:
            zone = self.get(zone_id)
            zone.deactivate()
            self.store.delete_zone(zone_id)

    def reorder(self, order: List[int]):
        with self._lock:
            self.store.reorder(order)
