"""
Wiring: builds the store, pins, timers, registry and controller once, so every
adapter in a process shares the same lock and the same timer table.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .config import Settings
from .hardware import PinFactory
from .registry import ZoneRegistry
from .state import RunState
from .store import ZoneStore
from .system import SystemController
from .timers import AutoOffTimers

logger = logging.getLogger(__name__)


@dataclass
class SprinklerContext:
    settings: Settings
    store: ZoneStore
    pins: PinFactory
    timers: AutoOffTimers
    registry: ZoneRegistry
    state: RunState
    system: SystemController

    def shutdown(self, release_pins: bool = True):
        """
        Stop bulk runs and timers and close the database.

        With ``release_pins`` every opened pin is switched off and GPIO is
        cleaned up. A CLI process that leaves a zone running passes False.
        """
        logger.info("[CONTEXT] Shutting down")
        self.system.cancel()
        self.timers.cancel_all()
        if release_pins:
            self.pins.release_all(all_off=True)
        self.store.dispose()


def build_context(settings: Settings,
                  pin_backend: Optional[Callable[[int], Any]] = None,
                  timer_factory: Optional[Callable[..., Any]] = None,
                  sleep: Optional[Callable[[float], Any]] = None,
                  init_schema: bool = True) -> SprinklerContext:
    """
    Build the shared objects for one process.

    Args:
        settings: Runtime configuration
        pin_backend: Pin driver constructor, overriding the settings
        timer_factory: Replacement for threading.Timer
        sleep: Wait function for blocking runs and bulk operations
        init_schema: Create missing tables on startup
    """
    store = ZoneStore(settings.database_url)
    if init_schema:
        store.init_schema()

    pins = PinFactory(mock=settings.mock_hardware, backend=pin_backend)
    timers = AutoOffTimers(timer_factory) if timer_factory else AutoOffTimers()
    registry = ZoneRegistry(store, pins, timers, sleep=sleep or time.sleep)
    state = RunState()
    system = SystemController(registry, store, state, sleep=sleep)

    logger.info(f"[CONTEXT] Ready (mock hardware: {pins.mock})")
    return SprinklerContext(
        settings=settings,
        store=store,
        pins=pins,
        timers=timers,
        registry=registry,
        state=state,
        system=system,
    )
