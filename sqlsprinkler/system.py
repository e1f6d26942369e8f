"""
Whole-system operations: the scheduled run, winterize and the zone test.

Each operation walks the zones in system order and runs them one at a
time through the registry, so mutual exclusion still holds. Waits observe
the run state's cancel flag.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from .config import TEST_ON_SEC, WINTERIZE_ON_SEC, WINTERIZE_SOAK_SEC
from .registry import ZoneRegistry
from .state import RunState
from .store import ZoneStore
from .zone import Zone

logger = logging.getLogger(__name__)

OPERATIONS = ("run", "winterize", "test")


class RunInProgress(Exception):
    """A bulk operation is already running."""
    pass


class RunCancelled(Exception):
    """Raised inside a bulk run when cancellation was requested."""
    pass


@dataclass
class RunResult:
    """Outcome of a bulk operation: completed, skipped or cancelled."""

    operation: str
    status: str
    zones: List[int] = field(default_factory=list)


class SystemController:
    """
    Runs bulk operations over the registry.

    Args:
        registry: Zone registry providing the ordered zones and exclusion
        store: Persistence for the system enable flag
        state: Shared run state; a fresh one is created if omitted
        sleep: Wait function for tests. The cancel flag is checked after
            each call. Defaults to waiting on the cancel flag itself.
    """

    def __init__(self, registry: ZoneRegistry, store: ZoneStore,
                 state: Optional[RunState] = None,
                 sleep: Optional[Callable[[float], Any]] = None):
        self.registry = registry
        self.store = store
        self.state = state or RunState()
        self._sleep = sleep
        self._thread: Optional[threading.Thread] = None

    # ========================================================================
    # System flag
    # ========================================================================

    def is_enabled(self) -> bool:
        return self.store.get_system_enabled()

    def set_enabled(self, enabled: bool):
        """Persist the enable flag. No zone is switched."""
        self.store.set_system_enabled(enabled)
        logger.info(f"[SYSTEM] Schedule {'enabled' if enabled else 'disabled'}")

    # ========================================================================
    # Bulk operations (blocking)
    # ========================================================================

    def run(self) -> RunResult:
        """Run every enabled zone in order, if the system is enabled."""
        return self._run_now("run")

    def winterize(self) -> RunResult:
        """Blow out every zone: on for a minute, then let it drain."""
        return self._run_now("winterize")

    def test_all(self) -> RunResult:
        """Pulse every zone briefly, in order."""
        return self._run_now("test")

    def _run_now(self, operation: str) -> RunResult:
        self._begin(operation)
        return self._execute(operation)

    def _begin(self, operation: str):
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        if not self.state.try_begin(operation):
            current = self.state.get_current_run()
            raise RunInProgress(f"'{current['name']}' is already running")

    def _execute(self, operation: str) -> RunResult:
        """Perform an operation already marked as begun in the run state."""
        result = RunResult(operation=operation, status="completed")
        try:
            if operation == "run":
                if not self.is_enabled():
                    logger.warning("[SYSTEM] System is disabled, skipping run")
                    result.status = "skipped"
                else:
                    zones = [z for z in self.registry.zones() if z.enabled]
                    self._sequence(zones, lambda z: z.run_duration, 0, result)
            elif operation == "winterize":
                zones = self.registry.zones()
                self._sequence(zones, lambda z: WINTERIZE_ON_SEC, WINTERIZE_SOAK_SEC, result)
            else:
                self.registry.all_off()
                zones = self.registry.zones()
                self._sequence(zones, lambda z: TEST_ON_SEC, 0, result)
        except RunCancelled:
            logger.info(f"[SYSTEM] '{operation}' cancelled")
            result.status = "cancelled"
        except Exception:
            logger.exception(f"[SYSTEM] '{operation}' aborted")
            self.state.finish("error")
            raise

        self.state.finish(result.status)
        logger.info(f"[SYSTEM] '{operation}' {result.status}, zones run: {result.zones}")
        return result

    def _sequence(self, zones: List[Zone], on_seconds: Callable[[Zone], float],
                  soak_seconds: float, result: RunResult):
        total = sum(on_seconds(z) + soak_seconds for z in zones)
        ends_at = datetime.now() + timedelta(seconds=total)
        logger.info(
            f"[SYSTEM] {len(zones)} zones, about {total:.0f}s "
            f"(until {ends_at.strftime('%H:%M:%S')})"
        )

        for i, zone in enumerate(zones, start=1):
            seconds = on_seconds(zone)
            self.state.set_step(f"{i}/{len(zones)}: {zone.name} ({seconds:.0f}s)", ends_at)
            logger.info(f"[SYSTEM] Step {i}/{len(zones)}: {zone.name} for {seconds:.0f}s")

            # Zone is switched off even if the wait raises
            self.registry.run_zone(zone, seconds, sleep=self._wait)
            result.zones.append(zone.id)

            if soak_seconds:
                self.state.set_step(f"{i}/{len(zones)}: soaking after {zone.name}")
                self._wait(soak_seconds)

    def _wait(self, seconds: float):
        if self._sleep is not None:
            self._sleep(seconds)
            cancelled = self.state.is_cancel_requested()
        else:
            cancelled = self.state.wait(seconds)
        if cancelled:
            raise RunCancelled()

    # ========================================================================
    # Background execution
    # ========================================================================

    def start(self, operation: str) -> threading.Thread:
        """
        Run an operation on a daemon thread.

        Raises:
            ValueError: Unknown operation
            RunInProgress: Another bulk operation is running
        """
        self._begin(operation)
        thread = threading.Thread(
            target=self._worker, args=(operation,), name=f"system-{operation}", daemon=True
        )
        self._thread = thread
        thread.start()
        logger.info(f"[SYSTEM] Started '{operation}' in background")
        return thread

    def _worker(self, operation: str):
        try:
            self._execute(operation)
        except Exception:
            # Already logged and recorded in the run state
            pass

    def cancel(self) -> bool:
        """Ask the running operation to stop. Returns True if one was running."""
        if not self.state.is_active():
            return False
        logger.info("[SYSTEM] Cancellation requested")
        self.state.request_cancel()
        return True

    def join(self, timeout: Optional[float] = None):
        """Wait for the background operation, if any."""
        if self._thread is not None:
            self._thread.join(timeout)
