"""
Hardware abstraction layer for the GPIO relay pins that drive the zone valves.

A pin driver only knows how to drive one output line and read it back.
Lines keep whatever level they were last given: nothing here resets a pin
because a handle was released or the process exited.
"""
import logging
import threading
from typing import Callable, Dict, Optional

from .config import ACTIVE_LOW

logger = logging.getLogger(__name__)


# ============================================================================
# Hardware Errors
# ============================================================================

class HardwareUnavailable(Exception):
    """The GPIO interface could not be opened or driven."""
    pass


# ============================================================================
# Mock Hardware (for testing)
# ============================================================================

class MockPin:
    """In-memory pin for running without physical hardware."""

    def __init__(self, pin: int):
        self.pin = pin
        self._active = False
        logger.info(f"[MOCK] Created mock pin {pin}")

    def set_active(self, active: bool):
        self._active = bool(active)
        logger.info(f"[MOCK] Pin {self.pin} → {'ON' if active else 'OFF'}")

    def is_active(self) -> bool:
        return self._active


# ============================================================================
# GPIO Relay Control
# ============================================================================

class GPIOPin:
    """Controls a single relay line through RPi.GPIO."""

    def __init__(self, pin: int, active_low: bool = ACTIVE_LOW):
        """
        Open a GPIO pin as an output.

        The line is configured without an initial value so a relay that
        another process left on stays on, and status reads report it.

        Args:
            pin: GPIO pin number (BCM mode)
            active_low: If True, relay activates on LOW signal

        Raises:
            HardwareUnavailable: RPi.GPIO is missing or the pin cannot be set up
        """
        self.pin = pin
        self.active_low = active_low

        try:
            import RPi.GPIO as GPIO
        except (ImportError, RuntimeError) as e:
            raise HardwareUnavailable(
                "RPi.GPIO is not available. Are you on a Raspberry Pi?"
            ) from e

        self.GPIO = GPIO
        try:
            self.GPIO.setmode(GPIO.BCM)
            self.GPIO.setwarnings(False)
            self.GPIO.setup(self.pin, GPIO.OUT)
        except Exception as e:
            logger.error(f"[GPIO] Failed to set up pin {pin}: {e}")
            raise HardwareUnavailable(
                f"Failed to open GPIO pin {pin}. Are you running as root?"
            ) from e

        logger.debug(f"[GPIO] Opened pin {pin}")

    def _level(self, active: bool):
        if self.active_low:
            return self.GPIO.LOW if active else self.GPIO.HIGH
        return self.GPIO.HIGH if active else self.GPIO.LOW

    def set_active(self, active: bool):
        try:
            self.GPIO.output(self.pin, self._level(active))
        except Exception as e:
            logger.error(f"[GPIO] Failed to drive pin {self.pin}: {e}")
            raise HardwareUnavailable(f"Failed to drive GPIO pin {self.pin}") from e
        logger.info(f"[GPIO] Pin {self.pin} → {'ON' if active else 'OFF'}")

    def is_active(self) -> bool:
        try:
            level = self.GPIO.input(self.pin)
        except Exception as e:
            raise HardwareUnavailable(f"Failed to read GPIO pin {self.pin}") from e
        return level == self._level(True)


# ============================================================================
# Pin Factory
# ============================================================================

class PinFactory:
    """
    Opens pin drivers lazily and keeps them for the process lifetime.

    Args:
        mock: Use MockPin instead of RPi.GPIO
        backend: Custom constructor ``backend(pin) -> driver``; overrides ``mock``
    """

    def __init__(self, mock: bool = False, backend: Optional[Callable[[int], object]] = None):
        if backend is None:
            backend = MockPin if mock else GPIOPin
        self._backend = backend
        self._pins: Dict[int, object] = {}
        self._lock = threading.Lock()
        self.mock = mock

    def get(self, pin: int):
        """Return the driver for ``pin``, opening it on first use."""
        with self._lock:
            driver = self._pins.get(pin)
            if driver is None:
                driver = self._backend(pin)
                self._pins[pin] = driver
            return driver

    def opened(self) -> Dict[int, object]:
        with self._lock:
            return dict(self._pins)

    def release_all(self, all_off: bool = True):
        """
        Release every opened pin (call on daemon shutdown).

        Args:
            all_off: Drive every opened pin inactive before releasing it
        """
        logger.info("[HARDWARE] Releasing pins...")
        with self._lock:
            pins = dict(self._pins)
            self._pins.clear()

        if all_off:
            for number, driver in pins.items():
                try:
                    driver.set_active(False)
                except HardwareUnavailable as e:
                    logger.error(f"[HARDWARE] Could not switch off pin {number}: {e}")

        if any(isinstance(d, GPIOPin) for d in pins.values()):
            import RPi.GPIO as GPIO
            GPIO.cleanup()
            logger.info("[HARDWARE] GPIO cleanup complete")
