"""Shared fixtures: in-memory store, recording pins, manual timers, fake sleep."""
import threading

import pytest

from sqlsprinkler.config import Settings
from sqlsprinkler.context import build_context


class FakePin:
    """Pin driver that records every transition into a shared log."""

    def __init__(self, pin, log, board):
        self.pin = pin
        self.active = False
        self._log = log
        self._board = board

    def set_active(self, active):
        with self._board["lock"]:
            if active:
                others = [p for p, on in self._board["pins"].items() if on and p != self.pin]
                if others:
                    self._board["violations"].append((self.pin, others))
            self.active = bool(active)
            self._board["pins"][self.pin] = self.active
            self._log.append((self.pin, self.active))

    def is_active(self):
        return self.active


class ManualTimer:
    """threading.Timer stand-in that only fires when the test says so."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.name = None
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self, force=False):
        """Run the callback. ``force`` simulates a callback already under way when cancelled."""
        if self.cancelled and not force:
            return
        self.fired = True
        self.function(*self.args, **self.kwargs)

    def join(self, timeout=None):
        pass

    def is_alive(self):
        return self.started and not (self.fired or self.cancelled)


@pytest.fixture
def pin_log():
    return []


@pytest.fixture
def board():
    return {"lock": threading.Lock(), "pins": {}, "violations": []}


@pytest.fixture
def pin_backend(pin_log, board):
    def make(pin):
        return FakePin(pin, pin_log, board)
    return make


@pytest.fixture
def timers_made():
    return []


@pytest.fixture
def timer_factory(timers_made):
    def make(interval, function, args=None, kwargs=None):
        timer = ManualTimer(interval, function, args, kwargs)
        timers_made.append(timer)
        return timer
    return make


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", mock_hardware=True)


@pytest.fixture
def ctx(settings, pin_backend, timer_factory, fake_sleep):
    context = build_context(
        settings,
        pin_backend=pin_backend,
        timer_factory=timer_factory,
        sleep=fake_sleep,
    )
    yield context
    context.timers.cancel_all()
    context.store.dispose()


@pytest.fixture
def add_zone(ctx):
    """Create a zone through the store and return its id."""
    def add(name, pin, minutes=1, **fields):
        values = {"name": name, "pin": pin, "run_duration": minutes * 60}
        values.update(fields)
        return ctx.store.create_zone(values)
    return add


@pytest.fixture
def three_zones(add_zone):
    return [
        add_zone("Front lawn", 5, minutes=10),
        add_zone("Back lawn", 6, minutes=5),
        add_zone("Garden", 13, minutes=2),
    ]
