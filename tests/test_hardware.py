import sys
import types

import pytest

from sqlsprinkler.hardware import GPIOPin, HardwareUnavailable, MockPin, PinFactory


def make_fake_gpio():
    gpio = types.ModuleType("RPi.GPIO")
    gpio.BCM = "BCM"
    gpio.OUT = "OUT"
    gpio.LOW = 0
    gpio.HIGH = 1
    gpio.levels = {}
    gpio.calls = []
    gpio.setmode = lambda mode: gpio.calls.append(("setmode", mode))
    gpio.setwarnings = lambda flag: None
    gpio.setup = lambda pin, mode: gpio.calls.append(("setup", pin))
    gpio.output = lambda pin, level: gpio.levels.__setitem__(pin, level)
    gpio.input = lambda pin: gpio.levels.get(pin, gpio.HIGH)
    gpio.cleanup = lambda: gpio.calls.append(("cleanup",))
    return gpio


@pytest.fixture
def fake_gpio(monkeypatch):
    gpio = make_fake_gpio()
    package = types.ModuleType("RPi")
    package.GPIO = gpio
    monkeypatch.setitem(sys.modules, "RPi", package)
    monkeypatch.setitem(sys.modules, "RPi.GPIO", gpio)
    return gpio


def test_mock_pin_tracks_state():
    pin = MockPin(5)
    assert pin.is_active() is False
    pin.set_active(True)
    assert pin.is_active() is True
    pin.set_active(False)
    assert pin.is_active() is False


def test_gpio_pin_is_active_low(fake_gpio):
    pin = GPIOPin(17)
    assert ("setup", 17) in fake_gpio.calls

    pin.set_active(True)
    assert fake_gpio.levels[17] == fake_gpio.LOW
    assert pin.is_active() is True

    pin.set_active(False)
    assert fake_gpio.levels[17] == fake_gpio.HIGH
    assert pin.is_active() is False


def test_gpio_pin_reads_level_left_by_another_process(fake_gpio):
    fake_gpio.levels[22] = fake_gpio.LOW
    assert GPIOPin(22).is_active() is True


def test_gpio_missing_raises_hardware_unavailable(monkeypatch):
    monkeypatch.setitem(sys.modules, "RPi", None)
    monkeypatch.setitem(sys.modules, "RPi.GPIO", None)
    with pytest.raises(HardwareUnavailable):
        GPIOPin(5)


def test_gpio_setup_failure_raises_hardware_unavailable(fake_gpio):
    def refuse(pin, mode):
        raise RuntimeError("No access to /dev/mem")
    fake_gpio.setup = refuse
    with pytest.raises(HardwareUnavailable):
        GPIOPin(5)


def test_factory_caches_drivers():
    pins = PinFactory(mock=True)
    assert pins.get(5) is pins.get(5)
    assert set(pins.opened()) == {5}


def test_factory_uses_custom_backend():
    created = []
    pins = PinFactory(backend=lambda n: created.append(n) or MockPin(n))
    pins.get(7)
    pins.get(7)
    assert created == [7]


def test_release_all_switches_pins_off_and_cleans_up(fake_gpio):
    pins = PinFactory()
    pins.get(5).set_active(True)
    pins.get(6).set_active(True)

    pins.release_all()

    assert fake_gpio.levels == {5: fake_gpio.HIGH, 6: fake_gpio.HIGH}
    assert ("cleanup",) in fake_gpio.calls
    assert pins.opened() == {}
