"""
MQTT bridge for Home Assistant.

Publishes discovery configs for every zone (on/off switch, run time number,
auto-off and enabled switches) and for the system toggle, republishes their
state every few seconds, and turns command messages into registry and
controller calls.

Topics, for a zone with id N:
    sqlsprinkler_zone_N/{status,command}                 ON / OFF
    sqlsprinkler_zone_N_time/{status,command}            minutes
    sqlsprinkler_zone_N_auto_off_state/{status,command}  ON / OFF
    sqlsprinkler_zone_N_enabled_state/{status,command}   ON / OFF
    sqlsprinkler_system/{status,command}                 ON / OFF
"""
import json
import logging
import math
import re
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt

from .config import (
    DB_INT_MAX,
    MQTT_DISCOVERY_INTERVAL_SEC,
    MQTT_RECONNECT_MAX_SEC,
    MQTT_RECONNECT_MIN_SEC,
    MQTT_STATUS_INTERVAL_SEC,
)
from .context import SprinklerContext
from .hardware import HardwareUnavailable
from .registry import ZoneBusy
from .store import NotFound, PersistenceError, seconds_to_minutes
from .zone import Zone

logger = logging.getLogger(__name__)

DISCOVERY_PREFIX = "homeassistant"
SYSTEM_TOPIC = "sqlsprinkler_system"

_COMMAND_RE = re.compile(r"^sqlsprinkler_zone_(\d+)(_time|_auto_off_state|_enabled_state)?/command$")


# ============================================================================
# Payloads
# ============================================================================

def parse_switch(payload: str) -> bool:
    """ON/OFF, true/false or 1/0, case-insensitive."""
    value = payload.strip().lower()
    if value in ("on", "true", "1"):
        return True
    if value in ("off", "false", "0"):
        return False
    raise ValueError(f"Not a switch payload: {payload!r}")


def parse_minutes(payload: str) -> int:
    value = float(payload.strip())
    if not math.isfinite(value) or value > DB_INT_MAX:
        raise ValueError(f"Run time out of range: {payload!r}")
    minutes = int(value)
    if minutes <= 0:
        raise ValueError(f"Run time must be positive: {payload!r}")
    return minutes


def _on_off(value: bool) -> str:
    return "ON" if value else "OFF"


def _device(name: str, base: str, icon: str) -> Dict[str, str]:
    return {
        "name": name,
        "stat_t": f"{base}/status",
        "cmd_t": f"{base}/command",
        "uniq_id": base,
        "ic": icon,
    }


def discovery_messages(zones: List[Zone]) -> List[Tuple[str, Dict[str, str]]]:
    """Home Assistant discovery (topic, config) pairs for all entities."""
    messages = []
    for zone in zones:
        base = f"sqlsprinkler_zone_{zone.id}"
        messages.extend([
            (f"{DISCOVERY_PREFIX}/switch/{base}/config",
             _device(f"sqlsprinkler_zone_{zone.name}", base, "mdi:sprinkler-variant")),
            (f"{DISCOVERY_PREFIX}/number/{base}_time/config",
             _device(f"sqlsprinkler_zone_{zone.name}_time", f"{base}_time", "mdi:timer")),
            (f"{DISCOVERY_PREFIX}/switch/{base}_auto_off/config",
             _device(f"sqlsprinkler_zone_{zone.name}_auto_off_state", f"{base}_auto_off_state",
                     "mdi:electric-switch")),
            (f"{DISCOVERY_PREFIX}/switch/{base}_enabled/config",
             _device(f"sqlsprinkler_zone_{zone.name}_enabled_state", f"{base}_enabled_state",
                     "mdi:electric-switch")),
        ])
    messages.append((
        f"{DISCOVERY_PREFIX}/switch/{SYSTEM_TOPIC}/config",
        _device("sqlsprinkler_system_state", SYSTEM_TOPIC, "mdi:electric-switch"),
    ))
    return messages


def status_messages(statuses: List[Dict[str, Any]], system_enabled: bool) -> List[Tuple[str, str]]:
    """(topic, payload) pairs describing the current state of every entity."""
    messages = []
    for status in statuses:
        base = f"sqlsprinkler_zone_{status['id']}"
        messages.extend([
            (f"{base}/status", _on_off(status["active"])),
            (f"{base}_time/status", str(seconds_to_minutes(status["run_duration"]))),
            (f"{base}_auto_off_state/status", _on_off(status["auto_off"])),
            (f"{base}_enabled_state/status", _on_off(status["enabled"])),
        ])
    messages.append((f"{SYSTEM_TOPIC}/status", _on_off(system_enabled)))
    return messages


def command_topics(zones: List[Zone]) -> List[str]:
    topics = [f"{SYSTEM_TOPIC}/command"]
    for zone in zones:
        base = f"sqlsprinkler_zone_{zone.id}"
        topics.extend([
            f"{base}/command",
            f"{base}_time/command",
            f"{base}_auto_off_state/command",
            f"{base}_enabled_state/command",
        ])
    return topics


# ============================================================================
# Bridge
# ============================================================================

class MqttBridge:
    """
    Connects the sprinkler context to an MQTT broker.

    Args:
        context: Shared registry, controller and settings
        client: Pre-built paho client (tests pass a fake)
    """

    def __init__(self, context: SprinklerContext, client: Optional[mqtt.Client] = None):
        self.context = context
        self.settings = context.settings
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._subscribed = set()

        if client is None:
            client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id="sqlsprinkler")
            if self.settings.mqtt_user:
                client.username_pw_set(self.settings.mqtt_user, self.settings.mqtt_pass)
            client.reconnect_delay_set(MQTT_RECONNECT_MIN_SEC, MQTT_RECONNECT_MAX_SEC)

        self.client = client
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

    # Connection

    def _on_connect(self, client, userdata, flags, rc, properties=None):
        """MQTT connection callback"""
        if rc != 0:
            logger.error(f"[MQTT] Connection refused: {rc}")
            return
        logger.info(f"[MQTT] Connected to {self.settings.mqtt_host}")
        # Subscriptions do not survive a reconnect with a clean session
        self._subscribed.clear()
        try:
            self.publish_discovery()
            self.publish_status()
        except (PersistenceError, HardwareUnavailable) as e:
            logger.error(f"[MQTT] Initial publish failed: {e}")

    def _on_disconnect(self, client, userdata, flags, rc, properties=None):
        logger.warning(f"[MQTT] Disconnected: {rc}")

    def _on_message(self, client, userdata, msg):
        """MQTT message callback"""
        payload = msg.payload.decode(errors="replace")
        logger.debug(f"[MQTT] {msg.topic} - {payload}")
        try:
            self.handle_command(msg.topic, payload)
        except ValueError as e:
            logger.warning(f"[MQTT] Ignoring malformed payload on {msg.topic}: {e}")
        except NotFound as e:
            logger.warning(f"[MQTT] {msg.topic}: {e}")
        except (ZoneBusy, HardwareUnavailable, PersistenceError) as e:
            logger.error(f"[MQTT] Command on {msg.topic} failed: {e}")
        except Exception:
            # Raising here would stop paho's network loop
            logger.exception(f"[MQTT] Unexpected error handling {msg.topic}")

    # Commands

    def handle_command(self, topic: str, payload: str):
        """
        Apply one command message.

        Raises:
            ValueError: Malformed payload
            NotFound: The topic names an unknown zone
        """
        if topic == f"{SYSTEM_TOPIC}/command":
            self.context.system.set_enabled(parse_switch(payload))
            return

        match = _COMMAND_RE.match(topic)
        if match is None:
            logger.debug(f"[MQTT] Unhandled topic {topic}")
            return

        zone_id = int(match.group(1))
        kind = match.group(2)
        registry = self.context.registry

        if kind is None:
            if parse_switch(payload):
                registry.activate(zone_id)
            else:
                registry.deactivate(zone_id)
        elif kind == "_time":
            registry.update_zone(zone_id, {"run_duration": parse_minutes(payload) * 60})
        elif kind == "_auto_off_state":
            registry.update_zone(zone_id, {"auto_off": parse_switch(payload)})
        else:
            registry.update_zone(zone_id, {"enabled": parse_switch(payload)})

    # Publishing

    def publish_discovery(self):
        """Send discovery configs and subscribe to any new command topics."""
        zones = self.context.registry.zones()
        for topic, config in discovery_messages(zones):
            self.client.publish(topic, json.dumps(config))

        new_topics = [t for t in command_topics(zones) if t not in self._subscribed]
        if new_topics:
            self.client.subscribe([(t, 0) for t in new_topics])
            self._subscribed.update(new_topics)
            logger.info(f"[MQTT] Subscribed to {len(new_topics)} command topics")

    def publish_status(self):
        statuses = self.context.registry.statuses()
        enabled = self.context.system.is_enabled()
        for topic, payload in status_messages(statuses, enabled):
            self.client.publish(topic, payload)

    # Main loop

    def serve_forever(self):
        """Connect and publish status until stop() is called."""
        host = self.settings.mqtt_host
        if not host:
            raise ValueError("MQTT host is not configured")

        logger.info(f"[MQTT] Connecting to {host}:{self.settings.mqtt_port}")
        self.client.connect_async(host, self.settings.mqtt_port, keepalive=60)
        self.client.loop_start()

        last_discovery = time.monotonic()
        try:
            while not self._stop.wait(MQTT_STATUS_INTERVAL_SEC):
                if not self.client.is_connected():
                    continue
                try:
                    if time.monotonic() - last_discovery >= MQTT_DISCOVERY_INTERVAL_SEC:
                        self.publish_discovery()
                        last_discovery = time.monotonic()
                    self.publish_status()
                except (PersistenceError, HardwareUnavailable) as e:
                    logger.error(f"[MQTT] Publish failed: {e}")
        finally:
            self.client.loop_stop()
            self.client.disconnect()
            logger.info("[MQTT] Stopped")

    def start(self) -> threading.Thread:
        """Run serve_forever on a daemon thread."""
        self._thread = threading.Thread(target=self.serve_forever, name="mqtt-bridge", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=MQTT_STATUS_INTERVAL_SEC + 1)
