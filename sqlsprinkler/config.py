"""
Configuration settings for the sprinkler controller.

Values come from (highest priority first) environment variables, a local
.env file, and the system config file at /etc/sqlsprinkler/sqlsprinkler.conf.
"""
import os
import logging
import tomllib
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from sqlalchemy.engine import URL

logger = logging.getLogger(__name__)

load_dotenv()

# ============================================================================
# File Locations
# ============================================================================

SETTINGS_FILE_PATH = os.environ.get(
    "SQLSPRINKLER_CONFIG", "/etc/sqlsprinkler/sqlsprinkler.conf"
)

LOG_FILE = os.environ.get("SQLSPRINKLER_LOG_FILE", "sqlsprinkler.log")

# ============================================================================
# Hardware Configuration
# ============================================================================

# Relay control mode (True = relay activates on LOW signal)
ACTIVE_LOW = True

# Highest BCM pin on the 40-pin header
GPIO_PIN_MAX = 27

# Zone columns are signed 32-bit INT in the legacy schema
DB_INT_MAX = 2**31 - 1

# ============================================================================
# Timing Constants (seconds)
# ============================================================================

# Winterize: each zone is blown out for a minute, then left to drain
WINTERIZE_ON_SEC = 60
WINTERIZE_SOAK_SEC = 180

# System test: each zone is pulsed briefly so the user can check it
TEST_ON_SEC = 12

# MQTT state republish and Home Assistant rediscovery intervals
MQTT_STATUS_INTERVAL_SEC = 5
MQTT_DISCOVERY_INTERVAL_SEC = 60

# MQTT reconnect backoff bounds
MQTT_RECONNECT_MIN_SEC = 2
MQTT_RECONNECT_MAX_SEC = 60

# ============================================================================
# Network Defaults
# ============================================================================

DAEMON_HOST = "0.0.0.0"
DAEMON_PORT = 3030
MQTT_PORT = 1883

# Timeout for CLI -> daemon requests (seconds)
DAEMON_TIMEOUT = 10.0


@dataclass(frozen=True)
class Settings:
    """Snapshot of the runtime configuration."""

    database_url: str = "sqlite:///sqlsprinkler.db"
    mock_hardware: bool = False
    verbose: bool = False
    daemon_host: str = DAEMON_HOST
    daemon_port: int = DAEMON_PORT
    daemon_url: Optional[str] = None
    mqtt_enabled: bool = False
    mqtt_host: str = ""
    mqtt_port: int = MQTT_PORT
    mqtt_user: str = ""
    mqtt_pass: str = ""


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def read_settings_file(path: str = SETTINGS_FILE_PATH) -> Dict[str, Any]:
    """
    Read the TOML settings file.

    Returns an empty dict when the file does not exist. A file that exists
    but cannot be parsed is an error.
    """
    if not os.path.exists(path):
        logger.debug(f"[CONFIG] No settings file at {path}")
        return {}

    with open(path, "rb") as f:
        data = tomllib.load(f)

    logger.info(f"[CONFIG] Loaded settings file {path}")
    return data


def build_database_url(file_values: Dict[str, Any]) -> Optional[str]:
    """Build a MySQL URL from the sqlsprinkler_* keys, if all are present."""
    keys = ("sqlsprinkler_user", "sqlsprinkler_pass", "sqlsprinkler_host", "sqlsprinkler_db")
    missing = [k for k in keys if not file_values.get(k)]
    if missing:
        if len(missing) < len(keys):
            logger.warning(f"[CONFIG] Incomplete database settings, missing: {missing}")
        return None

    # URL.create escapes reserved characters in the password
    url = URL.create(
        "mysql+pymysql",
        username=file_values["sqlsprinkler_user"],
        password=file_values["sqlsprinkler_pass"],
        host=file_values["sqlsprinkler_host"],
        port=3306,
        database=file_values["sqlsprinkler_db"],
    )
    return url.render_as_string(hide_password=False)


def load_settings(path: str = SETTINGS_FILE_PATH) -> Settings:
    """
    Load settings from the config file and environment.

    Args:
        path: Location of the TOML settings file

    Returns:
        Frozen Settings instance
    """
    file_values = read_settings_file(path)
    env = os.environ

    database_url = (
        env.get("SQLSPRINKLER_DATABASE_URL")
        or build_database_url(file_values)
        or Settings.database_url
    )

    settings = Settings(
        database_url=database_url,
        mock_hardware=_as_bool(env.get("SQLSPRINKLER_MOCK_HARDWARE", "0")),
        verbose=_as_bool(env.get("SQLSPRINKLER_VERBOSE", file_values.get("verbose", False))),
        daemon_host=env.get("SQLSPRINKLER_HOST", DAEMON_HOST),
        daemon_port=int(env.get("SQLSPRINKLER_PORT", DAEMON_PORT)),
        daemon_url=env.get("SQLSPRINKLER_DAEMON_URL") or None,
        mqtt_enabled=_as_bool(env.get("SQLSPRINKLER_MQTT_ENABLED", file_values.get("mqtt_enabled", False))),
        mqtt_host=env.get("SQLSPRINKLER_MQTT_HOST", file_values.get("mqtt_host", "")),
        mqtt_port=int(env.get("SQLSPRINKLER_MQTT_PORT", file_values.get("mqtt_port", MQTT_PORT))),
        mqtt_user=env.get("SQLSPRINKLER_MQTT_USER", file_values.get("mqtt_user", "")),
        mqtt_pass=env.get("SQLSPRINKLER_MQTT_PASS", file_values.get("mqtt_pass", "")),
    )

    logger.info("[CONFIG] Mock hardware mode: %s", settings.mock_hardware)
    logger.info("[CONFIG] MQTT enabled: %s", settings.mqtt_enabled)
    return settings
