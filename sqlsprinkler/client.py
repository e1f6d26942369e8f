"""
HTTP client for a running sprinkler daemon.

Lets the CLI forward commands to the process that owns the GPIO pins
instead of driving them itself.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from .config import DAEMON_TIMEOUT

logger = logging.getLogger(__name__)


class DaemonError(Exception):
    """The daemon could not be reached or rejected the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DaemonClient:
    """
    Thin wrapper over the daemon's REST API.

    Args:
        base_url: Daemon address, e.g. http://localhost:3030
        timeout: Request timeout in seconds
        session: requests session to use (tests pass a fake)
    """

    def __init__(self, base_url: str, timeout: float = DAEMON_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _send_command(self, method: str, path: str, payload: Optional[Dict] = None) -> Any:
        """
        Send one request and return the decoded JSON body.

        Raises:
            DaemonError: Connection failure, timeout or an error status
        """
        url = f"{self.base_url}{path}"
        try:
            logger.debug(f"[CLIENT] {method} {url}: {payload}")
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise DaemonError(f"Timeout connecting to daemon at {self.base_url}") from e
        except requests.exceptions.ConnectionError as e:
            raise DaemonError(f"Cannot connect to daemon at {self.base_url}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            raise DaemonError(
                message or f"HTTP error from daemon: {response.status_code}",
                status_code=response.status_code,
            )

        logger.debug(f"[CLIENT] Response: {data}")
        return data

    # System

    def get_system_enabled(self) -> bool:
        return self._send_command("GET", "/system/state")["system_enabled"]

    def set_system_enabled(self, enabled: bool):
        self._send_command("PUT", "/system/state", {"system_enabled": enabled})

    def start_run(self, operation: str) -> Dict[str, Any]:
        return self._send_command("POST", "/system/run", {"operation": operation})

    def get_run(self) -> Dict[str, Any]:
        return self._send_command("GET", "/system/run")

    # Zones

    def zones(self) -> List[Dict[str, Any]]:
        return self._send_command("GET", "/zone/info")

    def zone(self, zone_id: int) -> Dict[str, Any]:
        return self._send_command("GET", f"/zone/info/{zone_id}")

    def set_zone_state(self, zone_id: int, on: bool) -> Dict[str, Any]:
        return self._send_command("PUT", "/zone", {"id": zone_id, "state": on})

    def all_off(self):
        self._send_command("POST", "/zone/off")
