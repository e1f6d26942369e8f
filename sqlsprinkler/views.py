"""
REST API for the sprinkler daemon.

Every route is a thin adapter: parse the JSON body, call the registry or
system controller, serialize the result. Errors from the core are mapped to
status codes in one place at the bottom of this module.
"""
import logging
from datetime import datetime
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from .context import SprinklerContext
from .hardware import HardwareUnavailable
from .registry import ZoneBusy
from .store import LengthMismatch, NotFound, PersistenceError, seconds_to_minutes
from .system import OPERATIONS, RunInProgress

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)


# ============================================================================
# Helper Functions
# ============================================================================

def _ctx() -> SprinklerContext:
    return current_app.extensions["sqlsprinkler"]


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _require(data: Dict[str, Any], key: str, kind):
    value = data.get(key)
    if value is None:
        raise ValueError(f"'{key}' is required")
    if kind is int and (isinstance(value, bool) or not isinstance(value, int)):
        raise ValueError(f"'{key}' must be an integer")
    if kind is bool and not isinstance(value, bool):
        raise ValueError(f"'{key}' must be a boolean")
    return value


def _isoformat(value):
    return value.isoformat(timespec="seconds") if isinstance(value, datetime) else value


def zone_json(status: Dict[str, Any]) -> Dict[str, Any]:
    """Zone status in the wire format (pin as ``gpio``, run time in minutes)."""
    return {
        "id": status["id"],
        "name": status["name"],
        "gpio": status["pin"],
        "time": seconds_to_minutes(status["run_duration"]),
        "enabled": status["enabled"],
        "auto_off": status["auto_off"],
        "system_order": status["system_order"],
        "state": status["active"],
        "pending_auto_off": status["pending_auto_off"],
        "auto_off_at": _isoformat(status["auto_off_at"]),
    }


def zone_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Translate wire-format zone fields into store fields."""
    fields: Dict[str, Any] = {}
    if "name" in data:
        fields["name"] = data["name"]
    if "gpio" in data:
        fields["pin"] = data["gpio"]
    if "time" in data:
        minutes = data["time"]
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValueError("'time' must be a positive number of minutes")
        fields["run_duration"] = minutes * 60
    for key in ("enabled", "auto_off", "system_order"):
        if key in data:
            fields[key] = data[key]
    return fields


def run_json(current: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _isoformat(value) for key, value in current.items()}


# ============================================================================
# System Routes
# ============================================================================

@bp.route("/system/state", methods=["GET"])
def get_system_state():
    return jsonify({"system_enabled": _ctx().system.is_enabled()})


@bp.route("/system/state", methods=["PUT"])
def set_system_state():
    enabled = _require(_body(), "system_enabled", bool)
    _ctx().system.set_enabled(enabled)
    return jsonify({"system_enabled": enabled})


@bp.route("/system/run", methods=["POST"])
def start_run():
    """Start a bulk operation in the background."""
    data = request.get_json(silent=True) or {}
    operation = data.get("operation", "run")
    if operation not in OPERATIONS:
        raise ValueError(f"'operation' must be one of {list(OPERATIONS)}")

    ctx = _ctx()
    ctx.system.start(operation)
    logger.info(f"[API] Started '{operation}'")
    return jsonify(run_json(ctx.state.get_current_run())), 202


@bp.route("/system/run", methods=["GET"])
def get_run():
    return jsonify(run_json(_ctx().state.get_current_run()))


@bp.route("/system/run", methods=["DELETE"])
def cancel_run():
    return jsonify({"cancelled": _ctx().system.cancel()})


# ============================================================================
# Zone Routes
# ============================================================================

@bp.route("/zone/info", methods=["GET"])
def zone_info():
    return jsonify([zone_json(s) for s in _ctx().registry.statuses()])


@bp.route("/zone/info/<int:zone_id>", methods=["GET"])
def zone_info_one(zone_id):
    return jsonify(zone_json(_ctx().registry.status(zone_id)))


@bp.route("/zone", methods=["PUT"])
def set_zone_state():
    """Turn a zone on (exclusively, unattended) or off."""
    data = _body()
    zone_id = _require(data, "id", int)
    on = _require(data, "state", bool)

    registry = _ctx().registry
    zone = registry.activate(zone_id) if on else registry.deactivate(zone_id)
    return jsonify(zone_json(zone.status()))


@bp.route("/zone", methods=["POST"])
def add_zone():
    data = _body()
    for key in ("name", "gpio", "time"):
        if key not in data:
            raise ValueError(f"'{key}' is required")

    zone_id = _ctx().registry.create_zone(zone_fields(data))
    return jsonify({"id": zone_id}), 201


@bp.route("/zone", methods=["DELETE"])
def delete_zone():
    zone_id = _require(_body(), "id", int)
    _ctx().registry.delete_zone(zone_id)
    return jsonify({"id": zone_id})


@bp.route("/zone/update", methods=["PUT"])
def update_zone():
    data = _body()
    zone_id = _require(data, "id", int)
    registry = _ctx().registry
    registry.update_zone(zone_id, zone_fields(data))
    return jsonify(zone_json(registry.status(zone_id)))


@bp.route("/zone/order", methods=["PUT"])
def order_zones():
    order = _body().get("order")
    if not isinstance(order, list):
        raise ValueError("'order' must be a list")
    _ctx().registry.reorder(order)
    return jsonify({"order": order})


@bp.route("/zone/off", methods=["POST"])
def all_zones_off():
    """Emergency stop: cancel any bulk run and switch every zone off."""
    ctx = _ctx()
    cancelled = ctx.system.cancel()
    ctx.registry.all_off()
    return jsonify({"cancelled_run": cancelled})


@bp.route("/api/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})


# ============================================================================
# Error Handlers
# ============================================================================

_STATUS_CODES = (
    (NotFound, 404),
    (LengthMismatch, 400),
    (ValueError, 400),
    (ZoneBusy, 409),
    (RunInProgress, 409),
    (HardwareUnavailable, 503),
    (PersistenceError, 500),
)


def _error_response(e: Exception, status: int):
    if status >= 500:
        logger.error(f"[API] {request.method} {request.path} failed: {e}")
    else:
        logger.warning(f"[API] {request.method} {request.path} rejected: {e}")
    return jsonify({"error": str(e)}), status


def _register_error_handler(exc_type, status: int):
    @bp.app_errorhandler(exc_type)
    def handler(e):
        return _error_response(e, status)


for _exc_type, _status in _STATUS_CODES:
    _register_error_handler(_exc_type, _status)


@bp.app_errorhandler(HTTPException)
def http_error(e):
    return jsonify({"error": e.description}), e.code
