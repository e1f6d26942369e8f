"""
Zone and system-flag storage.

Wraps the SQLAlchemy models and converts between database rows (run time
in minutes, legacy column names) and ZoneDefinition (run time in seconds).
"""
import logging
import math
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DB_INT_MAX, GPIO_PIN_MAX
from .models import Base, SystemRow, ZoneRow
from .zone import ZoneDefinition

logger = logging.getLogger(__name__)


# ============================================================================
# Storage Errors
# ============================================================================

class PersistenceError(Exception):
    """The database could not be read or written."""
    pass


class NotFound(Exception):
    """The referenced zone does not exist."""

    def __init__(self, what: str):
        super().__init__(f"{what} not found")
        self.what = what


class LengthMismatch(Exception):
    """A reorder request does not list exactly one entry per zone."""

    def __init__(self, expected: int, got: int):
        super().__init__(f"Expected {expected} order entries, got {got}")
        self.expected = expected
        self.got = got


# ============================================================================
# Unit Conversion
# ============================================================================

def minutes_to_seconds(minutes: int) -> int:
    return int(minutes) * 60


def seconds_to_minutes(seconds: float) -> int:
    """Round to whole minutes, never below one."""
    return max(1, int(round(seconds / 60)))


def row_to_definition(row: ZoneRow) -> ZoneDefinition:
    return ZoneDefinition(
        id=row.id,
        name=row.name,
        pin=row.gpio,
        run_duration=minutes_to_seconds(row.time),
        enabled=bool(row.enabled),
        auto_off=bool(row.auto_off),
        system_order=row.system_order,
    )


# Writable ZoneDefinition fields -> ZoneRow attribute
_FIELD_COLUMNS = {
    "name": "name",
    "pin": "gpio",
    "run_duration": "time",
    "enabled": "enabled",
    "auto_off": "auto_off",
    "system_order": "system_order",
}


def _validate(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Check field names and values; returns row attribute -> value."""
    unknown = set(fields) - set(_FIELD_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown zone fields: {sorted(unknown)}")

    values = {}
    for key, value in fields.items():
        if key == "name":
            if not isinstance(value, str) or not value.strip():
                raise ValueError("name must be a non-empty string")
            value = value.strip()
        elif key in ("pin", "system_order"):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{key} must be a non-negative integer")
            limit = GPIO_PIN_MAX if key == "pin" else DB_INT_MAX
            if value > limit:
                raise ValueError(f"{key} must be at most {limit}")
        elif key == "run_duration":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValueError("run_duration must be a positive number of seconds")
            if not math.isfinite(value) or value > DB_INT_MAX * 60:
                raise ValueError(f"run_duration must be at most {DB_INT_MAX} minutes")
            value = seconds_to_minutes(value)
        elif key in ("enabled", "auto_off"):
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
        values[_FIELD_COLUMNS[key]] = value
    return values


# ============================================================================
# Store
# ============================================================================

class ZoneStore:
    """
    Persistence for zone definitions and the system enable flag.

    Args:
        database_url: Any SQLAlchemy URL (MySQL in production, SQLite otherwise)
    """

    def __init__(self, database_url: str):
        kwargs: Dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            # Flask and timer threads share the engine
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url == "sqlite://":
                kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, echo=False, **kwargs)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        logger.info(f"[STORE] Using database {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Transactional session; SQLAlchemy errors become PersistenceError."""
        try:
            with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"[STORE] Database error: {e}")
            raise PersistenceError(str(e)) from e

    def init_schema(self, system_enabled: bool = True):
        """Create the tables and the single system row if missing."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

        with self._session() as session:
            if session.get(SystemRow, 1) is None:
                session.add(SystemRow(id=1, enabled=system_enabled))
        logger.info("[STORE] Schema ready")

    # Zones

    def list_zones(self) -> List[ZoneDefinition]:
        """All zones ordered by system order, ties broken by id."""
        with self._session() as session:
            rows = session.scalars(
                select(ZoneRow).order_by(ZoneRow.system_order, ZoneRow.id)
            ).all()
            zones = [row_to_definition(r) for r in rows]
        logger.debug(f"[STORE] Got {len(zones)} zones")
        return zones

    def get_zone(self, zone_id: int) -> ZoneDefinition:
        with self._session() as session:
            row = session.get(ZoneRow, zone_id)
            if row is None:
                raise NotFound(f"Zone {zone_id}")
            return row_to_definition(row)

    def create_zone(self, fields: Dict[str, Any]) -> int:
        """
        Insert a zone and return its id.

        ``name``, ``pin`` and ``run_duration`` are required. Without an
        explicit ``system_order`` the zone is placed after the existing ones.
        """
        missing = [k for k in ("name", "pin", "run_duration") if k not in fields]
        if missing:
            raise ValueError(f"Missing zone fields: {missing}")
        values = _validate(fields)

        with self._session() as session:
            if "system_order" not in values:
                last = session.scalar(select(func.max(ZoneRow.system_order)))
                values["system_order"] = 0 if last is None else last + 1
            row = ZoneRow(**values)
            session.add(row)
            session.flush()
            zone_id = row.id

        logger.info(f"[STORE] Zone created: {zone_id} ({values['name']})")
        return zone_id

    def update_zone(self, zone_id: int, fields: Dict[str, Any]):
        values = _validate(fields)
        with self._session() as session:
            row = session.get(ZoneRow, zone_id)
            if row is None:
                raise NotFound(f"Zone {zone_id}")
            for attr, value in values.items():
                setattr(row, attr, value)
        logger.info(f"[STORE] Zone {zone_id} updated: {sorted(fields)}")

    def delete_zone(self, zone_id: int):
        with self._session() as session:
            row = session.get(ZoneRow, zone_id)
            if row is None:
                raise NotFound(f"Zone {zone_id}")
            session.delete(row)
        logger.info(f"[STORE] Zone {zone_id} deleted")

    def reorder(self, order: List[int]):
        """
        Assign new system orders in one transaction.

        ``order[i]`` becomes the system order of the i-th zone in the current
        ordering. Nothing is written if the lengths differ.
        """
        if any(isinstance(o, bool) or not isinstance(o, int) for o in order):
            raise ValueError("order must be a list of integers")
        if any(o < 0 or o > DB_INT_MAX for o in order):
            raise ValueError(f"order entries must be between 0 and {DB_INT_MAX}")

        with self._session() as session:
            rows = session.scalars(
                select(ZoneRow).order_by(ZoneRow.system_order, ZoneRow.id)
            ).all()
            if len(rows) != len(order):
                raise LengthMismatch(len(rows), len(order))
            for row, new_order in zip(rows, order):
                row.system_order = new_order
        logger.info(f"[STORE] Zones reordered: {order}")

    # System flag

    def get_system_enabled(self) -> bool:
        with self._session() as session:
            row = session.get(SystemRow, 1)
            if row is None:
                row = session.scalars(select(SystemRow).limit(1)).first()
            return bool(row.enabled) if row is not None else False

    def set_system_enabled(self, enabled: bool):
        with self._session() as session:
            row = session.get(SystemRow, 1)
            if row is None:
                session.add(SystemRow(id=1, enabled=enabled))
            else:
                row.enabled = enabled
        logger.info(f"[STORE] System {'enabled' if enabled else 'disabled'}")

    def dispose(self):
        self.engine.dispose()
