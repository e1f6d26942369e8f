"""SQLAlchemy models for the zone table and the system enable flag."""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ZoneRow(Base):
    """One irrigation zone. ``time`` is the run duration in minutes."""

    __tablename__ = "Zones"

    id: Mapped[int] = mapped_column("ID", Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column("Name", String(100), nullable=False)
    gpio: Mapped[int] = mapped_column("GPIO", Integer, nullable=False)
    time: Mapped[int] = mapped_column("Time", Integer, nullable=False, default=10)
    enabled: Mapped[bool] = mapped_column("Enabled", Boolean, nullable=False, default=True)
    auto_off: Mapped[bool] = mapped_column("AutoOff", Boolean, nullable=False, default=True)
    system_order: Mapped[int] = mapped_column("SystemOrder", Integer, nullable=False, default=0)


class SystemRow(Base):
    """Single-row table holding the global schedule enable flag."""

    __tablename__ = "Enabled"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
