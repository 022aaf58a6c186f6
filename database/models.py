"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, MySQL 8+, SQLite.

  - `services` is owned by the CRUD layer; the core only reads it.
  - `service_logs` rows are written only by the sync worker. The pair
    (service_id, record_id) is unique, soft-deleted rows included.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    BigInteger, DateTime, ForeignKey, Index, Integer, JSON, SmallInteger,
    String, Text, UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# SQLite only autoincrements INTEGER PRIMARY KEY columns
_BigIntId = BigInteger().with_variant(Integer, "sqlite")


# ──────────────────────────────────────────────────────────────
#  Services (monitored targets)
# ──────────────────────────────────────────────────────────────

class ServiceRow(Base):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(String(255), default="")
    type: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    status: Mapped[int] = mapped_column(SmallInteger, default=1)
    res_status_api_url: Mapped[str] = mapped_column(String(255), default="")
    res_status_api_key: Mapped[str] = mapped_column(Text, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    logs: Mapped[list["ServiceLogRow"]] = relationship(back_populates="service", lazy="noload")

    __table_args__ = (
        Index("ix_services_type_status", "type", "status"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id, "name": self.name, "description": self.description,
            "type": self.type, "status": self.status,
            "res_status_api_url": self.res_status_api_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ──────────────────────────────────────────────────────────────
#  Service logs (usage records)
# ──────────────────────────────────────────────────────────────

class ServiceLogRow(Base):
    __tablename__ = "service_logs"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)
    record_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    data: Mapped[Any] = mapped_column(JSON, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    service: Mapped["ServiceRow"] = relationship(back_populates="logs")

    __table_args__ = (
        UniqueConstraint("service_id", "record_id", name="uq_service_logs_service_record"),
        Index("ix_service_logs_service_recorded", "service_id", "recorded_at"),
    )
