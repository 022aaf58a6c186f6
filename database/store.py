"""
ServiceStore — Portable SQL queries for PostgreSQL, MySQL, SQLite.

Read access to services and read/insert access to service logs. The CRUD
layer owns writes to services; this store never updates or deletes.
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Iterable, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import ServiceLogRow, ServiceRow
from database.session import get_session_factory
from models.schemas import ServiceStatus, ServiceType, SharedHostingHistoryData

logger = structlog.get_logger()


class ServiceStore:
    """
    Persistent store for services and their usage logs.

    Pass a session factory to bind the store to a specific engine (tests do
    this with SQLite); otherwise the global engine from settings is used.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        factory = self._session_factory or get_session_factory()
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ── Services ───────────────────────────────────────────

    async def list_sync_eligible(self) -> list[ServiceRow]:
        """Active, non-deleted shared-hosting services."""
        async with self._session() as db:
            stmt = (
                select(ServiceRow)
                .where(and_(
                    ServiceRow.status == ServiceStatus.ACTIVE,
                    ServiceRow.type == ServiceType.SHARED_HOSTING,
                    ServiceRow.deleted_at.is_(None),
                ))
                .order_by(ServiceRow.id)
            )
            result = await db.execute(stmt)
            return list(result.scalars())

    async def get_service(self, service_id: int, include_deleted: bool = False) -> Optional[ServiceRow]:
        async with self._session() as db:
            stmt = select(ServiceRow).where(ServiceRow.id == service_id)
            if not include_deleted:
                stmt = stmt.where(ServiceRow.deleted_at.is_(None))
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def find_service(self, identifier: str) -> Optional[ServiceRow]:
        """
        Resolve a user-supplied identifier.

        Integers are looked up by id. Anything else is a case-sensitive
        substring match on name; the lowest id among matches wins.
        """
        identifier = identifier.strip()
        try:
            service_id = int(identifier)
        except ValueError:
            service_id = None

        if service_id is not None:
            return await self.get_service(service_id)

        async with self._session() as db:
            # LIKE is case-insensitive on some backends; narrow in Python
            stmt = (
                select(ServiceRow)
                .where(and_(
                    ServiceRow.name.contains(identifier, autoescape=True),
                    ServiceRow.deleted_at.is_(None),
                ))
                .order_by(ServiceRow.id)
            )
            result = await db.execute(stmt)
            for row in result.scalars():
                if identifier in row.name:
                    return row
        return None

    async def list_services(self) -> list[ServiceRow]:
        async with self._session() as db:
            stmt = (
                select(ServiceRow)
                .where(ServiceRow.deleted_at.is_(None))
                .order_by(ServiceRow.name)
            )
            result = await db.execute(stmt)
            return list(result.scalars())

    async def count_services(self, service_type: Optional[int] = None,
                             active_only: bool = False) -> int:
        async with self._session() as db:
            stmt = select(func.count()).select_from(ServiceRow).where(ServiceRow.deleted_at.is_(None))
            if service_type is not None:
                stmt = stmt.where(ServiceRow.type == service_type)
            if active_only:
                stmt = stmt.where(ServiceRow.status == ServiceStatus.ACTIVE)
            result = await db.execute(stmt)
            return int(result.scalar_one())

    # ── Service logs ───────────────────────────────────────

    async def existing_record_ids(self, service_id: int, record_ids: Iterable[int]) -> set[int]:
        """
        Record ids already stored for a service, in one query.
        Soft-deleted rows count: a record is never inserted twice.
        """
        ids = list(record_ids)
        if not ids:
            return set()
        async with self._session() as db:
            stmt = select(ServiceLogRow.record_id).where(and_(
                ServiceLogRow.service_id == service_id,
                ServiceLogRow.record_id.in_(ids),
            ))
            result = await db.execute(stmt)
            return {int(r) for r in result.scalars()}

    async def insert_logs(self, service_id: int, records: list[dict[str, Any]]) -> int:
        """
        Insert remote history records in one batch. Each record is stored
        verbatim in `data`; `recorded_at` comes from its `checked_at`.
        """
        if not records:
            return 0
        rows = [
            ServiceLogRow(
                service_id=service_id,
                record_id=int(record["id"]),
                data=record,
                recorded_at=SharedHostingHistoryData.model_validate(record).checked_at_dt,
            )
            for record in records
        ]
        async with self._session() as db:
            db.add_all(rows)
        logger.debug("service_logs_inserted", service_id=service_id, count=len(rows))
        return len(rows)

    async def recent_logs(self, service_id: int, limit: int = 10) -> list[ServiceLogRow]:
        async with self._session() as db:
            stmt = (
                select(ServiceLogRow)
                .where(and_(
                    ServiceLogRow.service_id == service_id,
                    ServiceLogRow.deleted_at.is_(None),
                ))
                .order_by(ServiceLogRow.recorded_at.desc(), ServiceLogRow.id.desc())
                .limit(limit)
            )
            result = await db.execute(stmt)
            return list(result.scalars())

    async def get_log(self, service_id: int, record_id: int) -> Optional[ServiceLogRow]:
        async with self._session() as db:
            stmt = select(ServiceLogRow).where(and_(
                ServiceLogRow.service_id == service_id,
                ServiceLogRow.record_id == record_id,
            ))
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def count_logs_since(self, since: datetime) -> int:
        async with self._session() as db:
            stmt = select(func.count()).select_from(ServiceLogRow).where(and_(
                ServiceLogRow.deleted_at.is_(None),
                ServiceLogRow.recorded_at >= since,
            ))
            result = await db.execute(stmt)
            return int(result.scalar_one())

    async def count_logs(self, service_id: Optional[int] = None) -> int:
        async with self._session() as db:
            stmt = select(func.count()).select_from(ServiceLogRow)
            if service_id is not None:
                stmt = stmt.where(ServiceLogRow.service_id == service_id)
            result = await db.execute(stmt)
            return int(result.scalar_one())
