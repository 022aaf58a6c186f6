"""Shared test fixtures for SysTrack."""
import pytest
import pytest_asyncio
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database.models import ServiceLogRow, ServiceRow
from database.session import init_db
from database.store import ServiceStore
from job_queue.message_queue import InMemoryJobQueue, reset_job_queue
from models.schemas import ServiceStatus, ServiceType
from whatsapp.broker import InMemoryPubSub, MessageBroker


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_job_queue()
    MessageBroker._active = None
    yield
    reset_job_queue()
    MessageBroker._active = None


# ──────────────────────────────────────────────────────────────
#  Database
# ──────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'systrack.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return ServiceStore(session_factory)


@pytest.fixture
def add_service(session_factory):
    """Insert a service row directly, the way the CRUD layer would."""

    async def _add(
        id: Optional[int] = None,
        name: str = "client-site",
        type: int = ServiceType.SHARED_HOSTING,
        status: int = ServiceStatus.ACTIVE,
        url: str = "https://resource-status.example.co.id/api",
        key: str = "secret-key",
        deleted: bool = False,
        description: str = "",
    ) -> ServiceRow:
        row = ServiceRow(
            id=id,
            name=name,
            description=description,
            type=int(type),
            status=int(status),
            res_status_api_url=url,
            res_status_api_key=key,
            deleted_at=datetime.now(timezone.utc) if deleted else None,
        )
        async with session_factory() as session:
            session.add(row)
            await session.commit()
        return row

    return _add


@pytest.fixture
def add_log(session_factory):
    async def _add(service_id: int, record: dict[str, Any], deleted: bool = False) -> ServiceLogRow:
        row = ServiceLogRow(
            service_id=service_id,
            record_id=int(record["id"]),
            data=record,
            recorded_at=datetime.fromisoformat(record["checked_at"].replace("Z", "+00:00")),
            deleted_at=datetime.now(timezone.utc) if deleted else None,
        )
        async with session_factory() as session:
            session.add(row)
            await session.commit()
        return row

    return _add


def history_record(record_id: int, checked_at: str = "2024-05-01T06:30:00Z", **overrides) -> dict[str, Any]:
    record = {
        "id": record_id,
        "disk_usage_mb": 1536.25,
        "file_count": 12034,
        "available_space_mb": 10240,
        "available_inode": 250000,
        "checked_at": checked_at,
    }
    record.update(overrides)
    return record


# ──────────────────────────────────────────────────────────────
#  Queue / pub-sub
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return InMemoryJobQueue(clock=clock, backoff_base_ms=2000, keep_completed=10, keep_failed=50)


@pytest.fixture
def pubsub():
    return InMemoryPubSub()


@pytest.fixture
def make_record():
    return history_record
