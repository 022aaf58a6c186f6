"""
Database layer — services and service logs via SQLAlchemy async.

Quick start:
  from database import ServiceStore, init_db
  await init_db()
  store = ServiceStore()
  services = await store.list_sync_eligible()
"""
from database.models import Base, ServiceRow, ServiceLogRow
from database.session import get_engine, get_session_factory, init_db, close_db
from database.store import ServiceStore

__all__ = [
    # ORM models
    "Base", "ServiceRow", "ServiceLogRow",
    # Session management
    "get_engine", "get_session_factory", "init_db", "close_db",
    # Store
    "ServiceStore",
]
