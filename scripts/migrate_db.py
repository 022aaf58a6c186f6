#!/usr/bin/env python3
"""
Database Migration — Create the services / service_logs tables from the ORM models.

Usage:
    python scripts/migrate_db.py

    # Check status only (no changes):
    python scripts/migrate_db.py --check
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def _existing_tables(engine) -> list[str]:
    from sqlalchemy import inspect

    async with engine.connect() as conn:
        return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())


async def run_migration(check_only: bool = False):
    from config.settings import load_settings
    load_settings()

    from database.session import get_engine, init_db
    from database.models import Base

    engine = get_engine()
    defined = list(Base.metadata.tables.keys())

    if check_only:
        print(f"Database: {engine.dialect.name}")
        print(f"URL: {str(engine.url).split('@')[-1] if '@' in str(engine.url) else str(engine.url)}")
        print(f"Tables defined: {', '.join(defined)}")

        existing = await _existing_tables(engine)
        print(f"Tables existing: {', '.join(existing) or '(none)'}")

        missing = set(defined) - set(existing)
        if missing:
            print(f"Tables MISSING: {', '.join(sorted(missing))}")
            print("Run without --check to create them.")
        else:
            print("All tables exist. ✓")
        await engine.dispose()
        return

    print("Running database migration...")
    await init_db(engine)
    tables = await _existing_tables(engine)
    print(f"Tables created/verified: {', '.join(t for t in tables if t in defined)}")

    await engine.dispose()
    print("Migration complete. ✓")


def main():
    parser = argparse.ArgumentParser(description="SysTrack database migration")
    parser.add_argument("--check", action="store_true", help="Check status only, no changes")
    args = parser.parse_args()
    asyncio.run(run_migration(check_only=args.check))


if __name__ == "__main__":
    main()
