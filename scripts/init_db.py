#!/usr/bin/env python3
"""Create the Leave Portal schema and seed the default administrator.

Intended for local development and demos; production schemas are managed
by the Alembic revisions under ``alembic/versions``.

Usage:
    python scripts/init_db.py            # create missing tables, seed admin
    python scripts/init_db.py --reset    # drop everything first (wipes all data)
    python scripts/init_db.py --admin-email ops@example.com
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / ".env")

from sqlalchemy import select

from leave_portal.common.constants import UserRole
from leave_portal.config import LOG_FORMAT
from leave_portal.database import Base, async_session_factory, engine
from leave_portal.users.models import User
from leave_portal.users.schemas import UserCreate
from leave_portal.users.service import UserService

# Registers every table on Base.metadata
import leave_portal.calendar.models  # noqa: F401,E402
import leave_portal.ledger.models  # noqa: F401,E402
import leave_portal.leave.models  # noqa: F401,E402
import leave_portal.notifications.models  # noqa: F401,E402

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
log = logging.getLogger("init_db")


async def init_db(reset: bool, admin_username: str, admin_email: str) -> None:
    async with engine.begin() as conn:
        if reset:
            log.warning("Dropping all tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    log.info("Schema ready (%d tables)", len(Base.metadata.tables))

    async with async_session_factory() as db:
        async with db.begin():
            existing = await db.execute(select(User).where(User.username == admin_username))
            if existing.scalars().first() is not None:
                log.info("Admin user '%s' already exists, skipping seed", admin_username)
            else:
                admin = await UserService.create_user(
                    db,
                    UserCreate(
                        username=admin_username,
                        name="Administrator",
                        email=admin_email,
                        role=UserRole.admin,
                    ),
                )
                log.info("Seeded admin user '%s' (%s)", admin.username, admin.id)

    await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Initialise the Leave Portal database")
    parser.add_argument("--reset", action="store_true",
                        help="Drop all tables before recreating them")
    parser.add_argument("--admin-username", default="admin",
                        help="Username of the seeded administrator (default: admin)")
    parser.add_argument("--admin-email", default="admin@example.com",
                        help="E-mail of the seeded administrator")
    args = parser.parse_args()

    asyncio.run(init_db(args.reset, args.admin_username, args.admin_email))


if __name__ == "__main__":
    main()
