"""
Database seeding script for the RBAC catalogue.

Creates tables, the permission catalogue, the Admin/Accountant/Manager/Viewer
system roles and the default admin account. Safe to run repeatedly.
"""

import asyncio
import logging

from backoffice.app.core.config import settings
from backoffice.app.db.session import AsyncSessionLocal, Base, engine
from backoffice.app.models import audit_log, permission, role, session, user  # noqa: F401
from backoffice.app.services.seed import seed_rbac

logger = logging.getLogger("backoffice.seed")


async def seed():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        await seed_rbac(db)

    logger.info("Seeding completed. Admin login: %s", settings.default_admin_email)
    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(seed())
