"""
FastAPI Application Entry Point.

This is the main application file for the Back-office RBAC service.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backoffice.app.core.config import settings
from backoffice.app.api.v1.router import router as api_router
from backoffice.app.core.exceptions import register_exception_handlers
from backoffice.app.core.observability import ObservabilityMiddleware
from backoffice.app.core.redis_client import ping_redis
from backoffice.app.db.session import engine, Base, AsyncSessionLocal
from backoffice.app.services.seed import seed_rbac

# Import models to ensure they are registered with Base
from backoffice.app.models.user import User  # noqa: F401
from backoffice.app.models.role import Role, UserRole  # noqa: F401
from backoffice.app.models.permission import Permission, RolePermission  # noqa: F401
from backoffice.app.models.session import UserSession, PasswordReset  # noqa: F401
from backoffice.app.models.audit_log import AuditLog  # noqa: F401

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Seeds permissions, system roles and the default admin (if enabled).
    3. Disposes of the engine on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if settings.seed_on_startup:
        async with AsyncSessionLocal() as db:
            await seed_rbac(db)

    if not await ping_redis():
        logger.warning("Redis unreachable; rate limiting is disabled until it comes back")

    yield
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Role-based access control, sessions and audit trail for the back-office",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
register_exception_handlers(app)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "environment": settings.environment,
    }


app.include_router(api_router, prefix=settings.api_prefix)
