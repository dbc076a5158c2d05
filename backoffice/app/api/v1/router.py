"""
API Router.

Aggregates all API endpoints.
"""

from fastapi import APIRouter
from backoffice.app.api.v1.endpoints import auth, users, roles, permissions, audit_logs

router = APIRouter()

# Authentication and self-service endpoints
router.include_router(auth.router)

# RBAC administration
router.include_router(users.router)
router.include_router(roles.router)
router.include_router(permissions.router)

# Audit trail
router.include_router(audit_logs.router)
