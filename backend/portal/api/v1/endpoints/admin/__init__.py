"""
Admin API endpoints for the portal admin dashboard.
All endpoints require an operator identity (see get_current_admin).
"""
from fastapi import APIRouter

from portal.api.v1.endpoints.admin import backup, security

admin_router = APIRouter(prefix="/admin", tags=["Admin"])

# Include all admin sub-routers
admin_router.include_router(security.router, prefix="/security", tags=["Admin Security"])
admin_router.include_router(backup.router, prefix="/backup", tags=["Admin Backup"])
