from fastapi import APIRouter
from portal.api.v1.endpoints import content, guard
from portal.api.v1.endpoints.admin import admin_router

api_router = APIRouter()

# Public site
api_router.include_router(guard.router, prefix="/guard", tags=["Access Guard"])
api_router.include_router(content.router, prefix="/content", tags=["Content"])

# Admin dashboard (security rules, backup/restore)
api_router.include_router(admin_router)
