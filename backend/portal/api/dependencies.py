"""
Shared FastAPI dependencies: services from app state and admin access.
"""
import secrets
from typing import Optional

from fastapi import Depends, Header, Request

from portal.core.config import settings
from portal.core.exceptions import AuthorizationError, PolicyUnavailableError
from portal.core.logging_config import set_operator
from portal.services.activity_logger import ActivityLogger
from portal.services.backup_service import BackupService
from portal.services.document_store import DocumentStore, document_store
from portal.services.guard import GuardSessionRegistry, PolicyProvider


def get_store(request: Request) -> DocumentStore:
    """Document store attached at startup (module default otherwise)"""
    return getattr(request.app.state, "document_store", None) or document_store


def get_policy_provider(request: Request) -> PolicyProvider:
    provider = getattr(request.app.state, "policy_provider", None)
    if provider is None:
        raise PolicyUnavailableError("Security policy provider is not running")
    return provider


def get_guard_registry(request: Request) -> GuardSessionRegistry:
    registry = getattr(request.app.state, "guard_registry", None)
    if registry is None:
        raise PolicyUnavailableError("Access guard is not running")
    return registry


def get_activity_logger(store: DocumentStore = Depends(get_store)) -> ActivityLogger:
    return ActivityLogger(store)


def get_backup_service(store: DocumentStore = Depends(get_store)) -> BackupService:
    return BackupService(store)


async def get_current_admin(
    x_admin_email: Optional[str] = Header(None),
    x_admin_token: Optional[str] = Header(None),
) -> str:
    """
    Operator identity for admin endpoints.

    The email is taken from ``X-Admin-Email``. When ADMIN_API_TOKEN is set,
    ``X-Admin-Token`` must match it.
    """
    if not x_admin_email or "@" not in x_admin_email:
        raise AuthorizationError("Admin access required")

    if settings.ADMIN_API_TOKEN and not secrets.compare_digest(
        (x_admin_token or "").encode(), settings.ADMIN_API_TOKEN.encode()
    ):
        raise AuthorizationError("Invalid admin token")

    set_operator(x_admin_email)
    return x_admin_email
