"""
Admin activity log - who changed what, stored in the ``activity_logs`` collection.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from portal.core.logging_config import logger, get_session_id

ACTIVITY_COLLECTION = "activity_logs"


class ActivityType(str, Enum):
    VIEW_PAGE = "VIEW_PAGE"
    CREATE_DATA = "CREATE_DATA"
    UPDATE_DATA = "UPDATE_DATA"
    DELETE_DATA = "DELETE_DATA"
    EXPORT_DATA = "EXPORT_DATA"
    AUTH_EVENT = "AUTH_EVENT"
    SECURITY_TOGGLE = "SECURITY_TOGGLE"
    NAVIGATE = "NAVIGATE"


class ActivityLogger:
    def __init__(self, store):
        self.store = store

    async def log(
        self,
        action: ActivityType,
        target: str,
        admin_email: Optional[str] = None,
        details: str = "",
        metadata: Optional[Dict[str, Any]] = None,
        user_agent: str = "",
    ) -> Optional[str]:
        """Append an entry; a failed write is logged and never reaches the caller"""
        entry = {
            "adminEmail": admin_email or "Anonymous/System",
            "sessionId": get_session_id() or "unknown",
            "action": ActivityType(action).value,
            "target": target,
            "details": details,
            "metadata": metadata or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "userAgent": user_agent,
        }
        try:
            return await self.store.add(ACTIVITY_COLLECTION, entry)
        except Exception as e:
            logger.error(f"Failed to log activity {entry['action']} on {target}: {e}")
            return None
