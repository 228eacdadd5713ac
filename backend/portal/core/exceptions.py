"""
Custom Exceptions for the Campus Portal
=======================================

Use these instead of generic Exception to:
1. Make errors more specific and debuggable
2. Enable proper error handling at API layer
3. Provide meaningful error messages to operators

Usage:
    from portal.core.exceptions import BackupValidationError

    if "collections" not in payload:
        raise BackupValidationError("Invalid backup file format", field="collections")
"""

from typing import Optional, Any, Dict, List


class PortalError(Exception):
    """Base exception for all portal errors"""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Authorization Errors
# ============================================

class AuthorizationError(PortalError):
    """Caller is not allowed to use the admin surface"""

    status_code = 403

    def __init__(self, message: str = "Admin access required"):
        super().__init__(message, code="NOT_AUTHORIZED")


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(PortalError):
    """Base class for not found errors"""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with ID '{resource_id}' not found",
            code=f"{resource_type.upper()}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class DocumentNotFoundError(ResourceNotFoundError):
    """Document not found in a collection"""

    def __init__(self, collection: str, document_id: str):
        super().__init__("Document", document_id)
        self.details["collection"] = collection


class SessionNotFoundError(ResourceNotFoundError):
    """No live guard session with this id"""

    def __init__(self, session_id: str):
        super().__init__("Session", session_id)


# ============================================
# Validation Errors (400-type)
# ============================================

class ValidationError(PortalError):
    """Input validation failed"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class BackupValidationError(ValidationError):
    """Backup file is malformed or references unknown collections"""

    def __init__(self, message: str = "Invalid backup file format", field: Optional[str] = None,
                 collections: Optional[List[str]] = None):
        super().__init__(message, field=field)
        self.code = "INVALID_BACKUP"
        if collections:
            self.details["collections"] = collections


class InvalidPolicyError(ValidationError):
    """Security policy values are out of range"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field=field)
        self.code = "INVALID_POLICY"


# ============================================
# Storage Errors
# ============================================

class DocumentStoreError(PortalError):
    """Document store read or write failed"""

    status_code = 502

    def __init__(self, message: str, collection: Optional[str] = None,
                 document_id: Optional[str] = None):
        super().__init__(message, code="STORE_ERROR")
        if collection:
            self.details["collection"] = collection
        if document_id:
            self.details["document_id"] = document_id


class BackupWriteFailure(DocumentStoreError):
    """Export could not read a collection, so no artifact was produced"""

    def __init__(self, collection: str, message: str = "Read failed"):
        super().__init__(f"Backup failed while reading '{collection}': {message}", collection=collection)
        self.code = "BACKUP_FAILED"


# ============================================
# Guard Errors
# ============================================

class PolicyUnavailableError(PortalError):
    """Security policy could not be read; callers fall back to cached defaults"""

    status_code = 503

    def __init__(self, message: str = "Security policy unavailable"):
        super().__init__(message, code="POLICY_UNAVAILABLE")


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: PortalError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }
