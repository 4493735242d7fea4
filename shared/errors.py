"""
Shared error handling for the RBAC service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for RBAC service errors."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Malformed tuple fields, rejected before any mutation."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(AccessLayerException):
    """Referenced domain, role or subject has no tuples."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class CycleError(AccessLayerException):
    """A subdomain link would make a domain its own ancestor."""

    status_code = 409

    def __init__(self, parent: str, child: str, details: Optional[Dict[str, Any]] = None):
        self.parent = parent
        self.child = child
        super().__init__(
            "CYCLE_ERROR",
            f"Linking '{child}' under '{parent}' would create a cycle",
            details or {"parent": parent, "child": child}
        )


class StoreUnavailableError(AccessLayerException):
    """The tuple store cannot be reached or returned unusable data."""

    status_code = 502

    def __init__(self, message: str = "Tuple store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", message, details)
