"""
LabelDesk Backend — Custom Exception Hierarchy
================================================

What:  Defines application-specific exceptions for different error scenarios.
Why:   Services raise what went wrong; the HTTP mapping lives in one place
       (main.py) instead of being repeated in every route.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by repositories, services and blob stores; caught by global
       handlers or, for storage errors, by the AssetCoordinator.

Exception Hierarchy:
    LabelDeskError (base)
    ├── ValidationError          → 400 Bad Request (client can fix)
    │   └── DuplicateNameError   → 400 (name already used in the project)
    ├── AuthenticationError      → 401 Unauthorized (no X-User-ID)
    ├── NotFoundError            → 404 Not Found (missing OR not owned)
    ├── VersionConflictError     → 409 Conflict (stale expected_version)
    ├── StorageDegradedError     → never leaves the AssetCoordinator
    │   └── CircuitBreakerOpenError
    └── DatabaseError            → 500 Internal Server Error (opaque)
"""

from typing import Any, Dict, Optional


class LabelDeskError(Exception):
    """
    Base exception for all LabelDesk application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(LabelDeskError):
    """
    Raised when input breaks a business rule.

    When:    Blank or over-long name, non-positive or oversized dimensions,
             bulk count outside 1..max_bulk_count.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class DuplicateNameError(ValidationError):
    """
    Raised when a label name is already taken inside its project.

    The durable store raises this when the per-project unique constraint
    rejects an insert or rename. The lifecycle service retries generated
    names; a user-chosen rename surfaces it as a 400.
    """

    def __init__(self, name: str, project_id: Optional[str] = None):
        ctx: Dict[str, Any] = {"name": name}
        if project_id:
            ctx["project_id"] = project_id
        super().__init__(
            message=f"A label named '{name}' already exists in this project",
            field="name",
            context=ctx,
        )
        self.name = name


class AuthenticationError(LabelDeskError):
    """
    Raised when a request carries no caller identity.

    Sessions are issued upstream; this service only reads the X-User-ID
    header the gateway sets.
    HTTP:    401 Unauthorized
    """

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message)


class NotFoundError(LabelDeskError):
    """
    Raised when a project or label is missing or not owned by the caller.

    The two cases share one exception and one message so responses never
    reveal whether someone else's resource exists.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class VersionConflictError(LabelDeskError):
    """
    Raised when an update carries a stale expected_version.

    Carries the version currently stored so the client can re-fetch and
    retry. Nothing is written when this is raised.
    HTTP:    409 Conflict
    """

    def __init__(
        self,
        current_version: int,
        provided_version: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["current_version"] = current_version
        ctx["provided_version"] = provided_version
        super().__init__(
            message=(
                "Label has been modified by another session. "
                "Please refresh and try again."
            ),
            context=ctx,
        )
        self.current_version = current_version
        self.provided_version = provided_version


class StorageDegradedError(LabelDeskError):
    """
    Raised by blob store implementations when an operation fails.

    What:    Upload, delete, list, copy or signing failed (backend down,
             object missing, non-2xx response).
    Handled: Caught at the AssetCoordinator boundary, logged as a warning,
             turned into a None/empty result. Never mapped to HTTP.
    """

    def __init__(
        self,
        message: str = "Thumbnail storage is unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CircuitBreakerOpenError(StorageDegradedError):
    """
    Raised when the storage circuit breaker is OPEN.

    After cb_failure_threshold consecutive failures, calls are rejected
    immediately until cb_recovery_timeout seconds have passed.
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(
            message=(
                "Thumbnail storage is temporarily disabled after repeated failures. "
                f"Retrying in approximately {recovery_time} seconds."
            ),
            context=ctx,
        )
        self.recovery_time = recovery_time


class DatabaseError(LabelDeskError):
    """
    Raised when durable-store operations fail unexpectedly.

    The message returned to the client is always generic; the original
    error is logged server-side only.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
