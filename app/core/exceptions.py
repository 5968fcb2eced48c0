"""
Base exception classes for application-wide error handling.

Every domain error in the project derives from BaseApplicationError so callers
get a machine-readable error code and structured details regardless of which
app raised it.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input rejected before any mutation
    ├── NotFoundError - Referenced record does not exist
    ├── ConflictError - State conflicts (locks, stale versions, transitions)
    └── ExternalServiceError - Third-party service failures

Usage:
    from core.exceptions import ValidationError

    raise ValidationError(
        "Amount must be positive",
        error_code="INVALID_AMOUNT",
        details={"amount": "-5.00"},
    )

    try:
        ...
    except BaseApplicationError as e:
        logger.warning("Operation rejected", extra=e.to_dict())
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (amounts, ids, states)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to a serializable dictionary.

        Example:
            {
                "error": "Store has insufficient available balance",
                "error_code": "INSUFFICIENT_AVAILABLE_BALANCE",
                "details": {"required": "80.00", "available": "10.00"}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Validation always happens before any state is touched, so a caller
    receiving this error can assume nothing was written.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a requested record is not found."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current record state.

    Use for:
    - Concurrent modification conflicts
    - Invalid state transitions
    - Lock contention
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging but don't expose
    provider internals to end users.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
