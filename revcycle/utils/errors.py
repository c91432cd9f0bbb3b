"""
Custom Exceptions
Domain error taxonomy for the revenue cycle engine plus API auth errors.
Source: https://fastapi.tiangolo.com/tutorial/handling-errors/
"""

from typing import Any

from fastapi import HTTPException, status


# =============================================================================
# Domain Errors
# =============================================================================


class RevenueCycleError(Exception):
    """
    Base exception for engine errors.

    Carries the HTTP status the API renders it with and a context dict
    naming the entity and invariant involved.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "revenue_cycle_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error body."""
        return {
            "error": self.code,
            "detail": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return str(value)


class ValidationError(RevenueCycleError):
    """Malformed input: non-positive amounts, empty item lists."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"


class NotFoundError(RevenueCycleError):
    """Referenced entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class InvalidStateError(RevenueCycleError):
    """Operation not legal from the entity's current state."""

    status_code = status.HTTP_409_CONFLICT
    code = "invalid_state"


class ConflictError(RevenueCycleError):
    """Uniqueness violation: duplicate invoice, recommendation already invoiced."""

    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class DuplicateAppointmentError(ConflictError, ValidationError):
    """Appointment is already linked to another claim (one claim per appointment)."""

    code = "duplicate_appointment"


class OverpaymentError(RevenueCycleError):
    """Payment would push the cumulative amount past the invoice total."""

    status_code = status.HTTP_409_CONFLICT
    code = "overpayment"


class VerificationError(RevenueCycleError):
    """Gateway signature or payload mismatch. Never retried with a mutated signature."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "verification_failed"


class UpstreamTimeoutError(RevenueCycleError):
    """Upstream call (risk scoring, payment gateway) exceeded its budget or failed."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    code = "upstream_timeout"


# =============================================================================
# API Auth Errors
# =============================================================================


class AuthenticationError(HTTPException):
    """Raised when authentication fails"""

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class PermissionDeniedError(HTTPException):
    """Raised when user lacks permission"""

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )
