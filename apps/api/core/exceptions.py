"""
Custom exception classes and error handling.

Two families live here:

- ``APIException`` and subclasses: HTTP-facing errors raised by routers and
  rendered with a consistent ``{"detail", "error_code"}`` body.
- ``GamificationError`` and subclasses: domain invariant violations raised by
  the services. These are never retried by the settlement batch.
"""
from datetime import date
from fastapi import HTTPException, status
from typing import Optional, Dict, Any
from uuid import UUID

from sqlalchemy.exc import DBAPIError, OperationalError


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )


class ConflictError(APIException):
    """Resource conflict (e.g., duplicate entry)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT"
        )


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------

class GamificationError(Exception):
    """Base class for rejected gamification operations."""

    error_code = "GAMIFICATION_ERROR"


class ProfileNotFoundError(GamificationError):
    """No user_profile row; the user never finished signup or was deleted."""

    error_code = "PROFILE_NOT_FOUND"

    def __init__(self, user_id: UUID):
        self.user_id = user_id
        super().__init__(f"No profile for user {user_id}")


class InsufficientRewardError(GamificationError):
    """A reward was required but the user holds none of that kind."""

    error_code = "INSUFFICIENT_REWARD"

    def __init__(self, user_id: UUID, kind: str):
        self.user_id = user_id
        self.kind = kind
        super().__init__(f"User {user_id} has no '{kind}' reward available")


class InsufficientFundsError(GamificationError):
    """Raised when a redemption would result in a negative balance.

    Attributes:
        user_id: The user attempting the redemption
        current_balance: Current coin balance
        requested_amount: Coins the redemption costs
        shortfall: How many more coins are needed
    """

    error_code = "INSUFFICIENT_FUNDS"

    def __init__(self, user_id: UUID, current_balance: int, requested_amount: int):
        self.user_id = user_id
        self.current_balance = current_balance
        self.requested_amount = requested_amount
        self.shortfall = requested_amount - current_balance
        super().__init__(
            f"Insufficient coins for user {user_id}: "
            f"balance={current_balance}, requested={requested_amount}, "
            f"shortfall={self.shortfall}"
        )


class InvalidLedgerEntryError(GamificationError):
    """Delta sign does not match the transaction kind."""

    error_code = "INVALID_LEDGER_ENTRY"


class SettlementError(GamificationError):
    """A user's settlement unit failed at a known stage."""

    error_code = "SETTLEMENT_FAILED"

    def __init__(self, user_id: UUID, settlement_date: date, stage: str, cause: Exception):
        self.user_id = user_id
        self.settlement_date = settlement_date
        self.stage = stage
        self.cause = cause
        super().__init__(
            f"Settlement failed for user {user_id} on {settlement_date} "
            f"at stage '{stage}': {type(cause).__name__}: {cause}"
        )


def is_transient_error(exc: BaseException) -> bool:
    """True for data-access failures worth retrying (lost connection, lock timeout)."""
    if isinstance(exc, SettlementError):
        return is_transient_error(exc.cause)
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        return bool(exc.connection_invalidated)
    return False
