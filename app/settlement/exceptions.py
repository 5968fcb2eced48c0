"""
Settlement-specific exceptions.

This module provides the error taxonomy of the settlement ledger: input
validation, balance refusals, gateway failures (retryable vs permanent),
idempotent replays, reconciliation failures and concurrency errors.

Exception Hierarchy:
    SettlementError (base for settlement domain)
    ├── SettlementValidationError - Bad input, rejected before any mutation
    ├── SettlementNotFoundError - Referenced ledger record does not exist
    ├── InsufficientBalance - Balance too low, state unchanged
    │   ├── InsufficientPendingBalance
    │   └── InsufficientAvailableBalance
    ├── RefundExceedsBalance - Refund reversal would drive a balance negative
    ├── AlreadyProcessed - Idempotent replay of a completed operation
    ├── ReconciliationError - Ledger invariant violation detected
    ├── InvoiceAlreadyExists - Invoice for store+period already generated
    ├── NoDataForPeriod - Nothing settled in the requested period
    └── WebhookVerificationError - Forged or malformed gateway webhook

    GatewayError - Base for payment gateway failures
    ├── GatewayDeclinedError - Payment declined (permanent)
    ├── GatewayInsufficientFundsError - Buyer funds insufficient (permanent)
    ├── GatewayInvalidRequestError - Invalid request (permanent)
    ├── GatewayRateLimitError - Rate limited (transient, retry)
    ├── GatewayUnavailableError - Gateway unavailable (transient, retry)
    └── GatewayTimeoutError - Request timeout (transient, retry)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from settlement.exceptions import InsufficientAvailableBalance

    raise InsufficientAvailableBalance(
        store_id, required=Decimal("80.00"), available=Decimal("10.00")
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal
    from typing import Any


# =============================================================================
# Settlement Domain Exceptions
# =============================================================================


class SettlementError(BaseApplicationError):
    """
    Base exception for all settlement operations.

    Example:
        try:
            PayoutService.create_payout(store_id, amount)
        except SettlementError as e:
            logger.warning("Payout refused", extra=e.to_dict())
    """

    default_error_code: str = "SETTLEMENT_ERROR"


class SettlementValidationError(SettlementError, ValidationError):
    """
    Raised when settlement input is invalid.

    Use for negative or zero amounts, float amounts, commission rates
    outside [0, 1], sub-order totals that don't add up to the charge,
    and other input problems detected before any mutation.
    """

    default_error_code: str = "SETTLEMENT_VALIDATION_ERROR"


class SettlementNotFoundError(SettlementError, NotFoundError):
    """Raised when a transaction, payout, balance or invoice lookup fails."""

    default_error_code: str = "SETTLEMENT_NOT_FOUND"


class InsufficientBalance(SettlementError):
    """
    Raised when a seller balance is too low for an operation.

    The operation is refused and the balance is left unchanged.

    Attributes:
        store_id: Store whose balance is insufficient
        required: Amount the operation needed
        available: Amount actually held in the relevant bucket
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"
    bucket: str = "balance"

    def __init__(
        self,
        store_id: uuid.UUID,
        required: Decimal,
        available: Decimal,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.store_id = store_id
        self.required = required
        self.available = available

        message = (
            f"Store {store_id} has insufficient {self.bucket}: "
            f"required {required}, available {available}"
        )

        full_details = {
            "store_id": str(store_id),
            "required": str(required),
            "available": str(available),
        }
        if details:
            full_details.update(details)

        super().__init__(message=message, error_code=error_code, details=full_details)


class InsufficientPendingBalance(InsufficientBalance):
    """Raised when a release asks for more than the pending balance."""

    default_error_code: str = "INSUFFICIENT_PENDING_BALANCE"
    bucket = "pending balance"


class InsufficientAvailableBalance(InsufficientBalance):
    """Raised when a payout asks for more than the available balance."""

    default_error_code: str = "INSUFFICIENT_AVAILABLE_BALANCE"
    bucket = "available balance"


class RefundExceedsBalance(SettlementError):
    """
    Raised when reversing a seller credit would drive a balance negative.

    This is a hard refusal: the refund is not sent to the gateway and the
    ledger is left untouched. It must be resolved by manual reconciliation
    (the funds have already left the seller's pending/available buckets).
    """

    default_error_code: str = "REFUND_EXCEEDS_BALANCE"


class AlreadyProcessed(SettlementError):
    """
    Raised when an operation has already been applied.

    Callers treat this as success; services normally return a
    ServiceResult flagged already_processed instead of raising it.
    """

    default_error_code: str = "ALREADY_PROCESSED"


class ReconciliationError(SettlementError):
    """
    Raised when a ledger invariant violation is detected.

    Always fails closed. These indicate a ledger bug, not user error, so
    they are logged at CRITICAL by the code that raises them.
    """

    default_error_code: str = "RECONCILIATION_ERROR"


class InvoiceAlreadyExists(SettlementError):
    """Raised when an invoice for the same store and period already exists."""

    default_error_code: str = "INVOICE_ALREADY_EXISTS"


class NoDataForPeriod(SettlementError):
    """Raised when no settled sub-order payments fall in an invoice period."""

    default_error_code: str = "NO_DATA_FOR_PERIOD"


class WebhookVerificationError(SettlementError):
    """Raised when a gateway webhook fails signature verification or parsing."""

    default_error_code: str = "WEBHOOK_VERIFICATION_FAILED"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for all payment gateway errors.

    Provides common attributes for gateway error handling:
    - gateway_code: Provider's internal error code
    - decline_code: Card decline code (if applicable)
    - is_retryable: Whether the operation can be retried

    The retry policy lives in the caller (the transaction ledger), not in
    the gateway adapter.
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class GatewayDeclinedError(GatewayError):
    """Payment was declined by the processor (invalid card, fraud checks)."""

    default_error_code: str = "PAYMENT_DECLINED"


class GatewayInsufficientFundsError(GatewayError):
    """The buyer's payment method has insufficient funds."""

    default_error_code: str = "INSUFFICIENT_FUNDS"


class GatewayInvalidRequestError(GatewayError):
    """The request was rejected as invalid (bad parameters, unknown session)."""

    default_error_code: str = "INVALID_GATEWAY_REQUEST"


# -----------------------------------------------------------------------------
# Transient Errors (retry with backoff)
# -----------------------------------------------------------------------------


class GatewayRateLimitError(GatewayError):
    """The gateway rate limited the request."""

    default_error_code: str = "GATEWAY_RATE_LIMITED"
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """The gateway could not be reached or returned a server error."""

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayTimeoutError(GatewayError):
    """The gateway call exceeded its timeout."""

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects a concurrent modification.

    Example:
        raise StaleRecordError(
            f"Payout {pk} was modified by another process",
            details={"pk": str(pk), "expected_version": 3, "current_version": 5}
        )
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """Raised when a distributed lock cannot be acquired within the timeout."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when an FSM transition is not allowed from the current state.

    Example:
        raise InvalidStateTransitionError(
            "Cannot complete payout from 'failed' state",
            details={"current_state": "failed", "target_state": "completed"}
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    "AlreadyProcessed",
    "GatewayDeclinedError",
    "GatewayError",
    "GatewayInsufficientFundsError",
    "GatewayInvalidRequestError",
    "GatewayRateLimitError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "InsufficientAvailableBalance",
    "InsufficientBalance",
    "InsufficientPendingBalance",
    "InvalidStateTransitionError",
    "InvoiceAlreadyExists",
    "LockAcquisitionError",
    "NoDataForPeriod",
    "ReconciliationError",
    "RefundExceedsBalance",
    "SettlementError",
    "SettlementNotFoundError",
    "SettlementValidationError",
    "StaleRecordError",
    "WebhookVerificationError",
]
