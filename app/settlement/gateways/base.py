"""
Payment gateway contract.

This module defines the interface the settlement ledger depends on to talk
to an external payment processor. Concrete gateways (Stripe, the test-only
mock) implement PaymentGateway; services never import a concrete gateway
directly but resolve it through get_gateway() or have it injected.

Contract:
    - Every operation is safe to retry (idempotent on the gateway's side
      through session ids, transaction ids and idempotency keys)
    - validate_webhook_signature must reject forged payloads
    - Failures are raised as settlement.exceptions.GatewayError subclasses,
      flagged retryable or permanent; the retry policy belongs to the caller

Usage:
    from settlement.gateways import CreateSessionRequest, get_gateway

    gateway = get_gateway()
    session = gateway.create_session(
        CreateSessionRequest(
            order_id=order_id,
            amount=Decimal("110.00"),
            currency="USD",
            customer_email="buyer@example.com",
            success_url="https://shop.example.com/success",
            cancel_url="https://shop.example.com/cancel",
            idempotency_key="create_session:...",
        )
    )
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any

from django.conf import settings
from django.utils.module_loading import import_string


class GatewaySessionStatus(str, Enum):
    """Normalized status of a checkout session at the gateway."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_final(self) -> bool:
        return self != GatewaySessionStatus.PENDING


# =============================================================================
# Request and Response Types
# =============================================================================


@dataclass
class CreateSessionRequest:
    """
    Parameters for creating a checkout session.

    Attributes:
        order_id: Order being paid
        amount: Amount to charge (Decimal, > 0)
        currency: ISO 4217 currency code
        customer_email: Buyer email
        success_url / cancel_url: Redirect targets after checkout
        idempotency_key: Key making the creation safe to retry
        metadata: Extra key-value pairs attached to the session
    """

    order_id: uuid.UUID
    amount: Decimal
    currency: str
    customer_email: str
    success_url: str
    cancel_url: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if not isinstance(self.amount, Decimal) or self.amount <= 0:
            raise ValueError("amount must be a positive Decimal")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.success_url or not self.cancel_url:
            raise ValueError("success_url and cancel_url are required")


@dataclass
class SessionResponse:
    """
    Result of creating a checkout session.

    Attributes:
        session_id: Gateway session id
        checkout_url: URL the buyer is redirected to
        raw_response: Provider response (for debugging)
    """

    session_id: str
    checkout_url: str
    raw_response: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.session_id:
            raise ValueError("session_id is required")


@dataclass
class StatusResponse:
    """
    Current state of a checkout session.

    Attributes:
        session_id: Gateway session id
        status: Normalized session status
        transaction_id: Gateway charge id once paid
        payment_method: Payment method used, if known
        amount: Amount charged, if known
        error_code / error_message: Failure details for failed sessions
    """

    session_id: str
    status: GatewaySessionStatus
    transaction_id: str | None = None
    payment_method: str | None = None
    amount: Decimal | None = None
    error_code: str | None = None
    error_message: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.status = GatewaySessionStatus(self.status)


@dataclass
class RefundResponse:
    """
    Result of a refund at the gateway.

    Attributes:
        refund_id: Gateway refund id
        amount: Refunded amount
        status: Provider refund status (succeeded, pending)
    """

    refund_id: str
    amount: Decimal
    status: str = "succeeded"
    raw_response: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.refund_id:
            raise ValueError("refund_id is required")


@dataclass
class GatewayEvent:
    """
    A verified webhook event, normalized to what the ledger needs.

    Attributes:
        event_id: Provider event id
        event_type: Provider event type
        session_id: Checkout session the event refers to (None if unrelated)
        status: Session status the event implies
        transaction_id: Gateway charge id, when present
    """

    event_id: str
    event_type: str
    session_id: str | None
    status: GatewaySessionStatus | None
    transaction_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_actionable(self) -> bool:
        """Whether the event settles the state of a checkout session."""
        return bool(self.session_id) and self.status is not None and self.status.is_final


# =============================================================================
# Gateway Interface
# =============================================================================


class PaymentGateway(ABC):
    """
    Abstract payment gateway.

    Implementations translate provider errors to GatewayError subclasses
    and never retry on their own.
    """

    name: str = "gateway"

    @abstractmethod
    def create_session(self, request: CreateSessionRequest) -> SessionResponse:
        """Create a checkout session for an order."""

    @abstractmethod
    def get_status(self, session_id: str) -> StatusResponse:
        """Fetch the current status of a checkout session."""

    @abstractmethod
    def validate_webhook_signature(self, payload: bytes, signature: str, secret: str) -> bool:
        """Return True only if ``signature`` authenticates ``payload`` under ``secret``."""

    @abstractmethod
    def parse_webhook_event(self, payload: bytes) -> GatewayEvent:
        """
        Parse an already verified webhook payload.

        Raises:
            WebhookVerificationError: If the payload is malformed
        """

    @abstractmethod
    def refund(
        self,
        transaction_id: str,
        amount: Decimal,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> RefundResponse:
        """Refund part or all of a completed charge."""

    @abstractmethod
    def cancel_session(self, session_id: str) -> bool:
        """Cancel a checkout session before completion. Returns False if unknown."""

    @property
    def webhook_secret(self) -> str:
        """Secret webhooks for this gateway are signed with."""
        return settings.STRIPE_WEBHOOK_SECRET


@lru_cache(maxsize=1)
def get_gateway() -> PaymentGateway:
    """
    Return the process-wide gateway configured by SETTLEMENT_PAYMENT_GATEWAY.

    The setting holds a dotted path to a PaymentGateway subclass.
    """
    gateway_class = import_string(settings.SETTLEMENT_PAYMENT_GATEWAY)
    return gateway_class()
