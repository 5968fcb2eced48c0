"""
In-memory payment gateway for tests and local development.

NOT FOR PRODUCTION. The class refuses to instantiate unless
SETTLEMENT_ALLOW_MOCK_GATEWAY is enabled, so it can never sit behind a
real trust boundary by accident.

Unlike a stub, it behaves like a real gateway where it matters to the
ledger:
- Webhook signatures are real HMAC-SHA256 ("t=<ts>,v1=<hex>", the Stripe
  header format); forged or stale payloads are rejected
- Payment outcomes are driven explicitly with simulate_payment() and
  simulate_failure(), never by elapsed time
- Session creation and refunds honour idempotency keys
- Failures can be injected per operation to exercise retry paths

Usage:
    gateway = MockPaymentGateway(webhook_secret="whsec_test")
    session = gateway.create_session(request)
    gateway.simulate_payment(session.session_id)

    payload = gateway.build_webhook_payload(session.session_id)
    signature = gateway.sign_payload(payload)
    PaymentTransactionService.handle_webhook(payload, signature)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from settlement.exceptions import (
    GatewayDeclinedError,
    GatewayError,
    GatewayInvalidRequestError,
    WebhookVerificationError,
)
from settlement.gateways.base import (
    CreateSessionRequest,
    GatewayEvent,
    GatewaySessionStatus,
    PaymentGateway,
    RefundResponse,
    SessionResponse,
    StatusResponse,
)
from settlement.gateways.stripe_gateway import checkout_event_from_dict
from settlement.money import ZERO

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300

_STATUS_EVENT_TYPES = {
    GatewaySessionStatus.SUCCEEDED: "checkout.session.completed",
    GatewaySessionStatus.FAILED: "checkout.session.async_payment_failed",
    GatewaySessionStatus.EXPIRED: "checkout.session.expired",
    GatewaySessionStatus.CANCELLED: "checkout.session.expired",
}


@dataclass
class MockSession:
    session_id: str
    order_id: uuid.UUID
    amount: Decimal
    currency: str
    customer_email: str
    success_url: str
    status: GatewaySessionStatus = GatewaySessionStatus.PENDING
    transaction_id: str | None = None
    payment_method: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    refunded: Decimal = ZERO
    metadata: dict[str, str] = field(default_factory=dict)


class MockPaymentGateway(PaymentGateway):
    """Test-only gateway with in-memory sessions. See module docstring."""

    name = "mock"

    def __init__(self, webhook_secret: str | None = None):
        if not getattr(settings, "SETTLEMENT_ALLOW_MOCK_GATEWAY", False):
            raise ImproperlyConfigured(
                "MockPaymentGateway is test-only; set SETTLEMENT_ALLOW_MOCK_GATEWAY "
                "to use it outside of tests"
            )
        self._webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.sessions: dict[str, MockSession] = {}
        self.refunds: dict[str, RefundResponse] = {}
        self._sessions_by_key: dict[str, str] = {}
        self._injected: dict[str, list[GatewayError]] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []

        logger.warning("MockPaymentGateway in use - payments are simulated")

    @property
    def webhook_secret(self) -> str:
        return self._webhook_secret

    # =========================================================================
    # Failure Injection
    # =========================================================================

    def inject_failure(self, operation: str, error: GatewayError, times: int = 1) -> None:
        """Make the next ``times`` calls to ``operation`` raise ``error``."""
        self._injected[operation].extend([error] * times)

    def _before(self, operation: str, ref: str) -> None:
        self.calls.append((operation, ref))
        queue = self._injected.get(operation)
        if queue:
            raise queue.pop(0)

    def _get_session(self, session_id: str) -> MockSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise GatewayInvalidRequestError(
                f"No such checkout session: {session_id}",
                gateway_code="resource_missing",
            )
        return session

    # =========================================================================
    # Gateway Operations
    # =========================================================================

    def create_session(self, request: CreateSessionRequest) -> SessionResponse:
        self._before("create_session", str(request.order_id))

        existing = self._sessions_by_key.get(request.idempotency_key)
        if existing:
            session = self.sessions[existing]
        else:
            session = MockSession(
                session_id=f"mock_cs_{uuid.uuid4().hex}",
                order_id=request.order_id,
                amount=request.amount,
                currency=request.currency,
                customer_email=request.customer_email,
                success_url=request.success_url,
                metadata=dict(request.metadata),
            )
            self.sessions[session.session_id] = session
            self._sessions_by_key[request.idempotency_key] = session.session_id
            logger.info(
                "Mock checkout session created",
                extra={"session_id": session.session_id, "amount": str(request.amount)},
            )

        return SessionResponse(
            session_id=session.session_id,
            checkout_url=f"{session.success_url}?session_id={session.session_id}&mock=true",
        )

    def get_status(self, session_id: str) -> StatusResponse:
        self._before("get_status", session_id)
        session = self._get_session(session_id)
        return StatusResponse(
            session_id=session.session_id,
            status=session.status,
            transaction_id=session.transaction_id,
            payment_method=session.payment_method,
            amount=session.amount,
            error_code=session.error_code,
            error_message=session.error_message,
            metadata={"mock": "true"},
        )

    def cancel_session(self, session_id: str) -> bool:
        self._before("cancel_session", session_id)
        session = self.sessions.get(session_id)
        if session is None or session.status != GatewaySessionStatus.PENDING:
            return False
        session.status = GatewaySessionStatus.CANCELLED
        return True

    def refund(
        self,
        transaction_id: str,
        amount: Decimal,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> RefundResponse:
        self._before("refund", transaction_id)

        if idempotency_key and idempotency_key in self.refunds:
            return self.refunds[idempotency_key]

        session = next(
            (s for s in self.sessions.values() if s.transaction_id == transaction_id),
            None,
        )
        if session is None or session.status != GatewaySessionStatus.SUCCEEDED:
            raise GatewayInvalidRequestError(
                f"No refundable charge {transaction_id}",
                gateway_code="charge_not_refundable",
            )
        if session.refunded + amount > session.amount:
            raise GatewayInvalidRequestError(
                "Refund exceeds the charged amount",
                gateway_code="amount_too_large",
            )

        session.refunded += amount
        response = RefundResponse(refund_id=f"mock_re_{uuid.uuid4().hex}", amount=amount)
        if idempotency_key:
            self.refunds[idempotency_key] = response
        return response

    # =========================================================================
    # Simulation
    # =========================================================================

    def simulate_payment(self, session_id: str, payment_method: str = "card") -> str:
        """Mark a session paid and return its gateway transaction id."""
        session = self._get_session(session_id)
        session.status = GatewaySessionStatus.SUCCEEDED
        session.payment_method = payment_method
        session.transaction_id = session.transaction_id or f"mock_pi_{uuid.uuid4().hex}"
        return session.transaction_id

    def simulate_failure(
        self,
        session_id: str,
        error_code: str = "card_declined",
        error_message: str = "Your card was declined.",
    ) -> None:
        session = self._get_session(session_id)
        session.status = GatewaySessionStatus.FAILED
        session.error_code = error_code
        session.error_message = error_message

    def decline_next_session(self) -> None:
        """Make the next create_session call fail permanently."""
        self.inject_failure(
            "create_session",
            GatewayDeclinedError("Your card was declined.", gateway_code="card_declined"),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def sign_payload(
        self,
        payload: bytes,
        secret: str | None = None,
        timestamp: int | None = None,
    ) -> str:
        """Build a signature header for ``payload``."""
        timestamp = int(time.time()) if timestamp is None else timestamp
        digest = self._digest(payload, secret or self._webhook_secret, timestamp)
        return f"t={timestamp},v1={digest}"

    @staticmethod
    def _digest(payload: bytes, secret: str, timestamp: int) -> str:
        signed = f"{timestamp}.".encode() + payload
        return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()

    def validate_webhook_signature(self, payload: bytes, signature: str, secret: str) -> bool:
        try:
            parts = dict(item.split("=", 1) for item in signature.split(","))
            timestamp = int(parts["t"])
            provided = parts["v1"]
        except (AttributeError, KeyError, ValueError):
            logger.warning("Malformed mock webhook signature header")
            return False

        if abs(time.time() - timestamp) > SIGNATURE_TOLERANCE_SECONDS:
            logger.warning("Mock webhook signature outside tolerance", extra={"timestamp": timestamp})
            return False

        expected = self._digest(payload, secret, timestamp)
        return hmac.compare_digest(expected, provided)

    def build_webhook_payload(self, session_id: str, event_type: str | None = None) -> bytes:
        """Serialize a Stripe-shaped checkout event for the session's current state."""
        session = self._get_session(session_id)
        event_type = event_type or _STATUS_EVENT_TYPES.get(
            session.status, "checkout.session.async_payment_failed"
        )
        event = {
            "id": f"evt_mock_{uuid.uuid4().hex}",
            "type": event_type,
            "data": {
                "object": {
                    "id": session.session_id,
                    "payment_intent": session.transaction_id,
                    "payment_status": (
                        "paid" if session.status == GatewaySessionStatus.SUCCEEDED else "unpaid"
                    ),
                    "amount_total": str(session.amount),
                    "last_payment_error": (
                        {"code": session.error_code, "message": session.error_message}
                        if session.error_code
                        else None
                    ),
                }
            },
        }
        return json.dumps(event).encode()

    def parse_webhook_event(self, payload: bytes) -> GatewayEvent:
        try:
            event = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise WebhookVerificationError(
                "Webhook payload is not valid JSON",
                details={"error": str(e)},
            )
        return checkout_event_from_dict(event)
