"""
Payment gateway adapters.

- PaymentGateway: interface the settlement ledger depends on
- StripeGateway: Stripe Checkout implementation
- MockPaymentGateway: test-only in-memory implementation (settlement.gateways.mock)
- get_gateway: resolve the configured gateway
"""

from settlement.gateways.base import (
    CreateSessionRequest,
    GatewayEvent,
    GatewaySessionStatus,
    PaymentGateway,
    RefundResponse,
    SessionResponse,
    StatusResponse,
    get_gateway,
)
from settlement.gateways.retry import (
    IdempotencyKeyGenerator,
    backoff_delay,
    call_with_retry,
    is_retryable_gateway_error,
)
from settlement.gateways.stripe_gateway import StripeGateway

__all__ = [
    "CreateSessionRequest",
    "GatewayEvent",
    "GatewaySessionStatus",
    "IdempotencyKeyGenerator",
    "PaymentGateway",
    "RefundResponse",
    "SessionResponse",
    "StatusResponse",
    "StripeGateway",
    "backoff_delay",
    "call_with_retry",
    "get_gateway",
    "is_retryable_gateway_error",
]
