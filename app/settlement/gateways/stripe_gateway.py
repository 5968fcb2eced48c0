"""
Stripe implementation of the payment gateway.

Uses Stripe Checkout Sessions for buyer payments and the Refund API for
refunds. All Stripe calls go through this class so timeouts, idempotency
keys, error translation and timing logs are applied consistently.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)

Event mapping:
    checkout.session.completed (paid)       -> SUCCEEDED
    checkout.session.async_payment_succeeded -> SUCCEEDED
    checkout.session.async_payment_failed    -> FAILED
    checkout.session.expired                 -> EXPIRED
"""

from __future__ import annotations

import json
import logging
import time
from decimal import Decimal
from typing import Any

import stripe
from django.conf import settings

from settlement.exceptions import (
    GatewayDeclinedError,
    GatewayInsufficientFundsError,
    GatewayInvalidRequestError,
    GatewayRateLimitError,
    GatewayUnavailableError,
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
from settlement.money import CENT

CHECKOUT_EVENT_STATUS = {
    "checkout.session.completed": GatewaySessionStatus.SUCCEEDED,
    "checkout.session.async_payment_succeeded": GatewaySessionStatus.SUCCEEDED,
    "checkout.session.async_payment_failed": GatewaySessionStatus.FAILED,
    "checkout.session.expired": GatewaySessionStatus.EXPIRED,
}


def to_minor_units(amount: Decimal) -> int:
    """Convert a cent-rounded Decimal to an integer amount of cents."""
    return int((amount / CENT).to_integral_value())


def from_minor_units(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return Decimal(cents) * CENT


def _id_of(value: Any) -> str | None:
    """Stripe returns either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None) or value.get("id")


def checkout_event_from_dict(event: dict[str, Any]) -> GatewayEvent:
    """
    Normalize a Stripe-shaped checkout event.

    Raises:
        WebhookVerificationError: If required fields are missing
    """
    try:
        event_id = event["id"]
        event_type = event["type"]
        obj = event["data"]["object"]
    except (KeyError, TypeError) as e:
        raise WebhookVerificationError(
            "Malformed webhook event",
            details={"missing": str(e)},
        )

    status = CHECKOUT_EVENT_STATUS.get(event_type)
    if event_type == "checkout.session.completed" and obj.get("payment_status") not in (
        "paid",
        "no_payment_required",
    ):
        # Delayed payment methods complete later with async_payment_succeeded
        status = GatewaySessionStatus.PENDING

    session_id = obj.get("id") if event_type.startswith("checkout.session.") else None
    last_error = obj.get("last_payment_error") or {}

    return GatewayEvent(
        event_id=event_id,
        event_type=event_type,
        session_id=session_id,
        status=status,
        transaction_id=_id_of(obj.get("payment_intent")),
        error_code=last_error.get("code"),
        error_message=last_error.get("message"),
        raw=event,
    )


class StripeGateway(PaymentGateway):
    """
    Gateway backed by Stripe Checkout.

    Stateless; safe to share across threads and Celery workers.
    """

    name = "stripe"

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Checkout Sessions
    # =========================================================================

    def create_session(self, request: CreateSessionRequest) -> SessionResponse:
        """
        Create a Stripe Checkout Session for the whole order amount.

        Raises:
            GatewayInvalidRequestError: Invalid parameters
            GatewayUnavailableError: Stripe unreachable (retryable)
        """
        self._configure_stripe()
        log_context = {
            "operation": "create_session",
            "order_id": str(request.order_id),
            "amount": str(request.amount),
            "currency": request.currency,
            "idempotency_key": request.idempotency_key,
        }

        start_time = time.time()
        self.get_logger().info("Starting Stripe operation", extra=log_context)

        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                customer_email=request.customer_email or None,
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                line_items=[
                    {
                        "price_data": {
                            "currency": request.currency.lower(),
                            "unit_amount": to_minor_units(request.amount),
                            "product_data": {"name": f"Order {request.order_id}"},
                        },
                        "quantity": 1,
                    }
                ],
                metadata={"order_id": str(request.order_id), **request.metadata},
                idempotency_key=request.idempotency_key,
            )
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        self.get_logger().info(
            "Stripe operation completed",
            extra={
                **log_context,
                "session_id": session.id,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return SessionResponse(
            session_id=session.id,
            checkout_url=session.url,
            raw_response=session.to_dict(),
        )

    def get_status(self, session_id: str) -> StatusResponse:
        """Retrieve a Checkout Session and normalize its status."""
        self._configure_stripe()
        log_context = {"operation": "get_status", "session_id": session_id}

        start_time = time.time()
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        if session.status == "complete" and session.payment_status in ("paid", "no_payment_required"):
            status = GatewaySessionStatus.SUCCEEDED
        elif session.status == "expired":
            status = GatewaySessionStatus.EXPIRED
        else:
            status = GatewaySessionStatus.PENDING

        self.get_logger().debug(
            "Stripe session status retrieved",
            extra={**log_context, "status": status.value},
        )
        return StatusResponse(
            session_id=session.id,
            status=status,
            transaction_id=_id_of(session.payment_intent),
            payment_method=(session.payment_method_types or [None])[0],
            amount=from_minor_units(session.amount_total),
            metadata=dict(session.metadata or {}),
        )

    def cancel_session(self, session_id: str) -> bool:
        """
        Expire an open Checkout Session.

        Returns False when Stripe refuses because the session is no longer open.
        """
        self._configure_stripe()
        log_context = {"operation": "cancel_session", "session_id": session_id}

        start_time = time.time()
        try:
            stripe.checkout.Session.expire(session_id)
        except stripe.InvalidRequestError:
            self.get_logger().warning("Stripe refused to expire session", extra=log_context)
            return False
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        self.get_logger().info("Stripe session expired", extra=log_context)
        return True

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund(
        self,
        transaction_id: str,
        amount: Decimal,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> RefundResponse:
        """
        Refund part or all of a PaymentIntent.

        Stripe only accepts a fixed set of reason codes, so the free-text
        reason goes into metadata.
        """
        self._configure_stripe()
        log_context = {
            "operation": "refund",
            "transaction_id": transaction_id,
            "amount": str(amount),
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        self.get_logger().info("Starting Stripe operation", extra=log_context)

        try:
            refund = stripe.Refund.create(
                payment_intent=transaction_id,
                amount=to_minor_units(amount),
                reason="requested_by_customer",
                metadata={"reason": reason or ""},
                idempotency_key=idempotency_key,
            )
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        self.get_logger().info(
            "Stripe operation completed",
            extra={
                **log_context,
                "refund_id": refund.id,
                "status": refund.status,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return RefundResponse(
            refund_id=refund.id,
            amount=from_minor_units(refund.amount),
            status=refund.status,
            raw_response=refund.to_dict(),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def validate_webhook_signature(self, payload: bytes, signature: str, secret: str) -> bool:
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError:
            self.get_logger().warning("Stripe webhook signature rejected")
            return False
        except ValueError:
            self.get_logger().warning("Stripe webhook payload is not valid JSON")
            return False
        return True

    def parse_webhook_event(self, payload: bytes) -> GatewayEvent:
        try:
            event = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise WebhookVerificationError(
                "Webhook payload is not valid JSON",
                details={"error": str(e)},
            )
        return checkout_event_from_dict(event)

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to gateway exceptions.

        Raises:
            GatewayInsufficientFundsError: Insufficient funds
            GatewayDeclinedError: Card declined
            GatewayInvalidRequestError: Invalid request or authentication failure
            GatewayRateLimitError: Rate limited
            GatewayUnavailableError: Connection or server error
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            if decline_code == "insufficient_funds":
                raise GatewayInsufficientFundsError(
                    str(error.user_message or error),
                    gateway_code=error.code,
                    decline_code=decline_code,
                )
            raise GatewayDeclinedError(
                str(error.user_message or error),
                gateway_code=error.code,
                decline_code=decline_code,
            )

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise GatewayInvalidRequestError(str(error), gateway_code=error.code)

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                gateway_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Could not connect to Stripe. Please retry.",
                gateway_code="api_connection_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Stripe service error. Please retry.",
                gateway_code="api_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise GatewayInvalidRequestError(
                "Stripe authentication failed",
                gateway_code="authentication_error",
            )

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            f"Unexpected Stripe error: {error}",
            gateway_code="unknown_error",
        )
