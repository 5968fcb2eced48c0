"""
Pytest fixtures for settlement tests.

The payment gateway is always the in-memory MockPaymentGateway, injected
into PaymentTransactionService for the duration of a test. Gateway retry
backoff is disabled so transient-error tests run instantly.

Usage:
    def test_refund(settle_order, store_id):
        txn = settle_order((store_id, "100.00", "10.00"))
        PaymentTransactionService.refund_transaction(txn.id, Decimal("110.00"))
"""

import uuid
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from settlement.gateways import GatewaySessionStatus
from settlement.gateways.mock import MockPaymentGateway
from settlement.services import PaymentTransactionService, SellerBalanceService, SubOrderInput
from settlement.signals import (
    payment_confirmed,
    payment_failed,
    payment_status_changed,
    payout_processed,
)

WEBHOOK_SECRET = "whsec_test_settlement"


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def no_gateway_backoff(mocker):
    """Retry gateway calls without sleeping."""
    return mocker.patch("settlement.gateways.retry.backoff_delay", return_value=0)


@pytest.fixture
def mock_gateway():
    """MockPaymentGateway injected into the transaction service."""
    gateway = MockPaymentGateway(webhook_secret=WEBHOOK_SECRET)
    PaymentTransactionService.set_gateway(gateway)
    yield gateway
    PaymentTransactionService.set_gateway(None)


@pytest.fixture
def mock_redis(mocker):
    """Mock Redis for distributed locking; every lock is free."""
    redis = MagicMock()
    redis.set.return_value = True
    redis.get.return_value = None
    redis.delete.return_value = 1
    redis.eval.return_value = 1
    mocker.patch("settlement.locks.get_redis_connection", return_value=redis)
    return redis


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def store_id():
    return uuid.uuid4()


@pytest.fixture
def other_store_id():
    return uuid.uuid4()


# =============================================================================
# Checkout Fixtures
# =============================================================================


def build_sub_orders(parts, category_id=None):
    """Turn (store_id, product_total, shipping_cost) tuples into SubOrderInputs."""
    return [
        SubOrderInput(
            sub_order_id=uuid.uuid4(),
            store_id=store,
            product_total=Decimal(product_total),
            shipping_cost=Decimal(shipping_cost),
            category_id=category_id,
        )
        for store, product_total, shipping_cost in parts
    ]


@pytest.fixture
def open_order(db, mock_gateway):
    """
    Open a checkout for the given sub-order parts.

    Returns a function: open_order((store_id, "100.00", "10.00"), ...) -> OpenTransactionResult
    """

    def _open(*parts, category_id=None, order_id=None):
        sub_orders = build_sub_orders(parts, category_id=category_id)
        return PaymentTransactionService.open_transaction(
            order_id=order_id or uuid.uuid4(),
            amount=sum((s.total for s in sub_orders), Decimal("0.00")),
            currency="USD",
            customer_email="buyer@example.com",
            success_url="https://shop.example.com/success",
            cancel_url="https://shop.example.com/cancel",
            sub_orders=sub_orders,
        )

    return _open


@pytest.fixture
def settle_order(open_order, mock_gateway):
    """
    Open, pay and confirm a checkout.

    Returns a function: settle_order((store_id, "100.00", "10.00"), ...) -> PaymentTransaction
    """

    def _settle(*parts, category_id=None):
        opened = open_order(*parts, category_id=category_id)
        gateway_transaction_id = mock_gateway.simulate_payment(opened.session_id)
        result = PaymentTransactionService.confirm_transaction(
            opened.session_id,
            GatewaySessionStatus.SUCCEEDED,
            gateway_transaction_id=gateway_transaction_id,
        )
        return result.data

    return _settle


@pytest.fixture
def release_all():
    """Release every sub-order of a transaction to available."""

    def _release(txn):
        for payment in txn.sub_order_payments.order_by("created_at", "id"):
            SellerBalanceService.release_sub_order_payment(payment.sub_order_id, released_by="test")

    return _release


# =============================================================================
# Event Fixtures
# =============================================================================


@pytest.fixture
def captured_events():
    """
    Record every settlement signal sent during the test.

    Returns a list of (signal_name, kwargs) tuples. Signals fire on commit,
    so wrap the action in django_capture_on_commit_callbacks(execute=True).
    """
    names = {
        payment_confirmed: "payment_confirmed",
        payment_failed: "payment_failed",
        payment_status_changed: "payment_status_changed",
        payout_processed: "payout_processed",
    }
    events = []

    def _receiver(sender, signal, **kwargs):
        events.append((names[signal], kwargs))

    for signal in names:
        signal.connect(_receiver, weak=False, dispatch_uid="settlement-tests-capture")
    yield events
    for signal in names:
        signal.disconnect(dispatch_uid="settlement-tests-capture")
