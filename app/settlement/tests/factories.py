"""
Factory Boy factories for settlement test data.

Factories build ledger rows directly, bypassing the services. Use them to
arrange state; use the services when the behavior under test is the
service itself.

Usage:
    from settlement.tests.factories import (
        PaymentTransactionFactory,
        SubOrderPaymentFactory,
        SellerBalanceFactory,
    )

    # Completed $110 charge with one settled sub-order
    payment = SubOrderPaymentFactory()

    # Sub-order whose funds have matured
    payment = SubOrderPaymentFactory(payout_status=SubOrderPayoutStatus.AVAILABLE)
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from settlement.models import (
    CommissionConfig,
    CommissionOverride,
    PaymentTransaction,
    Payout,
    SellerBalance,
    SubOrderPayment,
)
from settlement.state_machines import (
    CommissionOverrideScope,
    PaymentTransactionStatus,
)


class PaymentTransactionFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating PaymentTransaction instances.

    Default creates a PENDING $110.00 charge for one sub-order.

    Example:
        # Pending checkout
        txn = PaymentTransactionFactory()

        # Completed charge (status is protected, so set it at creation only)
        txn = PaymentTransactionFactory(status=PaymentTransactionStatus.COMPLETED)
    """

    class Meta:
        model = PaymentTransaction
        skip_postgeneration_save = True

    order_id = factory.LazyFunction(uuid.uuid4)
    amount = Decimal("110.00")
    currency = "USD"
    payment_method = "card"
    customer_email = factory.Sequence(lambda n: f"buyer{n}@example.com")
    gateway_session_id = factory.Sequence(lambda n: f"cs_test_{n}_{uuid.uuid4().hex[:8]}")
    sub_orders = factory.LazyAttribute(
        lambda o: [
            {
                "sub_order_id": str(uuid.uuid4()),
                "store_id": str(uuid.uuid4()),
                "category_id": None,
                "product_total": "100.00",
                "shipping_cost": "10.00",
            }
        ]
    )
    metadata = factory.LazyFunction(dict)


class SubOrderPaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating SubOrderPayment instances.

    Default creates the breakdown of a $100 + $10 shipping sub-order at
    15% commission with a 2.9% + $0.30 fee, pending settlement.

    Example:
        payment = SubOrderPaymentFactory(store_id=store_id)
    """

    class Meta:
        model = SubOrderPayment
        skip_postgeneration_save = True

    sub_order_id = factory.LazyFunction(uuid.uuid4)
    payment_transaction = factory.SubFactory(
        PaymentTransactionFactory,
        status=PaymentTransactionStatus.COMPLETED,
        processing_fee=Decimal("3.49"),
    )
    store_id = factory.LazyFunction(uuid.uuid4)
    product_total = Decimal("100.00")
    shipping_cost = Decimal("10.00")
    sub_order_total = Decimal("110.00")
    commission_rate = Decimal("0.1500")
    commission_amount = Decimal("15.00")
    processing_fee_allocated = Decimal("3.49")
    seller_net_amount = Decimal("91.51")
    currency = "USD"
    settled_at = factory.LazyFunction(timezone.now)
    available_at = factory.LazyAttribute(lambda o: o.settled_at + timedelta(days=14))


class SellerBalanceFactory(factory.django.DjangoModelFactory):
    """Factory for creating SellerBalance instances (zero balance by default)."""

    class Meta:
        model = SellerBalance
        skip_postgeneration_save = True

    store_id = factory.LazyFunction(uuid.uuid4)
    currency = "USD"


class PayoutFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Payout instances.

    Default creates a SCHEDULED $91.51 bank transfer. The balance and
    sub-order rows are not touched; use PayoutService for that.
    """

    class Meta:
        model = Payout
        skip_postgeneration_save = True

    store_id = factory.LazyFunction(uuid.uuid4)
    amount = Decimal("91.51")
    gross_amount = Decimal("110.00")
    commission_amount = Decimal("15.00")
    processing_fee_amount = Decimal("3.49")
    currency = "USD"
    sub_order_ids = factory.LazyFunction(list)


class CommissionConfigFactory(factory.django.DjangoModelFactory):
    """Factory for creating CommissionConfig instances."""

    class Meta:
        model = CommissionConfig
        skip_postgeneration_save = True

    default_rate = Decimal("0.1500")
    is_active = True
    last_modified_by = "admin@example.com"


class CommissionOverrideFactory(factory.django.DjangoModelFactory):
    """Factory for creating CommissionOverride instances (store scope by default)."""

    class Meta:
        model = CommissionOverride
        skip_postgeneration_save = True

    scope = CommissionOverrideScope.STORE
    target_id = factory.LazyFunction(uuid.uuid4)
    rate = Decimal("0.1000")
    is_active = True
    last_modified_by = "admin@example.com"
