"""
PaymentTransaction model for buyer-to-platform charges.

A PaymentTransaction represents one buyer charge for one Order. It holds
the snapshot of the order's sub-orders (one per seller) so settlement can
fan out without reaching into the Order module.

Usage:
    from settlement.models import PaymentTransaction

    txn = PaymentTransaction.objects.create(
        order_id=order_id,
        amount=Decimal("110.00"),
        gateway_session_id="cs_test_123",
        sub_orders=[...],
    )

    txn.complete(gateway_transaction_id="pi_123", processing_fee=Decimal("3.49"))
    txn.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from settlement.state_machines import PaymentTransactionStatus


class PaymentTransaction(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    One buyer charge for one Order.

    State Flow:
        PENDING -> COMPLETED -> REFUNDED
        PENDING -> FAILED
        PENDING -> CANCELLED

    Fields:
        order_id: Order this charge pays for (owned by the Order module)
        amount: Charged amount, always positive
        currency: ISO 4217 currency code
        payment_method: Buyer payment method (card, wallet, ...)
        customer_email: Buyer email handed to the gateway
        gateway_session_id: Gateway checkout session id (unique)
        gateway_transaction_id: Gateway charge id, set on completion
        status: Current FSM state
        processing_fee: Gateway fee charged on the whole transaction
        refunded_amount: Sum of completed refunds
        sub_orders: Snapshot of the per-seller split received from the Order module
        error_code / error_message: Failure details
        completed_at: When the charge completed
    """

    # ==========================================================================
    # Order Reference
    # ==========================================================================

    order_id = models.UUIDField(
        db_index=True,
        help_text="Order this charge pays for",
    )

    sub_orders = models.JSONField(
        default=list,
        blank=True,
        help_text="Snapshot of sub-orders: sub_order_id, store_id, category_id, "
        "product_total, shipping_cost",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Charged amount",
    )

    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO 4217 currency code",
    )

    processing_fee = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Processing fee for the whole transaction",
    )

    refunded_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Total amount refunded so far",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    payment_method = models.CharField(
        max_length=50,
        default="card",
        help_text="Payment method used by the buyer",
    )

    customer_email = models.EmailField(
        blank=True,
        default="",
        help_text="Buyer email passed to the gateway",
    )

    gateway_session_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway checkout session id",
    )

    gateway_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway charge id (set on completion)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentTransactionStatus.PENDING,
        choices=PaymentTransactionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the transaction (managed by FSM)",
    )

    error_code = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Gateway or internal error code if the charge failed",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error details if the charge failed",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the charge completed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Transaction"
        verbose_name_plural = "Payment Transactions"
        indexes = [
            models.Index(fields=["status", "created_at"], name="settle_txn_status_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_transaction_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(refunded_amount__gte=0)
                & models.Q(refunded_amount__lte=models.F("amount")),
                name="payment_transaction_refund_within_amount",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentTransaction({self.id}, {self.status}, {self.amount} {self.currency})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentTransactionStatus.PENDING,
        target=PaymentTransactionStatus.COMPLETED,
    )
    def complete(self, gateway_transaction_id: str | None, processing_fee: Decimal):
        """
        Mark the charge as completed.

        Transition: PENDING -> COMPLETED
        """
        self.gateway_transaction_id = gateway_transaction_id
        self.processing_fee = processing_fee
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=PaymentTransactionStatus.PENDING,
        target=PaymentTransactionStatus.FAILED,
    )
    def fail(self, error_code: str | None = None, error_message: str | None = None):
        """
        Mark the charge as failed.

        Transition: PENDING -> FAILED
        """
        self.error_code = error_code
        self.error_message = error_message

    @transition(
        field=status,
        source=PaymentTransactionStatus.PENDING,
        target=PaymentTransactionStatus.CANCELLED,
    )
    def cancel(self):
        """
        Cancel a checkout that never completed.

        Transition: PENDING -> CANCELLED
        """

    @transition(
        field=status,
        source=PaymentTransactionStatus.COMPLETED,
        target=PaymentTransactionStatus.REFUNDED,
    )
    def mark_refunded(self):
        """
        Mark the charge as fully refunded.

        Transition: COMPLETED -> REFUNDED
        """

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def refundable_amount(self) -> Decimal:
        """Amount that can still be refunded."""
        return self.amount - self.refunded_amount

    @property
    def is_terminal(self) -> bool:
        """Whether no further confirmation can change this transaction."""
        return self.status != PaymentTransactionStatus.PENDING
