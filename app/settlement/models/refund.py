"""
TransactionRefund model for refunds against completed charges.

Each refund records the seller credit reversals it caused so a refund the
gateway rejects can be compensated exactly.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from settlement.state_machines import RefundStatus


class TransactionRefund(UUIDPrimaryKeyMixin, BaseModel):
    """
    A full or partial refund of a PaymentTransaction.

    State Flow:
        REQUESTED -> COMPLETED
        REQUESTED -> FAILED

    Fields:
        payment_transaction: Charge being refunded
        amount: Refunded amount
        reason: Free-text reason supplied by the caller
        status: Current FSM state
        gateway_refund_id: Gateway refund id once the gateway accepted it
        reversals: Seller credit reversals applied for this refund, as
            [{"sub_order_payment_id", "store_id", "amount", "from_pending"}]
        is_full_refund: Whether this refund empties the charge
        error_message: Gateway error if the refund failed
        completed_at: When the gateway confirmed the refund
    """

    payment_transaction = models.ForeignKey(
        "settlement.PaymentTransaction",
        on_delete=models.PROTECT,
        related_name="refunds",
        help_text="Charge being refunded",
    )

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Refunded amount",
    )

    reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Reason for the refund",
    )

    status = FSMField(
        default=RefundStatus.REQUESTED,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the refund (managed by FSM)",
    )

    gateway_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Gateway refund id",
    )

    reversals = models.JSONField(
        default=list,
        blank=True,
        help_text="Seller credit reversals applied for this refund",
    )

    is_full_refund = models.BooleanField(
        default=False,
        help_text="Whether this refund empties the charge",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Gateway error if the refund failed",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund completed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction Refund"
        verbose_name_plural = "Transaction Refunds"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="transaction_refund_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"TransactionRefund({self.id}, {self.status}, {self.amount})"

    @transition(field=status, source=RefundStatus.REQUESTED, target=RefundStatus.COMPLETED)
    def complete(self, gateway_refund_id: str):
        """Transition: REQUESTED -> COMPLETED"""
        self.gateway_refund_id = gateway_refund_id
        self.completed_at = timezone.now()

    @transition(field=status, source=RefundStatus.REQUESTED, target=RefundStatus.FAILED)
    def fail(self, error_message: str):
        """Transition: REQUESTED -> FAILED"""
        self.error_message = error_message
