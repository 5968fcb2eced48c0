"""
SubOrderPayment model: one seller's share of a completed charge.

Created exactly once per SubOrder when the owning PaymentTransaction
completes. Carries the commission/fee breakdown and tracks where the
seller's net amount sits (pending, available, in a payout, paid out).
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from settlement.state_machines import SubOrderPayoutStatus


class SubOrderPayment(UUIDPrimaryKeyMixin, BaseModel):
    """
    Commission and fee breakdown for one seller's portion of one charge.

    Invariants (enforced at creation and by check constraints):
        sub_order_total = product_total + shipping_cost
        commission_amount = round2(product_total * commission_rate)
        seller_net_amount = sub_order_total - commission_amount - processing_fee_allocated
        seller_net_amount >= 0
        0 <= reversed_amount <= seller_net_amount

    State Flow:
        PENDING_SETTLEMENT -> AVAILABLE -> INCLUDED -> PAID_OUT
        INCLUDED -> AVAILABLE (payout failed)

    Fields:
        sub_order_id: SubOrder this row settles (unique)
        payment_transaction: Owning charge
        store_id / category_id: Seller and category used for commission resolution
        reversed_amount: Seller net reversed by refunds
        is_fee_clamped / absorbed_fee: Clamp anomaly flag and the fee the platform absorbed
        settled_at: Completion time of the owning charge (invoice period key)
        available_at: When the hold period ends and funds may be released
        payout: Payout this row is included in, if any
    """

    # ==========================================================================
    # References
    # ==========================================================================

    sub_order_id = models.UUIDField(
        unique=True,
        help_text="SubOrder settled by this row (at most one row per SubOrder)",
    )

    payment_transaction = models.ForeignKey(
        "settlement.PaymentTransaction",
        on_delete=models.PROTECT,
        related_name="sub_order_payments",
        help_text="Charge this seller share belongs to",
    )

    store_id = models.UUIDField(
        db_index=True,
        help_text="Seller store receiving the net amount",
    )

    category_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="Category used for commission override resolution",
    )

    payout = models.ForeignKey(
        "settlement.Payout",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="sub_order_payments",
        help_text="Payout this row is included in",
    )

    # ==========================================================================
    # Breakdown
    # ==========================================================================

    product_total = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2)
    sub_order_total = models.DecimalField(max_digits=12, decimal_places=2)
    commission_rate = models.DecimalField(max_digits=5, decimal_places=4)
    commission_amount = models.DecimalField(max_digits=12, decimal_places=2)
    processing_fee_allocated = models.DecimalField(max_digits=12, decimal_places=2)
    seller_net_amount = models.DecimalField(max_digits=12, decimal_places=2)

    reversed_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Seller net reversed by refunds",
    )

    is_fee_clamped = models.BooleanField(
        default=False,
        help_text="Seller net was clamped to zero (reportable anomaly)",
    )

    absorbed_fee = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Processing fee absorbed by the platform because of clamping",
    )

    currency = models.CharField(max_length=3, default="USD")

    # ==========================================================================
    # Settlement State
    # ==========================================================================

    payout_status = FSMField(
        default=SubOrderPayoutStatus.PENDING_SETTLEMENT,
        choices=SubOrderPayoutStatus.choices,
        db_index=True,
        help_text="Where the seller's net amount currently sits",
    )

    settled_at = models.DateTimeField(
        db_index=True,
        help_text="When the owning charge completed",
    )

    available_at = models.DateTimeField(
        db_index=True,
        help_text="When the hold period ends",
    )

    released_at = models.DateTimeField(null=True, blank=True)
    paid_out_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at", "id"]
        verbose_name = "Sub-Order Payment"
        verbose_name_plural = "Sub-Order Payments"
        indexes = [
            models.Index(
                fields=["store_id", "payout_status", "created_at"],
                name="settle_sop_store_status_idx",
            ),
            models.Index(fields=["store_id", "settled_at"], name="settle_sop_store_settled_idx"),
            models.Index(fields=["payout_status", "available_at"], name="settle_sop_status_avail_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(seller_net_amount__gte=0),
                name="sub_order_payment_net_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(reversed_amount__gte=0)
                & models.Q(reversed_amount__lte=models.F("seller_net_amount")),
                name="sub_order_payment_reversal_within_net",
            ),
        ]

    def __str__(self) -> str:
        return f"SubOrderPayment({self.sub_order_id}, {self.payout_status}, {self.seller_net_amount})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=payout_status,
        source=SubOrderPayoutStatus.PENDING_SETTLEMENT,
        target=SubOrderPayoutStatus.AVAILABLE,
    )
    def release(self):
        """Transition: PENDING_SETTLEMENT -> AVAILABLE"""
        self.released_at = timezone.now()

    @transition(
        field=payout_status,
        source=SubOrderPayoutStatus.AVAILABLE,
        target=SubOrderPayoutStatus.INCLUDED,
    )
    def include_in(self, payout):
        """Transition: AVAILABLE -> INCLUDED"""
        self.payout = payout

    @transition(
        field=payout_status,
        source=SubOrderPayoutStatus.INCLUDED,
        target=SubOrderPayoutStatus.AVAILABLE,
    )
    def revert_inclusion(self):
        """Transition: INCLUDED -> AVAILABLE (payout failed)"""
        self.payout = None

    @transition(
        field=payout_status,
        source=SubOrderPayoutStatus.INCLUDED,
        target=SubOrderPayoutStatus.PAID_OUT,
    )
    def mark_paid_out(self):
        """Transition: INCLUDED -> PAID_OUT (terminal)"""
        self.paid_out_at = timezone.now()

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def outstanding_amount(self) -> Decimal:
        """Seller net still owed after refund reversals."""
        return self.seller_net_amount - self.reversed_amount
