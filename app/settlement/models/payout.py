"""
Payout model for seller payouts.

A Payout moves money from a store's available balance to the seller. It
bundles a deterministic set of Available SubOrderPayments; the payout amount
is exactly the outstanding net of those rows.

Usage:
    from settlement.models import Payout

    payout = Payout.objects.create(
        store_id=store_id,
        amount=Decimal("182.52"),
        sub_order_ids=[...],
    )

    payout.start_processing()   # scheduled -> processing
    payout.save()

    payout.complete(external_transaction_id="po_123")  # processing -> completed
    payout.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from settlement.state_machines import PayoutMethod, PayoutStatus


class Payout(UUIDPrimaryKeyMixin, BaseModel):
    """
    Money leaving the platform to one seller.

    State Flow:
        SCHEDULED -> PROCESSING -> COMPLETED
        SCHEDULED -> PROCESSING -> FAILED
        SCHEDULED -> COMPLETED / FAILED (manual payouts)

    Failed is terminal. Funds are restored to the available balance when
    a payout fails and a new payout has to be created.

    Fields:
        store_id: Store receiving the payout
        amount: Net amount paid to the seller (sum of included rows)
        gross_amount / commission_amount / processing_fee_amount: Breakdown
            of the included rows for statements
        payout_method: How the money is sent
        external_transaction_id: Bank or processor reference once completed
        sub_order_ids: SubOrder ids bundled into this payout
        requested_by: Admin or job that requested the payout
        version: Optimistic locking version
    """

    # ==========================================================================
    # Recipient
    # ==========================================================================

    store_id = models.UUIDField(
        db_index=True,
        help_text="Store receiving the payout",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Net payout amount",
    )

    gross_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Sum of sub-order totals included in the payout",
    )

    commission_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Commission withheld from the included sub-orders",
    )

    processing_fee_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Processing fees allocated to the included sub-orders",
    )

    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO 4217 currency code",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PayoutStatus.SCHEDULED,
        choices=PayoutStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payout (managed by FSM)",
    )

    payout_method = models.CharField(
        max_length=30,
        choices=PayoutMethod.choices,
        default=PayoutMethod.BANK_TRANSFER,
    )

    external_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Bank or processor reference for the transfer",
    )

    sub_order_ids = models.JSONField(
        default=list,
        blank=True,
        help_text="SubOrder ids included in this payout",
    )

    requested_by = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Identifier of the admin or job that requested the payout",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    # ==========================================================================
    # Timestamps & Error Info
    # ==========================================================================

    scheduled_at = models.DateTimeField(default=timezone.now)
    processing_started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Detailed reason if payout failed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout"
        verbose_name_plural = "Payouts"
        indexes = [
            models.Index(fields=["store_id", "status"], name="settle_payout_store_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="settlement_payout_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Payout({self.id}, {self.status}, {self.amount} {self.currency})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = self.pk and not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PayoutStatus.SCHEDULED,
        target=PayoutStatus.PROCESSING,
    )
    def start_processing(self):
        """
        Hand the payout to the bank or processor.

        Transition: SCHEDULED -> PROCESSING
        """
        self.processing_started_at = timezone.now()

    @transition(
        field=status,
        source=[PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING],
        target=PayoutStatus.COMPLETED,
    )
    def complete(self, external_transaction_id: str | None = None):
        """
        Mark the payout as completed.

        Transition: SCHEDULED/PROCESSING -> COMPLETED
        """
        self.completed_at = timezone.now()
        if external_transaction_id:
            self.external_transaction_id = external_transaction_id

    @transition(
        field=status,
        source=[PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING],
        target=PayoutStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Mark the payout as failed.

        Transition: SCHEDULED/PROCESSING -> FAILED

        Args:
            reason: Optional failure reason for debugging
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_complete(self) -> bool:
        return self.status == PayoutStatus.COMPLETED

    @property
    def is_open(self) -> bool:
        """Check if the payout can still complete or fail."""
        return self.status in [PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING]
