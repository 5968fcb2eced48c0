"""
Seller balance models.

- SellerBalance: one row per store with the running pending/available/paid-out totals
- BalanceMovement: append-only journal of every mutation of a SellerBalance

All writes go through settlement.services.SellerBalanceService, which locks
the SellerBalance row before touching it.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.db.models import F

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from settlement.state_machines import BalanceMovementKind


class SellerBalance(UUIDPrimaryKeyMixin, BaseModel):
    """
    Running aggregate of one store's settlement funds.

    Invariants:
        pending_amount, available_amount, total_paid_out >= 0 (check constraints)
        pending + available = outstanding net of the store's rows not yet included in a payout
        total_paid_out = sum of the store's scheduled, processing and completed payouts

    Fields:
        store_id: Store this balance belongs to (unique)
        pending_amount: Funds in escrow, not yet releasable
        available_amount: Funds releasable to the seller
        total_paid_out: Funds committed to payouts
        currency: ISO 4217 currency code
        version: Optimistic locking version, incremented on each save
        updated_at: Last mutation time (from BaseModel)
    """

    store_id = models.UUIDField(
        unique=True,
        help_text="Store this balance belongs to",
    )

    pending_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )

    available_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )

    total_paid_out = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )

    currency = models.CharField(max_length=3, default="USD")

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["store_id"]
        verbose_name = "Seller Balance"
        verbose_name_plural = "Seller Balances"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(pending_amount__gte=0),
                name="seller_balance_pending_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(available_amount__gte=0),
                name="seller_balance_available_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(total_paid_out__gte=0),
                name="seller_balance_paid_out_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"SellerBalance({self.store_id}, pending={self.pending_amount}, "
            f"available={self.available_amount}, paid_out={self.total_paid_out})"
        )

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = self.pk and not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])


class BalanceMovement(UUIDPrimaryKeyMixin, models.Model):
    """
    One mutation of a seller balance.

    Movements are immutable once created. Each records the balance
    state after it was applied, which makes the journal replayable and
    auditable without recomputing from the settlement rows.

    Constraints:
        - amount must be positive
        - idempotency_key must be unique
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this movement was recorded",
    )

    balance = models.ForeignKey(
        SellerBalance,
        on_delete=models.PROTECT,
        related_name="movements",
    )

    store_id = models.UUIDField(db_index=True)

    kind = models.CharField(
        max_length=50,
        choices=BalanceMovementKind.choices,
        help_text="Category of this movement",
    )

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount moved (always positive)",
    )

    pending_after = models.DecimalField(max_digits=12, decimal_places=2)
    available_after = models.DecimalField(max_digits=12, decimal_places=2)
    paid_out_after = models.DecimalField(max_digits=12, decimal_places=2)

    reference_type = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        help_text="Type of related entity (e.g., 'sub_order_payment', 'payout')",
    )
    reference_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="UUID of related entity",
    )

    description = models.TextField(null=True, blank=True)

    created_by = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Identifier of service/user that created this movement",
    )

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique key to prevent duplicate movements",
    )

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["reference_type", "reference_id"], name="settle_move_reference_idx"),
            models.Index(fields=["store_id", "created_at"], name="settle_move_store_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="balance_movement_amount_positive",
            )
        ]

    def __str__(self) -> str:
        return f"{self.get_kind_display()}: {self.amount}"
