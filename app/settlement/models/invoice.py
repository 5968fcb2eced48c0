"""
SellerInvoice model: a point-in-time statement for one store and period.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from settlement.state_machines import InvoiceStatus


def _money_field(help_text: str) -> models.DecimalField:
    return models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text=help_text,
    )


class SellerInvoice(UUIDPrimaryKeyMixin, BaseModel):
    """
    Seller statement aggregated from settled SubOrderPayments.

    Totals are frozen when the invoice is generated. Afterwards only the
    status (and sent_at / paid_at stamps) may change.

    State Flow:
        DRAFT -> GENERATED -> SENT -> PAID

    Invariant:
        net_amount_due = total_gmv - total_commission - total_processing_fees
    """

    invoice_number = models.CharField(
        max_length=64,
        unique=True,
        help_text="INV-{year}-{month}-{store short id}[-n]",
    )

    store_id = models.UUIDField(db_index=True)
    store_name = models.CharField(max_length=255, blank=True, default="")

    period_start = models.DateField()
    period_end = models.DateField()

    # ==========================================================================
    # Totals
    # ==========================================================================

    total_gmv = _money_field("Product value plus shipping")
    total_product_value = _money_field("Sum of product totals")
    total_shipping_fees = _money_field("Sum of shipping costs")
    total_commission = _money_field("Commission withheld")
    total_processing_fees = _money_field("Processing fees allocated")
    net_amount_due = _money_field("Amount owed to the seller for the period")
    total_refund_reversals = _money_field("Seller net reversed by refunds in the period")

    order_count = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="USD")

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=InvoiceStatus.DRAFT,
        choices=InvoiceStatus.choices,
        db_index=True,
        protected=True,
    )

    html_content = models.TextField(blank=True, default="")

    generated_at = models.DateTimeField(null=True, blank=True)
    generated_by = models.CharField(max_length=255, blank=True, default="")
    sent_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-period_start", "store_id"]
        verbose_name = "Seller Invoice"
        verbose_name_plural = "Seller Invoices"
        constraints = [
            models.UniqueConstraint(
                fields=["store_id", "period_start", "period_end"],
                name="seller_invoice_unique_store_period",
            ),
            models.CheckConstraint(
                condition=models.Q(period_end__gte=models.F("period_start")),
                name="seller_invoice_period_ordered",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.invoice_number} ({self.status})"

    @transition(field=status, source=InvoiceStatus.DRAFT, target=InvoiceStatus.GENERATED)
    def mark_generated(self, generated_by: str = ""):
        self.generated_at = timezone.now()
        self.generated_by = generated_by

    @transition(field=status, source=InvoiceStatus.GENERATED, target=InvoiceStatus.SENT)
    def mark_sent(self):
        self.sent_at = timezone.now()

    @transition(field=status, source=InvoiceStatus.SENT, target=InvoiceStatus.PAID)
    def mark_paid(self):
        self.paid_at = timezone.now()
