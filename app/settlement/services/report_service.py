"""
Seller financial reports.

Read-only aggregation over settled SubOrderPayments. Invoices are built
from the same summary, so an invoice and a report for the same store and
period always agree.

A sub-order counts toward a period when its charge completed
(settled_at) within the period, inclusive, and its funds have matured
(Available, Included or PaidOut).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from django.db.models import Count, QuerySet, Sum

from core.services import BaseService

from settlement.exceptions import SettlementValidationError
from settlement.models import SubOrderPayment
from settlement.money import DEFAULT_CURRENCY, ZERO
from settlement.state_machines import SubOrderPayoutStatus

INVOICEABLE_STATUSES = (
    SubOrderPayoutStatus.AVAILABLE,
    SubOrderPayoutStatus.INCLUDED,
    SubOrderPayoutStatus.PAID_OUT,
)


@dataclass(frozen=True)
class FinancialSummary:
    """Period totals for one store."""

    store_id: uuid.UUID
    period_start: date
    period_end: date
    total_gmv: Decimal
    total_product_value: Decimal
    total_shipping_fees: Decimal
    total_commission: Decimal
    total_processing_fees: Decimal
    net_amount_due: Decimal
    total_refund_reversals: Decimal
    order_count: int
    sub_order_count: int
    currency: str = DEFAULT_CURRENCY

    @property
    def is_empty(self) -> bool:
        return self.sub_order_count == 0


@dataclass(frozen=True)
class CommissionLine:
    """One sub-order's row in a commission breakdown."""

    sub_order_id: uuid.UUID
    order_id: uuid.UUID
    settled_at: datetime
    product_total: Decimal
    shipping_cost: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    processing_fee: Decimal
    seller_net_amount: Decimal
    reversed_amount: Decimal
    payout_status: str
    is_fee_clamped: bool


class SellerReportService(BaseService):
    """Period summaries and commission breakdowns for a store."""

    @classmethod
    def settled_payments(
        cls,
        store_id: uuid.UUID,
        period_start: date,
        period_end: date,
    ) -> QuerySet[SubOrderPayment]:
        if period_end < period_start:
            raise SettlementValidationError(
                "period_end must not be before period_start",
                details={"period_start": str(period_start), "period_end": str(period_end)},
            )
        return SubOrderPayment.objects.filter(
            store_id=store_id,
            payout_status__in=INVOICEABLE_STATUSES,
            settled_at__date__gte=period_start,
            settled_at__date__lte=period_end,
        )

    @classmethod
    def get_financial_summary(
        cls,
        store_id: uuid.UUID,
        period_start: date,
        period_end: date,
    ) -> FinancialSummary:
        """Totals for the period; nothing is persisted."""
        payments = cls.settled_payments(store_id, period_start, period_end)
        totals = payments.aggregate(
            product=Sum("product_total"),
            shipping=Sum("shipping_cost"),
            commission=Sum("commission_amount"),
            fees=Sum("processing_fee_allocated"),
            reversed=Sum("reversed_amount"),
            orders=Count("payment_transaction__order_id", distinct=True),
            sub_orders=Count("id"),
        )
        product = totals["product"] or ZERO
        shipping = totals["shipping"] or ZERO
        commission = totals["commission"] or ZERO
        fees = totals["fees"] or ZERO
        gmv = product + shipping
        currency = payments.values_list("currency", flat=True).first() or DEFAULT_CURRENCY

        return FinancialSummary(
            store_id=store_id,
            period_start=period_start,
            period_end=period_end,
            total_gmv=gmv,
            total_product_value=product,
            total_shipping_fees=shipping,
            total_commission=commission,
            total_processing_fees=fees,
            net_amount_due=gmv - commission - fees,
            total_refund_reversals=totals["reversed"] or ZERO,
            order_count=totals["orders"],
            sub_order_count=totals["sub_orders"],
            currency=currency,
        )

    @classmethod
    def get_commission_breakdown(
        cls,
        store_id: uuid.UUID,
        period_start: date,
        period_end: date,
    ) -> list[CommissionLine]:
        """One line per sub-order, in settlement order."""
        payments = (
            cls.settled_payments(store_id, period_start, period_end)
            .select_related("payment_transaction")
            .order_by("settled_at", "created_at", "id")
        )
        return [
            CommissionLine(
                sub_order_id=p.sub_order_id,
                order_id=p.payment_transaction.order_id,
                settled_at=p.settled_at,
                product_total=p.product_total,
                shipping_cost=p.shipping_cost,
                commission_rate=p.commission_rate,
                commission_amount=p.commission_amount,
                processing_fee=p.processing_fee_allocated,
                seller_net_amount=p.seller_net_amount,
                reversed_amount=p.reversed_amount,
                payout_status=p.payout_status,
                is_fee_clamped=p.is_fee_clamped,
            )
            for p in payments
        ]
