"""
Seller invoice generation.

An invoice freezes the financial summary of one store for one period,
numbers it and renders an HTML statement. There is at most one invoice per
(store, period): generating again returns the existing one.

Usage:
    from settlement.services import InvoiceService

    result = InvoiceService.generate_invoice(
        store_id, date(2024, 3, 1), date(2024, 3, 31), generated_by="billing-job"
    )
    invoice = result.data
    InvoiceService.mark_sent(invoice.id)
"""

from __future__ import annotations

import uuid
from datetime import date

from django.conf import settings
from django.db import IntegrityError
from django.template.loader import render_to_string

from core.services import BaseService, ServiceResult

from settlement.exceptions import NoDataForPeriod, SettlementNotFoundError
from settlement.models import SellerInvoice
from settlement.services.report_service import SellerReportService
from settlement.state_machines import InvoiceStatus
from settlement.state_machines.transitions import apply_transition

INVOICE_TEMPLATE = "settlement/invoice.html"


class InvoiceService(BaseService):
    """Generates seller invoices and tracks their delivery and payment."""

    @staticmethod
    def base_invoice_number(store_id: uuid.UUID, period_start: date) -> str:
        """INV-{year}-{month}-{first 8 chars of the store id, upper case}."""
        return f"INV-{period_start:%Y}-{period_start:%m}-{str(store_id)[:8].upper()}"

    @classmethod
    def _next_invoice_number(cls, store_id: uuid.UUID, period_start: date) -> str:
        base = cls.base_invoice_number(store_id, period_start)
        taken = set(
            SellerInvoice.objects.filter(invoice_number__startswith=base).values_list(
                "invoice_number", flat=True
            )
        )
        if base not in taken:
            return base
        suffix = 2
        while f"{base}-{suffix}" in taken:
            suffix += 1
        return f"{base}-{suffix}"

    @classmethod
    def generate_invoice(
        cls,
        store_id: uuid.UUID,
        period_start: date,
        period_end: date,
        generated_by: str,
        store_name: str | None = None,
    ) -> ServiceResult[SellerInvoice]:
        """
        Generate the invoice for a store and period.

        Returns the existing invoice, flagged already_processed, when one was
        generated before for the same store and period.

        Raises:
            SettlementValidationError: period_end before period_start
            NoDataForPeriod: Nothing settled in the period (unless
                SETTLEMENT_INVOICE_ALLOW_EMPTY)
        """
        existing = SellerInvoice.objects.filter(
            store_id=store_id, period_start=period_start, period_end=period_end
        ).first()
        if existing is not None:
            return ServiceResult.success(existing, already_processed=True)

        summary = SellerReportService.get_financial_summary(store_id, period_start, period_end)
        if summary.is_empty and not settings.SETTLEMENT_INVOICE_ALLOW_EMPTY:
            raise NoDataForPeriod(
                f"No settled sales for store {store_id} between {period_start} and {period_end}",
                details={
                    "store_id": str(store_id),
                    "period_start": str(period_start),
                    "period_end": str(period_end),
                },
            )
        lines = SellerReportService.get_commission_breakdown(store_id, period_start, period_end)

        try:
            with cls.atomic():
                invoice = SellerInvoice(
                    invoice_number=cls._next_invoice_number(store_id, period_start),
                    store_id=store_id,
                    store_name=store_name or "",
                    period_start=period_start,
                    period_end=period_end,
                    total_gmv=summary.total_gmv,
                    total_product_value=summary.total_product_value,
                    total_shipping_fees=summary.total_shipping_fees,
                    total_commission=summary.total_commission,
                    total_processing_fees=summary.total_processing_fees,
                    net_amount_due=summary.net_amount_due,
                    total_refund_reversals=summary.total_refund_reversals,
                    order_count=summary.order_count,
                    currency=summary.currency,
                )
                invoice.mark_generated(generated_by=generated_by)
                invoice.html_content = render_to_string(
                    INVOICE_TEMPLATE,
                    {"invoice": invoice, "summary": summary, "lines": lines},
                )
                invoice.save()
        except IntegrityError:
            # Lost a race with a concurrent generate for the same period
            existing = SellerInvoice.objects.filter(
                store_id=store_id, period_start=period_start, period_end=period_end
            ).first()
            if existing is None:
                raise
            return ServiceResult.success(existing, already_processed=True)

        cls.get_logger().info(
            "Invoice generated",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "store_id": str(store_id),
                "net_amount_due": str(invoice.net_amount_due),
                "order_count": invoice.order_count,
                "generated_by": generated_by,
            },
        )
        return ServiceResult.success(invoice)

    @classmethod
    def _advance(cls, invoice_id: uuid.UUID, transition: str, target: str) -> ServiceResult[SellerInvoice]:
        with cls.atomic():
            invoice = SellerInvoice.objects.select_for_update().filter(id=invoice_id).first()
            if invoice is None:
                raise SettlementNotFoundError(
                    f"Invoice {invoice_id} not found",
                    details={"invoice_id": str(invoice_id)},
                )
            if invoice.status == target:
                return ServiceResult.success(invoice, already_processed=True)
            apply_transition(invoice, transition)
            invoice.save()

        cls.get_logger().info(
            "Invoice status changed",
            extra={"invoice_id": str(invoice_id), "status": invoice.status},
        )
        return ServiceResult.success(invoice)

    @classmethod
    def mark_sent(cls, invoice_id: uuid.UUID) -> ServiceResult[SellerInvoice]:
        """GENERATED -> SENT."""
        return cls._advance(invoice_id, "mark_sent", InvoiceStatus.SENT)

    @classmethod
    def mark_paid(cls, invoice_id: uuid.UUID) -> ServiceResult[SellerInvoice]:
        """SENT -> PAID."""
        return cls._advance(invoice_id, "mark_paid", InvoiceStatus.PAID)
