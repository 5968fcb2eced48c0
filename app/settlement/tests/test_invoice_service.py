"""
Tests for InvoiceService.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest
from freezegun import freeze_time

from settlement.exceptions import (
    InvalidStateTransitionError,
    NoDataForPeriod,
    SettlementNotFoundError,
    SettlementValidationError,
)
from settlement.models import SellerInvoice
from settlement.services import InvoiceService
from settlement.state_machines import InvoiceStatus

MARCH = (date(2026, 3, 1), date(2026, 3, 31))


@pytest.fixture
def invoiced_store(settle_order, release_all, store_id):
    with freeze_time("2026-03-10 10:00:00"):
        release_all(settle_order((store_id, "100.00", "10.00")))
    with freeze_time("2026-03-12 10:00:00"):
        release_all(settle_order((store_id, "50.00", "0.00")))
    return store_id


@pytest.mark.django_db
class TestGenerateInvoice:
    """Tests for generate_invoice."""

    def test_generates_invoice(self, invoiced_store):
        result = InvoiceService.generate_invoice(
            invoiced_store, *MARCH, generated_by="billing-job", store_name="Corner Books"
        )

        invoice = SellerInvoice.objects.get(id=result.data.id)
        assert result.success and not result.already_processed
        assert invoice.status == InvoiceStatus.GENERATED
        assert invoice.invoice_number == f"INV-2026-03-{str(invoiced_store)[:8].upper()}"
        assert invoice.total_gmv == Decimal("160.00")
        assert invoice.total_commission == Decimal("22.50")
        assert invoice.total_processing_fees == Decimal("5.24")
        assert invoice.net_amount_due == Decimal("132.26")
        assert invoice.order_count == 2
        assert invoice.generated_by == "billing-job"
        assert invoice.generated_at is not None

    def test_renders_html_statement(self, invoiced_store):
        invoice = InvoiceService.generate_invoice(
            invoiced_store, *MARCH, generated_by="billing-job", store_name="Corner Books"
        ).data

        assert invoice.invoice_number in invoice.html_content
        assert "Corner Books" in invoice.html_content
        assert "132.26 USD" in invoice.html_content
        assert "2026-03-01 to 2026-03-31" in invoice.html_content

    def test_second_generation_returns_existing(self, invoiced_store):
        first = InvoiceService.generate_invoice(invoiced_store, *MARCH, generated_by="billing-job")

        second = InvoiceService.generate_invoice(invoiced_store, *MARCH, generated_by="someone-else")

        assert second.already_processed
        assert second.data.id == first.data.id
        assert SellerInvoice.objects.count() == 1

    def test_other_period_in_same_month_gets_suffix(self, invoiced_store):
        full = InvoiceService.generate_invoice(invoiced_store, *MARCH, generated_by="job").data

        half = InvoiceService.generate_invoice(
            invoiced_store, date(2026, 3, 1), date(2026, 3, 15), generated_by="job"
        ).data
        third = InvoiceService.generate_invoice(
            invoiced_store, date(2026, 3, 10), date(2026, 3, 10), generated_by="job"
        ).data

        assert half.invoice_number == f"{full.invoice_number}-2"
        assert third.invoice_number == f"{full.invoice_number}-3"
        assert third.net_amount_due == Decimal("91.51")

    def test_empty_period_raises(self, invoiced_store):
        with pytest.raises(NoDataForPeriod):
            InvoiceService.generate_invoice(
                invoiced_store, date(2026, 2, 1), date(2026, 2, 28), generated_by="job"
            )

        assert not SellerInvoice.objects.exists()

    def test_empty_period_allowed_by_setting(self, invoiced_store, settings):
        settings.SETTLEMENT_INVOICE_ALLOW_EMPTY = True

        invoice = InvoiceService.generate_invoice(
            invoiced_store, date(2026, 2, 1), date(2026, 2, 28), generated_by="job"
        ).data

        assert invoice.net_amount_due == Decimal("0")
        assert invoice.order_count == 0
        assert "No settled sales in this period." in invoice.html_content

    def test_reversed_period_rejected(self, invoiced_store):
        with pytest.raises(SettlementValidationError):
            InvoiceService.generate_invoice(
                invoiced_store, date(2026, 3, 31), date(2026, 3, 1), generated_by="job"
            )


@pytest.mark.django_db
class TestInvoiceStatus:
    """Tests for mark_sent and mark_paid."""

    def test_sent_then_paid(self, invoiced_store):
        invoice = InvoiceService.generate_invoice(invoiced_store, *MARCH, generated_by="job").data

        InvoiceService.mark_sent(invoice.id)
        InvoiceService.mark_paid(invoice.id)

        invoice = SellerInvoice.objects.get(id=invoice.id)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.sent_at is not None
        assert invoice.paid_at is not None

    def test_mark_sent_twice_is_noop(self, invoiced_store):
        invoice = InvoiceService.generate_invoice(invoiced_store, *MARCH, generated_by="job").data
        InvoiceService.mark_sent(invoice.id)

        assert InvoiceService.mark_sent(invoice.id).already_processed

    def test_cannot_pay_unsent_invoice(self, invoiced_store):
        invoice = InvoiceService.generate_invoice(invoiced_store, *MARCH, generated_by="job").data

        with pytest.raises(InvalidStateTransitionError):
            InvoiceService.mark_paid(invoice.id)

    def test_unknown_invoice(self, db):
        with pytest.raises(SettlementNotFoundError):
            InvoiceService.mark_sent(uuid.uuid4())
