"""
Tests for PayoutService.

The funded_store fixture settles three orders for one store, a minute
apart, and releases them: nets of 91.51, 40.75 and 16.12 in that order
(148.38 available).
"""

import uuid
from decimal import Decimal

import pytest
from freezegun import freeze_time

from settlement.exceptions import (
    InsufficientAvailableBalance,
    InvalidStateTransitionError,
    SettlementNotFoundError,
    SettlementValidationError,
    StaleRecordError,
)
from settlement.models import Payout, SellerBalance, SubOrderPayment
from settlement.services import PayoutService, SellerBalanceService
from settlement.services.payout_service import select_sub_order_payments
from settlement.state_machines import PayoutMethod, PayoutStatus, SubOrderPayoutStatus
from settlement.tests.factories import SubOrderPaymentFactory


@pytest.fixture
def funded_store(settle_order, release_all, store_id):
    for minute, part in enumerate(
        [(store_id, "100.00", "10.00"), (store_id, "50.00", "0.00"), (store_id, "20.00", "0.00")]
    ):
        with freeze_time(f"2026-03-01 12:{minute:02d}:00"):
            release_all(settle_order(part))
    return store_id


def net_amounts(sub_order_ids):
    payments = SubOrderPayment.objects.filter(sub_order_id__in=sub_order_ids)
    return sorted(p.seller_net_amount for p in payments)


# =============================================================================
# Selection
# =============================================================================


class TestSelectSubOrderPayments:
    """Tests for the first-fit selection helper."""

    def test_skips_rows_that_do_not_fit(self):
        rows = [
            SubOrderPaymentFactory.build(seller_net_amount=Decimal(net))
            for net in ("91.51", "40.75", "16.12")
        ]

        selected = select_sub_order_payments(rows, Decimal("60.00"))

        assert [p.seller_net_amount for p in selected] == [Decimal("40.75"), Decimal("16.12")]

    def test_uses_outstanding_amount(self):
        row = SubOrderPaymentFactory.build(
            seller_net_amount=Decimal("91.51"), reversed_amount=Decimal("45.76")
        )

        assert select_sub_order_payments([row], Decimal("50.00")) == [row]

    def test_nothing_fits(self):
        rows = [SubOrderPaymentFactory.build(seller_net_amount=Decimal("91.51"))]

        assert select_sub_order_payments(rows, Decimal("10.00")) == []


# =============================================================================
# Creation
# =============================================================================


@pytest.mark.django_db
class TestCreatePayout:
    """Tests for create_payout."""

    def test_first_fit_payout(self, funded_store):
        """A 60.00 request skips the 91.51 sale and takes 40.75 + 16.12."""
        payout = PayoutService.create_payout(
            funded_store, Decimal("60.00"), requested_by="seller@example.com"
        )

        assert payout.status == PayoutStatus.SCHEDULED
        assert payout.amount == Decimal("56.87")
        assert payout.gross_amount == Decimal("70.00")
        assert payout.commission_amount == Decimal("10.50")
        assert payout.processing_fee_amount == Decimal("2.63")
        assert payout.payout_method == PayoutMethod.BANK_TRANSFER
        assert payout.requested_by == "seller@example.com"
        assert net_amounts(payout.sub_order_ids) == [Decimal("16.12"), Decimal("40.75")]

        balance = SellerBalance.objects.get(store_id=funded_store)
        assert balance.available_amount == Decimal("91.51")
        assert balance.total_paid_out == Decimal("56.87")

        included = SubOrderPayment.objects.filter(payout=payout)
        assert {p.payout_status for p in included} == {SubOrderPayoutStatus.INCLUDED}
        SellerBalanceService.verify_balance(funded_store)

    def test_full_balance_payout(self, funded_store):
        payout = PayoutService.create_payout(funded_store, Decimal("148.38"))

        assert payout.amount == Decimal("148.38")
        assert len(payout.sub_order_ids) == 3
        assert SellerBalance.objects.get(store_id=funded_store).available_amount == Decimal("0.00")

    def test_rejects_more_than_available(self, funded_store):
        with pytest.raises(InsufficientAvailableBalance) as exc_info:
            PayoutService.create_payout(funded_store, Decimal("148.39"))

        assert exc_info.value.available == Decimal("148.38")
        assert not Payout.objects.exists()
        assert SellerBalance.objects.get(store_id=funded_store).available_amount == Decimal("148.38")

    def test_pending_funds_are_not_payable(self, settle_order, store_id):
        settle_order((store_id, "100.00", "10.00"))

        with pytest.raises(InsufficientAvailableBalance):
            PayoutService.create_payout(store_id, Decimal("10.00"))

    def test_store_without_balance(self, db):
        with pytest.raises(InsufficientAvailableBalance):
            PayoutService.create_payout(uuid.uuid4(), Decimal("10.00"))

    def test_rejects_when_no_row_fits(self, settle_order, release_all, store_id):
        release_all(settle_order((store_id, "100.00", "10.00")))

        with pytest.raises(SettlementValidationError):
            PayoutService.create_payout(store_id, Decimal("50.00"))

        assert not Payout.objects.exists()
        assert SellerBalance.objects.get(store_id=store_id).available_amount == Decimal("91.51")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00"), Decimal("1.005")])
    def test_rejects_invalid_amount(self, funded_store, amount):
        with pytest.raises(SettlementValidationError):
            PayoutService.create_payout(funded_store, amount)

    def test_rejects_unknown_method(self, funded_store):
        with pytest.raises(SettlementValidationError):
            PayoutService.create_payout(funded_store, Decimal("60.00"), method="carrier_pigeon")

    def test_preview_matches_payout_without_writing(self, funded_store):
        preview = PayoutService.preview_payout(funded_store, Decimal("60.00"))

        assert preview.is_payable
        assert preview.available_amount == Decimal("148.38")
        assert preview.payout_amount == Decimal("56.87")
        assert not Payout.objects.exists()

        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))
        assert [str(s) for s in preview.sub_order_ids] == payout.sub_order_ids

    def test_preview_over_available_is_not_payable(self, funded_store):
        preview = PayoutService.preview_payout(funded_store, Decimal("500.00"))

        assert not preview.is_payable


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.django_db
class TestPayoutLifecycle:
    """Tests for start_processing, complete_payout and fail_payout."""

    def test_start_processing(self, funded_store):
        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))

        result = PayoutService.start_processing(payout.id)

        payout = Payout.objects.get(id=payout.id)
        assert result.success
        assert payout.status == PayoutStatus.PROCESSING
        assert payout.processing_started_at is not None
        assert PayoutService.start_processing(payout.id).already_processed

    def test_version_check_passes_for_current_version(self, funded_store):
        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))

        result = PayoutService.start_processing(payout.id, expected_version=payout.version)

        assert result.data.status == PayoutStatus.PROCESSING

    def test_stale_version_is_refused(self, funded_store):
        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))
        read_version = payout.version
        PayoutService.start_processing(payout.id)

        with pytest.raises(StaleRecordError):
            PayoutService.fail_payout(payout.id, "Bank rejected", expected_version=read_version)

        assert Payout.objects.get(id=payout.id).status == PayoutStatus.PROCESSING
        assert SellerBalance.objects.get(store_id=funded_store).available_amount == Decimal("91.51")

    def test_complete_marks_rows_paid_out(
        self, funded_store, captured_events, django_capture_on_commit_callbacks
    ):
        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))
        PayoutService.start_processing(payout.id)

        with django_capture_on_commit_callbacks(execute=True):
            result = PayoutService.complete_payout(payout.id, external_transaction_id="tr_123")

        payout = Payout.objects.get(id=payout.id)
        assert result.success
        assert payout.status == PayoutStatus.COMPLETED
        assert payout.external_transaction_id == "tr_123"
        assert payout.completed_at is not None
        assert {p.payout_status for p in SubOrderPayment.objects.filter(payout=payout)} == {
            SubOrderPayoutStatus.PAID_OUT
        }
        assert captured_events == [
            (
                "payout_processed",
                {"store_id": funded_store, "payout_id": payout.id, "amount": Decimal("56.87")},
            )
        ]
        SellerBalanceService.verify_balance(funded_store)

    def test_complete_is_idempotent(self, funded_store, captured_events, django_capture_on_commit_callbacks):
        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))
        PayoutService.complete_payout(payout.id)

        with django_capture_on_commit_callbacks(execute=True):
            replay = PayoutService.complete_payout(payout.id)

        assert replay.already_processed
        assert captured_events == []

    def test_fail_restores_available_balance(self, funded_store):
        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))
        PayoutService.start_processing(payout.id)

        result = PayoutService.fail_payout(payout.id, "Bank account closed")

        payout = Payout.objects.get(id=payout.id)
        assert result.success
        assert payout.status == PayoutStatus.FAILED
        assert payout.failure_reason == "Bank account closed"

        balance = SellerBalance.objects.get(store_id=funded_store)
        assert balance.available_amount == Decimal("148.38")
        assert balance.total_paid_out == Decimal("0.00")
        assert not SubOrderPayment.objects.filter(payout=payout).exists()
        assert SubOrderPayment.objects.filter(
            store_id=funded_store, payout_status=SubOrderPayoutStatus.AVAILABLE
        ).count() == 3
        SellerBalanceService.verify_balance(funded_store)

    def test_fail_is_idempotent(self, funded_store):
        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))
        PayoutService.fail_payout(payout.id, "Bank account closed")

        replay = PayoutService.fail_payout(payout.id, "Bank account closed")

        assert replay.already_processed
        assert SellerBalance.objects.get(store_id=funded_store).available_amount == Decimal("148.38")

    def test_failed_funds_can_be_paid_out_again(self, funded_store):
        first = PayoutService.create_payout(funded_store, Decimal("60.00"))
        PayoutService.fail_payout(first.id, "Bank account closed")

        second = PayoutService.create_payout(funded_store, Decimal("60.00"))

        assert second.amount == Decimal("56.87")
        assert sorted(second.sub_order_ids) == sorted(first.sub_order_ids)

    def test_cannot_complete_failed_payout(self, funded_store):
        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))
        PayoutService.fail_payout(payout.id, "Bank account closed")

        with pytest.raises(InvalidStateTransitionError):
            PayoutService.complete_payout(payout.id)

        assert Payout.objects.get(id=payout.id).status == PayoutStatus.FAILED

    def test_cannot_fail_completed_payout(self, funded_store):
        payout = PayoutService.create_payout(funded_store, Decimal("60.00"))
        PayoutService.complete_payout(payout.id)

        with pytest.raises(InvalidStateTransitionError):
            PayoutService.fail_payout(payout.id, "too late")

        assert SellerBalance.objects.get(store_id=funded_store).total_paid_out == Decimal("56.87")

    def test_unknown_payout(self, db):
        with pytest.raises(SettlementNotFoundError):
            PayoutService.complete_payout(uuid.uuid4())
