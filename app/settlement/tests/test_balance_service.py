"""
Tests for SellerBalanceService.

These tests verify that:
- Every mutation journals a BalanceMovement with the resulting totals
- Insufficient buckets are refused and leave the balance untouched
- Repeated idempotency keys are no-ops
- verify_balance detects balances that drift from the settlement rows
"""

import random
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from settlement.exceptions import (
    InsufficientAvailableBalance,
    InsufficientPendingBalance,
    ReconciliationError,
    RefundExceedsBalance,
    SettlementNotFoundError,
    SettlementValidationError,
)
from settlement.models import BalanceMovement, Payout, SellerBalance, SubOrderPayment
from settlement.money import ZERO
from settlement.services import PayoutService, SellerBalanceService
from settlement.state_machines import BalanceMovementKind, PayoutStatus, SubOrderPayoutStatus
from settlement.tests.factories import SellerBalanceFactory, SubOrderPaymentFactory


def balance_of(store_id):
    return SellerBalance.objects.get(store_id=store_id)


def pending_rows(store_id, *nets):
    """Settled sub-orders for ``store_id`` credited to pending, oldest first."""
    start = timezone.now()
    rows = []
    for offset, net in enumerate(nets):
        payment = SubOrderPaymentFactory(
            store_id=store_id,
            seller_net_amount=Decimal(net),
            available_at=start + timedelta(minutes=offset),
        )
        SellerBalanceService.credit_pending(
            store_id,
            payment.seller_net_amount,
            idempotency_key=f"credit_pending:{payment.id}",
            reference_type="sub_order_payment",
            reference_id=payment.id,
        )
        rows.append(payment)
    return rows


@pytest.mark.django_db
class TestCreditPending:
    """Tests for credit_pending."""

    def test_creates_balance_lazily(self, store_id):
        balance = SellerBalanceService.credit_pending(store_id, Decimal("91.51"))

        assert balance.pending_amount == Decimal("91.51")
        assert balance.available_amount == ZERO
        assert balance.total_paid_out == ZERO

    def test_journals_movement(self, store_id):
        SellerBalanceService.credit_pending(
            store_id,
            Decimal("91.51"),
            idempotency_key="credit_pending:test",
            reference_type="sub_order_payment",
            created_by="test",
        )

        movement = BalanceMovement.objects.get(idempotency_key="credit_pending:test")
        assert movement.kind == BalanceMovementKind.CREDIT_PENDING
        assert movement.amount == Decimal("91.51")
        assert movement.pending_after == Decimal("91.51")
        assert movement.available_after == ZERO
        assert movement.store_id == store_id

    def test_duplicate_key_is_noop(self, store_id):
        SellerBalanceService.credit_pending(store_id, Decimal("10.00"), idempotency_key="k1")
        SellerBalanceService.credit_pending(store_id, Decimal("10.00"), idempotency_key="k1")

        assert balance_of(store_id).pending_amount == Decimal("10.00")
        assert BalanceMovement.objects.filter(store_id=store_id).count() == 1

    def test_increments_version(self, store_id):
        SellerBalanceService.credit_pending(store_id, Decimal("10.00"))
        version = balance_of(store_id).version

        SellerBalanceService.credit_pending(store_id, Decimal("5.00"))

        assert balance_of(store_id).version == version + 1

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00"), Decimal("1.001"), 1.5])
    def test_rejects_invalid_amount(self, store_id, amount):
        with pytest.raises(SettlementValidationError):
            SellerBalanceService.credit_pending(store_id, amount)

        assert not SellerBalance.objects.filter(store_id=store_id).exists()


@pytest.mark.django_db
class TestReleaseToAvailable:
    """Tests for the store-level release_to_available."""

    def test_release_then_payout_of_released_funds(self, store_id):
        pending_rows(store_id, "50.00", "30.00")

        balance = SellerBalanceService.release_to_available(store_id, Decimal("80.00"))
        payout = PayoutService.create_payout(store_id, Decimal("80.00"))

        assert balance.pending_amount == ZERO
        assert balance.available_amount == Decimal("80.00")
        assert payout.amount == Decimal("80.00")
        with pytest.raises(InsufficientAvailableBalance):
            PayoutService.create_payout(store_id, Decimal("0.01"))
        SellerBalanceService.verify_balance(store_id)

    def test_release_advances_rows(self, store_id):
        first, second = pending_rows(store_id, "50.00", "30.00")

        SellerBalanceService.release_to_available(store_id, Decimal("80.00"), released_by="ops@shop")

        for payment in (first, second):
            payment = SubOrderPayment.objects.get(id=payment.id)
            assert payment.payout_status == SubOrderPayoutStatus.AVAILABLE
            assert payment.released_at is not None
        assert BalanceMovement.objects.filter(
            store_id=store_id, kind=BalanceMovementKind.RELEASE_TO_AVAILABLE
        ).count() == 2
        SellerBalanceService.verify_balance(store_id)

    def test_takes_whole_rows_first_fit(self, store_id):
        """30.00 skips the older 50.00 row and releases the 30.00 one."""
        first, second = pending_rows(store_id, "50.00", "30.00")

        SellerBalanceService.release_to_available(store_id, Decimal("30.00"))

        assert SubOrderPayment.objects.get(id=first.id).payout_status == (
            SubOrderPayoutStatus.PENDING_SETTLEMENT
        )
        assert SubOrderPayment.objects.get(id=second.id).payout_status == SubOrderPayoutStatus.AVAILABLE
        balance = SellerBalanceService.verify_balance(store_id)
        assert balance.pending_amount == Decimal("50.00")
        assert balance.available_amount == Decimal("30.00")

    def test_amount_matching_no_rows_refused(self, store_id):
        pending_rows(store_id, "50.00", "30.00")

        with pytest.raises(SettlementValidationError) as exc_info:
            SellerBalanceService.release_to_available(store_id, Decimal("40.00"))

        assert exc_info.value.details["releasable"] == "30.00"
        balance = balance_of(store_id)
        assert balance.pending_amount == Decimal("80.00")
        assert balance.available_amount == ZERO
        assert not SubOrderPayment.objects.filter(
            store_id=store_id, payout_status=SubOrderPayoutStatus.AVAILABLE
        ).exists()

    def test_more_than_pending_refused(self, store_id):
        pending_rows(store_id, "50.00")

        with pytest.raises(InsufficientPendingBalance) as exc_info:
            SellerBalanceService.release_to_available(store_id, Decimal("50.01"))

        assert exc_info.value.required == Decimal("50.01")
        assert exc_info.value.available == Decimal("50.00")
        balance = balance_of(store_id)
        assert balance.pending_amount == Decimal("50.00")
        assert balance.available_amount == ZERO

    def test_releases_outstanding_after_reversal(self, store_id):
        (payment,) = pending_rows(store_id, "91.51")
        SellerBalanceService.reverse_credit(store_id, Decimal("45.76"), from_pending=True)
        SubOrderPayment.objects.filter(id=payment.id).update(reversed_amount=Decimal("45.76"))

        balance = SellerBalanceService.release_to_available(store_id, Decimal("45.75"))

        assert balance.available_amount == Decimal("45.75")
        SellerBalanceService.verify_balance(store_id)


@pytest.mark.django_db
class TestDebitAndRestore:
    """Tests for debit_for_payout and restore_available."""

    def test_debit_moves_available_to_paid_out(self, store_id):
        SellerBalanceFactory(store_id=store_id, available_amount=Decimal("100.00"))

        balance = SellerBalanceService.debit_for_payout(store_id, Decimal("80.00"))

        assert balance.available_amount == Decimal("20.00")
        assert balance.total_paid_out == Decimal("80.00")

    def test_debit_more_than_available_refused(self, store_id):
        """Pending funds can't be paid out."""
        SellerBalanceService.credit_pending(store_id, Decimal("100.00"))

        with pytest.raises(InsufficientAvailableBalance):
            SellerBalanceService.debit_for_payout(store_id, Decimal("10.00"))

        assert balance_of(store_id).total_paid_out == ZERO
        assert not BalanceMovement.objects.filter(
            store_id=store_id, kind=BalanceMovementKind.DEBIT_FOR_PAYOUT
        ).exists()

    def test_restore_available_undoes_debit(self, store_id):
        SellerBalanceFactory(store_id=store_id, available_amount=Decimal("100.00"))
        SellerBalanceService.debit_for_payout(store_id, Decimal("80.00"))

        balance = SellerBalanceService.restore_available(store_id, Decimal("80.00"))

        assert balance.available_amount == Decimal("100.00")
        assert balance.total_paid_out == ZERO

    def test_restore_more_than_paid_out_fails_closed(self, store_id):
        SellerBalanceService.credit_pending(store_id, Decimal("100.00"))

        with pytest.raises(ReconciliationError):
            SellerBalanceService.restore_available(store_id, Decimal("1.00"))

        assert balance_of(store_id).available_amount == ZERO

    def test_restore_for_unknown_store_raises(self, store_id):
        with pytest.raises(SettlementNotFoundError):
            SellerBalanceService.restore_available(store_id, Decimal("1.00"))


@pytest.mark.django_db
class TestReverseCredit:
    """Tests for reverse_credit and restore_reversal."""

    def test_reverse_from_pending(self, store_id):
        SellerBalanceService.credit_pending(store_id, Decimal("91.51"))

        balance = SellerBalanceService.reverse_credit(store_id, Decimal("45.76"), from_pending=True)

        assert balance.pending_amount == Decimal("45.75")
        assert BalanceMovement.objects.filter(
            store_id=store_id, kind=BalanceMovementKind.REVERSE_PENDING
        ).exists()

    def test_reverse_from_available(self, store_id):
        SellerBalanceFactory(store_id=store_id, available_amount=Decimal("91.51"))

        balance = SellerBalanceService.reverse_credit(store_id, Decimal("91.51"), from_pending=False)

        assert balance.available_amount == ZERO

    def test_reverse_more_than_bucket_refused(self, store_id):
        """The ledger is never driven negative to absorb a refund."""
        SellerBalanceService.credit_pending(store_id, Decimal("91.51"))

        with pytest.raises(RefundExceedsBalance):
            SellerBalanceService.reverse_credit(store_id, Decimal("10.00"), from_pending=False)

        balance = balance_of(store_id)
        assert balance.pending_amount == Decimal("91.51")
        assert balance.available_amount == ZERO

    def test_restore_reversal(self, store_id):
        SellerBalanceService.credit_pending(store_id, Decimal("91.51"))
        SellerBalanceService.reverse_credit(store_id, Decimal("91.51"), from_pending=True)

        balance = SellerBalanceService.restore_reversal(store_id, Decimal("91.51"), to_pending=True)

        assert balance.pending_amount == Decimal("91.51")


@pytest.mark.django_db
class TestReleaseSubOrderPayment:
    """Tests for release_sub_order_payment."""

    def test_releases_outstanding_amount(self, settle_order, store_id):
        txn = settle_order((store_id, "100.00", "10.00"))
        payment = txn.sub_order_payments.get()

        result = SellerBalanceService.release_sub_order_payment(
            payment.sub_order_id, released_by="ops@shop"
        )

        assert result.success
        assert not result.already_processed
        assert result.data.payout_status == SubOrderPayoutStatus.AVAILABLE
        assert result.data.released_at is not None
        balance = balance_of(store_id)
        assert balance.pending_amount == ZERO
        assert balance.available_amount == Decimal("91.51")

    def test_second_release_is_noop(self, settle_order, store_id):
        txn = settle_order((store_id, "100.00", "10.00"))
        payment = txn.sub_order_payments.get()
        SellerBalanceService.release_sub_order_payment(payment.sub_order_id)

        result = SellerBalanceService.release_sub_order_payment(payment.sub_order_id)

        assert result.already_processed
        assert balance_of(store_id).available_amount == Decimal("91.51")
        assert BalanceMovement.objects.filter(
            store_id=store_id, kind=BalanceMovementKind.RELEASE_TO_AVAILABLE
        ).count() == 1

    def test_unknown_sub_order_raises(self):
        with pytest.raises(SettlementNotFoundError):
            SellerBalanceService.release_sub_order_payment(uuid.uuid4())


@pytest.mark.django_db
class TestQueriesAndVerification:
    """Tests for get_balance and verify_balance."""

    def test_get_balance_for_unknown_store_is_zero(self, store_id):
        summary = SellerBalanceService.get_balance(store_id)

        assert summary.pending_amount == ZERO
        assert summary.available_amount == ZERO
        assert summary.total_paid_out == ZERO
        assert summary.currency == "USD"

    def test_get_balance(self, store_id):
        SellerBalanceFactory(store_id=store_id)
        SellerBalanceService.credit_pending(store_id, Decimal("12.34"))

        assert SellerBalanceService.get_balance(store_id).pending_amount == Decimal("12.34")

    def test_verify_balance_passes_for_settled_orders(self, settle_order, release_all, store_id):
        txn = settle_order((store_id, "100.00", "10.00"), (store_id, "50.00", "0.00"))
        release_all(txn)
        settle_order((store_id, "20.00", "0.00"))

        summary = SellerBalanceService.verify_balance(store_id)

        assert summary.available_amount == Decimal("132.56")
        assert summary.pending_amount == Decimal("16.12")

    def test_verify_balance_detects_drift(self, settle_order, store_id):
        settle_order((store_id, "100.00", "10.00"))
        SellerBalance.objects.filter(store_id=store_id).update(pending_amount=Decimal("100.00"))

        with pytest.raises(ReconciliationError) as exc_info:
            SellerBalanceService.verify_balance(store_id)

        mismatches = exc_info.value.details["mismatches"]
        assert mismatches["pending_amount"] == {"expected": "91.51", "actual": "100.00"}

    def test_expected_balance_counts_reversals(self, settle_order, store_id):
        txn = settle_order((store_id, "100.00", "10.00"))
        SubOrderPayment.objects.filter(payment_transaction=txn).update(
            reversed_amount=Decimal("1.51")
        )

        assert SellerBalanceService.expected_balance(store_id)["pending_amount"] == Decimal("90.00")


@pytest.mark.django_db
class TestLedgerSequences:
    """
    Random runs of credits, releases, payouts and payout failures.

    After every step no bucket is negative, the buckets add up to what was
    credited, and verify_balance agrees with the settlement rows.
    """

    STEPS = 25

    @staticmethod
    def random_amount(rng, low_cents, high_cents):
        return (Decimal(rng.randint(low_cents, high_cents)) / 100).quantize(Decimal("0.01"))

    @pytest.mark.parametrize("seed", [3, 17, 2026])
    def test_buckets_stay_consistent(self, store_id, seed):
        rng = random.Random(seed)
        credited = ZERO

        for _ in range(self.STEPS):
            pending = SubOrderPayment.objects.filter(
                store_id=store_id, payout_status=SubOrderPayoutStatus.PENDING_SETTLEMENT
            ).order_by("available_at", "created_at", "id")
            available = SubOrderPayment.objects.filter(
                store_id=store_id, payout_status=SubOrderPayoutStatus.AVAILABLE
            )
            scheduled = Payout.objects.filter(store_id=store_id, status=PayoutStatus.SCHEDULED)

            operations = ["credit"]
            if pending.exists():
                operations.append("release")
            if available.exists():
                operations.append("payout")
            if scheduled.exists():
                operations.append("fail")
            operation = rng.choice(operations)

            if operation == "credit":
                (payment,) = pending_rows(store_id, str(self.random_amount(rng, 100, 20000)))
                credited += payment.seller_net_amount
            elif operation == "release":
                SellerBalanceService.release_to_available(
                    store_id, pending.first().outstanding_amount
                )
            elif operation == "payout":
                smallest = min(p.outstanding_amount for p in available)
                total = balance_of(store_id).available_amount
                amount = self.random_amount(rng, int(smallest * 100), int(total * 100))
                PayoutService.create_payout(store_id, amount)
            else:
                PayoutService.fail_payout(rng.choice(list(scheduled)).id, "Bank rejected")

            balance = balance_of(store_id)
            assert balance.pending_amount >= ZERO
            assert balance.available_amount >= ZERO
            assert balance.pending_amount + balance.available_amount + balance.total_paid_out == credited
            SellerBalanceService.verify_balance(store_id)
