"""
Seller balance ledger.

This is the consistency-critical core of settlement. Every change to a
store's pending, available or paid-out total goes through
SellerBalanceService, which:

- Locks the store's SellerBalance row (select_for_update) for the whole
  mutation, so concurrent credits and debits for one store are serialized
- Refuses any change that would drive a bucket negative, leaving the
  balance untouched
- Journals each mutation as a BalanceMovement with the resulting totals
- Treats a repeated idempotency key as a no-op

Multi-store operations lock balances ordered by store id. Locks are taken
in the order transaction -> balance -> sub-order payment everywhere.
Gateway calls never happen while a balance lock is held.

Usage:
    from settlement.services import SellerBalanceService

    with transaction.atomic():
        SellerBalanceService.credit_pending(
            store_id,
            Decimal("91.51"),
            reference_type="sub_order_payment",
            reference_id=sop.id,
            idempotency_key=f"credit_pending:{sop.id}",
        )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Sum

from core.services import BaseService, ServiceResult

from settlement.exceptions import (
    InsufficientAvailableBalance,
    InsufficientPendingBalance,
    ReconciliationError,
    RefundExceedsBalance,
    SettlementNotFoundError,
    SettlementValidationError,
)
from settlement.models import BalanceMovement, Payout, SellerBalance, SubOrderPayment
from settlement.money import DEFAULT_CURRENCY, ZERO, round_money, to_decimal
from settlement.state_machines import BalanceMovementKind, PayoutStatus, SubOrderPayoutStatus

if TYPE_CHECKING:
    from collections.abc import Iterable


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class BalanceSummary:
    """Read-only view of a store's balance."""

    store_id: uuid.UUID
    pending_amount: Decimal
    available_amount: Decimal
    total_paid_out: Decimal
    currency: str
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, balance: SellerBalance) -> BalanceSummary:
        return cls(
            store_id=balance.store_id,
            pending_amount=balance.pending_amount,
            available_amount=balance.available_amount,
            total_paid_out=balance.total_paid_out,
            currency=balance.currency,
            updated_at=balance.updated_at,
        )


def validate_positive_amount(amount, field_name: str = "amount") -> Decimal:
    """
    Check that an amount is a positive Decimal with at most two decimals.

    Raises:
        SettlementValidationError: For floats, non-positive or sub-cent amounts
    """
    value = to_decimal(amount, field_name)
    if value <= 0:
        raise SettlementValidationError(
            f"{field_name} must be positive",
            details={field_name: str(value)},
        )
    if round_money(value) != value:
        raise SettlementValidationError(
            f"{field_name} must not have more than two decimal places",
            details={field_name: str(value)},
        )
    return round_money(value)


# =============================================================================
# Seller Balance Service
# =============================================================================


class SellerBalanceService(BaseService):
    """
    Per-store balance mutations.

    All mutating methods open their own atomic block (a savepoint when the
    caller already has one) and return the updated SellerBalance.
    """

    # =========================================================================
    # Locking
    # =========================================================================

    @classmethod
    def lock_balance(
        cls,
        store_id: uuid.UUID,
        create: bool = False,
        currency: str = DEFAULT_CURRENCY,
    ) -> SellerBalance:
        """
        Lock and return the store's balance row.

        Must be called inside a transaction. With ``create`` the row is
        created lazily on first use.

        Raises:
            SettlementNotFoundError: If the store has no balance and create is False
        """
        balance = SellerBalance.objects.select_for_update().filter(store_id=store_id).first()
        if balance is not None:
            return balance

        if not create:
            raise SettlementNotFoundError(
                f"No balance for store {store_id}",
                details={"store_id": str(store_id)},
            )

        try:
            with transaction.atomic():
                SellerBalance.objects.create(store_id=store_id, currency=currency)
        except IntegrityError:
            # Created concurrently by another request
            pass
        return SellerBalance.objects.select_for_update().get(store_id=store_id)

    @classmethod
    def lock_balances(
        cls,
        store_ids: Iterable[uuid.UUID],
        create: bool = False,
    ) -> dict[uuid.UUID, SellerBalance]:
        """Lock several stores' balances in store id order."""
        return {
            store_id: cls.lock_balance(store_id, create=create)
            for store_id in sorted(set(store_ids), key=str)
        }

    # =========================================================================
    # Journal
    # =========================================================================

    @classmethod
    def _is_duplicate(cls, idempotency_key: str | None) -> bool:
        if not idempotency_key:
            return False
        if BalanceMovement.objects.filter(idempotency_key=idempotency_key).exists():
            cls.get_logger().info(
                "Duplicate balance movement ignored",
                extra={"idempotency_key": idempotency_key},
            )
            return True
        return False

    @classmethod
    def _apply(
        cls,
        balance: SellerBalance,
        kind: str,
        amount: Decimal,
        *,
        pending_delta: Decimal = ZERO,
        available_delta: Decimal = ZERO,
        paid_out_delta: Decimal = ZERO,
        idempotency_key: str | None = None,
        reference_type: str | None = None,
        reference_id: uuid.UUID | None = None,
        description: str | None = None,
        created_by: str | None = None,
    ) -> SellerBalance:
        balance.pending_amount += pending_delta
        balance.available_amount += available_delta
        balance.total_paid_out += paid_out_delta

        if min(balance.pending_amount, balance.available_amount, balance.total_paid_out) < 0:
            # Callers check their bucket first, so this is a ledger bug
            cls.get_logger().critical(
                "Balance mutation would go negative",
                extra={"store_id": str(balance.store_id), "kind": kind, "amount": str(amount)},
            )
            raise ReconciliationError(
                f"Balance for store {balance.store_id} would go negative",
                details={"store_id": str(balance.store_id), "kind": kind, "amount": str(amount)},
            )

        balance.save()
        BalanceMovement.objects.create(
            balance=balance,
            store_id=balance.store_id,
            kind=kind,
            amount=amount,
            pending_after=balance.pending_amount,
            available_after=balance.available_amount,
            paid_out_after=balance.total_paid_out,
            idempotency_key=idempotency_key or f"{kind}:{uuid.uuid4()}",
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            created_by=created_by,
        )

        cls.get_logger().info(
            "Balance updated",
            extra={
                "store_id": str(balance.store_id),
                "kind": kind,
                "amount": str(amount),
                "pending_amount": str(balance.pending_amount),
                "available_amount": str(balance.available_amount),
                "total_paid_out": str(balance.total_paid_out),
            },
        )
        return balance

    # =========================================================================
    # Ledger Operations
    # =========================================================================

    @classmethod
    def credit_pending(
        cls,
        store_id: uuid.UUID,
        amount: Decimal,
        *,
        currency: str = DEFAULT_CURRENCY,
        idempotency_key: str | None = None,
        reference_type: str | None = None,
        reference_id: uuid.UUID | None = None,
        description: str | None = None,
        created_by: str | None = None,
    ) -> SellerBalance:
        """Add a settled seller net to the store's pending balance."""
        amount = validate_positive_amount(amount)
        with cls.atomic():
            balance = cls.lock_balance(store_id, create=True, currency=currency)
            if cls._is_duplicate(idempotency_key):
                return balance
            return cls._apply(
                balance,
                BalanceMovementKind.CREDIT_PENDING,
                amount,
                pending_delta=amount,
                idempotency_key=idempotency_key,
                reference_type=reference_type,
                reference_id=reference_id,
                description=description,
                created_by=created_by,
            )

    @classmethod
    def _move_to_available(
        cls,
        store_id: uuid.UUID,
        amount: Decimal,
        *,
        idempotency_key: str | None = None,
        reference_type: str | None = None,
        reference_id: uuid.UUID | None = None,
        created_by: str | None = None,
    ) -> SellerBalance:
        # Bucket move only; callers advance the matching SubOrderPayment rows
        amount = validate_positive_amount(amount)
        with cls.atomic():
            balance = cls.lock_balance(store_id, create=True)
            if cls._is_duplicate(idempotency_key):
                return balance
            if amount > balance.pending_amount:
                raise InsufficientPendingBalance(store_id, amount, balance.pending_amount)
            return cls._apply(
                balance,
                BalanceMovementKind.RELEASE_TO_AVAILABLE,
                amount,
                pending_delta=-amount,
                available_delta=amount,
                idempotency_key=idempotency_key,
                reference_type=reference_type,
                reference_id=reference_id,
                created_by=created_by,
            )

    @classmethod
    def debit_for_payout(
        cls,
        store_id: uuid.UUID,
        amount: Decimal,
        *,
        idempotency_key: str | None = None,
        reference_type: str | None = "payout",
        reference_id: uuid.UUID | None = None,
        created_by: str | None = None,
    ) -> SellerBalance:
        """
        Commit available funds to a payout.

        Raises:
            InsufficientAvailableBalance: If amount exceeds the available balance
        """
        amount = validate_positive_amount(amount)
        with cls.atomic():
            balance = cls.lock_balance(store_id, create=True)
            if cls._is_duplicate(idempotency_key):
                return balance
            if amount > balance.available_amount:
                raise InsufficientAvailableBalance(store_id, amount, balance.available_amount)
            return cls._apply(
                balance,
                BalanceMovementKind.DEBIT_FOR_PAYOUT,
                amount,
                available_delta=-amount,
                paid_out_delta=amount,
                idempotency_key=idempotency_key,
                reference_type=reference_type,
                reference_id=reference_id,
                created_by=created_by,
            )

    @classmethod
    def reverse_credit(
        cls,
        store_id: uuid.UUID,
        amount: Decimal,
        from_pending: bool,
        *,
        idempotency_key: str | None = None,
        reference_type: str | None = "transaction_refund",
        reference_id: uuid.UUID | None = None,
        created_by: str | None = None,
    ) -> SellerBalance:
        """
        Take back a seller credit because of a refund.

        Fails closed: the ledger is never driven negative to absorb a refund.

        Raises:
            RefundExceedsBalance: If the bucket the funds sit in is too small
        """
        amount = validate_positive_amount(amount)
        with cls.atomic():
            balance = cls.lock_balance(store_id, create=True)
            if cls._is_duplicate(idempotency_key):
                return balance

            held = balance.pending_amount if from_pending else balance.available_amount
            if amount > held:
                bucket = "pending" if from_pending else "available"
                cls.get_logger().warning(
                    "Refund reversal exceeds seller balance",
                    extra={
                        "store_id": str(store_id),
                        "amount": str(amount),
                        "bucket": bucket,
                        "held": str(held),
                    },
                )
                raise RefundExceedsBalance(
                    f"Reversing {amount} exceeds the {bucket} balance of store {store_id}",
                    details={
                        "store_id": str(store_id),
                        "required": str(amount),
                        "available": str(held),
                        "bucket": bucket,
                    },
                )

            if from_pending:
                kind, deltas = BalanceMovementKind.REVERSE_PENDING, {"pending_delta": -amount}
            else:
                kind, deltas = BalanceMovementKind.REVERSE_AVAILABLE, {"available_delta": -amount}
            return cls._apply(
                balance,
                kind,
                amount,
                idempotency_key=idempotency_key,
                reference_type=reference_type,
                reference_id=reference_id,
                created_by=created_by,
                **deltas,
            )

    @classmethod
    def restore_reversal(
        cls,
        store_id: uuid.UUID,
        amount: Decimal,
        to_pending: bool,
        *,
        idempotency_key: str | None = None,
        reference_id: uuid.UUID | None = None,
    ) -> SellerBalance:
        """Put back a reversed credit after the gateway rejected the refund."""
        amount = validate_positive_amount(amount)
        with cls.atomic():
            balance = cls.lock_balance(store_id)
            if cls._is_duplicate(idempotency_key):
                return balance
            deltas = {"pending_delta": amount} if to_pending else {"available_delta": amount}
            return cls._apply(
                balance,
                BalanceMovementKind.RESTORE_REVERSAL,
                amount,
                idempotency_key=idempotency_key,
                reference_type="transaction_refund",
                reference_id=reference_id,
                **deltas,
            )

    @classmethod
    def restore_available(
        cls,
        store_id: uuid.UUID,
        amount: Decimal,
        *,
        idempotency_key: str | None = None,
        reference_id: uuid.UUID | None = None,
        created_by: str | None = None,
    ) -> SellerBalance:
        """
        Undo a payout debit after the payout failed.

        Raises:
            ReconciliationError: If less than ``amount`` is recorded as paid out
        """
        amount = validate_positive_amount(amount)
        with cls.atomic():
            balance = cls.lock_balance(store_id)
            if cls._is_duplicate(idempotency_key):
                return balance
            if amount > balance.total_paid_out:
                cls.get_logger().critical(
                    "Payout restore exceeds recorded paid-out total",
                    extra={
                        "store_id": str(store_id),
                        "amount": str(amount),
                        "total_paid_out": str(balance.total_paid_out),
                    },
                )
                raise ReconciliationError(
                    f"Cannot restore {amount} for store {store_id}: only "
                    f"{balance.total_paid_out} recorded as paid out",
                    details={"store_id": str(store_id), "amount": str(amount)},
                )
            return cls._apply(
                balance,
                BalanceMovementKind.RESTORE_AVAILABLE,
                amount,
                available_delta=amount,
                paid_out_delta=-amount,
                idempotency_key=idempotency_key,
                reference_type="payout",
                reference_id=reference_id,
                created_by=created_by,
            )

    # =========================================================================
    # Sub-Order Release
    # =========================================================================

    @classmethod
    def release_sub_order_payment(
        cls,
        sub_order_id: uuid.UUID,
        released_by: str | None = None,
    ) -> ServiceResult[SubOrderPayment]:
        """
        Release one sub-order's funds from pending to available.

        Triggered by the maturation job once the hold period has passed, or
        by an admin (e.g. delivery confirmed). Releasing a row that is no
        longer pending is an idempotent no-op.

        Raises:
            SettlementNotFoundError: If no SubOrderPayment exists for the sub-order
        """
        sop = SubOrderPayment.objects.filter(sub_order_id=sub_order_id).first()
        if sop is None:
            raise SettlementNotFoundError(
                f"No settlement for sub-order {sub_order_id}",
                details={"sub_order_id": str(sub_order_id)},
            )

        with cls.atomic():
            cls.lock_balance(sop.store_id, create=True)
            sop = SubOrderPayment.objects.select_for_update().get(id=sop.id)

            if sop.payout_status != SubOrderPayoutStatus.PENDING_SETTLEMENT:
                return ServiceResult.success(sop, already_processed=True)

            outstanding = sop.outstanding_amount
            if outstanding > 0:
                cls._move_to_available(
                    sop.store_id,
                    outstanding,
                    idempotency_key=f"release_to_available:{sop.id}",
                    reference_type="sub_order_payment",
                    reference_id=sop.id,
                    created_by=released_by,
                )
            sop.release()
            sop.save()

        cls.get_logger().info(
            "Sub-order payment released",
            extra={
                "sub_order_id": str(sub_order_id),
                "store_id": str(sop.store_id),
                "amount": str(outstanding),
                "released_by": released_by,
            },
        )
        return ServiceResult.success(sop)

    @classmethod
    def release_to_available(
        cls,
        store_id: uuid.UUID,
        amount: Decimal,
        released_by: str | None = None,
    ) -> SellerBalance:
        """
        Release ``amount`` of a store's pending funds to available.

        Whole PendingSettlement rows are taken oldest-first by
        (available_at, created_at, id) while their outstanding net still
        fits in what is left of ``amount``. The taken rows must add up to
        ``amount`` exactly; each is released like release_sub_order_payment
        would, so the balance and the rows never drift apart.

        Raises:
            InsufficientPendingBalance: If amount exceeds the pending balance
            SettlementValidationError: If no whole rows make up ``amount``
        """
        amount = validate_positive_amount(amount)
        with cls.atomic():
            balance = cls.lock_balance(store_id, create=True)
            if amount > balance.pending_amount:
                raise InsufficientPendingBalance(store_id, amount, balance.pending_amount)

            rows = (
                SubOrderPayment.objects.select_for_update()
                .filter(store_id=store_id, payout_status=SubOrderPayoutStatus.PENDING_SETTLEMENT)
                .order_by("available_at", "created_at", "id")
            )
            selected = []
            remaining = amount
            for sop in rows:
                if remaining == ZERO:
                    break
                if sop.outstanding_amount <= remaining:
                    selected.append(sop)
                    remaining -= sop.outstanding_amount

            if remaining != ZERO:
                raise SettlementValidationError(
                    "Amount does not match whole pending sub-order payments",
                    details={
                        "store_id": str(store_id),
                        "amount": str(amount),
                        "releasable": str(amount - remaining),
                    },
                )

            for sop in selected:
                if sop.outstanding_amount > 0:
                    balance = cls._move_to_available(
                        store_id,
                        sop.outstanding_amount,
                        idempotency_key=f"release_to_available:{sop.id}",
                        reference_type="sub_order_payment",
                        reference_id=sop.id,
                        created_by=released_by,
                    )
                sop.release()
                sop.save()

        cls.get_logger().info(
            "Pending funds released",
            extra={
                "store_id": str(store_id),
                "amount": str(amount),
                "sub_order_count": len(selected),
                "released_by": released_by,
            },
        )
        return balance

    # =========================================================================
    # Queries & Verification
    # =========================================================================

    @classmethod
    def get_balance(cls, store_id: uuid.UUID) -> BalanceSummary:
        """Current balance of a store; zero for a store never credited."""
        balance = SellerBalance.objects.filter(store_id=store_id).first()
        if balance is None:
            return BalanceSummary(
                store_id=store_id,
                pending_amount=ZERO,
                available_amount=ZERO,
                total_paid_out=ZERO,
                currency=DEFAULT_CURRENCY,
            )
        return BalanceSummary.from_model(balance)

    @classmethod
    def expected_balance(cls, store_id: uuid.UUID) -> dict[str, Decimal]:
        """Recompute what the store's balance should be from settlement rows."""

        def outstanding(status: str) -> Decimal:
            totals = SubOrderPayment.objects.filter(
                store_id=store_id, payout_status=status
            ).aggregate(net=Sum("seller_net_amount"), reversed=Sum("reversed_amount"))
            return (totals["net"] or ZERO) - (totals["reversed"] or ZERO)

        paid_out = (
            Payout.objects.filter(store_id=store_id)
            .exclude(status=PayoutStatus.FAILED)
            .aggregate(total=Sum("amount"))["total"]
        )
        return {
            "pending_amount": round_money(outstanding(SubOrderPayoutStatus.PENDING_SETTLEMENT)),
            "available_amount": round_money(outstanding(SubOrderPayoutStatus.AVAILABLE)),
            "total_paid_out": round_money(paid_out or ZERO),
        }

    @classmethod
    def verify_balance(cls, store_id: uuid.UUID) -> BalanceSummary:
        """
        Check a store's balance against its settlement rows and payouts.

        Raises:
            ReconciliationError: On any mismatch (logged at CRITICAL)
        """
        with cls.atomic():
            balance = SellerBalance.objects.select_for_update().filter(store_id=store_id).first()
            actual = BalanceSummary.from_model(balance) if balance else cls.get_balance(store_id)
            expected = cls.expected_balance(store_id)

        mismatches = {
            name: {"expected": str(value), "actual": str(getattr(actual, name))}
            for name, value in expected.items()
            if getattr(actual, name) != value
        }
        if mismatches:
            cls.get_logger().critical(
                "Seller balance does not reconcile",
                extra={"store_id": str(store_id), "mismatches": mismatches},
            )
            raise ReconciliationError(
                f"Balance for store {store_id} does not match its settlement records",
                details={"store_id": str(store_id), "mismatches": mismatches},
            )
        return actual
