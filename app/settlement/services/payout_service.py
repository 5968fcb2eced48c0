"""
Payout engine.

Turns a seller's available balance into a payout made of whole
sub-order payments:

1. create_payout(): lock the balance, pick Available rows first-fit in
   (created_at, id) order, debit the balance and mark the rows Included
2. start_processing(): SCHEDULED -> PROCESSING when handed to the bank
3. complete_payout(): rows become PaidOut, payout_processed is emitted
4. fail_payout(): balance restored and rows back to Available, atomically

A failed payout is terminal; the funds are payable again through a new one.

Usage:
    from settlement.services import PayoutService

    payout = PayoutService.create_payout(store_id, Decimal("80.00"), requested_by="admin@shop")
    PayoutService.start_processing(payout.id)
    PayoutService.complete_payout(payout.id, external_transaction_id="tr_123")
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from core.services import BaseService, ServiceResult

from settlement.exceptions import (
    InsufficientAvailableBalance,
    SettlementNotFoundError,
    SettlementValidationError,
)
from settlement.locks import check_version
from settlement.models import Payout, SellerBalance, SubOrderPayment
from settlement.money import ZERO
from settlement.services.balance_service import SellerBalanceService, validate_positive_amount
from settlement.signals import emit_on_commit, payout_processed
from settlement.state_machines import (
    PayoutMethod,
    PayoutStatus,
    RefundStatus,
    SubOrderPayoutStatus,
)
from settlement.state_machines.transitions import apply_transition

if TYPE_CHECKING:
    from collections.abc import Iterable

    from django.db.models import QuerySet


@dataclass(frozen=True)
class PayoutPreview:
    """
    Dry run of create_payout.

    Attributes:
        requested_amount: Amount asked for
        payout_amount: Amount a payout would carry (sum of selected rows)
        sub_order_ids: Sub-orders that would be included, in selection order
    """

    store_id: uuid.UUID
    requested_amount: Decimal
    available_amount: Decimal
    payout_amount: Decimal
    gross_amount: Decimal
    commission_amount: Decimal
    processing_fee_amount: Decimal
    sub_order_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def is_payable(self) -> bool:
        return self.payout_amount > 0 and self.requested_amount <= self.available_amount


def select_sub_order_payments(
    candidates: Iterable[SubOrderPayment],
    amount: Decimal,
) -> list[SubOrderPayment]:
    """
    First-fit selection: walk the candidates in order and take every row
    whose outstanding amount still fits under ``amount``.

    Rows that don't fit are skipped, later smaller rows may still be taken.
    """
    selected = []
    running = ZERO
    for payment in candidates:
        outstanding = payment.outstanding_amount
        if running + outstanding <= amount:
            selected.append(payment)
            running += outstanding
    return selected


class PayoutService(BaseService):
    """Seller payouts over available balance."""

    @classmethod
    def _payable_rows(cls, store_id: uuid.UUID) -> QuerySet[SubOrderPayment]:
        # Rows of a transaction with a refund in flight stay put until the
        # refund settles, so a rejected refund can be restored where it came from.
        return (
            SubOrderPayment.objects.filter(
                store_id=store_id,
                payout_status=SubOrderPayoutStatus.AVAILABLE,
            )
            .exclude(payment_transaction__refunds__status=RefundStatus.REQUESTED)
            .order_by("created_at", "id")
        )

    @classmethod
    def _get_payout(
        cls,
        payout_id: uuid.UUID,
        lock: bool = False,
        expected_version: int | None = None,
    ) -> Payout:
        if expected_version is not None:
            return check_version(Payout, payout_id, expected_version)
        queryset = Payout.objects.select_for_update() if lock else Payout.objects.all()
        payout = queryset.filter(id=payout_id).first()
        if payout is None:
            raise SettlementNotFoundError(
                f"Payout {payout_id} not found",
                error_code="PAYOUT_NOT_FOUND",
                details={"payout_id": str(payout_id)},
            )
        return payout

    # =========================================================================
    # Creation
    # =========================================================================

    @classmethod
    def preview_payout(cls, store_id: uuid.UUID, amount: Decimal) -> PayoutPreview:
        """Show what create_payout would select, without locking or writing."""
        amount = validate_positive_amount(amount)
        balance = SellerBalance.objects.filter(store_id=store_id).first()
        selected = select_sub_order_payments(cls._payable_rows(store_id), amount)
        return PayoutPreview(
            store_id=store_id,
            requested_amount=amount,
            available_amount=balance.available_amount if balance else ZERO,
            payout_amount=sum((p.outstanding_amount for p in selected), ZERO),
            gross_amount=sum((p.sub_order_total for p in selected), ZERO),
            commission_amount=sum((p.commission_amount for p in selected), ZERO),
            processing_fee_amount=sum((p.processing_fee_allocated for p in selected), ZERO),
            sub_order_ids=[p.sub_order_id for p in selected],
        )

    @classmethod
    def create_payout(
        cls,
        store_id: uuid.UUID,
        amount: Decimal,
        method: str = PayoutMethod.BANK_TRANSFER,
        requested_by: str | None = None,
    ) -> Payout:
        """
        Schedule a payout of up to ``amount`` from the store's available balance.

        The payout carries the sum of the selected rows, which may be less
        than ``amount`` when no combination of whole rows reaches it.

        Raises:
            SettlementValidationError: Bad amount or method, or no row fits
            InsufficientAvailableBalance: ``amount`` exceeds the available balance
        """
        amount = validate_positive_amount(amount)
        if method not in PayoutMethod.values:
            raise SettlementValidationError(
                f"Unknown payout method '{method}'",
                details={"method": method, "allowed": list(PayoutMethod.values)},
            )

        with cls.atomic():
            balance = SellerBalance.objects.select_for_update().filter(store_id=store_id).first()
            available = balance.available_amount if balance else ZERO
            if amount > available:
                raise InsufficientAvailableBalance(store_id, amount, available)

            candidates = cls._payable_rows(store_id).select_for_update()
            selected = select_sub_order_payments(candidates, amount)
            payout_amount = sum((p.outstanding_amount for p in selected), ZERO)
            if payout_amount <= 0:
                raise SettlementValidationError(
                    "No available sub-order payments fit the requested amount",
                    details={"store_id": str(store_id), "amount": str(amount)},
                )

            payout = Payout.objects.create(
                store_id=store_id,
                amount=payout_amount,
                gross_amount=sum((p.sub_order_total for p in selected), ZERO),
                commission_amount=sum((p.commission_amount for p in selected), ZERO),
                processing_fee_amount=sum((p.processing_fee_allocated for p in selected), ZERO),
                currency=balance.currency,
                payout_method=method,
                sub_order_ids=[str(p.sub_order_id) for p in selected],
                requested_by=requested_by or "",
            )

            SellerBalanceService.debit_for_payout(
                store_id,
                payout_amount,
                idempotency_key=f"payout_debit:{payout.id}",
                reference_id=payout.id,
                created_by=requested_by,
            )

            for payment in selected:
                payment.include_in(payout)
                payment.save()

        cls.get_logger().info(
            "Payout created",
            extra={
                "payout_id": str(payout.id),
                "store_id": str(store_id),
                "requested_amount": str(amount),
                "amount": str(payout_amount),
                "sub_order_count": len(selected),
                "requested_by": requested_by,
            },
        )
        return payout

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @classmethod
    def start_processing(
        cls,
        payout_id: uuid.UUID,
        expected_version: int | None = None,
    ) -> ServiceResult[Payout]:
        """
        SCHEDULED -> PROCESSING.

        Pass ``expected_version`` when acting on a payout the caller has
        displayed; a payout changed since then raises StaleRecordError.
        """
        with cls.atomic():
            payout = cls._get_payout(payout_id, lock=True, expected_version=expected_version)
            if payout.status == PayoutStatus.PROCESSING:
                return ServiceResult.success(payout, already_processed=True)
            apply_transition(payout, "start_processing")
            payout.save()

        cls.get_logger().info("Payout processing", extra={"payout_id": str(payout_id)})
        return ServiceResult.success(payout)

    @classmethod
    def complete_payout(
        cls,
        payout_id: uuid.UUID,
        external_transaction_id: str | None = None,
        expected_version: int | None = None,
    ) -> ServiceResult[Payout]:
        """
        Mark a payout completed and its sub-orders paid out.

        Completing an already completed payout returns it unchanged.

        Raises:
            InvalidStateTransitionError: Payout has failed
            StaleRecordError: ``expected_version`` no longer matches
        """
        with cls.atomic():
            payout = cls._get_payout(payout_id, lock=True, expected_version=expected_version)
            if payout.status == PayoutStatus.COMPLETED:
                return ServiceResult.success(payout, already_processed=True)

            apply_transition(payout, "complete", external_transaction_id=external_transaction_id)
            payout.save()

            rows = SubOrderPayment.objects.select_for_update().filter(payout=payout).order_by(
                "created_at", "id"
            )
            for payment in rows:
                apply_transition(payment, "mark_paid_out", field="payout_status")
                payment.save()

            emit_on_commit(
                payout_processed,
                sender=Payout,
                store_id=payout.store_id,
                payout_id=payout.id,
                amount=payout.amount,
            )

        cls.get_logger().info(
            "Payout completed",
            extra={
                "payout_id": str(payout.id),
                "store_id": str(payout.store_id),
                "amount": str(payout.amount),
                "external_transaction_id": external_transaction_id,
            },
        )
        return ServiceResult.success(payout)

    @classmethod
    def fail_payout(
        cls,
        payout_id: uuid.UUID,
        error: str,
        expected_version: int | None = None,
    ) -> ServiceResult[Payout]:
        """
        Mark a payout failed and make its funds available again.

        The status change, the balance restore and the release of the
        sub-orders happen in one atomic block.

        Raises:
            InvalidStateTransitionError: Payout has completed
            StaleRecordError: ``expected_version`` no longer matches
        """
        with cls.atomic():
            payout = cls._get_payout(payout_id, lock=True, expected_version=expected_version)
            if payout.status == PayoutStatus.FAILED:
                return ServiceResult.success(payout, already_processed=True)

            apply_transition(payout, "fail", reason=error)
            payout.save()

            SellerBalanceService.restore_available(
                payout.store_id,
                payout.amount,
                idempotency_key=f"payout_restore:{payout.id}",
                reference_id=payout.id,
            )

            rows = SubOrderPayment.objects.select_for_update().filter(payout=payout).order_by(
                "created_at", "id"
            )
            for payment in rows:
                apply_transition(payment, "revert_inclusion", field="payout_status")
                payment.save()

        cls.get_logger().warning(
            "Payout failed, funds restored",
            extra={
                "payout_id": str(payout.id),
                "store_id": str(payout.store_id),
                "amount": str(payout.amount),
                "reason": error,
            },
        )
        return ServiceResult.success(payout)
