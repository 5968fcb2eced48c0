"""
Settlement fan-out for completed charges.

When a PaymentTransaction completes, its processing fee is split across the
sub-orders it paid for, each sub-order gets one SubOrderPayment row with
its commission breakdown, and every seller's net is credited to their
pending balance. All of it runs inside the confirmation's atomic block, so
a failure anywhere leaves the transaction Pending and the ledger untouched.

Usage:
    with transaction.atomic():
        txn.complete(gateway_transaction_id, fee)
        txn.save()
        SettlementService.settle_transaction(txn, snapshot, fee_policy)
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings

from core.services import BaseService

from settlement.commission import calculate_commission, resolve_commission_rate
from settlement.exceptions import ReconciliationError
from settlement.models import SubOrderPayment
from settlement.money import allocate_proportionally, to_decimal
from settlement.services.balance_service import SellerBalanceService

if TYPE_CHECKING:
    from settlement.commission import CommissionConfigSnapshot, ProcessingFeePolicy
    from settlement.models import PaymentTransaction


class SettlementService(BaseService):
    """Creates SubOrderPayments and seller credits for a completed charge."""

    @classmethod
    def settle_transaction(
        cls,
        txn: PaymentTransaction,
        snapshot: CommissionConfigSnapshot,
        fee_policy: ProcessingFeePolicy,
    ) -> list[SubOrderPayment]:
        """
        Fan a completed transaction out into per-seller settlement rows.

        Must be called inside the atomic block that completed ``txn``.
        Re-running it for the same transaction reuses the existing rows and
        the balance journal's idempotency keys, so nothing is credited twice.

        Args:
            txn: Transaction that has just moved to COMPLETED
            snapshot: Commission rates captured for this request
            fee_policy: Policy used when a sub-order has no allocated fee

        Returns:
            The SubOrderPayment rows, in snapshot order

        Raises:
            ReconciliationError: If a sub-order is already settled by another charge
        """
        entries = txn.sub_orders
        totals = [
            to_decimal(entry["product_total"]) + to_decimal(entry["shipping_cost"])
            for entry in entries
        ]
        fee_shares = allocate_proportionally(txn.processing_fee, totals)
        available_at = txn.completed_at + timedelta(days=settings.SETTLEMENT_HOLD_PERIOD_DAYS)

        # Lock order: transaction (held by caller) -> balances -> sub-order rows
        SellerBalanceService.lock_balances(
            (uuid.UUID(str(entry["store_id"])) for entry in entries),
            create=True,
        )

        payments = []
        for entry, fee_share in zip(entries, fee_shares):
            sub_order_id = uuid.UUID(str(entry["sub_order_id"]))
            existing = SubOrderPayment.objects.filter(sub_order_id=sub_order_id).first()
            if existing is not None:
                if existing.payment_transaction_id != txn.id:
                    cls.get_logger().critical(
                        "Sub-order already settled by another transaction",
                        extra={
                            "sub_order_id": str(sub_order_id),
                            "transaction_id": str(txn.id),
                            "settled_by": str(existing.payment_transaction_id),
                        },
                    )
                    raise ReconciliationError(
                        f"Sub-order {sub_order_id} is already settled",
                        details={"sub_order_id": str(sub_order_id)},
                    )
                payments.append(existing)
                continue

            payments.append(
                cls._create_sub_order_payment(
                    txn, entry, sub_order_id, fee_share, snapshot, fee_policy, available_at
                )
            )

        for payment in payments:
            if payment.seller_net_amount > 0:
                SellerBalanceService.credit_pending(
                    payment.store_id,
                    payment.seller_net_amount,
                    currency=payment.currency,
                    idempotency_key=f"credit_pending:{payment.id}",
                    reference_type="sub_order_payment",
                    reference_id=payment.id,
                    description=f"Sale settled for sub-order {payment.sub_order_id}",
                )

        cls.get_logger().info(
            "Transaction settled",
            extra={
                "transaction_id": str(txn.id),
                "order_id": str(txn.order_id),
                "sub_order_count": len(payments),
                "processing_fee": str(txn.processing_fee),
            },
        )
        return payments

    @classmethod
    def _create_sub_order_payment(
        cls,
        txn: PaymentTransaction,
        entry: dict,
        sub_order_id: uuid.UUID,
        fee_share: Decimal,
        snapshot: CommissionConfigSnapshot,
        fee_policy: ProcessingFeePolicy,
        available_at,
    ) -> SubOrderPayment:
        store_id = uuid.UUID(str(entry["store_id"]))
        category_id = uuid.UUID(str(entry["category_id"])) if entry.get("category_id") else None
        rate = resolve_commission_rate(snapshot, store_id, category_id)

        calc = calculate_commission(
            product_total=to_decimal(entry["product_total"]),
            shipping_cost=to_decimal(entry["shipping_cost"]),
            commission_rate=rate,
            fee_policy=fee_policy,
            processing_fee=fee_share,
        )
        if calc.is_clamped:
            cls.get_logger().warning(
                "Processing fee absorbed by platform",
                extra={
                    "sub_order_id": str(sub_order_id),
                    "store_id": str(store_id),
                    "absorbed_fee": str(calc.absorbed_fee),
                },
            )

        return SubOrderPayment.objects.create(
            sub_order_id=sub_order_id,
            payment_transaction=txn,
            store_id=store_id,
            category_id=category_id,
            product_total=calc.product_total,
            shipping_cost=calc.shipping_cost,
            sub_order_total=calc.total,
            commission_rate=calc.commission_rate,
            commission_amount=calc.commission_amount,
            processing_fee_allocated=calc.processing_fee,
            seller_net_amount=calc.seller_net_amount,
            is_fee_clamped=calc.is_clamped,
            absorbed_fee=calc.absorbed_fee,
            currency=txn.currency,
            settled_at=txn.completed_at,
            available_at=available_at,
        )
