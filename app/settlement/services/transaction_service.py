"""
Payment transaction ledger.

Owns the lifecycle of a buyer charge: opening a checkout session at the
gateway, confirming it from a webhook or by polling, cancelling it, and
refunding it.

Gateway calls never happen inside a database transaction. Operations
that need both follow the same phases:

    Phase 1 (atomic): validate and record intent, reserve ledger changes
    Phase 2 (no transaction): call the gateway, retrying transient errors
    Phase 3 (atomic): record the gateway's answer

Usage:
    from settlement.services import PaymentTransactionService, SubOrderInput

    opened = PaymentTransactionService.open_transaction(
        order_id=order.id,
        amount=Decimal("110.00"),
        currency="USD",
        customer_email="buyer@example.com",
        success_url="https://shop.example.com/success",
        cancel_url="https://shop.example.com/cancel",
        sub_orders=[SubOrderInput(sub_order.id, store.id, Decimal("100.00"), Decimal("10.00"))],
    )
    redirect(opened.checkout_url)

    # Later, from the webhook view
    PaymentTransactionService.handle_webhook(request.body, request.headers["Stripe-Signature"])
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, ClassVar

from core.services import BaseService, ServiceResult

from settlement.commission import CommissionConfigService, ProcessingFeePolicy
from settlement.exceptions import (
    GatewayError,
    InvalidStateTransitionError,
    RefundExceedsBalance,
    SettlementNotFoundError,
    SettlementValidationError,
    WebhookVerificationError,
)
from settlement.gateways import (
    CreateSessionRequest,
    GatewaySessionStatus,
    IdempotencyKeyGenerator,
    PaymentGateway,
    call_with_retry,
    get_gateway,
)
from settlement.models import PaymentTransaction, SubOrderPayment, TransactionRefund
from settlement.money import ZERO, round_money, to_decimal
from settlement.services.balance_service import SellerBalanceService, validate_positive_amount
from settlement.services.settlement_service import SettlementService
from settlement.signals import (
    emit_on_commit,
    payment_confirmed,
    payment_failed,
    payment_status_changed,
)
from settlement.state_machines import (
    PaymentTransactionStatus,
    RefundStatus,
    SubOrderPayoutStatus,
)
from settlement.state_machines.transitions import apply_transition

if TYPE_CHECKING:
    from collections.abc import Sequence


# =============================================================================
# Input & Result Types
# =============================================================================


@dataclass(frozen=True)
class SubOrderInput:
    """
    One seller's part of an order, as handed over by the Order module.

    Attributes:
        sub_order_id: SubOrder id (settled at most once)
        store_id: Seller store
        product_total: Product value, the commission base
        shipping_cost: Shipping charged, passed through to the seller
        category_id: Category used for commission overrides
    """

    sub_order_id: uuid.UUID
    store_id: uuid.UUID
    product_total: Decimal
    shipping_cost: Decimal
    category_id: uuid.UUID | None = None

    def __post_init__(self) -> None:
        for name in ("product_total", "shipping_cost"):
            value = to_decimal(getattr(self, name), name)
            if value < 0 or round_money(value) != value:
                raise SettlementValidationError(
                    f"{name} must be a non-negative amount in cents",
                    details={name: str(value), "sub_order_id": str(self.sub_order_id)},
                )
            object.__setattr__(self, name, value)

    @property
    def total(self) -> Decimal:
        return self.product_total + self.shipping_cost

    def to_dict(self) -> dict[str, str | None]:
        return {
            "sub_order_id": str(self.sub_order_id),
            "store_id": str(self.store_id),
            "category_id": str(self.category_id) if self.category_id else None,
            "product_total": str(self.product_total),
            "shipping_cost": str(self.shipping_cost),
        }


@dataclass(frozen=True)
class OpenTransactionResult:
    """Where to send the buyer for a newly opened transaction."""

    transaction_id: uuid.UUID
    session_id: str
    checkout_url: str


# =============================================================================
# Payment Transaction Service
# =============================================================================


class PaymentTransactionService(BaseService):
    """
    Lifecycle of buyer charges and their refunds.

    The gateway is resolved through get_gateway() unless one was injected
    with set_gateway() (tests inject the mock gateway this way).
    """

    _gateway: ClassVar[PaymentGateway | None] = None

    @classmethod
    def get_gateway(cls) -> PaymentGateway:
        if cls._gateway is not None:
            return cls._gateway
        return get_gateway()

    @classmethod
    def set_gateway(cls, gateway: PaymentGateway | None) -> None:
        """Inject a gateway (pass None to go back to the configured one)."""
        cls._gateway = gateway

    @classmethod
    def _get_by_session(cls, session_id: str, lock: bool = False) -> PaymentTransaction:
        queryset = PaymentTransaction.objects.all()
        if lock:
            queryset = queryset.select_for_update()
        txn = queryset.filter(gateway_session_id=session_id).first()
        if txn is None:
            raise SettlementNotFoundError(
                f"No transaction for session {session_id}",
                details={"session_id": session_id},
            )
        return txn

    # =========================================================================
    # Open
    # =========================================================================

    @classmethod
    def open_transaction(
        cls,
        order_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        sub_orders: Sequence[SubOrderInput],
        payment_method: str = "card",
    ) -> OpenTransactionResult:
        """
        Open a checkout session for an order and record it as Pending.

        The gateway is called first; the Pending row is stored only once the
        session exists, so a gateway failure leaves nothing behind.

        Raises:
            SettlementValidationError: Bad amount, or sub-orders that don't add up
            GatewayError: Session creation failed (after retries for transient errors)
        """
        amount = validate_positive_amount(amount)
        if not sub_orders:
            raise SettlementValidationError(
                "A transaction needs at least one sub-order",
                details={"order_id": str(order_id)},
            )

        sub_order_ids = [s.sub_order_id for s in sub_orders]
        if len(set(sub_order_ids)) != len(sub_order_ids):
            raise SettlementValidationError(
                "Sub-order ids must be unique",
                details={"order_id": str(order_id)},
            )

        sub_order_sum = sum((s.total for s in sub_orders), ZERO)
        if sub_order_sum != amount:
            raise SettlementValidationError(
                f"Sub-order totals ({sub_order_sum}) do not match transaction amount ({amount})",
                details={
                    "order_id": str(order_id),
                    "amount": str(amount),
                    "sub_order_sum": str(sub_order_sum),
                },
            )

        previous = PaymentTransaction.objects.filter(order_id=order_id)
        if previous.filter(
            status__in=[PaymentTransactionStatus.COMPLETED, PaymentTransactionStatus.REFUNDED]
        ).exists():
            raise SettlementValidationError(
                f"Order {order_id} has already been paid",
                details={"order_id": str(order_id)},
            )

        idempotency_key = IdempotencyKeyGenerator.generate(
            "create_session", order_id, attempt=previous.count() + 1
        )
        request = CreateSessionRequest(
            order_id=order_id,
            amount=amount,
            currency=currency.upper(),
            customer_email=customer_email,
            success_url=success_url,
            cancel_url=cancel_url,
            idempotency_key=idempotency_key,
            metadata={"order_id": str(order_id)},
        )

        gateway = cls.get_gateway()
        session = call_with_retry(
            lambda: gateway.create_session(request),
            operation="create_session",
        )

        txn = PaymentTransaction.objects.create(
            order_id=order_id,
            amount=amount,
            currency=currency.upper(),
            payment_method=payment_method,
            customer_email=customer_email,
            gateway_session_id=session.session_id,
            sub_orders=[s.to_dict() for s in sub_orders],
        )

        cls.get_logger().info(
            "Transaction opened",
            extra={
                "transaction_id": str(txn.id),
                "order_id": str(order_id),
                "session_id": session.session_id,
                "amount": str(amount),
                "sub_order_count": len(sub_orders),
            },
        )
        return OpenTransactionResult(
            transaction_id=txn.id,
            session_id=session.session_id,
            checkout_url=session.checkout_url,
        )

    # =========================================================================
    # Confirm
    # =========================================================================

    @classmethod
    def confirm_transaction(
        cls,
        session_id: str,
        gateway_status: GatewaySessionStatus | str,
        gateway_transaction_id: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
        payment_method: str | None = None,
    ) -> ServiceResult[PaymentTransaction]:
        """
        Apply the gateway's verdict on a checkout session.

        Safe to call any number of times for the same session: once the
        transaction has left Pending, further calls return it flagged
        already_processed and change nothing.

        On success the transaction completes, the settlement fan-out runs
        and sellers are credited, all in one atomic block.

        Raises:
            SettlementNotFoundError: Unknown session id
        """
        status = GatewaySessionStatus(gateway_status)

        # Read configuration before taking any row lock
        snapshot = CommissionConfigService.get_snapshot()
        fee_policy = ProcessingFeePolicy.from_settings()

        with cls.atomic():
            txn = cls._get_by_session(session_id, lock=True)

            if txn.is_terminal:
                cls.get_logger().info(
                    "Confirmation for settled transaction ignored",
                    extra={
                        "transaction_id": str(txn.id),
                        "status": txn.status,
                        "gateway_status": status.value,
                    },
                )
                return ServiceResult.success(txn, already_processed=True)

            if status == GatewaySessionStatus.PENDING:
                return ServiceResult.success(txn)

            if status == GatewaySessionStatus.SUCCEEDED:
                apply_transition(
                    txn,
                    "complete",
                    gateway_transaction_id=gateway_transaction_id,
                    processing_fee=fee_policy.fee_for(txn.amount),
                )
                if payment_method:
                    txn.payment_method = payment_method
                txn.save()
                SettlementService.settle_transaction(txn, snapshot, fee_policy)
                emit_on_commit(
                    payment_confirmed,
                    sender=PaymentTransaction,
                    order_id=txn.order_id,
                    transaction_id=txn.id,
                )
            elif status == GatewaySessionStatus.FAILED:
                apply_transition(
                    txn,
                    "fail",
                    error_code=error_code or "payment_failed",
                    error_message=error_message,
                )
                txn.save()
                emit_on_commit(
                    payment_failed,
                    sender=PaymentTransaction,
                    order_id=txn.order_id,
                    transaction_id=txn.id,
                    reason=error_message or error_code or "payment_failed",
                )
            else:
                apply_transition(txn, "cancel")
                txn.save()

            emit_on_commit(
                payment_status_changed,
                sender=PaymentTransaction,
                order_id=txn.order_id,
                transaction_id=txn.id,
                status=txn.status,
            )

        cls.get_logger().info(
            "Transaction confirmed",
            extra={
                "transaction_id": str(txn.id),
                "order_id": str(txn.order_id),
                "status": txn.status,
                "gateway_transaction_id": gateway_transaction_id,
                "processing_fee": str(txn.processing_fee),
            },
        )
        return ServiceResult.success(txn)

    @classmethod
    def handle_webhook(cls, payload: bytes, signature: str) -> ServiceResult[PaymentTransaction | None]:
        """
        Verify and apply a gateway webhook.

        Events that don't settle a checkout session are acknowledged
        without effect (data is None).

        Raises:
            WebhookVerificationError: Missing or invalid signature, or malformed payload
        """
        gateway = cls.get_gateway()
        if not signature or not gateway.validate_webhook_signature(
            payload, signature, gateway.webhook_secret
        ):
            cls.get_logger().warning(
                "Webhook signature verification failed",
                extra={"payload_size": len(payload or b"")},
            )
            raise WebhookVerificationError("Invalid webhook signature")

        event = gateway.parse_webhook_event(payload)
        if not event.is_actionable:
            cls.get_logger().debug(
                "Webhook event ignored",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return ServiceResult.success(None)

        cls.get_logger().info(
            "Webhook event received",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "session_id": event.session_id,
            },
        )
        return cls.confirm_transaction(
            event.session_id,
            event.status,
            gateway_transaction_id=event.transaction_id,
            error_code=event.error_code,
            error_message=event.error_message,
        )

    @classmethod
    def sync_transaction_status(cls, session_id: str) -> ServiceResult[PaymentTransaction]:
        """
        Poll the gateway for a session and confirm whatever it reports.

        A permanent gateway error (e.g. the session no longer exists) fails
        the transaction. Transient errors are raised once retries run out,
        leaving the transaction Pending for the next poll.
        """
        txn = cls._get_by_session(session_id)
        if txn.is_terminal:
            return ServiceResult.success(txn, already_processed=True)

        gateway = cls.get_gateway()
        try:
            status = call_with_retry(
                lambda: gateway.get_status(session_id),
                operation="get_status",
            )
        except GatewayError as e:
            if e.is_retryable:
                raise
            cls.get_logger().warning(
                "Permanent gateway error while syncing transaction, failing it",
                extra={"transaction_id": str(txn.id), "error_code": e.error_code},
            )
            return cls.confirm_transaction(
                session_id,
                GatewaySessionStatus.FAILED,
                error_code=e.error_code,
                error_message=e.message,
            )

        return cls.confirm_transaction(
            session_id,
            status.status,
            gateway_transaction_id=status.transaction_id,
            error_code=status.error_code,
            error_message=status.error_message,
            payment_method=status.payment_method,
        )

    # =========================================================================
    # Cancel
    # =========================================================================

    @classmethod
    def cancel_transaction(cls, session_id: str) -> ServiceResult[PaymentTransaction]:
        """
        Cancel a checkout that has not completed.

        Raises:
            InvalidStateTransitionError: Transaction is not Pending, or the
                gateway session can no longer be cancelled
        """
        txn = cls._get_by_session(session_id)
        if txn.status != PaymentTransactionStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Cannot cancel transaction in '{txn.status}' state",
                details={"transaction_id": str(txn.id), "current_state": txn.status},
            )

        gateway = cls.get_gateway()
        cancelled = call_with_retry(
            lambda: gateway.cancel_session(session_id),
            operation="cancel_session",
        )
        if not cancelled:
            raise InvalidStateTransitionError(
                f"Gateway session {session_id} can no longer be cancelled",
                details={"transaction_id": str(txn.id), "session_id": session_id},
            )

        with cls.atomic():
            txn = cls._get_by_session(session_id, lock=True)
            apply_transition(txn, "cancel")
            txn.save()
            emit_on_commit(
                payment_status_changed,
                sender=PaymentTransaction,
                order_id=txn.order_id,
                transaction_id=txn.id,
                status=txn.status,
            )

        cls.get_logger().info(
            "Transaction cancelled",
            extra={"transaction_id": str(txn.id), "order_id": str(txn.order_id)},
        )
        return ServiceResult.success(txn)

    # =========================================================================
    # Refund
    # =========================================================================

    @classmethod
    def refund_transaction(
        cls,
        transaction_id: uuid.UUID,
        amount: Decimal,
        reason: str = "",
        requested_by: str | None = None,
    ) -> ServiceResult[TransactionRefund]:
        """
        Refund part or all of a completed transaction.

        Phase 1 (atomic): reverse seller credits proportionally to each
            sub-order's net, refusing if any share has already left the ledger
        Phase 2 (no transaction): ask the gateway to refund
        Phase 3 (atomic): record the refund on the transaction

        Returns:
            Success with the completed refund, or failure when the gateway
            refused permanently (seller credits have been restored)

        Raises:
            SettlementValidationError: Bad amount or more than the refundable amount
            InvalidStateTransitionError: Transaction not Completed, or a refund
                already in flight
            RefundExceedsBalance: A seller share is already in a payout; nothing changed
            GatewayError: Transient gateway failure after retries; the refund
                stays Requested and can be resumed with retry_refund()
        """
        amount = validate_positive_amount(amount)

        # Phase 1
        with cls.atomic():
            txn = PaymentTransaction.objects.select_for_update().filter(id=transaction_id).first()
            if txn is None:
                raise SettlementNotFoundError(
                    f"Transaction {transaction_id} not found",
                    details={"transaction_id": str(transaction_id)},
                )
            if txn.status != PaymentTransactionStatus.COMPLETED:
                raise InvalidStateTransitionError(
                    f"Cannot refund transaction in '{txn.status}' state",
                    details={"transaction_id": str(txn.id), "current_state": txn.status},
                )
            if txn.refunds.filter(status=RefundStatus.REQUESTED).exists():
                raise InvalidStateTransitionError(
                    "A refund for this transaction is already in progress",
                    details={"transaction_id": str(txn.id)},
                )
            if amount > txn.refundable_amount:
                raise SettlementValidationError(
                    f"Refund of {amount} exceeds refundable amount {txn.refundable_amount}",
                    details={
                        "transaction_id": str(txn.id),
                        "amount": str(amount),
                        "refundable_amount": str(txn.refundable_amount),
                    },
                )

            is_full_refund = amount == txn.refundable_amount
            store_ids = txn.sub_order_payments.values_list("store_id", flat=True)
            SellerBalanceService.lock_balances(store_ids, create=True)
            payments = list(
                SubOrderPayment.objects.select_for_update()
                .filter(payment_transaction=txn)
                .order_by("created_at", "id")
            )

            shares = cls._reversal_shares(txn, payments, amount, is_full_refund)
            committed = [
                p for p, share in shares
                if p.payout_status in (SubOrderPayoutStatus.INCLUDED, SubOrderPayoutStatus.PAID_OUT)
            ]
            if committed:
                cls.get_logger().warning(
                    "Refund refused: seller funds already committed to a payout",
                    extra={
                        "transaction_id": str(txn.id),
                        "sub_order_ids": [str(p.sub_order_id) for p in committed],
                    },
                )
                raise RefundExceedsBalance(
                    "Seller funds for this transaction are already in a payout",
                    details={
                        "transaction_id": str(txn.id),
                        "sub_order_ids": [str(p.sub_order_id) for p in committed],
                    },
                )

            refund = TransactionRefund.objects.create(
                payment_transaction=txn,
                amount=amount,
                reason=reason or "",
                is_full_refund=is_full_refund,
            )

            reversals = []
            for payment, share in shares:
                from_pending = payment.payout_status == SubOrderPayoutStatus.PENDING_SETTLEMENT
                SellerBalanceService.reverse_credit(
                    payment.store_id,
                    share,
                    from_pending=from_pending,
                    idempotency_key=f"refund_reversal:{refund.id}:{payment.id}",
                    reference_id=refund.id,
                    created_by=requested_by,
                )
                payment.reversed_amount += share
                payment.save(update_fields=["reversed_amount", "updated_at"])
                reversals.append(
                    {
                        "sub_order_payment_id": str(payment.id),
                        "store_id": str(payment.store_id),
                        "amount": str(share),
                        "from_pending": from_pending,
                    }
                )

            refund.reversals = reversals
            refund.save(update_fields=["reversals", "updated_at"])

        cls.get_logger().info(
            "Refund requested",
            extra={
                "refund_id": str(refund.id),
                "transaction_id": str(txn.id),
                "amount": str(amount),
                "is_full_refund": is_full_refund,
                "requested_by": requested_by,
            },
        )

        return cls._submit_refund(refund.id)

    @classmethod
    def retry_refund(cls, refund_id: uuid.UUID) -> ServiceResult[TransactionRefund]:
        """
        Resume a refund left Requested by a transient gateway failure.

        Uses the same gateway idempotency key as the first attempt, so a
        refund the gateway did accept is not issued twice.
        """
        refund = TransactionRefund.objects.filter(id=refund_id).first()
        if refund is None:
            raise SettlementNotFoundError(
                f"Refund {refund_id} not found",
                details={"refund_id": str(refund_id)},
            )
        if refund.status != RefundStatus.REQUESTED:
            return ServiceResult.success(refund, already_processed=True)
        return cls._submit_refund(refund.id)

    @classmethod
    def _reversal_shares(
        cls,
        txn: PaymentTransaction,
        payments: list[SubOrderPayment],
        amount: Decimal,
        is_full_refund: bool,
    ) -> list[tuple[SubOrderPayment, Decimal]]:
        """Seller net to take back from each sub-order for a refund of ``amount``."""
        shares = []
        for payment in payments:
            outstanding = payment.outstanding_amount
            if is_full_refund:
                share = outstanding
            else:
                share = min(round_money(payment.seller_net_amount * amount / txn.amount), outstanding)
            if share > 0:
                shares.append((payment, share))
        return shares

    @classmethod
    def _submit_refund(cls, refund_id: uuid.UUID) -> ServiceResult[TransactionRefund]:
        refund = TransactionRefund.objects.select_related("payment_transaction").get(id=refund_id)
        txn = refund.payment_transaction
        idempotency_key = IdempotencyKeyGenerator.generate("refund", refund.id)

        # Phase 2
        gateway = cls.get_gateway()
        try:
            response = call_with_retry(
                lambda: gateway.refund(
                    txn.gateway_transaction_id,
                    refund.amount,
                    reason=refund.reason or None,
                    idempotency_key=idempotency_key,
                ),
                operation="refund",
            )
        except GatewayError as e:
            if e.is_retryable:
                cls.get_logger().error(
                    "Refund left pending after transient gateway errors",
                    extra={
                        "refund_id": str(refund.id),
                        "transaction_id": str(txn.id),
                        "error_code": e.error_code,
                    },
                )
                raise
            cls._compensate_failed_refund(refund.id, e.message)
            return ServiceResult.failure(e.message, error_code=e.error_code)

        # Phase 3
        with cls.atomic():
            txn = PaymentTransaction.objects.select_for_update().get(id=txn.id)
            refund = TransactionRefund.objects.select_for_update().get(id=refund_id)
            if refund.status != RefundStatus.REQUESTED:
                return ServiceResult.success(refund, already_processed=True)

            refund.complete(gateway_refund_id=response.refund_id)
            refund.save()

            txn.refunded_amount += refund.amount
            if txn.refunded_amount >= txn.amount:
                txn.mark_refunded()
            else:
                txn.set_meta(
                    "partial_refund_note",
                    f"Partially refunded {txn.refunded_amount} of {txn.amount}",
                    save=False,
                )
            txn.save()

            emit_on_commit(
                payment_status_changed,
                sender=PaymentTransaction,
                order_id=txn.order_id,
                transaction_id=txn.id,
                status=txn.status,
            )

        cls.get_logger().info(
            "Refund completed",
            extra={
                "refund_id": str(refund.id),
                "transaction_id": str(txn.id),
                "amount": str(refund.amount),
                "gateway_refund_id": response.refund_id,
                "transaction_status": txn.status,
            },
        )
        return ServiceResult.success(refund)

    @classmethod
    def _compensate_failed_refund(cls, refund_id: uuid.UUID, error_message: str) -> None:
        """
        Undo the seller reversals of a refund the gateway rejected.

        Each reversal is restored to the bucket its sub-order is in now;
        payout selection skips sub-orders with a refund in flight, so that
        bucket is pending or available.
        """
        with cls.atomic():
            refund = TransactionRefund.objects.select_for_update().get(id=refund_id)
            if refund.status != RefundStatus.REQUESTED:
                return

            store_ids = [uuid.UUID(r["store_id"]) for r in refund.reversals]
            SellerBalanceService.lock_balances(store_ids)

            for reversal in refund.reversals:
                payment = SubOrderPayment.objects.select_for_update().get(
                    id=reversal["sub_order_payment_id"]
                )
                amount = Decimal(reversal["amount"])
                SellerBalanceService.restore_reversal(
                    payment.store_id,
                    amount,
                    to_pending=payment.payout_status == SubOrderPayoutStatus.PENDING_SETTLEMENT,
                    idempotency_key=f"refund_restore:{refund.id}:{payment.id}",
                    reference_id=refund.id,
                )
                payment.reversed_amount -= amount
                payment.save(update_fields=["reversed_amount", "updated_at"])

            refund.fail(error_message=error_message)
            refund.save()

        cls.get_logger().warning(
            "Refund rejected by gateway, seller credits restored",
            extra={
                "refund_id": str(refund_id),
                "transaction_id": str(refund.payment_transaction_id),
                "error_message": error_message,
            },
        )
