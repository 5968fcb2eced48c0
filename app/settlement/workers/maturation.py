"""
Maturation worker: release settled funds once the hold period has passed.

Tasks:
- release_matured_funds: Periodic scan that queues matured sub-order payments
- release_single_sub_order: Releases one sub-order payment under a distributed lock

Usage:
    # Typically called via celery-beat schedule
    from settlement.workers import release_matured_funds

    release_matured_funds.delay()

    # Release one sub-order early (e.g. delivery confirmed)
    release_single_sub_order.delay(str(sub_order_id), released_by="ops@shop")
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.utils import timezone

from settlement.exceptions import LockAcquisitionError
from settlement.locks import DistributedLock
from settlement.models import SubOrderPayment
from settlement.services import SellerBalanceService
from settlement.state_machines import SubOrderPayoutStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum sub-order payments to queue per scan
BATCH_SIZE = 100

# Lock TTL for release operations (seconds)
RELEASE_LOCK_TTL = 60

# Lock timeout for blocking acquisition (seconds)
RELEASE_LOCK_TIMEOUT = 10.0


# =============================================================================
# Periodic Task: Scan for Matured Funds
# =============================================================================


@shared_task(bind=True)
def release_matured_funds(self) -> dict:
    """
    Queue a release for every pending sub-order payment past its hold period.

    Oldest first, at most BATCH_SIZE per run. Idempotent: releasing a row
    that is no longer pending is a no-op.

    Returns:
        Dict with queued_count
    """
    logger.info("Starting matured funds scan")

    matured = (
        SubOrderPayment.objects.filter(
            payout_status=SubOrderPayoutStatus.PENDING_SETTLEMENT,
            available_at__lte=timezone.now(),
        )
        .order_by("available_at", "id")
        .values_list("sub_order_id", flat=True)[:BATCH_SIZE]
    )

    queued_count = 0
    for sub_order_id in matured:
        release_single_sub_order.delay(str(sub_order_id), released_by="maturation")
        queued_count += 1

    logger.info(
        f"Matured funds scan complete: queued {queued_count} sub-orders",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


# =============================================================================
# Individual Release Task
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def release_single_sub_order(self, sub_order_id: str, released_by: str = "maturation") -> dict:
    """
    Release one sub-order payment from pending to available.

    Returns:
        Dict with status: one of "released", "already_released",
        "not_found", "lock_failed"

    Raises:
        Exception: Re-raised to trigger Celery retry for unexpected failures
    """
    try:
        sub_order_uuid = UUID(str(sub_order_id))
    except ValueError:
        logger.error(f"Invalid sub_order_id format: {sub_order_id}")
        return {"status": "not_found", "sub_order_id": sub_order_id, "error": "Invalid UUID format"}

    payment = SubOrderPayment.objects.filter(sub_order_id=sub_order_uuid).first()
    if payment is None:
        logger.warning("SubOrderPayment not found", extra={"sub_order_id": sub_order_id})
        return {"status": "not_found", "sub_order_id": sub_order_id}

    if payment.payout_status != SubOrderPayoutStatus.PENDING_SETTLEMENT:
        return {"status": "already_released", "sub_order_id": sub_order_id}

    lock_key = f"settlement:release:{sub_order_uuid}"
    try:
        with DistributedLock(
            lock_key, ttl=RELEASE_LOCK_TTL, blocking=True, timeout=RELEASE_LOCK_TIMEOUT
        ):
            result = SellerBalanceService.release_sub_order_payment(
                sub_order_uuid, released_by=released_by
            )
    except LockAcquisitionError as e:
        logger.warning(
            f"Could not acquire lock for release: {e}",
            extra={"sub_order_id": sub_order_id, "lock_key": lock_key},
        )
        return {"status": "lock_failed", "sub_order_id": sub_order_id, "error": str(e)}

    if result.already_processed:
        return {"status": "already_released", "sub_order_id": sub_order_id}

    return {
        "status": "released",
        "sub_order_id": sub_order_id,
        "store_id": str(result.data.store_id),
        "amount": str(result.data.outstanding_amount),
    }


__all__ = [
    "release_matured_funds",
    "release_single_sub_order",
]
