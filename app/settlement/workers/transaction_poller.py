"""
Transaction poller: settle checkouts whose webhook never arrived.

Pending transactions older than SETTLEMENT_PENDING_POLL_AGE_MINUTES are
synced against the gateway. Each sync runs under a non-blocking
distributed lock so overlapping runs skip sessions already being polled.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from settlement.exceptions import GatewayError, LockAcquisitionError
from settlement.locks import DistributedLock
from settlement.models import PaymentTransaction
from settlement.services import PaymentTransactionService
from settlement.state_machines import PaymentTransactionStatus

logger = logging.getLogger(__name__)

BATCH_SIZE = 100

POLL_LOCK_TTL = 60


@shared_task(bind=True)
def poll_pending_transactions(self) -> dict:
    """
    Sync stale Pending transactions with the gateway.

    Returns:
        Dict with checked, settled, still_pending, skipped and errors counts
    """
    cutoff = timezone.now() - timedelta(minutes=settings.SETTLEMENT_PENDING_POLL_AGE_MINUTES)
    session_ids = list(
        PaymentTransaction.objects.filter(
            status=PaymentTransactionStatus.PENDING,
            created_at__lt=cutoff,
        )
        .order_by("created_at")
        .values_list("gateway_session_id", flat=True)[:BATCH_SIZE]
    )

    stats = {"checked": 0, "settled": 0, "still_pending": 0, "skipped": 0, "errors": 0}
    for session_id in session_ids:
        try:
            with DistributedLock(f"settlement:poll:{session_id}", ttl=POLL_LOCK_TTL, blocking=False):
                result = PaymentTransactionService.sync_transaction_status(session_id)
        except LockAcquisitionError:
            stats["skipped"] += 1
            continue
        except GatewayError as e:
            stats["errors"] += 1
            logger.warning(
                "Gateway unavailable while polling transaction",
                extra={"session_id": session_id, "error_code": e.error_code},
            )
            continue

        stats["checked"] += 1
        if result.data.status == PaymentTransactionStatus.PENDING:
            stats["still_pending"] += 1
        else:
            stats["settled"] += 1

    logger.info("Pending transaction poll complete", extra=stats)
    return stats


__all__ = ["poll_pending_transactions"]
