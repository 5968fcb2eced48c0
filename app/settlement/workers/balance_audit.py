"""
Balance audit worker.

Recomputes every seller balance from its settlement rows and payouts and
reports the stores that don't reconcile. Mismatches are logged at
CRITICAL by SellerBalanceService.verify_balance; nothing is corrected
automatically.
"""

from __future__ import annotations

import logging

from celery import shared_task

from settlement.exceptions import ReconciliationError
from settlement.models import SellerBalance
from settlement.services import SellerBalanceService

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def verify_seller_balances(self) -> dict:
    """
    Verify all seller balances.

    Returns:
        Dict with checked count and the mismatched store ids
    """
    mismatched = []
    checked = 0
    for store_id in SellerBalance.objects.order_by("store_id").values_list("store_id", flat=True):
        checked += 1
        try:
            SellerBalanceService.verify_balance(store_id)
        except ReconciliationError:
            mismatched.append(str(store_id))

    level = logging.ERROR if mismatched else logging.INFO
    logger.log(
        level,
        f"Balance audit complete: {len(mismatched)} of {checked} stores mismatched",
        extra={"checked": checked, "mismatched": mismatched},
    )
    return {"checked": checked, "mismatched": mismatched}


__all__ = ["verify_seller_balances"]
