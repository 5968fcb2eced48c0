"""
Celery tasks for settlement.

The tasks are defined in settlement.workers and re-exported here so Celery
autodiscover finds them.

Usage:
    from settlement.tasks import release_matured_funds

    release_matured_funds.delay()
"""

from settlement.workers import (  # noqa: F401
    poll_pending_transactions,
    release_matured_funds,
    release_single_sub_order,
    verify_seller_balances,
)

__all__ = [
    "poll_pending_transactions",
    "release_matured_funds",
    "release_single_sub_order",
    "verify_seller_balances",
]
