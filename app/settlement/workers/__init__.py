"""
Workers for background settlement processing.

- Maturation: moves matured funds from pending to available
- TransactionPoller: settles checkouts whose webhook never arrived
- BalanceAudit: checks every seller balance against its settlement rows

Usage:
    from settlement.workers import release_matured_funds, verify_seller_balances

    release_matured_funds.delay()
    verify_seller_balances.delay()
"""

from settlement.workers.balance_audit import verify_seller_balances
from settlement.workers.maturation import release_matured_funds, release_single_sub_order
from settlement.workers.transaction_poller import poll_pending_transactions

__all__ = [
    "poll_pending_transactions",
    "release_matured_funds",
    "release_single_sub_order",
    "verify_seller_balances",
]
