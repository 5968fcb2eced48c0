"""
Domain events emitted by the settlement ledger.

Other modules (Order, Notifications) subscribe to these signals. They are
fire-and-forget: events are sent only after the surrounding database
transaction commits, with send_robust, so a failing receiver is logged and
never rolls back money movement.

Signals:
    payment_confirmed(order_id, transaction_id)
    payment_failed(order_id, transaction_id, reason)
    payment_status_changed(order_id, transaction_id, status)
    payout_processed(store_id, payout_id, amount)

Usage:
    from django.dispatch import receiver
    from settlement.signals import payment_confirmed

    @receiver(payment_confirmed)
    def mark_order_paid(sender, order_id, transaction_id, **kwargs):
        ...
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

payment_confirmed = Signal()
payment_failed = Signal()
payment_status_changed = Signal()
payout_processed = Signal()


def emit_on_commit(signal: Signal, sender: type, **kwargs) -> None:
    """
    Send ``signal`` once the current transaction commits.

    Outside a transaction the signal is sent immediately. Receiver errors
    are logged and swallowed.
    """

    def _send() -> None:
        for receiver, response in signal.send_robust(sender=sender, **kwargs):
            if isinstance(response, Exception):
                logger.error(
                    "Settlement event receiver failed",
                    extra={
                        "receiver": getattr(receiver, "__qualname__", repr(receiver)),
                        "event_kwargs": {k: str(v) for k, v in kwargs.items()},
                    },
                    exc_info=response,
                )

    transaction.on_commit(_send)
