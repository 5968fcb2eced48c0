"""
State machine enums for settlement models.

This module re-exports the state enums used by settlement models with django-fsm.
"""

from settlement.state_machines.states import (
    BalanceMovementKind,
    CommissionOverrideScope,
    InvoiceStatus,
    PaymentTransactionStatus,
    PayoutMethod,
    PayoutStatus,
    RefundStatus,
    SubOrderPayoutStatus,
)

__all__ = [
    "BalanceMovementKind",
    "CommissionOverrideScope",
    "InvoiceStatus",
    "PaymentTransactionStatus",
    "PayoutMethod",
    "PayoutStatus",
    "RefundStatus",
    "SubOrderPayoutStatus",
]
