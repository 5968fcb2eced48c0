"""
Settlement domain models.

This module contains all settlement ledger models:
- PaymentTransaction: Buyer-to-platform charge for one Order
- TransactionRefund: Full or partial refund of a charge
- SubOrderPayment: Commission/fee breakdown for one seller's share
- SellerBalance: Running pending/available/paid-out totals per store
- BalanceMovement: Append-only journal of balance mutations
- Payout: Disbursement to one seller
- SellerInvoice: Periodic seller statement
- CommissionConfig / CommissionOverride: Commission rate configuration
"""

from settlement.models.commission_config import CommissionConfig, CommissionOverride
from settlement.models.invoice import SellerInvoice
from settlement.models.payment_transaction import PaymentTransaction
from settlement.models.payout import Payout
from settlement.models.refund import TransactionRefund
from settlement.models.seller_balance import BalanceMovement, SellerBalance
from settlement.models.sub_order_payment import SubOrderPayment

__all__ = [
    "BalanceMovement",
    "CommissionConfig",
    "CommissionOverride",
    "PaymentTransaction",
    "Payout",
    "SellerBalance",
    "SellerInvoice",
    "SubOrderPayment",
    "TransactionRefund",
]
