"""
Settlement services.

- SellerBalanceService: per-store pending/available/paid-out ledger
- SettlementService: fan-out of a completed charge into seller credits
- PaymentTransactionService: charge lifecycle, webhooks and refunds
- PayoutService: seller payouts over available balance
- InvoiceService / SellerReportService: statements and reports
"""

from settlement.services.balance_service import BalanceSummary, SellerBalanceService
from settlement.services.invoice_service import InvoiceService
from settlement.services.payout_service import PayoutPreview, PayoutService
from settlement.services.report_service import (
    CommissionLine,
    FinancialSummary,
    SellerReportService,
)
from settlement.services.settlement_service import SettlementService
from settlement.services.transaction_service import (
    OpenTransactionResult,
    PaymentTransactionService,
    SubOrderInput,
)

__all__ = [
    "BalanceSummary",
    "CommissionLine",
    "FinancialSummary",
    "InvoiceService",
    "OpenTransactionResult",
    "PaymentTransactionService",
    "PayoutPreview",
    "PayoutService",
    "SellerBalanceService",
    "SellerReportService",
    "SettlementService",
    "SubOrderInput",
]
