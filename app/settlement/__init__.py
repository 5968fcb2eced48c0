"""
Settlement app for the marketplace order settlement and commission ledger.

This app handles:
- Buyer charges through a pluggable payment gateway
- Per-seller commission and processing-fee breakdowns
- Seller pending/available balances and their journal
- Payouts to sellers with failure compensation
- Periodic seller invoices and financial reports

Related apps:
    - core: Base models, service layer and exception hierarchy

Usage:
    from settlement.services import PaymentTransactionService, PayoutService

    result = PaymentTransactionService.open_transaction(...)
    payout = PayoutService.create_payout(store_id, Decimal("80.00"))
"""
