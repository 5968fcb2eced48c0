"""
Settlement admin configuration.

The ledger is read-mostly in the admin: money moves only through the
service layer, so transactions, sub-order payments, balances, movements,
payouts and invoices cannot be added, edited or deleted here.

Commission rates are the exception. Saving a CommissionConfig or
CommissionOverride goes through CommissionConfigService so rate history
and validation match the service API.
"""

from django.contrib import admin

from settlement.commission import CommissionConfigService
from settlement.models import (
    BalanceMovement,
    CommissionConfig,
    CommissionOverride,
    PaymentTransaction,
    Payout,
    SellerBalance,
    SellerInvoice,
    SubOrderPayment,
    TransactionRefund,
)

__all__ = [
    "BalanceMovementAdmin",
    "CommissionConfigAdmin",
    "CommissionOverrideAdmin",
    "PaymentTransactionAdmin",
    "PayoutAdmin",
    "SellerBalanceAdmin",
    "SellerInvoiceAdmin",
    "SubOrderPaymentAdmin",
    "TransactionRefundAdmin",
]


class ReadOnlyLedgerAdmin(admin.ModelAdmin):
    """Ledger rows are written by services only."""

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


# =============================================================================
# Transactions
# =============================================================================


class TransactionRefundInline(admin.TabularInline):
    """Refunds recorded against a transaction."""

    model = TransactionRefund
    extra = 0
    can_delete = False
    fields = ["id", "amount", "status", "is_full_refund", "gateway_refund_id", "created_at"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


class SubOrderPaymentInline(admin.TabularInline):
    """Per-seller breakdown of a transaction."""

    model = SubOrderPayment
    extra = 0
    can_delete = False
    fields = [
        "sub_order_id",
        "store_id",
        "sub_order_total",
        "commission_amount",
        "processing_fee_allocated",
        "seller_net_amount",
        "payout_status",
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(ReadOnlyLedgerAdmin):
    """
    Admin configuration for PaymentTransaction.

    State changes go through PaymentTransactionService, never the admin.
    """

    list_display = [
        "id",
        "order_id",
        "amount_display",
        "status",
        "refunded_amount",
        "payment_method",
        "created_at",
    ]
    list_filter = ["status", "currency", "payment_method", "created_at"]
    search_fields = ["id", "order_id", "gateway_session_id", "gateway_transaction_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [SubOrderPaymentInline, TransactionRefundInline]

    fieldsets = (
        (None, {"fields": ("id", "order_id", "status")}),
        ("Amount", {"fields": ("amount", "currency", "processing_fee", "refunded_amount")}),
        (
            "Gateway",
            {
                "fields": (
                    "gateway_session_id",
                    "gateway_transaction_id",
                    "payment_method",
                    "customer_email",
                    "error_code",
                    "error_message",
                ),
            },
        ),
        (
            "Snapshot",
            {
                "fields": ("sub_orders", "metadata"),
                "classes": ("collapse",),
            },
        ),
        ("Timestamps", {"fields": ("created_at", "updated_at", "completed_at")}),
    )

    def amount_display(self, obj: PaymentTransaction) -> str:
        """Display the amount with its currency."""
        return f"{obj.amount} {obj.currency}"

    amount_display.short_description = "Amount"


@admin.register(TransactionRefund)
class TransactionRefundAdmin(ReadOnlyLedgerAdmin):
    """Admin configuration for TransactionRefund."""

    list_display = [
        "id",
        "payment_transaction",
        "amount",
        "status",
        "is_full_refund",
        "created_at",
    ]
    list_filter = ["status", "is_full_refund", "created_at"]
    search_fields = ["id", "payment_transaction__id", "payment_transaction__order_id", "gateway_refund_id"]
    ordering = ["-created_at"]


# =============================================================================
# Seller ledger
# =============================================================================


@admin.register(SubOrderPayment)
class SubOrderPaymentAdmin(ReadOnlyLedgerAdmin):
    """Admin configuration for SubOrderPayment."""

    list_display = [
        "sub_order_id",
        "store_id",
        "sub_order_total",
        "commission_amount",
        "processing_fee_allocated",
        "seller_net_amount",
        "reversed_amount",
        "payout_status",
        "available_at",
    ]
    list_filter = ["payout_status", "is_fee_clamped", "currency"]
    search_fields = ["sub_order_id", "store_id", "payment_transaction__order_id"]
    date_hierarchy = "settled_at"
    ordering = ["-created_at"]


@admin.register(SellerBalance)
class SellerBalanceAdmin(ReadOnlyLedgerAdmin):
    """Admin configuration for SellerBalance."""

    list_display = [
        "store_id",
        "pending_amount",
        "available_amount",
        "total_paid_out",
        "currency",
        "version",
        "updated_at",
    ]
    list_filter = ["currency"]
    search_fields = ["store_id"]
    ordering = ["-updated_at"]


@admin.register(BalanceMovement)
class BalanceMovementAdmin(ReadOnlyLedgerAdmin):
    """
    Admin configuration for BalanceMovement.

    Movements are an append-only journal. Corrections are new movements.
    """

    list_display = [
        "created_at",
        "store_id",
        "kind",
        "amount",
        "pending_after",
        "available_after",
        "paid_out_after",
        "reference_type",
    ]
    list_filter = ["kind", "reference_type", "created_at"]
    search_fields = ["store_id", "reference_id", "idempotency_key", "created_by"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(Payout)
class PayoutAdmin(ReadOnlyLedgerAdmin):
    """Admin configuration for Payout."""

    list_display = [
        "id",
        "store_id",
        "amount",
        "status",
        "payout_method",
        "requested_by",
        "scheduled_at",
        "completed_at",
    ]
    list_filter = ["status", "payout_method", "currency"]
    search_fields = ["id", "store_id", "external_transaction_id", "requested_by"]
    date_hierarchy = "scheduled_at"
    ordering = ["-created_at"]


@admin.register(SellerInvoice)
class SellerInvoiceAdmin(ReadOnlyLedgerAdmin):
    """Admin configuration for SellerInvoice."""

    list_display = [
        "invoice_number",
        "store_id",
        "period_start",
        "period_end",
        "net_amount_due",
        "order_count",
        "status",
    ]
    list_filter = ["status", "currency"]
    search_fields = ["invoice_number", "store_id", "store_name"]
    ordering = ["-period_start"]
    exclude = ["html_content"]


# =============================================================================
# Commission
# =============================================================================


@admin.register(CommissionConfig)
class CommissionConfigAdmin(admin.ModelAdmin):
    """
    Admin configuration for CommissionConfig.

    Saving always inserts a new active rate through the service; past
    rates stay as history.
    """

    list_display = ["default_rate", "is_active", "last_modified_by", "created_at"]
    list_filter = ["is_active"]
    fields = ["default_rate", "notes"]
    ordering = ["-created_at"]

    def has_change_permission(self, request, obj=None) -> bool:
        return obj is None

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def save_model(self, request, obj, form, change):
        config = CommissionConfigService.update_config(
            obj.default_rate,
            modified_by=request.user.get_username(),
            notes=obj.notes,
        )
        obj.pk = config.pk


@admin.register(CommissionOverride)
class CommissionOverrideAdmin(admin.ModelAdmin):
    """Admin configuration for CommissionOverride."""

    list_display = ["scope", "target_id", "rate", "is_active", "last_modified_by", "updated_at"]
    list_filter = ["scope", "is_active"]
    search_fields = ["target_id"]
    fields = ["scope", "target_id", "rate"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def save_model(self, request, obj, form, change):
        override = CommissionConfigService.set_override(
            obj.scope,
            obj.target_id,
            obj.rate,
            modified_by=request.user.get_username(),
        )
        obj.pk = override.pk
