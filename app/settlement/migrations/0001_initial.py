import decimal
import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models


def _money(**kwargs):
    return models.DecimalField(decimal_places=2, max_digits=12, **kwargs)


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


ZERO = decimal.Decimal("0.00")


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CommissionConfig",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "default_rate",
                    models.DecimalField(
                        decimal_places=4,
                        help_text="Commission rate between 0 and 1 applied to product value",
                        max_digits=5,
                    ),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "last_modified_by",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Identifier of the admin who set this rate",
                        max_length=255,
                    ),
                ),
            ],
            options={
                "verbose_name": "Commission Config",
                "verbose_name_plural": "Commission Configs",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("default_rate__gte", 0), ("default_rate__lte", 1)),
                        name="commission_config_rate_in_range",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="CommissionOverride",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "scope",
                    models.CharField(
                        choices=[("store", "Store"), ("category", "Category")],
                        max_length=20,
                    ),
                ),
                (
                    "target_id",
                    models.UUIDField(help_text="Store id or category id, depending on scope"),
                ),
                ("rate", models.DecimalField(decimal_places=4, max_digits=5)),
                ("is_active", models.BooleanField(default=True)),
                ("last_modified_by", models.CharField(blank=True, default="", max_length=255)),
            ],
            options={
                "verbose_name": "Commission Override",
                "verbose_name_plural": "Commission Overrides",
                "ordering": ["scope", "target_id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("scope", "target_id"),
                        name="commission_override_unique_target",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("rate__gte", 0), ("rate__lte", 1)),
                        name="commission_override_rate_in_range",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                _uuid_pk(),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Flexible key-value metadata storage",
                    ),
                ),
                *_timestamps(),
                ("order_id", models.UUIDField(db_index=True, help_text="Order this charge pays for")),
                (
                    "sub_orders",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Snapshot of sub-orders: sub_order_id, store_id, category_id, "
                        "product_total, shipping_cost",
                    ),
                ),
                ("amount", _money(help_text="Charged amount")),
                (
                    "currency",
                    models.CharField(default="USD", help_text="ISO 4217 currency code", max_length=3),
                ),
                (
                    "processing_fee",
                    _money(default=ZERO, help_text="Processing fee for the whole transaction"),
                ),
                (
                    "refunded_amount",
                    _money(default=ZERO, help_text="Total amount refunded so far"),
                ),
                (
                    "payment_method",
                    models.CharField(
                        default="card",
                        help_text="Payment method used by the buyer",
                        max_length=50,
                    ),
                ),
                (
                    "customer_email",
                    models.EmailField(
                        blank=True,
                        default="",
                        help_text="Buyer email passed to the gateway",
                        max_length=254,
                    ),
                ),
                (
                    "gateway_session_id",
                    models.CharField(
                        help_text="Gateway checkout session id",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "gateway_transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway charge id (set on completion)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the transaction (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "error_code",
                    models.CharField(
                        blank=True,
                        help_text="Gateway or internal error code if the charge failed",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(blank=True, help_text="Error details if the charge failed", null=True),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the charge completed",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Transaction",
                "verbose_name_plural": "Payment Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="settle_txn_status_created_idx")
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="payment_transaction_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("refunded_amount__gte", 0),
                            ("refunded_amount__lte", models.F("amount")),
                        ),
                        name="payment_transaction_refund_within_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payout",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                ("store_id", models.UUIDField(db_index=True, help_text="Store receiving the payout")),
                ("amount", _money(help_text="Net payout amount")),
                (
                    "gross_amount",
                    _money(default=ZERO, help_text="Sum of sub-order totals included in the payout"),
                ),
                (
                    "commission_amount",
                    _money(default=ZERO, help_text="Commission withheld from the included sub-orders"),
                ),
                (
                    "processing_fee_amount",
                    _money(
                        default=ZERO,
                        help_text="Processing fees allocated to the included sub-orders",
                    ),
                ),
                (
                    "currency",
                    models.CharField(default="USD", help_text="ISO 4217 currency code", max_length=3),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("scheduled", "Scheduled"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="scheduled",
                        help_text="Current state of the payout (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "payout_method",
                    models.CharField(
                        choices=[
                            ("bank_transfer", "Bank Transfer"),
                            ("stripe_connect", "Stripe Connect"),
                            ("manual", "Manual"),
                        ],
                        default="bank_transfer",
                        max_length=30,
                    ),
                ),
                (
                    "external_transaction_id",
                    models.CharField(
                        blank=True,
                        help_text="Bank or processor reference for the transfer",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "sub_order_ids",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="SubOrder ids included in this payout",
                    ),
                ),
                (
                    "requested_by",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Identifier of the admin or job that requested the payout",
                        max_length=255,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                ("scheduled_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("processing_started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Detailed reason if payout failed",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout",
                "verbose_name_plural": "Payouts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["store_id", "status"], name="settle_payout_store_status_idx")
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="settlement_payout_amount_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="SellerBalance",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "store_id",
                    models.UUIDField(help_text="Store this balance belongs to", unique=True),
                ),
                ("pending_amount", _money(default=ZERO)),
                ("available_amount", _money(default=ZERO)),
                ("total_paid_out", _money(default=ZERO)),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
            ],
            options={
                "verbose_name": "Seller Balance",
                "verbose_name_plural": "Seller Balances",
                "ordering": ["store_id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("pending_amount__gte", 0)),
                        name="seller_balance_pending_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("available_amount__gte", 0)),
                        name="seller_balance_available_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("total_paid_out__gte", 0)),
                        name="seller_balance_paid_out_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SellerInvoice",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "invoice_number",
                    models.CharField(
                        help_text="INV-{year}-{month}-{store short id}[-n]",
                        max_length=64,
                        unique=True,
                    ),
                ),
                ("store_id", models.UUIDField(db_index=True)),
                ("store_name", models.CharField(blank=True, default="", max_length=255)),
                ("period_start", models.DateField()),
                ("period_end", models.DateField()),
                ("total_gmv", _money(default=ZERO, help_text="Product value plus shipping")),
                ("total_product_value", _money(default=ZERO, help_text="Sum of product totals")),
                ("total_shipping_fees", _money(default=ZERO, help_text="Sum of shipping costs")),
                ("total_commission", _money(default=ZERO, help_text="Commission withheld")),
                (
                    "total_processing_fees",
                    _money(default=ZERO, help_text="Processing fees allocated"),
                ),
                (
                    "net_amount_due",
                    _money(default=ZERO, help_text="Amount owed to the seller for the period"),
                ),
                (
                    "total_refund_reversals",
                    _money(default=ZERO, help_text="Seller net reversed by refunds in the period"),
                ),
                ("order_count", models.PositiveIntegerField(default=0)),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("draft", "Draft"),
                            ("generated", "Generated"),
                            ("sent", "Sent"),
                            ("paid", "Paid"),
                        ],
                        db_index=True,
                        default="draft",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("html_content", models.TextField(blank=True, default="")),
                ("generated_at", models.DateTimeField(blank=True, null=True)),
                ("generated_by", models.CharField(blank=True, default="", max_length=255)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name": "Seller Invoice",
                "verbose_name_plural": "Seller Invoices",
                "ordering": ["-period_start", "store_id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("store_id", "period_start", "period_end"),
                        name="seller_invoice_unique_store_period",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("period_end__gte", models.F("period_start"))),
                        name="seller_invoice_period_ordered",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BalanceMovement",
            fields=[
                _uuid_pk(),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this movement was recorded",
                    ),
                ),
                ("store_id", models.UUIDField(db_index=True)),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("credit_pending", "Credit Pending"),
                            ("release_to_available", "Release to Available"),
                            ("debit_for_payout", "Debit for Payout"),
                            ("restore_available", "Restore Available"),
                            ("reverse_pending", "Reverse Pending"),
                            ("reverse_available", "Reverse Available"),
                            ("restore_reversal", "Restore Reversal"),
                        ],
                        help_text="Category of this movement",
                        max_length=50,
                    ),
                ),
                ("amount", _money(help_text="Amount moved (always positive)")),
                ("pending_after", _money()),
                ("available_after", _money()),
                ("paid_out_after", _money()),
                (
                    "reference_type",
                    models.CharField(
                        blank=True,
                        help_text="Type of related entity (e.g., 'sub_order_payment', 'payout')",
                        max_length=50,
                        null=True,
                    ),
                ),
                (
                    "reference_id",
                    models.UUIDField(blank=True, help_text="UUID of related entity", null=True),
                ),
                ("description", models.TextField(blank=True, null=True)),
                (
                    "created_by",
                    models.CharField(
                        blank=True,
                        help_text="Identifier of service/user that created this movement",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Unique key to prevent duplicate movements",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "balance",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="movements",
                        to="settlement.sellerbalance",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(
                        fields=["reference_type", "reference_id"],
                        name="settle_move_reference_idx",
                    ),
                    models.Index(
                        fields=["store_id", "created_at"],
                        name="settle_move_store_created_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="balance_movement_amount_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="TransactionRefund",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                ("amount", _money(help_text="Refunded amount")),
                (
                    "reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Reason for the refund",
                        max_length=255,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("requested", "Requested"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="requested",
                        help_text="Current state of the refund (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "gateway_refund_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway refund id",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "reversals",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Seller credit reversals applied for this refund",
                    ),
                ),
                (
                    "is_full_refund",
                    models.BooleanField(
                        default=False,
                        help_text="Whether this refund empties the charge",
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Gateway error if the refund failed",
                        null=True,
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(blank=True, help_text="When the refund completed", null=True),
                ),
                (
                    "payment_transaction",
                    models.ForeignKey(
                        help_text="Charge being refunded",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="settlement.paymenttransaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Transaction Refund",
                "verbose_name_plural": "Transaction Refunds",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="transaction_refund_amount_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="SubOrderPayment",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "sub_order_id",
                    models.UUIDField(
                        help_text="SubOrder settled by this row (at most one row per SubOrder)",
                        unique=True,
                    ),
                ),
                (
                    "store_id",
                    models.UUIDField(db_index=True, help_text="Seller store receiving the net amount"),
                ),
                (
                    "category_id",
                    models.UUIDField(
                        blank=True,
                        help_text="Category used for commission override resolution",
                        null=True,
                    ),
                ),
                ("product_total", _money()),
                ("shipping_cost", _money()),
                ("sub_order_total", _money()),
                ("commission_rate", models.DecimalField(decimal_places=4, max_digits=5)),
                ("commission_amount", _money()),
                ("processing_fee_allocated", _money()),
                ("seller_net_amount", _money()),
                (
                    "reversed_amount",
                    _money(default=ZERO, help_text="Seller net reversed by refunds"),
                ),
                (
                    "is_fee_clamped",
                    models.BooleanField(
                        default=False,
                        help_text="Seller net was clamped to zero (reportable anomaly)",
                    ),
                ),
                (
                    "absorbed_fee",
                    _money(
                        default=ZERO,
                        help_text="Processing fee absorbed by the platform because of clamping",
                    ),
                ),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "payout_status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending_settlement", "Pending Settlement"),
                            ("available", "Available"),
                            ("included", "Included in Payout"),
                            ("paid_out", "Paid Out"),
                        ],
                        db_index=True,
                        default="pending_settlement",
                        help_text="Where the seller's net amount currently sits",
                        max_length=50,
                    ),
                ),
                (
                    "settled_at",
                    models.DateTimeField(db_index=True, help_text="When the owning charge completed"),
                ),
                (
                    "available_at",
                    models.DateTimeField(db_index=True, help_text="When the hold period ends"),
                ),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("paid_out_at", models.DateTimeField(blank=True, null=True)),
                (
                    "payment_transaction",
                    models.ForeignKey(
                        help_text="Charge this seller share belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sub_order_payments",
                        to="settlement.paymenttransaction",
                    ),
                ),
                (
                    "payout",
                    models.ForeignKey(
                        blank=True,
                        help_text="Payout this row is included in",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sub_order_payments",
                        to="settlement.payout",
                    ),
                ),
            ],
            options={
                "verbose_name": "Sub-Order Payment",
                "verbose_name_plural": "Sub-Order Payments",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["store_id", "payout_status", "created_at"],
                        name="settle_sop_store_status_idx",
                    ),
                    models.Index(fields=["store_id", "settled_at"], name="settle_sop_store_settled_idx"),
                    models.Index(
                        fields=["payout_status", "available_at"],
                        name="settle_sop_status_avail_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("seller_net_amount__gte", 0)),
                        name="sub_order_payment_net_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("reversed_amount__gte", 0),
                            ("reversed_amount__lte", models.F("seller_net_amount")),
                        ),
                        name="sub_order_payment_reversal_within_net",
                    ),
                ],
            },
        ),
    ]
