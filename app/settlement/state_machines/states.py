"""
State enums for settlement models.

These TextChoices back the django-fsm fields and status columns of the
settlement models. Transitions themselves live on the models.

Usage:
    from settlement.state_machines import PaymentTransactionStatus, PayoutStatus

    PaymentTransaction.objects.filter(status=PaymentTransactionStatus.PENDING)
"""

from django.db import models


class PaymentTransactionStatus(models.TextChoices):
    """
    Lifecycle of a buyer charge.

    State Flow:
        PENDING -> COMPLETED -> REFUNDED
        PENDING -> FAILED
        PENDING -> CANCELLED

    FAILED, CANCELLED and REFUNDED are terminal. COMPLETED is terminal
    except for a full refund.
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"


class SubOrderPayoutStatus(models.TextChoices):
    """
    Settlement position of one seller's share of a charge.

    State Flow:
        PENDING_SETTLEMENT -> AVAILABLE -> INCLUDED -> PAID_OUT
        INCLUDED -> AVAILABLE (payout failed)
    """

    PENDING_SETTLEMENT = "pending_settlement", "Pending Settlement"
    AVAILABLE = "available", "Available"
    INCLUDED = "included", "Included in Payout"
    PAID_OUT = "paid_out", "Paid Out"


class PayoutStatus(models.TextChoices):
    """
    Lifecycle of a seller payout.

    State Flow:
        SCHEDULED -> PROCESSING -> COMPLETED
        SCHEDULED -> PROCESSING -> FAILED
        SCHEDULED -> COMPLETED / FAILED (operator shortcut)

    FAILED is terminal; a new payout must be created.
    """

    SCHEDULED = "scheduled", "Scheduled"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class PayoutMethod(models.TextChoices):
    """Disbursement rails a payout can be sent over."""

    BANK_TRANSFER = "bank_transfer", "Bank Transfer"
    STRIPE_CONNECT = "stripe_connect", "Stripe Connect"
    MANUAL = "manual", "Manual"


class InvoiceStatus(models.TextChoices):
    """
    Lifecycle of a seller invoice.

    State Flow:
        DRAFT -> GENERATED -> SENT -> PAID
    """

    DRAFT = "draft", "Draft"
    GENERATED = "generated", "Generated"
    SENT = "sent", "Sent"
    PAID = "paid", "Paid"


class RefundStatus(models.TextChoices):
    """
    Lifecycle of a refund against a payment transaction.

    State Flow:
        REQUESTED -> COMPLETED
        REQUESTED -> FAILED (seller credit restored)
    """

    REQUESTED = "requested", "Requested"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class BalanceMovementKind(models.TextChoices):
    """Kinds of seller balance mutation recorded in the balance journal."""

    CREDIT_PENDING = "credit_pending", "Credit Pending"
    RELEASE_TO_AVAILABLE = "release_to_available", "Release to Available"
    DEBIT_FOR_PAYOUT = "debit_for_payout", "Debit for Payout"
    RESTORE_AVAILABLE = "restore_available", "Restore Available"
    REVERSE_PENDING = "reverse_pending", "Reverse Pending"
    REVERSE_AVAILABLE = "reverse_available", "Reverse Available"
    RESTORE_REVERSAL = "restore_reversal", "Restore Reversal"


class CommissionOverrideScope(models.TextChoices):
    """What a commission override applies to."""

    STORE = "store", "Store"
    CATEGORY = "category", "Category"
