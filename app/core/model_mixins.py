"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    MetadataMixin: Flexible JSON metadata storage

Usage:
    from core.models import BaseModel
    from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

    class PaymentTransaction(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
        order_id = models.UUIDField()

Note:
    Mixins are abstract and don't create database tables.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Ledger records are referenced across module boundaries (orders,
    stores, gateway metadata), so ids must be globally unique and
    must not reveal record counts.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class MetadataMixin(models.Model):
    """
    Flexible JSON metadata storage.

    Usage:
        transaction.set_meta("partial_refund_note", "Refunded 10.00: damaged")
        note = transaction.get_meta("partial_refund_note")
    """

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Flexible key-value metadata storage",
    )

    class Meta:
        abstract = True

    def get_meta(self, key: str, default: Any = None) -> Any:
        """Get metadata value by key."""
        return self.metadata.get(key, default)

    def set_meta(self, key: str, value: Any, save: bool = True) -> None:
        """
        Set metadata value and optionally save.

        Args:
            key: Metadata key
            value: Value to store (must be JSON-serializable)
            save: Whether to save the model (default True)
        """
        self.metadata[key] = value
        if save:
            self.save(update_fields=["metadata", "updated_at"])

    def has_meta(self, key: str) -> bool:
        """Check if metadata key exists."""
        return key in self.metadata
