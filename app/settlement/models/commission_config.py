"""
Commission configuration models.

- CommissionConfig: global default commission rate. Rows are never edited
  in place; each update inserts a new active row and deactivates the old
  one so the history of rates is preserved.
- CommissionOverride: store or category specific rate.

Services never read these models directly while settling. They resolve a
CommissionConfigSnapshot once per request (see settlement.commission).
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from settlement.state_machines import CommissionOverrideScope


class CommissionConfig(UUIDPrimaryKeyMixin, BaseModel):
    """Global default commission rate (latest active row wins)."""

    default_rate = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        help_text="Commission rate between 0 and 1 applied to product value",
    )

    is_active = models.BooleanField(default=True, db_index=True)

    notes = models.TextField(blank=True, default="")

    last_modified_by = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Identifier of the admin who set this rate",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Commission Config"
        verbose_name_plural = "Commission Configs"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(default_rate__gte=0) & models.Q(default_rate__lte=1),
                name="commission_config_rate_in_range",
            ),
        ]

    def __str__(self) -> str:
        return f"CommissionConfig({self.default_rate}, active={self.is_active})"


class CommissionOverride(UUIDPrimaryKeyMixin, BaseModel):
    """Commission rate for a single store or category."""

    scope = models.CharField(
        max_length=20,
        choices=CommissionOverrideScope.choices,
    )

    target_id = models.UUIDField(
        help_text="Store id or category id, depending on scope",
    )

    rate = models.DecimalField(max_digits=5, decimal_places=4)

    is_active = models.BooleanField(default=True)

    last_modified_by = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["scope", "target_id"]
        verbose_name = "Commission Override"
        verbose_name_plural = "Commission Overrides"
        constraints = [
            models.UniqueConstraint(
                fields=["scope", "target_id"],
                name="commission_override_unique_target",
            ),
            models.CheckConstraint(
                condition=models.Q(rate__gte=0) & models.Q(rate__lte=1),
                name="commission_override_rate_in_range",
            ),
        ]

    def __str__(self) -> str:
        return f"CommissionOverride({self.scope}:{self.target_id}={self.rate})"
