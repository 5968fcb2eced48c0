"""
Commission configuration service.

Admin-facing operations for the commission rates, plus building the
per-request CommissionConfigSnapshot used by settlement.

Usage:
    from settlement.commission import CommissionConfigService

    CommissionConfigService.update_config(Decimal("0.12"), modified_by="admin:42")
    snapshot = CommissionConfigService.get_snapshot()
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings

from core.services import BaseService

from settlement.commission.calculator import validate_commission_rate
from settlement.commission.config import CommissionConfigSnapshot
from settlement.exceptions import SettlementNotFoundError, SettlementValidationError
from settlement.models import CommissionConfig, CommissionOverride
from settlement.state_machines import CommissionOverrideScope


class CommissionConfigService(BaseService):
    """Reads and updates commission rates."""

    @classmethod
    def get_default_rate(cls) -> Decimal:
        """Rate of the latest active config, falling back to settings."""
        config = CommissionConfig.objects.filter(is_active=True).order_by("-created_at").first()
        if config is not None:
            return config.default_rate
        return Decimal(str(settings.SETTLEMENT_DEFAULT_COMMISSION_RATE))

    @classmethod
    def get_snapshot(cls) -> CommissionConfigSnapshot:
        """Take an immutable snapshot of the current rates."""
        store_overrides: dict[uuid.UUID, Decimal] = {}
        category_overrides: dict[uuid.UUID, Decimal] = {}

        for override in CommissionOverride.objects.filter(is_active=True):
            if override.scope == CommissionOverrideScope.STORE:
                store_overrides[override.target_id] = override.rate
            else:
                category_overrides[override.target_id] = override.rate

        return CommissionConfigSnapshot(
            default_rate=cls.get_default_rate(),
            store_overrides=store_overrides,
            category_overrides=category_overrides,
        )

    @classmethod
    def update_config(
        cls,
        rate: Decimal,
        modified_by: str,
        notes: str = "",
    ) -> CommissionConfig:
        """
        Set a new global default rate.

        The previous active row is deactivated rather than edited so the
        rate history is kept.

        Raises:
            SettlementValidationError: If the rate is outside [0, 1]
        """
        rate = validate_commission_rate(rate)

        with cls.atomic():
            CommissionConfig.objects.select_for_update().filter(is_active=True).update(
                is_active=False
            )
            config = CommissionConfig.objects.create(
                default_rate=rate,
                is_active=True,
                notes=notes,
                last_modified_by=modified_by,
            )

        cls.get_logger().info(
            "Commission config updated",
            extra={"rate": str(rate), "modified_by": modified_by},
        )
        return config

    @classmethod
    def set_override(
        cls,
        scope: str,
        target_id: uuid.UUID,
        rate: Decimal,
        modified_by: str,
    ) -> CommissionOverride:
        """
        Create or replace a store or category override.

        Raises:
            SettlementValidationError: For an unknown scope or out-of-range rate
        """
        if scope not in CommissionOverrideScope.values:
            raise SettlementValidationError(
                f"Unknown commission override scope: {scope}",
                details={"scope": scope},
            )
        rate = validate_commission_rate(rate)

        override, _ = CommissionOverride.objects.update_or_create(
            scope=scope,
            target_id=target_id,
            defaults={"rate": rate, "is_active": True, "last_modified_by": modified_by},
        )

        cls.get_logger().info(
            "Commission override set",
            extra={
                "scope": scope,
                "target_id": str(target_id),
                "rate": str(rate),
                "modified_by": modified_by,
            },
        )
        return override

    @classmethod
    def remove_override(cls, scope: str, target_id: uuid.UUID, modified_by: str) -> None:
        """
        Deactivate an override.

        Raises:
            SettlementNotFoundError: If no active override exists
        """
        updated = CommissionOverride.objects.filter(
            scope=scope, target_id=target_id, is_active=True
        ).update(is_active=False, last_modified_by=modified_by)
        if not updated:
            raise SettlementNotFoundError(
                f"No active {scope} override for {target_id}",
                details={"scope": scope, "target_id": str(target_id)},
            )

        cls.get_logger().info(
            "Commission override removed",
            extra={"scope": scope, "target_id": str(target_id), "modified_by": modified_by},
        )
