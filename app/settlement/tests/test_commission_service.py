"""
Tests for CommissionConfigService.
"""

import uuid
from decimal import Decimal

import pytest
from django.test import override_settings

from settlement.commission import CommissionConfigService
from settlement.exceptions import SettlementNotFoundError, SettlementValidationError
from settlement.models import CommissionConfig, CommissionOverride
from settlement.state_machines import CommissionOverrideScope
from settlement.tests.factories import CommissionConfigFactory, CommissionOverrideFactory


@pytest.mark.django_db
class TestDefaultRate:
    """Tests for get_default_rate and update_config."""

    @override_settings(SETTLEMENT_DEFAULT_COMMISSION_RATE="0.12")
    def test_falls_back_to_settings(self):
        assert CommissionConfigService.get_default_rate() == Decimal("0.12")

    def test_update_config_keeps_history(self):
        """Updating deactivates the previous row instead of editing it."""
        first = CommissionConfigService.update_config(Decimal("0.15"), modified_by="admin:1")
        second = CommissionConfigService.update_config(
            Decimal("0.12"), modified_by="admin:2", notes="Spring promotion"
        )

        first = CommissionConfig.objects.get(id=first.id)
        assert first.is_active is False
        assert second.is_active is True
        assert second.notes == "Spring promotion"
        assert CommissionConfig.objects.count() == 2
        assert CommissionConfigService.get_default_rate() == Decimal("0.12")

    @pytest.mark.parametrize("rate", [Decimal("-0.01"), Decimal("1.01")])
    def test_update_config_rejects_out_of_range(self, rate):
        CommissionConfigFactory(default_rate=Decimal("0.15"))

        with pytest.raises(SettlementValidationError):
            CommissionConfigService.update_config(rate, modified_by="admin:1")

        assert CommissionConfigService.get_default_rate() == Decimal("0.15")


@pytest.mark.django_db
class TestOverrides:
    """Tests for set_override, remove_override and get_snapshot."""

    def test_snapshot_collects_active_overrides(self):
        store = uuid.uuid4()
        category = uuid.uuid4()
        CommissionConfigFactory(default_rate=Decimal("0.15"))
        CommissionOverrideFactory(target_id=store, rate=Decimal("0.10"))
        CommissionOverrideFactory(
            scope=CommissionOverrideScope.CATEGORY, target_id=category, rate=Decimal("0.20")
        )
        CommissionOverrideFactory(rate=Decimal("0.05"), is_active=False)

        snapshot = CommissionConfigService.get_snapshot()

        assert snapshot.default_rate == Decimal("0.15")
        assert dict(snapshot.store_overrides) == {store: Decimal("0.10")}
        assert dict(snapshot.category_overrides) == {category: Decimal("0.20")}

    def test_set_override_replaces_existing(self):
        store = uuid.uuid4()
        CommissionConfigService.set_override(
            CommissionOverrideScope.STORE, store, Decimal("0.10"), modified_by="admin:1"
        )
        CommissionConfigService.set_override(
            CommissionOverrideScope.STORE, store, Decimal("0.08"), modified_by="admin:2"
        )

        override = CommissionOverride.objects.get(target_id=store)
        assert override.rate == Decimal("0.08")
        assert override.last_modified_by == "admin:2"

    def test_set_override_reactivates_removed_override(self):
        store = uuid.uuid4()
        CommissionOverrideFactory(target_id=store, is_active=False)

        CommissionConfigService.set_override(
            CommissionOverrideScope.STORE, store, Decimal("0.09"), modified_by="admin:1"
        )

        assert CommissionConfigService.get_snapshot().store_overrides[store] == Decimal("0.09")

    def test_set_override_rejects_unknown_scope(self):
        with pytest.raises(SettlementValidationError):
            CommissionConfigService.set_override(
                "region", uuid.uuid4(), Decimal("0.10"), modified_by="admin:1"
            )

    def test_set_override_rejects_out_of_range_rate(self):
        with pytest.raises(SettlementValidationError):
            CommissionConfigService.set_override(
                CommissionOverrideScope.CATEGORY, uuid.uuid4(), Decimal("2"), modified_by="admin:1"
            )

    def test_remove_override(self):
        store = uuid.uuid4()
        CommissionOverrideFactory(target_id=store)

        CommissionConfigService.remove_override(
            CommissionOverrideScope.STORE, store, modified_by="admin:1"
        )

        assert store not in CommissionConfigService.get_snapshot().store_overrides

    def test_remove_missing_override_raises(self):
        with pytest.raises(SettlementNotFoundError):
            CommissionConfigService.remove_override(
                CommissionOverrideScope.STORE, uuid.uuid4(), modified_by="admin:1"
            )
