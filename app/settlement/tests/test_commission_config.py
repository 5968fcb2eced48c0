"""
Tests for commission configuration snapshots and rate resolution.
"""

import uuid
from decimal import Decimal

import pytest

from settlement.commission import CommissionConfigSnapshot, resolve_commission_rate


@pytest.fixture
def snapshot():
    store = uuid.uuid4()
    category = uuid.uuid4()
    snap = CommissionConfigSnapshot(
        default_rate=Decimal("0.15"),
        store_overrides={store: Decimal("0.10")},
        category_overrides={category: Decimal("0.20")},
    )
    return snap, store, category


class TestResolveCommissionRate:
    """Resolution order: store override, category override, default."""

    def test_store_override_wins(self, snapshot):
        snap, store, category = snapshot

        assert resolve_commission_rate(snap, store, category) == Decimal("0.10")

    def test_category_override_when_no_store_override(self, snapshot):
        snap, _, category = snapshot

        assert resolve_commission_rate(snap, uuid.uuid4(), category) == Decimal("0.20")

    def test_default_rate(self, snapshot):
        snap, _, _ = snapshot

        assert resolve_commission_rate(snap, uuid.uuid4()) == Decimal("0.15")
        assert resolve_commission_rate(snap, uuid.uuid4(), uuid.uuid4()) == Decimal("0.15")


class TestCommissionConfigSnapshot:
    """Tests for snapshot immutability."""

    def test_overrides_are_read_only(self, snapshot):
        snap, store, _ = snapshot

        with pytest.raises(TypeError):
            snap.store_overrides[store] = Decimal("0.50")

    def test_snapshot_is_detached_from_source_mapping(self):
        """Changing the dict the snapshot was built from doesn't change the snapshot."""
        store = uuid.uuid4()
        overrides = {store: Decimal("0.10")}
        snap = CommissionConfigSnapshot(default_rate=Decimal("0.15"), store_overrides=overrides)

        overrides[store] = Decimal("0.50")

        assert snap.store_overrides[store] == Decimal("0.10")

    def test_snapshot_is_frozen(self, snapshot):
        snap, _, _ = snapshot

        with pytest.raises(AttributeError):
            snap.default_rate = Decimal("0.30")
