"""
Commission configuration snapshot and rate resolution.

A snapshot is an immutable copy of the commission configuration taken
once per request. Settlement code receives it explicitly and never
reads the configuration tables itself, so one confirmation always uses
one consistent set of rates.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping


def _frozen(mapping: Mapping[uuid.UUID, Decimal] | None) -> Mapping[uuid.UUID, Decimal]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class CommissionConfigSnapshot:
    """
    Commission rates in effect for one request.

    Attributes:
        default_rate: Global default rate
        store_overrides: Rate per store id
        category_overrides: Rate per category id
    """

    default_rate: Decimal
    store_overrides: Mapping[uuid.UUID, Decimal] = field(default_factory=dict)
    category_overrides: Mapping[uuid.UUID, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "store_overrides", _frozen(self.store_overrides))
        object.__setattr__(self, "category_overrides", _frozen(self.category_overrides))


def resolve_commission_rate(
    snapshot: CommissionConfigSnapshot,
    store_id: uuid.UUID,
    category_id: uuid.UUID | None = None,
) -> Decimal:
    """
    Pick the commission rate for a store and category.

    Resolution order: store override, then category override, then the
    global default.
    """
    if store_id in snapshot.store_overrides:
        return snapshot.store_overrides[store_id]
    if category_id is not None and category_id in snapshot.category_overrides:
        return snapshot.category_overrides[category_id]
    return snapshot.default_rate
