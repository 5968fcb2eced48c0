"""
Fixed-point money helpers for settlement operations.

All settlement amounts are ``decimal.Decimal`` values quantized to two
decimal places with half-up rounding. Floats are never accepted: a float
that reaches the ledger is a bug upstream, so it is rejected loudly.

Types:
    Money: A monetary amount with currency

Functions:
    to_decimal: Coerce int/str/Decimal input to Decimal (rejects floats)
    round_money: Half-up rounding to cents
    allocate_proportionally: Split a total across weights without penny drift

Usage:
    from settlement.money import Money, allocate_proportionally, round_money

    fee = round_money(Decimal("110.00") * Decimal("0.029") + Decimal("0.30"))
    # Decimal("3.49")

    allocate_proportionally(Decimal("1.00"), [Decimal("1"), Decimal("1"), Decimal("1")])
    # [Decimal("0.34"), Decimal("0.33"), Decimal("0.33")]
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from settlement.exceptions import SettlementValidationError

if TYPE_CHECKING:
    from collections.abc import Sequence

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_CURRENCY = "USD"


def to_decimal(value: Decimal | int | str, field_name: str = "amount") -> Decimal:
    """
    Convert a value to Decimal without going through float.

    Args:
        value: Decimal, int or numeric string
        field_name: Name used in the validation error

    Raises:
        SettlementValidationError: For floats, booleans, non-numeric or non-finite values
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise SettlementValidationError(
            f"{field_name} must be a Decimal, int or numeric string, not {type(value).__name__}",
            details={field_name: repr(value)},
        )
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise SettlementValidationError(
                f"{field_name} is not a valid number",
                details={field_name: value},
            )
    else:
        raise SettlementValidationError(
            f"{field_name} has unsupported type {type(value).__name__}",
            details={field_name: repr(value)},
        )

    if not result.is_finite():
        raise SettlementValidationError(
            f"{field_name} must be finite",
            details={field_name: str(value)},
        )
    return result


def round_money(value: Decimal) -> Decimal:
    """Round to cents using half-up rounding."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def allocate_proportionally(total: Decimal, weights: Sequence[Decimal]) -> list[Decimal]:
    """
    Split ``total`` across ``weights`` so the parts sum exactly to ``total``.

    Each share is truncated to cents, then the leftover cents are handed
    out one at a time to the shares with the largest truncated remainder
    (ties go to the earlier position). The result is deterministic for a
    given input order.

    Args:
        total: Amount to split (already rounded to cents, may be zero)
        weights: Non-negative weights, one per part

    Returns:
        List of cent-rounded Decimals summing to ``total``
    """
    if not weights:
        return []

    weight_sum = sum(weights, ZERO)
    if weight_sum <= 0:
        # Nothing to weigh by: the whole amount lands on the first part
        return [total] + [ZERO] * (len(weights) - 1)

    raw_shares = [total * weight / weight_sum for weight in weights]
    floored = [share.quantize(CENT, rounding=ROUND_DOWN) for share in raw_shares]

    leftover_cents = int(((total - sum(floored, ZERO)) / CENT).to_integral_value())
    order = sorted(
        range(len(weights)),
        key=lambda i: (-(raw_shares[i] - floored[i]), i),
    )
    for i in order[:leftover_cents]:
        floored[i] += CENT

    return floored


@dataclass(frozen=True)
class Money:
    """
    Represents a monetary amount.

    Attributes:
        amount: Decimal amount quantized to cents
        currency: ISO 4217 currency code (default: 'USD')

    Example:
        Money(Decimal("91.51")) + Money(Decimal("8.49"))  # Money(amount=Decimal('100.00'), currency='USD')
        str(Money(Decimal("50")))  # "$50.00 USD"
    """

    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", round_money(to_decimal(self.amount)))
        object.__setattr__(self, "currency", self.currency.upper())

    def __str__(self) -> str:
        return f"${self.amount:.2f} {self.currency}"

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def _check_currency(self, other: Money, operation: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )


__all__ = [
    "CENT",
    "DEFAULT_CURRENCY",
    "Money",
    "ZERO",
    "allocate_proportionally",
    "round_money",
    "to_decimal",
]
