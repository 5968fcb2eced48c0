"""
Commission calculator for sub-order settlement.

Pure functions with no I/O. Given a sub-order's product and shipping
totals, a commission rate and a processing-fee policy, produce a
deterministic breakdown of what the platform keeps and what the seller is
owed.

Rules:
    - Commission applies to product value only, never shipping
    - Each field is rounded once, half-up, to cents
    - commission_amount + processing_fee + seller_net_amount == total

Usage:
    from decimal import Decimal
    from settlement.commission import ProcessingFeePolicy, calculate_commission

    calc = calculate_commission(
        product_total=Decimal("100.00"),
        shipping_cost=Decimal("10.00"),
        commission_rate=Decimal("0.15"),
        fee_policy=ProcessingFeePolicy(Decimal("0.029"), Decimal("0.30")),
    )
    calc.commission_amount   # Decimal("15.00")
    calc.processing_fee      # Decimal("3.49")
    calc.seller_net_amount   # Decimal("91.51")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings

from settlement.exceptions import SettlementValidationError
from settlement.money import ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessingFeePolicy:
    """
    Gateway processing fee: a percentage of the charged total plus a fixed fee.

    Attributes:
        percentage: Fraction of the total (0.029 for 2.9%)
        fixed_fee: Flat fee added per charge
    """

    percentage: Decimal
    fixed_fee: Decimal

    def __post_init__(self) -> None:
        percentage = to_decimal(self.percentage, "percentage")
        fixed_fee = to_decimal(self.fixed_fee, "fixed_fee")
        if percentage < 0 or percentage > 1:
            raise SettlementValidationError(
                "Processing fee percentage must be between 0 and 1",
                details={"percentage": str(percentage)},
            )
        if fixed_fee < 0:
            raise SettlementValidationError(
                "Processing fee fixed amount cannot be negative",
                details={"fixed_fee": str(fixed_fee)},
            )
        object.__setattr__(self, "percentage", percentage)
        object.__setattr__(self, "fixed_fee", fixed_fee)

    @classmethod
    def from_settings(cls) -> ProcessingFeePolicy:
        """Build the policy from SETTLEMENT_PROCESSING_FEE_* settings."""
        return cls(
            percentage=Decimal(str(settings.SETTLEMENT_PROCESSING_FEE_PERCENT)),
            fixed_fee=Decimal(str(settings.SETTLEMENT_PROCESSING_FEE_FIXED)),
        )

    def fee_for(self, total: Decimal) -> Decimal:
        """
        Fee charged on ``total``.

        Nothing is charged on a zero total, so a free sub-order doesn't
        pick up the fixed fee.
        """
        if total <= 0:
            return ZERO
        return round_money(total * self.percentage + self.fixed_fee)


@dataclass(frozen=True)
class CommissionCalculation:
    """
    Breakdown of one sub-order.

    Attributes:
        product_total / shipping_cost / total: Inputs and their sum
        commission_rate: Rate applied to product_total
        commission_amount: Platform commission
        processing_fee: Processing fee charged against this sub-order
        seller_net_amount: Amount owed to the seller (never negative)
        is_clamped: True when fees exceeded what was left after commission
        absorbed_fee: Portion of the nominal fee the platform absorbed
            because of clamping
    """

    product_total: Decimal
    shipping_cost: Decimal
    total: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    processing_fee: Decimal
    seller_net_amount: Decimal
    is_clamped: bool = False
    absorbed_fee: Decimal = ZERO


def _validated_amount(value, field_name: str) -> Decimal:
    amount = to_decimal(value, field_name)
    if amount < 0:
        raise SettlementValidationError(
            f"{field_name} cannot be negative",
            details={field_name: str(amount)},
        )
    if round_money(amount) != amount:
        raise SettlementValidationError(
            f"{field_name} must not have more than two decimal places",
            details={field_name: str(amount)},
        )
    return round_money(amount)


def validate_commission_rate(rate) -> Decimal:
    """
    Check that a commission rate lies in [0, 1].

    Raises:
        SettlementValidationError: For out-of-range or non-Decimal rates
    """
    value = to_decimal(rate, "commission_rate")
    if value < 0 or value > 1:
        raise SettlementValidationError(
            "Commission rate must be between 0 and 1",
            details={"commission_rate": str(value)},
        )
    return value


def calculate_commission(
    product_total: Decimal,
    shipping_cost: Decimal,
    commission_rate: Decimal,
    fee_policy: ProcessingFeePolicy,
    processing_fee: Decimal | None = None,
) -> CommissionCalculation:
    """
    Compute the commission and fee breakdown for one sub-order.

    Args:
        product_total: Product value of the sub-order (>= 0)
        shipping_cost: Shipping charged on the sub-order (>= 0)
        commission_rate: Rate in [0, 1] applied to product_total
        fee_policy: Policy used when no allocated fee is supplied
        processing_fee: Fee already allocated to this sub-order from
            the transaction fee; overrides the policy

    Returns:
        CommissionCalculation whose commission, fee and net add up to the total

    Raises:
        SettlementValidationError: For negative or sub-cent amounts, floats or a
            rate outside [0, 1]
    """
    product_total = _validated_amount(product_total, "product_total")
    shipping_cost = _validated_amount(shipping_cost, "shipping_cost")
    rate = validate_commission_rate(commission_rate)

    total = product_total + shipping_cost
    commission_amount = round_money(product_total * rate)

    if processing_fee is None:
        nominal_fee = fee_policy.fee_for(total)
    else:
        nominal_fee = _validated_amount(processing_fee, "processing_fee")

    seller_net = total - commission_amount - nominal_fee
    if seller_net >= 0:
        return CommissionCalculation(
            product_total=product_total,
            shipping_cost=shipping_cost,
            total=total,
            commission_rate=rate,
            commission_amount=commission_amount,
            processing_fee=nominal_fee,
            seller_net_amount=seller_net,
        )

    # Fees exceed what is left after commission: the seller gets nothing
    # and the platform absorbs the rest of the fee.
    charged_fee = total - commission_amount
    absorbed_fee = nominal_fee - charged_fee
    logger.warning(
        "Seller net clamped to zero",
        extra={
            "product_total": str(product_total),
            "shipping_cost": str(shipping_cost),
            "commission_rate": str(rate),
            "nominal_fee": str(nominal_fee),
            "absorbed_fee": str(absorbed_fee),
        },
    )
    return CommissionCalculation(
        product_total=product_total,
        shipping_cost=shipping_cost,
        total=total,
        commission_rate=rate,
        commission_amount=commission_amount,
        processing_fee=charged_fee,
        seller_net_amount=ZERO,
        is_clamped=True,
        absorbed_fee=absorbed_fee,
    )
