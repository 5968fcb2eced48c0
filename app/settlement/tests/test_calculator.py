"""
Tests for the commission calculator.

Covers the breakdown of a single sub-order: commission on product value
only, processing fee from the policy or an allocated share, and clamping
when fees exceed what is left after commission.
"""

from decimal import Decimal

import pytest
from django.test import override_settings

from settlement.commission import (
    ProcessingFeePolicy,
    calculate_commission,
    validate_commission_rate,
)
from settlement.exceptions import SettlementValidationError
from settlement.money import ZERO

STANDARD_FEES = ProcessingFeePolicy(percentage=Decimal("0.029"), fixed_fee=Decimal("0.30"))
NO_FEES = ProcessingFeePolicy(percentage=ZERO, fixed_fee=ZERO)


class TestProcessingFeePolicy:
    """Tests for ProcessingFeePolicy."""

    def test_fee_for_total(self):
        """2.9% + 0.30 on 110.00 is 3.49."""
        assert STANDARD_FEES.fee_for(Decimal("110.00")) == Decimal("3.49")

    def test_no_fee_on_zero_total(self):
        """A free sub-order does not pick up the fixed fee."""
        assert STANDARD_FEES.fee_for(ZERO) == ZERO

    @override_settings(
        SETTLEMENT_PROCESSING_FEE_PERCENT="0.05",
        SETTLEMENT_PROCESSING_FEE_FIXED="1.00",
    )
    def test_from_settings(self):
        policy = ProcessingFeePolicy.from_settings()

        assert policy.percentage == Decimal("0.05")
        assert policy.fixed_fee == Decimal("1.00")

    @pytest.mark.parametrize(
        "percentage,fixed_fee",
        [
            (Decimal("-0.01"), Decimal("0.30")),
            (Decimal("1.5"), Decimal("0.30")),
            (Decimal("0.029"), Decimal("-0.30")),
        ],
    )
    def test_rejects_invalid_policy(self, percentage, fixed_fee):
        with pytest.raises(SettlementValidationError):
            ProcessingFeePolicy(percentage=percentage, fixed_fee=fixed_fee)


class TestValidateCommissionRate:
    """Tests for validate_commission_rate."""

    @pytest.mark.parametrize("rate", [Decimal("0"), Decimal("0.15"), Decimal("1"), "0.2"])
    def test_accepts_rates_in_range(self, rate):
        assert validate_commission_rate(rate) == Decimal(str(rate))

    @pytest.mark.parametrize("rate", [Decimal("-0.01"), Decimal("1.01"), 0.15])
    def test_rejects_out_of_range_or_float(self, rate):
        with pytest.raises(SettlementValidationError):
            validate_commission_rate(rate)


class TestCalculateCommission:
    """Tests for calculate_commission."""

    def test_standard_breakdown(self):
        """100 + 10 shipping at 15%: commission 15.00, fee 3.49, net 91.51."""
        calc = calculate_commission(
            Decimal("100.00"), Decimal("10.00"), Decimal("0.15"), STANDARD_FEES
        )

        assert calc.total == Decimal("110.00")
        assert calc.commission_amount == Decimal("15.00")
        assert calc.processing_fee == Decimal("3.49")
        assert calc.seller_net_amount == Decimal("91.51")
        assert calc.is_clamped is False
        assert calc.absorbed_fee == ZERO

    def test_commission_excludes_shipping(self):
        """Shipping passes through to the seller untaxed by commission."""
        calc = calculate_commission(Decimal("0.00"), Decimal("20.00"), Decimal("0.5"), NO_FEES)

        assert calc.commission_amount == ZERO
        assert calc.seller_net_amount == Decimal("20.00")

    def test_commission_rounds_half_up(self):
        """0.10 at 15% is 0.015, which rounds up to 0.02."""
        calc = calculate_commission(Decimal("0.10"), ZERO, Decimal("0.15"), NO_FEES)

        assert calc.commission_amount == Decimal("0.02")
        assert calc.seller_net_amount == Decimal("0.08")

    def test_allocated_fee_overrides_policy(self):
        """A fee share allocated from the transaction replaces the policy fee."""
        calc = calculate_commission(
            Decimal("60.00"),
            ZERO,
            Decimal("0.15"),
            STANDARD_FEES,
            processing_fee=Decimal("1.92"),
        )

        assert calc.processing_fee == Decimal("1.92")
        assert calc.seller_net_amount == Decimal("49.08")

    @pytest.mark.parametrize(
        "product_total,shipping_cost,rate",
        [
            ("0.00", "10.00", "0.15"),
            ("100.00", "0.00", "0.15"),
            ("100.00", "10.00", "0"),
            ("100.00", "10.00", "1"),
            ("99.99", "0.00", "1"),
            ("33.33", "4.99", "0.125"),
            ("10.10", "0.00", "0.05"),
            ("0.10", "0.00", "0.15"),
            ("0.20", "0.00", "0.15"),
            ("0.00", "0.00", "0.15"),
            ("1234.56", "78.90", "0.1999"),
        ],
    )
    def test_parts_add_up_to_total(self, product_total, shipping_cost, rate):
        calc = calculate_commission(
            Decimal(product_total), Decimal(shipping_cost), Decimal(rate), STANDARD_FEES
        )

        assert (
            calc.commission_amount + calc.processing_fee + calc.seller_net_amount == calc.total
        )
        assert calc.seller_net_amount >= ZERO
        assert calc.processing_fee >= ZERO
        assert calc.is_clamped == (calc.absorbed_fee > ZERO)

    def test_clamps_when_fees_exceed_remainder(self):
        """
        0.20 at 15%: commission 0.03, nominal fee 0.31 exceeds the 0.17 left.

        The seller gets nothing, 0.17 of the fee is charged and the platform
        absorbs the remaining 0.14.
        """
        calc = calculate_commission(Decimal("0.20"), ZERO, Decimal("0.15"), STANDARD_FEES)

        assert calc.is_clamped is True
        assert calc.seller_net_amount == ZERO
        assert calc.commission_amount == Decimal("0.03")
        assert calc.processing_fee == Decimal("0.17")
        assert calc.absorbed_fee == Decimal("0.14")
        assert calc.commission_amount + calc.processing_fee == calc.total

    def test_zero_total_has_no_fee(self):
        calc = calculate_commission(ZERO, ZERO, Decimal("0.15"), STANDARD_FEES)

        assert calc.processing_fee == ZERO
        assert calc.seller_net_amount == ZERO
        assert calc.is_clamped is False

    @pytest.mark.parametrize(
        "product_total,shipping_cost",
        [
            (Decimal("-1.00"), ZERO),
            (Decimal("10.00"), Decimal("-0.01")),
            (10.0, ZERO),
            (Decimal("1.005"), ZERO),
            (Decimal("10.00"), Decimal("0.001")),
        ],
    )
    def test_rejects_invalid_amounts(self, product_total, shipping_cost):
        with pytest.raises(SettlementValidationError):
            calculate_commission(product_total, shipping_cost, Decimal("0.15"), STANDARD_FEES)

    def test_rejects_sub_cent_allocated_fee(self):
        with pytest.raises(SettlementValidationError) as exc_info:
            calculate_commission(
                Decimal("60.00"), ZERO, Decimal("0.15"), STANDARD_FEES, processing_fee=Decimal("1.925")
            )

        assert exc_info.value.details == {"processing_fee": "1.925"}

    def test_rejects_out_of_range_rate(self):
        with pytest.raises(SettlementValidationError):
            calculate_commission(Decimal("10.00"), ZERO, Decimal("1.5"), STANDARD_FEES)
