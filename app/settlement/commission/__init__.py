"""
Commission calculation and configuration.

- calculate_commission / ProcessingFeePolicy: pure breakdown of one sub-order
- CommissionConfigSnapshot / resolve_commission_rate: per-request rate resolution
- CommissionConfigService: admin operations on the stored rates
"""

from settlement.commission.calculator import (
    CommissionCalculation,
    ProcessingFeePolicy,
    calculate_commission,
    validate_commission_rate,
)
from settlement.commission.config import CommissionConfigSnapshot, resolve_commission_rate
from settlement.commission.services import CommissionConfigService

__all__ = [
    "CommissionCalculation",
    "CommissionConfigService",
    "CommissionConfigSnapshot",
    "ProcessingFeePolicy",
    "calculate_commission",
    "resolve_commission_rate",
    "validate_commission_rate",
]
