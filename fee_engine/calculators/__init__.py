"""
Calculators Package

Provides the per-stage calculation components of the fee line pipeline.
"""

from .base_fee import BaseFeeCalculator
from .conditions import ConditionEvaluator
from .credits import CreditBalance, CreditLedger, CreditsScopingEngine
from .rates import RateResolver, add_months, agreement_to_rule, bps_to_rate
from .tiers import TierEngine
from .vat import VatEngine

__all__ = [
    "BaseFeeCalculator",
    "ConditionEvaluator",
    "TierEngine",
    "VatEngine",
    "CreditBalance",
    "CreditLedger",
    "CreditsScopingEngine",
    "RateResolver",
    "agreement_to_rule",
    "add_months",
    "bps_to_rate",
]
