"""
CANONICAL FEE ENGINE
Deterministic fee/commission calculation on investor contributions
"""

from .config import EngineConfig
from .errors import (
    CalculationError,
    ConfigurationError,
    DataQualityWarning,
    EntityCalculationError,
    InvariantViolation,
)
from .models import CalculationOutput, Contribution, FeeLine, RunState
from .money import Money
from .processor import CanonicalCalculationEngine, calculate_from_dict

__all__ = [
    'CanonicalCalculationEngine',
    'calculate_from_dict',
    'EngineConfig',
    'Money',
    'Contribution',
    'FeeLine',
    'CalculationOutput',
    'RunState',
    'CalculationError',
    'ConfigurationError',
    'EntityCalculationError',
    'InvariantViolation',
    'DataQualityWarning',
]
