"""
Error Taxonomy for the Canonical Fee Engine

Four categories, each with a different blast radius:

1. ConfigurationError     - fatal, the run is aborted before any fee line exists
2. EntityCalculationError - recovered per (contribution, entity), run continues
3. InvariantViolation     - logic defect, always propagates out of the engine
4. DataQualityWarning     - not raised, collected for human review
"""

from dataclasses import dataclass


class CalculationError(ValueError):
    """Base class for input-driven calculation failures."""


class ConfigurationError(CalculationError):
    """Missing VAT rate, missing rate track, disallowed calculation basis, etc."""


class EntityCalculationError(CalculationError):
    """A single entity could not be priced for a single contribution."""

    def __init__(self, message: str, contribution_id: str | None = None, entity: str | None = None):
        super().__init__(message)
        self.contribution_id = contribution_id
        self.entity = entity

    def __str__(self) -> str:
        message = super().__str__()
        if self.contribution_id and self.entity:
            return f"Contribution {self.contribution_id} / {self.entity}: {message}"
        if self.contribution_id:
            return f"Contribution {self.contribution_id}: {message}"
        return message


class InvariantViolation(Exception):
    """
    Raised when a correctness assertion fails (double charge, credit
    over-application, snapshot rewrite, illegal run transition).

    Deliberately not a ValueError: callers must never treat this as bad input.
    """


@dataclass(frozen=True)
class DataQualityWarning:
    """A non-fatal finding surfaced in the run's warnings list."""

    code: str
    message: str
    contribution_id: str | None = None

    def __str__(self) -> str:
        if self.contribution_id:
            return f"[{self.code}] Contribution {self.contribution_id}: {self.message}"
        return f"[{self.code}] {self.message}"
