"""
Engine Configuration

Read from environment variables with production defaults.
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class EngineConfig:
    """Settings that are not part of the rule set itself."""

    vat_country_code: str = "IL"
    track_config_version: str = "v1.0"
    agreement_priority: int = 0
    default_deferred_offset_months: int = 24

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            vat_country_code=os.environ.get("FEE_ENGINE_VAT_COUNTRY", "IL"),
            track_config_version=os.environ.get("FEE_ENGINE_TRACK_CONFIG_VERSION", "v1.0"),
            agreement_priority=int(os.environ.get("FEE_ENGINE_AGREEMENT_PRIORITY", "0")),
            default_deferred_offset_months=int(os.environ.get("FEE_ENGINE_DEFERRED_OFFSET_MONTHS", "24")),
        )
