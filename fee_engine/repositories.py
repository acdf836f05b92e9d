"""
Repository Interfaces

The engine never talks to a database. Callers inject narrow repositories;
the in-memory implementations back the HTTP surfaces and the tests.
"""

import logging
from datetime import date
from typing import Protocol

from .errors import InvariantViolation
from .models import Agreement, CommissionRule, Credit, RateTrack, VatRate

logger = logging.getLogger(__name__)


class RuleRepository(Protocol):
    def list_rules(self) -> list[CommissionRule]: ...


class VatRateRepository(Protocol):
    def list_vat_rates(self) -> list[VatRate]: ...


class CreditRepository(Protocol):
    def list_credits(self, investor_names: list[str]) -> list[Credit]: ...


class AgreementRepository(Protocol):
    def list_agreements(self, as_of_date: date) -> list[Agreement]: ...


class TrackRepository(Protocol):
    def list_tracks(self, config_version: str) -> list[RateTrack]: ...


class SnapshotStore(Protocol):
    def append(self, run_id: str, snapshots: list[dict]) -> None: ...


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================


class InMemoryRuleRepository:
    def __init__(self, rules=None):
        self._rules = list(rules or [])

    def list_rules(self) -> list[CommissionRule]:
        return list(self._rules)


class InMemoryVatRateRepository:
    def __init__(self, vat_rates=None):
        self._vat_rates = list(vat_rates or [])

    def list_vat_rates(self) -> list[VatRate]:
        return list(self._vat_rates)


class InMemoryCreditRepository:
    def __init__(self, credits=None):
        self._credits = list(credits or [])

    def list_credits(self, investor_names: list[str]) -> list[Credit]:
        wanted = set(investor_names)
        return [c for c in self._credits if c.investor_name in wanted]


class InMemoryAgreementRepository:
    def __init__(self, agreements=None):
        self._agreements = list(agreements or [])

    def list_agreements(self, as_of_date: date) -> list[Agreement]:
        return list(self._agreements)


class InMemoryTrackRepository:
    def __init__(self, tracks=None):
        self._tracks = list(tracks or [])

    def list_tracks(self, config_version: str) -> list[RateTrack]:
        return [t for t in self._tracks if t.config_version == config_version]


class InMemorySnapshotStore:
    """Append-only: a run's snapshot can be written exactly once."""

    def __init__(self):
        self._snapshots: dict[str, tuple[dict, ...]] = {}

    def append(self, run_id: str, snapshots: list[dict]) -> None:
        if run_id in self._snapshots:
            raise InvariantViolation(f"Rule snapshot for run {run_id} already written; snapshots are immutable")
        self._snapshots[run_id] = tuple(snapshots)
        logger.debug(f"Stored {len(snapshots)} rule snapshots for run {run_id}")

    def get(self, run_id: str) -> tuple[dict, ...]:
        return self._snapshots.get(run_id, ())


class InMemoryRepositories:
    """All repositories for one calculation, built from a single payload."""

    def __init__(
        self,
        rules: InMemoryRuleRepository,
        vat_rates: InMemoryVatRateRepository,
        credits: InMemoryCreditRepository,
        agreements: InMemoryAgreementRepository,
        tracks: InMemoryTrackRepository,
        snapshots: InMemorySnapshotStore,
    ):
        self.rules = rules
        self.vat_rates = vat_rates
        self.credits = credits
        self.agreements = agreements
        self.tracks = tracks
        self.snapshots = snapshots

    @classmethod
    def from_dict(cls, data: dict) -> "InMemoryRepositories":
        return cls(
            rules=InMemoryRuleRepository(CommissionRule.from_dict(r) for r in data.get("rules", [])),
            vat_rates=InMemoryVatRateRepository(VatRate.from_dict(v) for v in data.get("vat_rates", [])),
            credits=InMemoryCreditRepository(Credit.from_dict(c) for c in data.get("credits", [])),
            agreements=InMemoryAgreementRepository(Agreement.from_dict(a) for a in data.get("agreements", [])),
            tracks=InMemoryTrackRepository(RateTrack.from_dict(t) for t in data.get("tracks", [])),
            snapshots=InMemorySnapshotStore(),
        )
