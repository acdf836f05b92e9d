"""
Rate Resolution Engine

Resolves upfront/deferred rates for an agreement:
- FUND scope: always use track_key -> rate track table
- DEAL scope:
    - inherit_fund_rates -> track_key -> rate track table
    - else -> the agreement's own upfront/deferred/offset overrides

Rates here are basis points (250 bps == 2.5%). The agreement -> rule bridge
converts them to the fractional rates used by commission rules.
"""

import calendar
import logging
from datetime import date
from decimal import Decimal

from ..config import EngineConfig
from ..errors import ConfigurationError, DataQualityWarning
from ..models import (
    CONTRIBUTION_BASIS,
    Agreement,
    CommissionRule,
    DeferredTerms,
    PercentageTerms,
    RateTrack,
    ResolvedRates,
    Scope,
)
from ..repositories import TrackRepository

logger = logging.getLogger(__name__)

BPS_PER_UNIT = Decimal("10000")


def bps_to_rate(bps: Decimal) -> Decimal:
    """250 -> Decimal('0.025')"""
    return Decimal(bps) / BPS_PER_UNIT


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class RateResolver:
    """Track lookup and agreement-level overrides."""

    def __init__(self, track_repository: TrackRepository, config: EngineConfig | None = None):
        self.track_repository = track_repository
        self.config = config or EngineConfig()
        self._tracks: list[RateTrack] | None = None

    def load_tracks(self) -> list[RateTrack]:
        """Active tracks for the configured version, ordered by min_raised. Loaded once."""
        if self._tracks is None:
            tracks = [
                t for t in self.track_repository.list_tracks(self.config.track_config_version)
                if t.is_active
            ]
            self._tracks = sorted(tracks, key=lambda t: (t.min_raised, t.track_key))
            logger.info(f"Loaded {len(self._tracks)} rate tracks (config {self.config.track_config_version})")
        return self._tracks

    def clear_cache(self) -> None:
        self._tracks = None

    def resolve(self, agreement: Agreement, total_raised) -> ResolvedRates:
        """Resolve rates for an agreement given the amount raised so far."""
        if agreement.applies_scope is Scope.FUND:
            return self._resolve_from_track(agreement, total_raised)

        if agreement.inherit_fund_rates:
            return self._resolve_from_track(agreement, total_raised)

        offset = agreement.deferred_offset_months
        return ResolvedRates(
            upfront_rate_bps=agreement.upfront_rate_bps or Decimal("0"),
            deferred_rate_bps=agreement.deferred_rate_bps or Decimal("0"),
            deferred_offset_months=offset if offset is not None else self.config.default_deferred_offset_months,
            source="agreement_override",
        )

    def _resolve_from_track(self, agreement: Agreement, total_raised) -> ResolvedRates:
        track_key = agreement.track_key
        if not track_key:
            raise ConfigurationError(f"Agreement {agreement.id} has no track_key to resolve rates from")

        track = next((t for t in self.load_tracks() if t.track_key == track_key), None)
        if track is None:
            raise ConfigurationError(
                f"Rate track not found: {track_key} (config {self.config.track_config_version})"
            )

        total = Decimal(total_raised)
        warnings = []
        if total < track.min_raised:
            warnings.append(DataQualityWarning(
                code="TRACK_RANGE",
                message=f"Total raised {total} is below track {track_key} minimum {track.min_raised}",
            ))
        if track.max_raised is not None and total > track.max_raised:
            warnings.append(DataQualityWarning(
                code="TRACK_RANGE",
                message=f"Total raised {total} exceeds track {track_key} maximum {track.max_raised}",
            ))
        for warning in warnings:
            logger.warning(warning.message)

        return ResolvedRates(
            upfront_rate_bps=track.upfront_rate_bps,
            deferred_rate_bps=track.deferred_rate_bps,
            deferred_offset_months=track.deferred_offset_months,
            source="fund_track",
            track_key=track_key,
            warnings=tuple(warnings),
        )


def agreement_to_rule(agreement: Agreement, rates: ResolvedRates, priority: int = 0) -> CommissionRule:
    """Express an agreement's resolved upfront rate as a commission rule."""
    deferred = None
    if rates.deferred_rate_bps:
        deferred = DeferredTerms(
            rate=bps_to_rate(rates.deferred_rate_bps),
            offset_months=rates.deferred_offset_months,
            agreement_id=agreement.id,
            track_key=rates.track_key,
        )

    return CommissionRule(
        id=f"agreement:{agreement.id}",
        name=agreement.name or f"Agreement {agreement.id}",
        entity_type=agreement.party_type,
        entity_name=agreement.party_name,
        terms=PercentageTerms(rate=bps_to_rate(rates.upfront_rate_bps)),
        calculation_basis=CONTRIBUTION_BASIS,
        applies_scope=agreement.applies_scope,
        deal_id=agreement.deal_id if agreement.applies_scope is Scope.DEAL else None,
        priority=priority,
        vat_mode=agreement.vat_mode,
        effective_from=agreement.effective_from,
        effective_to=agreement.effective_to,
        source="agreement",
        deferred=deferred,
    )
