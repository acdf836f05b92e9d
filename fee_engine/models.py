"""
Domain Models for the Canonical Fee Engine

These dataclasses provide type-safe representations of all business entities.
All monetary values use Decimal (wrapped by Money during computation).
Rates are fractions: Decimal('0.02') is 2%.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Union

from .errors import ConfigurationError, DataQualityWarning

CONTRIBUTION_BASIS = "distribution_amount"


# =============================================================================
# ENUMERATIONS
# =============================================================================


class Scope(str, Enum):
    FUND = "FUND"
    DEAL = "DEAL"


class EntityType(str, Enum):
    DISTRIBUTOR = "distributor"
    REFERRER = "referrer"
    PARTNER = "partner"


class VatMode(str, Enum):
    INCLUDED = "included"
    ON_TOP = "on_top"


class TierMode(str, Enum):
    STEPPED = "stepped"
    THRESHOLD = "threshold"


class CreditStatus(str, Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"


class ConditionField(str, Enum):
    AMOUNT = "amount"
    FUND_NAME = "fund_name"
    INVESTOR_NAME = "investor_name"
    DEAL_ID = "deal_id"
    DEAL_CODE = "deal_code"
    CONTRIBUTION_DATE = "contribution_date"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not_in"


class RunState(str, Enum):
    LOADING_RULESET = "LOADING_RULESET"
    PROCESSING_CONTRIBUTIONS = "PROCESSING_CONTRIBUTIONS"
    AGGREGATING = "AGGREGATING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


# Legacy spellings still found in stored rules and agreements
_VAT_MODE_ALIASES = {"added": VatMode.ON_TOP, "on-top": VatMode.ON_TOP}
_CONDITION_FIELD_ALIASES = {"distribution_amount": ConditionField.AMOUNT, "distribution_date": ConditionField.CONTRIBUTION_DATE}


# =============================================================================
# PARSING HELPERS
# =============================================================================


def _dec(value) -> Decimal:
    return Decimal(str(value))


def _opt_dec(value) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


def _date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _opt_date(value) -> date | None:
    return _date(value) if value else None


def _opt_str(value) -> str | None:
    return str(value) if value not in (None, "") else None


def _enum(enum_cls, value, aliases=None):
    if isinstance(value, enum_cls):
        return value
    if aliases and value in aliases:
        return aliases[value]
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"Invalid {enum_cls.__name__} '{value}'. Must be one of: {allowed}") from None


def in_window(as_of: date, start: date | None, end: date | None) -> bool:
    """Inclusive effective-dating check; open ends are unbounded."""
    if start is not None and as_of < start:
        return False
    if end is not None and as_of > end:
        return False
    return True


# =============================================================================
# INPUT MODELS
# =============================================================================


@dataclass(frozen=True)
class Contribution:
    """An investor capital-contribution event: the taxable base for fees."""

    id: str
    investor_name: str
    fund_name: str
    amount: Decimal
    contribution_date: date
    investor_id: str | None = None
    deal_id: str | None = None
    deal_code: str | None = None
    deal_name: str | None = None
    distributor_name: str | None = None
    referrer_name: str | None = None
    partner_name: str | None = None

    def entity_name(self, entity_type: EntityType) -> str | None:
        if entity_type is EntityType.DISTRIBUTOR:
            return self.distributor_name
        if entity_type is EntityType.REFERRER:
            return self.referrer_name
        return self.partner_name

    def entity_roles(self) -> list[tuple[EntityType, str]]:
        """Roles present on this contribution, in fixed order."""
        roles = []
        for entity_type in EntityType:
            name = self.entity_name(entity_type)
            if name:
                roles.append((entity_type, name))
        return roles

    @classmethod
    def from_dict(cls, data: dict) -> "Contribution":
        # Support both 'amount' and legacy 'distribution_amount'
        amount = data["amount"] if "amount" in data else data["distribution_amount"]
        when = data.get("contribution_date") or data["distribution_date"]
        return cls(
            id=str(data["id"]),
            investor_name=data["investor_name"],
            fund_name=data["fund_name"],
            amount=_dec(amount),
            contribution_date=_date(when),
            investor_id=_opt_str(data.get("investor_id")),
            deal_id=_opt_str(data.get("deal_id")),
            deal_code=data.get("deal_code"),
            deal_name=data.get("deal_name"),
            distributor_name=data.get("distributor_name") or None,
            referrer_name=data.get("referrer_name") or None,
            partner_name=data.get("partner_name") or None,
        )


@dataclass(frozen=True)
class CommissionTier:
    """A single [min, max) band of a tiered rule."""

    tier_order: int
    min_threshold: Decimal
    max_threshold: Decimal | None  # None = unbounded
    rate: Decimal = Decimal("0")
    fixed_amount: Decimal | None = None
    id: str | None = None
    description: str | None = None

    def contains(self, amount: Decimal) -> bool:
        if amount < self.min_threshold:
            return False
        return self.max_threshold is None or amount < self.max_threshold

    @classmethod
    def from_dict(cls, data: dict) -> "CommissionTier":
        return cls(
            tier_order=int(data["tier_order"]),
            min_threshold=_dec(data["min_threshold"]),
            max_threshold=_opt_dec(data.get("max_threshold")),
            rate=_dec(data.get("rate", 0)),
            fixed_amount=_opt_dec(data.get("fixed_amount")),
            id=_opt_str(data.get("id")),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class RuleCondition:
    """One predicate over a contribution. AND within a group, OR across groups."""

    field: ConditionField
    operator: ConditionOperator
    value: object
    condition_group: int = 0
    is_required: bool = True
    id: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "RuleCondition":
        # Stored conditions keep the value in one of several typed columns
        if data.get("value_array") is not None:
            value = tuple(data["value_array"])
        elif data.get("value_number") is not None:
            value = _dec(data["value_number"])
        elif data.get("value_date") is not None:
            value = _date(data["value_date"])
        elif "value" in data:
            raw = data["value"]
            value = tuple(raw) if isinstance(raw, list) else raw
        else:
            value = data.get("value_text")
        return cls(
            field=_enum(ConditionField, data["field_name"], _CONDITION_FIELD_ALIASES),
            operator=_enum(ConditionOperator, data["operator"]),
            value=value,
            condition_group=int(data.get("condition_group", 0)),
            is_required=data.get("is_required", True),
            id=_opt_str(data.get("id")),
        )


# -----------------------------------------------------------------------------
# Rule terms: one variant per rule_type
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PercentageTerms:
    RULE_TYPE: ClassVar[str] = "percentage"
    rate: Decimal


@dataclass(frozen=True)
class FixedAmountTerms:
    RULE_TYPE: ClassVar[str] = "fixed_amount"
    amount: Decimal


@dataclass(frozen=True)
class TieredTerms:
    RULE_TYPE: ClassVar[str] = "tiered"
    tiers: tuple[CommissionTier, ...]
    mode: TierMode = TierMode.STEPPED


@dataclass(frozen=True)
class HybridTerms:
    RULE_TYPE: ClassVar[str] = "hybrid"
    fixed_amount: Decimal
    rate: Decimal


@dataclass(frozen=True)
class ConditionalTerms:
    """Percentage fee that only exists while the rule's conditions hold."""

    RULE_TYPE: ClassVar[str] = "conditional"
    rate: Decimal


RuleTerms = Union[PercentageTerms, FixedAmountTerms, TieredTerms, HybridTerms, ConditionalTerms]


def parse_terms(rule_type: str, data: dict) -> RuleTerms:
    """Build the terms variant for a stored rule row."""
    if rule_type == "percentage":
        return PercentageTerms(rate=_dec(data.get("base_rate") or 0))
    if rule_type == "fixed_amount":
        return FixedAmountTerms(amount=_dec(data.get("fixed_amount") or 0))
    if rule_type == "tiered":
        tiers = sorted((CommissionTier.from_dict(t) for t in data.get("tiers") or []), key=lambda t: t.tier_order)
        return TieredTerms(tiers=tuple(tiers), mode=_enum(TierMode, data.get("tier_mode", "stepped")))
    if rule_type == "hybrid":
        return HybridTerms(fixed_amount=_dec(data.get("fixed_amount") or 0), rate=_dec(data.get("base_rate") or 0))
    if rule_type == "conditional":
        return ConditionalTerms(rate=_dec(data.get("base_rate") or 0))
    raise ConfigurationError(
        f"Unsupported rule_type '{rule_type}'. "
        f"Must be one of: percentage, fixed_amount, tiered, hybrid, conditional"
    )


@dataclass(frozen=True)
class DeferredTerms:
    """Deferred portion of an agreement-derived rule."""

    rate: Decimal
    offset_months: int
    agreement_id: str
    track_key: str | None = None


@dataclass(frozen=True)
class CommissionRule:
    """A versioned commission rule, immutable within a calculation."""

    id: str
    entity_type: EntityType
    terms: RuleTerms
    name: str = ""
    entity_name: str | None = None  # None = applies to every entity of the type
    min_amount: Decimal = Decimal("0")
    max_amount: Decimal | None = None
    calculation_basis: str = CONTRIBUTION_BASIS
    applies_scope: Scope = Scope.FUND
    deal_id: str | None = None
    fund_name: str | None = None
    priority: int = 0
    vat_mode: VatMode = VatMode.ON_TOP
    conditions: tuple[RuleCondition, ...] = ()
    version: int = 1
    checksum: str | None = None
    is_active: bool = True
    archived_at: str | None = None
    effective_from: date | None = None
    effective_to: date | None = None
    source: str = "rule"
    deferred: DeferredTerms | None = None

    @property
    def rule_type(self) -> str:
        return self.terms.RULE_TYPE

    def matches_entity(self, entity_type: EntityType, entity_name: str) -> bool:
        if self.entity_type is not entity_type:
            return False
        return self.entity_name is None or self.entity_name == entity_name

    @classmethod
    def from_dict(cls, data: dict) -> "CommissionRule":
        conditions = [RuleCondition.from_dict(c) for c in data.get("conditions") or []]
        return cls(
            id=str(data["id"]),
            entity_type=_enum(EntityType, data["entity_type"]),
            terms=parse_terms(data["rule_type"], data),
            name=data.get("name", ""),
            entity_name=data.get("entity_name") or None,
            min_amount=_dec(data.get("min_amount") or 0),
            max_amount=_opt_dec(data.get("max_amount")),
            calculation_basis=data.get("calculation_basis", CONTRIBUTION_BASIS),
            applies_scope=_enum(Scope, data.get("applies_scope") or "FUND"),
            deal_id=_opt_str(data.get("deal_id")),
            fund_name=data.get("fund_name") or None,
            priority=int(data.get("priority") or 0),
            vat_mode=_enum(VatMode, data.get("vat_mode") or "on_top", _VAT_MODE_ALIASES),
            conditions=tuple(conditions),
            # Support both 'version' and stored 'rule_version'
            version=int(data.get("version", data.get("rule_version", 1))),
            checksum=data.get("checksum", data.get("rule_checksum")),
            is_active=data.get("is_active", True),
            archived_at=data.get("archived_at"),
            effective_from=_opt_date(data.get("effective_from")),
            effective_to=_opt_date(data.get("effective_to")),
        )


@dataclass(frozen=True)
class Agreement:
    """A commercial agreement between the fund and an introducing party."""

    id: str
    party_id: str
    party_name: str
    party_type: EntityType
    applies_scope: Scope
    effective_from: date
    effective_to: date | None = None
    name: str = ""
    deal_id: str | None = None
    status: str = "active"
    inherit_fund_rates: bool = False
    upfront_rate_bps: Decimal | None = None
    deferred_rate_bps: Decimal | None = None
    deferred_offset_months: int | None = None
    track_key: str | None = None
    vat_mode: VatMode = VatMode.ON_TOP

    @classmethod
    def from_dict(cls, data: dict) -> "Agreement":
        offset = data.get("deferred_offset_months")
        return cls(
            id=str(data["id"]),
            # Support both 'party_id' and stored 'introduced_by_party_id'
            party_id=str(data.get("party_id") or data["introduced_by_party_id"]),
            party_name=data["party_name"],
            party_type=_enum(EntityType, data.get("party_type", "distributor")),
            applies_scope=_enum(Scope, data.get("applies_scope") or "FUND"),
            effective_from=_date(data["effective_from"]),
            effective_to=_opt_date(data.get("effective_to")),
            name=data.get("name", ""),
            deal_id=_opt_str(data.get("deal_id")),
            status=data.get("status", "active"),
            inherit_fund_rates=data.get("inherit_fund_rates", False),
            upfront_rate_bps=_opt_dec(data.get("upfront_rate_bps")),
            deferred_rate_bps=_opt_dec(data.get("deferred_rate_bps")),
            deferred_offset_months=int(offset) if offset is not None else None,
            track_key=data.get("track_key"),
            vat_mode=_enum(VatMode, data.get("vat_mode") or "on_top", _VAT_MODE_ALIASES),
        )


@dataclass(frozen=True)
class RateTrack:
    """A row of the shared rate table agreements resolve against."""

    track_key: str
    min_raised: Decimal
    max_raised: Decimal | None
    upfront_rate_bps: Decimal
    deferred_rate_bps: Decimal
    deferred_offset_months: int
    config_version: str = "v1.0"
    is_active: bool = True
    id: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "RateTrack":
        return cls(
            track_key=data["track_key"],
            min_raised=_dec(data.get("min_raised", 0)),
            max_raised=_opt_dec(data.get("max_raised")),
            upfront_rate_bps=_dec(data["upfront_rate_bps"]),
            deferred_rate_bps=_dec(data.get("deferred_rate_bps", 0)),
            deferred_offset_months=int(data.get("deferred_offset_months", 0)),
            config_version=data.get("config_version", "v1.0"),
            is_active=data.get("is_active", True),
            id=_opt_str(data.get("id")),
        )


@dataclass(frozen=True)
class Credit:
    """A prepaid offset as loaded. Running balances live in the CreditLedger."""

    id: str
    investor_name: str
    remaining_balance: Decimal
    date_posted: date
    scope: Scope = Scope.FUND
    status: CreditStatus = CreditStatus.ACTIVE
    fund_name: str | None = None
    deal_id: str | None = None
    investor_id: str | None = None
    credit_type: str = "prepaid"
    amount: Decimal | None = None  # original balance when issued

    @classmethod
    def from_dict(cls, data: dict) -> "Credit":
        return cls(
            id=str(data["id"]),
            investor_name=data["investor_name"],
            remaining_balance=_dec(data["remaining_balance"]),
            date_posted=_date(data["date_posted"]),
            scope=_enum(Scope, data.get("scope") or "FUND"),
            status=_enum(CreditStatus, data.get("status", "active")),
            fund_name=data.get("fund_name") or None,
            deal_id=_opt_str(data.get("deal_id")),
            investor_id=_opt_str(data.get("investor_id")),
            credit_type=data.get("credit_type", "prepaid"),
            amount=_opt_dec(data.get("amount")),
        )


@dataclass(frozen=True)
class VatRate:
    """A jurisdiction VAT rate with an effective window."""

    country_code: str
    rate: Decimal
    effective_from: date
    effective_to: date | None = None
    is_default: bool = False
    id: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "VatRate":
        return cls(
            country_code=data["country_code"],
            rate=_dec(data["rate"]),
            effective_from=_date(data["effective_from"]),
            effective_to=_opt_date(data.get("effective_to")),
            is_default=data.get("is_default", False),
            id=_opt_str(data.get("id")),
        )


@dataclass(frozen=True)
class RuleSet:
    """Immutable snapshot of everything a run priced against. The audit anchor."""

    rules: tuple[CommissionRule, ...]
    vat_rates: tuple[VatRate, ...]
    credits: tuple[Credit, ...]
    version: str
    checksum: str
    as_of_date: date | None = None


# =============================================================================
# STAGE RESULT MODELS
# =============================================================================


@dataclass(frozen=True)
class TierSlice:
    """The part of an amount that fell into one tier."""

    tier_order: int
    amount: Decimal
    rate: Decimal
    fee: Decimal
    fixed: bool = False


@dataclass
class FeeCalculation:
    """Result of the base fee stage (before caps)."""

    base_amount: Decimal
    fee_gross: Decimal
    applied_rate: Decimal
    calculation_method: str
    tier_applied: int | None = None
    slices: list[TierSlice] = field(default_factory=list)
    notes: str | None = None


@dataclass
class CapResult:
    capped_fee: Decimal
    notes: str | None = None


@dataclass
class VatCalculation:
    """Invoice split of a fee line. All amounts already quantized."""

    fee_gross: Decimal
    vat_amount: Decimal
    fee_net: Decimal
    total_payable: Decimal
    vat_rate: Decimal


@dataclass(frozen=True)
class CreditApplication:
    credit_id: str
    amount_applied: Decimal
    remaining_balance: Decimal


@dataclass
class CreditNetting:
    """Result of consuming credits against a fee line."""

    final_amount: Decimal
    credits_applied: list[CreditApplication] = field(default_factory=list)
    notes: str | None = None


@dataclass(frozen=True)
class ResolvedRates:
    upfront_rate_bps: Decimal
    deferred_rate_bps: Decimal
    deferred_offset_months: int
    source: str  # 'fund_track' or 'agreement_override'
    track_key: str | None = None
    warnings: tuple[DataQualityWarning, ...] = ()


@dataclass
class FeeLineContext:
    """
    Holds all intermediate state while one (contribution, entity) pair
    flows through the pipeline.
    """

    # Input (immutable during processing)
    contribution: Contribution
    rule: CommissionRule
    entity_type: EntityType
    entity_name: str
    vat_rate: Decimal

    # Stage results (populated as we go)
    fee: FeeCalculation | None = None
    capped: CapResult | None = None
    vat: VatCalculation | None = None
    credit: CreditNetting | None = None


# =============================================================================
# OUTPUT / RESULT MODELS
# =============================================================================


@dataclass
class FeeLine:
    """One priced (contribution, entity) pair."""

    contribution_id: str
    investor_name: str
    fund_name: str
    rule_id: str
    rule_version: int
    entity_type: EntityType
    entity_name: str
    base_amount: Decimal
    applied_rate: Decimal
    fee_gross: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    fee_net: Decimal
    payable_before_credits: Decimal
    total_payable: Decimal
    scope: Scope
    calculation_method: str
    tier_applied: int | None = None
    credits_applied: list[CreditApplication] = field(default_factory=list)
    deal_id: str | None = None
    deal_code: str | None = None
    deal_name: str | None = None
    notes: str | None = None
    source: str = "rule"
    deferred_fee: Decimal | None = None
    deferred_due_date: date | None = None

    @property
    def credits_total(self) -> Decimal:
        return sum((c.amount_applied for c in self.credits_applied), Decimal("0"))


@dataclass
class ScopeTotals:
    gross: Decimal = Decimal("0.00")
    vat: Decimal = Decimal("0.00")
    net: Decimal = Decimal("0.00")
    payable: Decimal = Decimal("0.00")
    count: int = 0


@dataclass
class CalculationOutput:
    """Final output of a calculation run."""

    run_id: str
    state: RunState
    as_of_date: date
    fee_lines: list[FeeLine] = field(default_factory=list)
    total_gross: Decimal = Decimal("0.00")
    total_vat: Decimal = Decimal("0.00")
    total_net: Decimal = Decimal("0.00")
    total_payable: Decimal = Decimal("0.00")
    scope_breakdown: dict[Scope, ScopeTotals] = field(default_factory=dict)
    ruleset_version: str = ""
    ruleset_checksum: str = ""
    warnings: list[DataQualityWarning] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ready_for_approval(self) -> bool:
        return self.state is RunState.COMPLETED and not self.errors
