"""
Partner configuration schema.

Defines the typed, versioned configuration documents a partner bank
publishes.  YAML or dict documents are parsed into these frozen types by
the loader, checked by the validator at save time, stored as immutable
versions by the config service, and pinned into a PartnerConfigSnapshot
when a batch starts.

Each document kind has a closed set of recognized keys; the scoring
engines and the policy evaluator consume only these types, never loose
dictionaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from credit_config.lifecycle import ConfigStatus
from credit_kernel.domain.canonical import CreditRecord
from credit_kernel.domain.dtos import Tier


class ConfigKind(str, Enum):
    SCORING = "scoring"
    ALT_SCORING = "alt_scoring"
    LENDING_POLICY = "lending_policy"
    MAPPING_PROFILE = "mapping_profile"


class ScoringEngineKind(str, Enum):
    """Engine 1 (weighted factors) or engine 2 (capacity/character)."""

    WEIGHTED = "weighted"
    CAPACITY = "capacity"


class RuleOperator(str, Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"


class Transform(str, Enum):
    """Closed set of value transforms a mapping profile may request."""

    PHONE = "phone"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    DATE = "date"
    IDENTITY = "identity"


# ---------------------------------------------------------------------------
# Engine 1
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConditionRule:
    """
    A penalty, bonus or rejection rule over one canonical fact.

    ``points`` is the additive delta: <= 0 for penalties, >= 0 for bonuses,
    0 for rejection rules.  A missing (None) fact never triggers a rule.
    """

    code: str
    fact: str
    operator: RuleOperator
    threshold: Decimal
    points: int = 0

    def matches(self, record: CreditRecord) -> bool:
        value = record.fact(self.fact)
        if value is None:
            return False
        value = Decimal(str(value))
        if self.operator == RuleOperator.GT:
            return value > self.threshold
        if self.operator == RuleOperator.GTE:
            return value >= self.threshold
        if self.operator == RuleOperator.LT:
            return value < self.threshold
        if self.operator == RuleOperator.LTE:
            return value <= self.threshold
        return value == self.threshold


@dataclass(frozen=True)
class ScoringConfig:
    weights: dict[str, Decimal] = field(default_factory=dict)
    penalties: tuple[ConditionRule, ...] = ()
    bonuses: tuple[ConditionRule, ...] = ()
    rejection_rules: tuple[ConditionRule, ...] = ()
    min_score: int = 300
    max_score: int = 850
    tier_thresholds: dict[Tier, int] = field(
        default_factory=lambda: {
            Tier.EXCELLENT: 800,
            Tier.VERY_GOOD: 740,
            Tier.GOOD: 670,
            Tier.FAIR: 580,
        }
    )
    allow_manual_override: bool = True


# ---------------------------------------------------------------------------
# Engine 2
# ---------------------------------------------------------------------------

PILLARS: tuple[str, ...] = ("capacity", "capital", "collateral", "conditions", "character")

PILLAR_SUB_FACTORS: dict[str, tuple[str, ...]] = {
    "capacity": ("cash_flow", "income_stability", "debt_service"),
    "capital": ("savings_consistency", "budgeting_consistency"),
    "collateral": ("collateral_coverage",),
    "conditions": ("employment_stability", "industry_risk"),
    "character": ("payment_history", "credit_age", "discretionary_spending"),
}


@dataclass(frozen=True)
class AltScoringConfig:
    pillar_weights: dict[str, Decimal] = field(default_factory=dict)
    sub_factor_weights: dict[str, dict[str, Decimal]] = field(default_factory=dict)
    max_dti: Decimal = Decimal("0.45")
    min_savings_rate: Decimal = Decimal("0.10")
    stable_employment_required: bool = True
    collateral_reference_amount: Decimal = Decimal("50000")
    high_risk_threshold: Decimal = Decimal("40")
    moderate_risk_threshold: Decimal = Decimal("60")
    low_risk_threshold: Decimal = Decimal("80")
    allow_manual_review: bool = True


# ---------------------------------------------------------------------------
# Lending policy
# ---------------------------------------------------------------------------

RATE_ADJUSTMENT_CODES: tuple[str, ...] = ("HIGH_DTI", "EMPLOYMENT_UNSTABLE", "RECENT_DEFAULT")


@dataclass(frozen=True)
class RecessionAdjustments:
    """How recession mode tightens a policy when it is switched on."""

    amount_factor: Decimal = Decimal("0.85")
    min_score_increase: int = 20
    rate_increase: Decimal = Decimal("2.0")
    max_term: int | None = 36


@dataclass(frozen=True)
class LendingPolicy:
    scoring_engine: ScoringEngineKind = ScoringEngineKind.WEIGHTED
    min_approval_score: int = 550
    base_loan_amounts: dict[Tier, Decimal] = field(
        default_factory=lambda: {
            Tier.EXCELLENT: Decimal("100000"),
            Tier.VERY_GOOD: Decimal("75000"),
            Tier.GOOD: Decimal("50000"),
            Tier.FAIR: Decimal("30000"),
            Tier.POOR: Decimal("10000"),
        }
    )
    income_multipliers: dict[Tier, Decimal] = field(
        default_factory=lambda: {
            Tier.EXCELLENT: Decimal("10"),
            Tier.VERY_GOOD: Decimal("8"),
            Tier.GOOD: Decimal("6"),
            Tier.FAIR: Decimal("4"),
            Tier.POOR: Decimal("2"),
        }
    )
    allow_income_based_override: bool = True
    base_rate: Decimal = Decimal("12.5")
    max_rate: Decimal = Decimal("35.99")
    rate_adjustments: dict[str, Decimal] = field(
        default_factory=lambda: {
            "HIGH_DTI": Decimal("3"),
            "EMPLOYMENT_UNSTABLE": Decimal("2"),
            "RECENT_DEFAULT": Decimal("5"),
        }
    )
    term_options: tuple[int, ...] = (12, 24, 36, 48)
    max_dti: Decimal = Decimal("0.45")
    auto_reject_dti: Decimal = Decimal("0.60")
    require_collateral_for: frozenset[Tier] = frozenset({Tier.POOR, Tier.FAIR})
    recession_mode: bool = False
    recession: RecessionAdjustments = field(default_factory=RecessionAdjustments)


# ---------------------------------------------------------------------------
# Mapping profile
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldMappingDef:
    """Canonical ``target`` is read from raw column ``source``."""

    target: str
    source: str
    transform: Transform = Transform.IDENTITY
    required: bool = False


@dataclass(frozen=True)
class MappingProfile:
    name: str
    fields: tuple[FieldMappingDef, ...] = ()
    country_code: str = "251"
    date_formats: tuple[str, ...] = ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%d-%m-%Y")


# ---------------------------------------------------------------------------
# Versions and snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfigVersion:
    """One stored, immutable version of a config document."""

    id: UUID
    partner_id: str
    kind: ConfigKind
    name: str
    version: int
    status: ConfigStatus
    fingerprint: str
    payload: dict[str, Any]
    created_by_id: str
    created_at: datetime | None = None
    supersedes_id: UUID | None = None


@dataclass(frozen=True)
class PartnerConfigSnapshot:
    """
    Everything one batch needs, pinned at batch start.

    ``version_ids`` maps config kind to the version id used; it is stored
    on the batch and on every decision the batch produces.
    """

    partner_id: str
    policy: LendingPolicy
    mapping_profile: MappingProfile
    scoring: ScoringConfig | None = None
    alt_scoring: AltScoringConfig | None = None
    version_ids: dict[str, str] = field(default_factory=dict)

    @property
    def engine(self) -> ScoringEngineKind:
        return self.policy.scoring_engine
