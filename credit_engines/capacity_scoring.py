"""
Module: credit_engines.capacity_scoring
Responsibility:
    Engine 2, the capacity/character model.  Blends five pillars (capacity,
    capital, collateral, conditions, character), each itself a weighted
    blend of sub-factors, into a 0-100 score and a risk label.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every sub-factor is a 0-1 value where 1.0 is best.
    - A sub-factor the record cannot supply is left out and its pillar is
      normalized over the remaining ones; a pillar with nothing to score
      contributes 0.
    - Risk cut points are inclusive lower bounds of the better label.
    - The reported score is the blend rounded half up; the risk label and
      the tier are cut on the unrounded blend.
    - Behavioural breaches never change the number; they force manual
      review when the partner allows it.

Failure modes:
    - ConfigurationError when pillar weights, or the sub-factor weights of
      a weighted pillar, have no positive entry.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal

from credit_config.schema import (
    PILLAR_SUB_FACTORS,
    PILLARS,
    AltScoringConfig,
    ScoringEngineKind,
)
from credit_kernel.domain.canonical import CreditRecord
from credit_kernel.domain.dtos import DecisionOutcome, Tier
from credit_kernel.exceptions import ConfigurationError
from credit_engines.tiers import RISK_TO_TIER, risk_label_for
from credit_engines.tracer import traced_engine
from credit_engines.types import RiskLabel, ScoreResult, quantize_ratio

ENGINE_VERSION = "1.0"
MIN_SCORE = 0
MAX_SCORE = 100

_ZERO = Decimal("0")
_ONE = Decimal("1")

EMPLOYMENT_INCOME_STABILITY: dict[str, Decimal] = {
    "employed": Decimal("1.0"),
    "self_employed": Decimal("0.8"),
    "contract": Decimal("0.6"),
    "part_time": Decimal("0.5"),
}
UNLISTED_EMPLOYMENT_STABILITY = Decimal("0.3")

INDUSTRY_RISK_SCORES: dict[str, Decimal] = {
    "low": Decimal("1.0"),
    "medium": Decimal("0.6"),
    "high": Decimal("0.2"),
}


def _clamp(value: Decimal) -> Decimal:
    return min(max(value, _ZERO), _ONE)


def _has_income(record: CreditRecord) -> bool:
    return record.monthly_income is not None and record.monthly_income > 0


def debt_to_income(record: CreditRecord) -> Decimal | None:
    """Monthly debt payments over monthly income; None without income."""
    if not _has_income(record):
        return None
    return (record.monthly_debt_payments or _ZERO) / record.monthly_income


def savings_rate(record: CreditRecord) -> Decimal | None:
    """Share of income left after debt payments and expenses."""
    if not _has_income(record):
        return None
    spent = (record.monthly_debt_payments or _ZERO) + (record.monthly_expenses or _ZERO)
    return (record.monthly_income - spent) / record.monthly_income


# -----------------------------------------------------------------------------
# Sub-factor extraction
# -----------------------------------------------------------------------------


def _income_stability(record: CreditRecord, config: AltScoringConfig) -> Decimal | None:
    if record.employment_status is None:
        return None
    return EMPLOYMENT_INCOME_STABILITY.get(
        record.employment_status.lower(), UNLISTED_EMPLOYMENT_STABILITY
    )


def _debt_service(record: CreditRecord, config: AltScoringConfig) -> Decimal | None:
    dti = debt_to_income(record)
    return _ZERO if dti is None else _clamp(_ONE - dti)


def _collateral_coverage(record: CreditRecord, config: AltScoringConfig) -> Decimal | None:
    if not record.collateral_value:
        return _ZERO
    return _clamp(record.collateral_value / config.collateral_reference_amount)


def _employment_stability(record: CreditRecord, config: AltScoringConfig) -> Decimal | None:
    if record.employment_status is None:
        return None
    return _ONE if record.has_stable_employment else _ZERO


def _industry_risk(record: CreditRecord, config: AltScoringConfig) -> Decimal | None:
    if record.industry_risk is None:
        return None
    return INDUSTRY_RISK_SCORES.get(record.industry_risk.lower())


def _discretionary_spending(record: CreditRecord, config: AltScoringConfig) -> Decimal | None:
    if record.monthly_expenses is None or not _has_income(record):
        return None
    return _clamp(_ONE - record.monthly_expenses / record.monthly_income)


def _from_field(name: str) -> Callable[[CreditRecord, AltScoringConfig], Decimal | None]:
    return lambda record, config: record.fact(name)


SUB_FACTOR_EXTRACTORS: dict[str, Callable[[CreditRecord, AltScoringConfig], Decimal | None]] = {
    "cash_flow": _from_field("cash_flow_stability"),
    "income_stability": _income_stability,
    "debt_service": _debt_service,
    "savings_consistency": _from_field("savings_consistency"),
    "budgeting_consistency": _from_field("budgeting_consistency"),
    "collateral_coverage": _collateral_coverage,
    "employment_stability": _employment_stability,
    "industry_risk": _industry_risk,
    "payment_history": _from_field("payment_history"),
    "credit_age": _from_field("credit_age"),
    "discretionary_spending": _discretionary_spending,
}


# -----------------------------------------------------------------------------
# Behavioural thresholds
# -----------------------------------------------------------------------------


def behavioural_breaches(record: CreditRecord, config: AltScoringConfig) -> tuple[str, ...]:
    breaches: list[str] = []
    dti = debt_to_income(record)
    if dti is not None and dti > config.max_dti:
        breaches.append("HIGH_DTI")
    rate = savings_rate(record)
    if rate is not None and rate < config.min_savings_rate:
        breaches.append("LOW_SAVINGS_RATE")
    if config.stable_employment_required and not record.has_stable_employment:
        breaches.append("UNSTABLE_EMPLOYMENT")
    return tuple(breaches)


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------


def _pillar(
    pillar: str, record: CreditRecord, config: AltScoringConfig
) -> tuple[Decimal, dict[str, dict[str, str]]]:
    weights = {
        name: w
        for name, w in config.sub_factor_weights.get(pillar, {}).items()
        if w > 0 and name in PILLAR_SUB_FACTORS[pillar]
    }
    if not weights:
        raise ConfigurationError(f"Engine 2 pillar {pillar!r} has no positive sub-factor weights")

    detail: dict[str, dict[str, str]] = {}
    weighted = _ZERO
    available = _ZERO
    for name in PILLAR_SUB_FACTORS[pillar]:
        if name not in weights:
            continue
        value = SUB_FACTOR_EXTRACTORS[name](record, config)
        if value is None:
            detail[name] = {"value": "missing", "weight": str(weights[name])}
            continue
        weighted += value * weights[name]
        available += weights[name]
        detail[name] = {"value": str(quantize_ratio(value)), "weight": str(weights[name])}
    return (weighted / available if available > 0 else _ZERO), detail


def grade_blend(
    blended_score: Decimal, config: AltScoringConfig
) -> tuple[Decimal, int, RiskLabel]:
    """Clamp a 0-100 blend, round it for reporting and label it unrounded.

    A 79.5 blend reports as 80 but stays MODERATE under an 80 low-risk cut.
    """
    exact = min(max(blended_score, Decimal(MIN_SCORE)), Decimal(MAX_SCORE))
    score = int(exact.quantize(Decimal("1"), ROUND_HALF_UP))
    label = risk_label_for(
        exact,
        config.high_risk_threshold,
        config.moderate_risk_threshold,
        config.low_risk_threshold,
    )
    return exact, score, label


@traced_engine(ScoringEngineKind.CAPACITY.value, ENGINE_VERSION, ("record", "config"))
def score_capacity(*, record: CreditRecord, config: AltScoringConfig) -> ScoreResult:
    pillar_weights = {p: w for p, w in config.pillar_weights.items() if w > 0 and p in PILLARS}
    total_weight = sum(pillar_weights.values(), _ZERO)
    if total_weight <= 0:
        raise ConfigurationError("Engine 2 has no positive pillar weights configured")

    pillars: dict[str, dict] = {}
    blended = _ZERO
    for pillar in PILLARS:
        if pillar not in pillar_weights:
            continue
        value, detail = _pillar(pillar, record, config)
        share = pillar_weights[pillar] / total_weight
        blended += value * share
        pillars[pillar] = {
            "score": str((value * 100).quantize(Decimal("0.01"), ROUND_HALF_UP)),
            "weight": str(pillar_weights[pillar]),
            "normalized_weight": str(quantize_ratio(share)),
            "sub_factors": detail,
        }

    exact, score, label = grade_blend(blended * MAX_SCORE, config)
    banding: tuple[tuple[Tier, Decimal], ...] = (
        (Tier.EXCELLENT, config.low_risk_threshold),
        (Tier.GOOD, config.moderate_risk_threshold),
        (Tier.FAIR, config.high_risk_threshold),
    )
    tier = RISK_TO_TIER[label]

    breaches = behavioural_breaches(record, config)
    dti = debt_to_income(record)
    rate = savings_rate(record)
    return ScoreResult(
        engine=ScoringEngineKind.CAPACITY.value,
        score=score,
        min_score=MIN_SCORE,
        max_score=MAX_SCORE,
        tier=tier,
        banding=banding,
        components={
            "pillars": pillars,
            "exact_score": str(exact.quantize(Decimal("0.01"), ROUND_HALF_UP)),
            "dti": None if dti is None else str(quantize_ratio(dti)),
            "savings_rate": None if rate is None else str(quantize_ratio(rate)),
            "breaches": list(breaches),
        },
        review_reasons=breaches,
        forced_outcome=(
            DecisionOutcome.MANUAL_REVIEW if breaches and config.allow_manual_review else None
        ),
        risk_label=label,
        exact_score=exact,
    )
