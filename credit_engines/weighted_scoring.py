"""
Module: credit_engines.weighted_scoring
Responsibility:
    Engine 1, the weighted-factor model.  Scores a validated CreditRecord
    against a partner's ScoringConfig on the [min_score, max_score] scale.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Weights are normalized proportionally: a partner whose weights sum to
      97 or 103 is scored as if they summed to 100.
    - Penalties apply in configuration order, then bonuses, each at most
      once; the result is clamped to [min_score, max_score].
    - Rejection rules never change the number; they only force the outcome.
    - Identical (record, config) always yields an identical result.

Failure modes:
    - ConfigurationError when no positive factor weight is configured.
    - ValueError when a weighted factor is missing from the record (the
      validation layer guarantees presence).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from credit_config.schema import ConditionRule, ScoringConfig, ScoringEngineKind
from credit_kernel.domain.canonical import FACTOR_FIELDS, CreditRecord
from credit_kernel.domain.dtos import DecisionOutcome
from credit_kernel.exceptions import ConfigurationError
from credit_engines.tiers import band_score, banding_from_thresholds
from credit_engines.tracer import traced_engine
from credit_engines.types import AppliedRule, ScoreResult, quantize_ratio

ENGINE_VERSION = "1.0"


def _fire(
    rules: tuple[ConditionRule, ...], kind: str, record: CreditRecord
) -> list[AppliedRule]:
    return [
        AppliedRule(
            code=rule.code,
            kind=kind,
            points=rule.points,
            fact=rule.fact,
            value=record.fact(rule.fact),
        )
        for rule in rules
        if rule.matches(record)
    ]


@traced_engine(ScoringEngineKind.WEIGHTED.value, ENGINE_VERSION, ("record", "config"))
def score_weighted(*, record: CreditRecord, config: ScoringConfig) -> ScoreResult:
    weights = {name: w for name, w in config.weights.items() if w > 0}
    total_weight = sum(weights.values(), Decimal("0"))
    if total_weight <= 0:
        raise ConfigurationError("Engine 1 has no positive factor weights configured")

    span = Decimal(config.max_score - config.min_score)
    factors: dict[str, dict[str, str]] = {}
    normalized = Decimal("0")
    for name in FACTOR_FIELDS:
        if name not in weights:
            continue
        value = record.fact(name)
        if value is None:
            raise ValueError(f"Weighted factor {name!r} is missing from the record")
        share = weights[name] / total_weight
        contribution = value * share
        normalized += contribution
        factors[name] = {
            "value": str(value),
            "weight": str(weights[name]),
            "normalized_weight": str(quantize_ratio(share)),
            "points": str((contribution * span).quantize(Decimal("0.01"), ROUND_HALF_UP)),
        }

    base = Decimal(config.min_score) + normalized * span
    penalties = _fire(config.penalties, "penalty", record)
    bonuses = _fire(config.bonuses, "bonus", record)
    adjusted = base + sum(r.points for r in penalties) + sum(r.points for r in bonuses)
    clamped = min(max(adjusted, Decimal(config.min_score)), Decimal(config.max_score))
    score = int(clamped.quantize(Decimal("1"), ROUND_HALF_UP))

    rejections = tuple(r.code for r in config.rejection_rules if r.matches(record))
    forced = None
    if rejections:
        forced = (
            DecisionOutcome.MANUAL_REVIEW
            if config.allow_manual_override
            else DecisionOutcome.REJECTED
        )

    banding = banding_from_thresholds(config.tier_thresholds)
    return ScoreResult(
        engine=ScoringEngineKind.WEIGHTED.value,
        score=score,
        min_score=config.min_score,
        max_score=config.max_score,
        tier=band_score(score, banding),
        banding=banding,
        components={
            "factors": factors,
            "base_score": str(base.quantize(Decimal("0.01"), ROUND_HALF_UP)),
            "penalty_points": sum(r.points for r in penalties),
            "bonus_points": sum(r.points for r in bonuses),
            "clamped": clamped != adjusted,
        },
        applied_rules=tuple(penalties + bonuses),
        rejection_reasons=rejections,
        forced_outcome=forced,
    )
