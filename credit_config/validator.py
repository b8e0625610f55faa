"""
Configuration Validator (``credit_config.validator``).

Responsibility
--------------
Semantic, save-time checks on parsed partner configuration documents.
The loader guarantees shape (closed keys, types); this module guarantees
that the values make sense together, so the engines never have to defend
against a nonsensical config.

Invariants enforced
-------------------
* Engine 1 has at least one positive factor weight and min < max score.
* Engine 1 weights that do not sum to 100 (within 1) produce a warning,
  not an error; the engine normalizes proportionally.
* Penalty points are <= 0, bonus points >= 0; rule facts are canonical
  numeric facts.
* Engine 2 pillars and sub-factors have positive weights, risk cut points
  are strictly ordered high < moderate < low.
* Lending policy: base_rate <= max_rate, max_dti <= auto_reject_dti, every
  tier priced, positive term options, recession factor in (0, 1].
* Lending policy: min_approval_score, alone and raised by the recession
  increase, lies on the selected engine's score scale.
* Mapping profiles map every required canonical field to a known target.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from credit_config.schema import (
    PILLAR_SUB_FACTORS,
    PILLARS,
    AltScoringConfig,
    ConditionRule,
    LendingPolicy,
    MappingProfile,
    ScoringConfig,
    ScoringEngineKind,
)
from credit_kernel.domain.canonical import CANONICAL_FIELDS, REQUIRED_FIELDS, RULE_FACTS
from credit_kernel.domain.dtos import TIER_ORDER, Tier

WEIGHT_SUM_TARGET = Decimal("100")
WEIGHT_SUM_TOLERANCE = Decimal("1")

# Nominal score scale of each engine; a pinned ScoringConfig may narrow the
# weighted one.
ENGINE_SCORE_RANGES: dict[ScoringEngineKind, tuple[int, int]] = {
    ScoringEngineKind.WEIGHTED: (ScoringConfig.min_score, ScoringConfig.max_score),
    ScoringEngineKind.CAPACITY: (0, 100),
}


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty; warnings do not
    block publishing but are logged.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _check_weight_sum(weights: dict[str, Decimal], context: str, result: ConfigValidationResult):
    total = sum(weights.values(), Decimal("0"))
    if total <= 0:
        result.add_error(f"{context}: no positive weights configured")
    elif abs(total - WEIGHT_SUM_TARGET) > WEIGHT_SUM_TOLERANCE:
        result.add_warning(
            f"{context}: weights sum to {total}, they will be normalized proportionally"
        )
    for name, weight in weights.items():
        if weight < 0:
            result.add_error(f"{context}.{name}: weight must not be negative")


def _check_rules(
    rules: tuple[ConditionRule, ...], context: str, sign: int, result: ConfigValidationResult
):
    codes: set[str] = set()
    for rule in rules:
        where = f"{context}.{rule.code}"
        if rule.code in codes:
            result.add_error(f"{where}: duplicate rule code")
        codes.add(rule.code)
        if rule.fact not in RULE_FACTS:
            result.add_error(f"{where}: unknown fact {rule.fact!r}")
        if sign < 0 and rule.points > 0:
            result.add_error(f"{where}: penalty points must be <= 0")
        if sign > 0 and rule.points < 0:
            result.add_error(f"{where}: bonus points must be >= 0")
        if sign == 0 and rule.points != 0:
            result.add_error(f"{where}: rejection rules carry no points")


def validate_scoring_config(config: ScoringConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _check_weight_sum(config.weights, "scoring.weights", result)
    if config.min_score >= config.max_score:
        result.add_error("scoring: max_score must be greater than min_score")
    _check_rules(config.penalties, "scoring.penalties", -1, result)
    _check_rules(config.bonuses, "scoring.bonuses", 1, result)
    _check_rules(config.rejection_rules, "scoring.rejection_rules", 0, result)

    previous: int | None = None
    for tier in TIER_ORDER:
        if tier == Tier.POOR:
            continue
        cut = config.tier_thresholds.get(tier)
        if cut is None:
            result.add_error(f"scoring.tier_thresholds: missing {tier.value}")
            continue
        if not config.min_score <= cut <= config.max_score:
            result.add_error(
                f"scoring.tier_thresholds.{tier.value}: {cut} outside "
                f"[{config.min_score}, {config.max_score}]"
            )
        if previous is not None and cut >= previous:
            result.add_error("scoring.tier_thresholds: cut points must descend from EXCELLENT")
        previous = cut
    return result


def validate_alt_scoring_config(config: AltScoringConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _check_weight_sum(config.pillar_weights, "alt_scoring.pillar_weights", result)
    for pillar in PILLARS:
        if config.pillar_weights.get(pillar, Decimal("0")) <= 0:
            continue
        sub = config.sub_factor_weights.get(pillar, {})
        if sum(sub.values(), Decimal("0")) <= 0:
            result.add_error(
                f"alt_scoring.sub_factor_weights.{pillar}: weighted pillar has no "
                f"positive sub-factor weights (expected some of {list(PILLAR_SUB_FACTORS[pillar])})"
            )
    if not (
        config.high_risk_threshold
        < config.moderate_risk_threshold
        < config.low_risk_threshold
    ):
        result.add_error(
            "alt_scoring: risk thresholds must satisfy high < moderate < low"
        )
    if config.high_risk_threshold < 0 or config.low_risk_threshold > 100:
        result.add_error("alt_scoring: risk thresholds must lie within [0, 100]")
    if config.max_dti <= 0:
        result.add_error("alt_scoring.max_dti: must be positive")
    if config.collateral_reference_amount <= 0:
        result.add_error("alt_scoring.collateral_reference_amount: must be positive")
    return result


def validate_lending_policy(config: LendingPolicy) -> ConfigValidationResult:
    result = ConfigValidationResult()
    if config.base_rate < 0:
        result.add_error("lending_policy.base_rate: must not be negative")
    if config.base_rate > config.max_rate:
        result.add_error("lending_policy: base_rate cannot exceed max_rate")
    if config.max_dti <= 0:
        result.add_error("lending_policy.max_dti: must be positive")
    if config.max_dti > config.auto_reject_dti:
        result.add_error("lending_policy: max_dti cannot exceed auto_reject_dti")
    for key in ("base_loan_amounts", "income_multipliers"):
        table = getattr(config, key)
        for tier in TIER_ORDER:
            if tier not in table:
                result.add_error(f"lending_policy.{key}: missing {tier.value}")
            elif table[tier] < 0:
                result.add_error(f"lending_policy.{key}.{tier.value}: must not be negative")
    if not config.term_options:
        result.add_error("lending_policy.term_options: at least one term is required")
    if any(t <= 0 for t in config.term_options):
        result.add_error("lending_policy.term_options: terms must be positive")
    for code, delta in config.rate_adjustments.items():
        if delta < 0:
            result.add_warning(f"lending_policy.rate_adjustments.{code}: negative adjustment")
    recession = config.recession
    if not Decimal("0") < recession.amount_factor <= Decimal("1"):
        result.add_error("lending_policy.recession.amount_factor: must be in (0, 1]")
    if recession.min_score_increase < 0:
        result.add_error("lending_policy.recession.min_score_increase: must not be negative")
    if recession.max_term is not None and not any(
        t <= recession.max_term for t in config.term_options
    ):
        result.add_error("lending_policy.recession.max_term: leaves no term option available")
    low, high = ENGINE_SCORE_RANGES[config.scoring_engine]
    _check_approval_threshold(config, low, high, result)
    return result


def _check_approval_threshold(
    policy: LendingPolicy, low: int, high: int, result: ConfigValidationResult
) -> None:
    engine = policy.scoring_engine.value
    floor = policy.min_approval_score
    if not low <= floor <= high:
        result.add_error(
            f"lending_policy.min_approval_score: {floor} is outside the {engine} "
            f"score scale [{low}, {high}]"
        )
    elif floor + policy.recession.min_score_increase > high:
        result.add_error(
            f"lending_policy.recession.min_score_increase: raises the approval floor "
            f"to {floor + policy.recession.min_score_increase}, above the {engine} maximum {high}"
        )


def validate_policy_for_engine(
    policy: LendingPolicy, engine_config: ScoringConfig | AltScoringConfig
) -> ConfigValidationResult:
    """Check a policy's approval floor against the engine config it will run with."""
    result = ConfigValidationResult()
    if isinstance(engine_config, ScoringConfig):
        low, high = engine_config.min_score, engine_config.max_score
    else:
        low, high = ENGINE_SCORE_RANGES[ScoringEngineKind.CAPACITY]
    _check_approval_threshold(policy, low, high, result)
    return result


def validate_mapping_profile(profile: MappingProfile) -> ConfigValidationResult:
    result = ConfigValidationResult()
    targets: set[str] = set()
    for fm in profile.fields:
        where = f"mapping_profile:{profile.name}.fields.{fm.target}"
        if fm.target not in CANONICAL_FIELDS:
            result.add_error(f"{where}: unknown canonical field")
        if fm.target in targets:
            result.add_error(f"{where}: mapped more than once")
        targets.add(fm.target)
        if not fm.source.strip():
            result.add_error(f"{where}: source column is empty")
    for missing in sorted(REQUIRED_FIELDS - targets):
        result.add_error(
            f"mapping_profile:{profile.name}: required field {missing!r} is not mapped"
        )
    return result


def validate_document(config) -> ConfigValidationResult:
    """Dispatch on the config type."""
    if isinstance(config, ScoringConfig):
        return validate_scoring_config(config)
    if isinstance(config, AltScoringConfig):
        return validate_alt_scoring_config(config)
    if isinstance(config, LendingPolicy):
        return validate_lending_policy(config)
    if isinstance(config, MappingProfile):
        return validate_mapping_profile(config)
    raise TypeError(f"Unsupported config type: {type(config).__name__}")
