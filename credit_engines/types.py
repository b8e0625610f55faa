"""
Result types shared by the scoring engines and the lending policy evaluator.

Architecture position:
    Engines -- pure values, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from credit_kernel.domain.dtos import DecisionOutcome, Tier
from credit_kernel.utils.hashing import to_json_safe


class RiskLabel(str, Enum):
    """Engine 2 risk bands, best first."""

    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


@dataclass(frozen=True)
class AppliedRule:
    """A penalty or bonus that fired, with the fact value that triggered it."""

    code: str
    kind: str  # "penalty" | "bonus"
    points: int
    fact: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind,
            "points": self.points,
            "fact": self.fact,
            "value": None if self.value is None else str(self.value),
        }


@dataclass(frozen=True)
class ScoreResult:
    """
    Output of either scoring engine.

    Contract:
        ``components`` is the full, JSON-safe contribution breakdown.
        ``banding`` lists the inclusive lower cut point of each tier on
        this engine's scale, best tier first; the lowest tier has no cut.
        ``forced_outcome`` is set when rejection rules or behavioural
        breaches override the numeric score.
        ``exact_score`` is the unrounded score when the engine blends to a
        fraction; banding and risk labels are cut on it.
    """

    engine: str
    score: int
    min_score: int
    max_score: int
    tier: Tier
    banding: tuple[tuple[Tier, int | Decimal], ...]
    components: dict[str, Any] = field(default_factory=dict)
    applied_rules: tuple[AppliedRule, ...] = ()
    rejection_reasons: tuple[str, ...] = ()
    review_reasons: tuple[str, ...] = ()
    forced_outcome: DecisionOutcome | None = None
    risk_label: RiskLabel | None = None
    exact_score: Decimal | None = None

    def breakdown(self) -> dict[str, Any]:
        """Verbatim breakdown stored on the decision."""
        return to_json_safe(
            {
                "engine": self.engine,
                "score": self.score,
                "min_score": self.min_score,
                "max_score": self.max_score,
                "tier": self.tier.value,
                "risk_label": self.risk_label.value if self.risk_label else None,
                "components": self.components,
                "applied_rules": [r.to_dict() for r in self.applied_rules],
                "rejection_reasons": list(self.rejection_reasons),
                "review_reasons": list(self.review_reasons),
                "forced_outcome": (
                    self.forced_outcome.value if self.forced_outcome else None
                ),
            }
        )


def quantize_ratio(value: Decimal) -> Decimal:
    """Ratios in breakdowns carry four decimal places."""
    return value.quantize(Decimal("0.0001"))
