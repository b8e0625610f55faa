"""
Tier banding.

A score maps to the best tier whose cut point it reaches; cut points are
inclusive lower bounds, so a score exactly on a boundary lands in the
better tier.  Anything below the last cut is POOR.
"""

from __future__ import annotations

from decimal import Decimal

from credit_kernel.domain.dtos import TIER_ORDER, Tier
from credit_engines.types import RiskLabel

RISK_TO_TIER: dict[RiskLabel, Tier] = {
    RiskLabel.LOW: Tier.EXCELLENT,
    RiskLabel.MODERATE: Tier.GOOD,
    RiskLabel.HIGH: Tier.FAIR,
    RiskLabel.VERY_HIGH: Tier.POOR,
}


def banding_from_thresholds(thresholds: dict[Tier, int]) -> tuple[tuple[Tier, int], ...]:
    """Order a tier -> cut point mapping best tier first."""
    return tuple((tier, thresholds[tier]) for tier in TIER_ORDER if tier in thresholds)


def band_score(score: int | Decimal, banding: tuple[tuple[Tier, int | Decimal], ...]) -> Tier:
    for tier, cut in banding:
        if score >= cut:
            return tier
    return Tier.POOR


def risk_label_for(
    score: int | Decimal, high: int | Decimal, moderate: int | Decimal, low: int | Decimal
) -> RiskLabel:
    if score >= low:
        return RiskLabel.LOW
    if score >= moderate:
        return RiskLabel.MODERATE
    if score >= high:
        return RiskLabel.HIGH
    return RiskLabel.VERY_HIGH
