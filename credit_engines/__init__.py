"""
Module: credit_engines
Responsibility:
    Package entrypoint re-exporting the pure scoring and lending policy
    engines.  This is the import surface for credit_batch and
    credit_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import credit_kernel.domain, credit_kernel.utils and the typed
    config schema; MUST NOT import credit_batch or credit_services.

Invariants enforced:
    - Engines never read the clock or the database.
    - Identical inputs always produce identical outputs.
    - Every invocation is traced via ``@traced_engine`` (ENGINE_TRACE).
"""

from credit_engines.capacity_scoring import behavioural_breaches, score_capacity
from credit_engines.lending_policy import compute_dti, evaluate_lending, monthly_payment
from credit_engines.tiers import RISK_TO_TIER, band_score, risk_label_for
from credit_engines.types import AppliedRule, RiskLabel, ScoreResult
from credit_engines.weighted_scoring import score_weighted

__all__ = [
    "AppliedRule",
    "RISK_TO_TIER",
    "RiskLabel",
    "ScoreResult",
    "band_score",
    "behavioural_breaches",
    "compute_dti",
    "evaluate_lending",
    "monthly_payment",
    "risk_label_for",
    "score_capacity",
    "score_weighted",
]
