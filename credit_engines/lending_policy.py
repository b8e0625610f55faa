"""
Module: credit_engines.lending_policy
Responsibility:
    Turn a ScoreResult and the applicant's financial facts into a
    DecisionDraft under a partner's LendingPolicy: tier, outcome, reasons,
    and offer terms (amount, rate, term, monthly payment).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consumes the result of
    either scoring engine through ScoreResult.banding, so it never needs to
    know which engine produced the score.

Invariants enforced:
    - Recession mode is read from the policy snapshot and applied before
      tier lookup, never from ambient state.
    - DTI strictly above ``auto_reject_dti`` always rejects with
      ``DTI_EXCEEDED``; only a recorded manual override can reverse it.
    - The rate is ``base_rate`` plus every triggered adjustment, clamped to
      ``max_rate``; adjustments are independent and additive.
    - A tier in ``require_collateral_for`` without collateral is never
      auto-approved.
    - Rejected drafts carry no offer.

Failure modes:
    - None beyond DecisionDraft's own construction checks; a policy that
      passed the validator always evaluates.

Audit relevance:
    The returned breakdown embeds the scoring breakdown and every policy
    step (effective minimum, tier lookup score, DTI, rate adjustments,
    amount candidates) so the decision can be explained without replay.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from credit_config.schema import LendingPolicy
from credit_kernel.domain.canonical import CreditRecord
from credit_kernel.domain.dtos import DecisionDraft, DecisionOutcome, OfferTerms
from credit_kernel.utils.hashing import to_json_safe
from credit_engines.tiers import band_score
from credit_engines.tracer import traced_engine
from credit_engines.types import ScoreResult, quantize_ratio

ENGINE_VERSION = "1.0"

_CENTS = Decimal("0.01")
_ZERO = Decimal("0")
_ONE = Decimal("1")
_MONTHS_PER_YEAR = Decimal("12")
_HUNDRED = Decimal("100")

# Outcome reasons
DTI_EXCEEDED = "DTI_EXCEEDED"
SCORE_BELOW_MINIMUM = "SCORE_BELOW_MINIMUM"
INCOME_UNVERIFIED = "INCOME_UNVERIFIED"
COLLATERAL_REQUIRED = "COLLATERAL_REQUIRED"
RECESSION = "RECESSION"


def monthly_payment(principal: Decimal, annual_rate: Decimal, term_months: int) -> Decimal:
    """Standard amortized payment; a zero rate divides the principal evenly."""
    if term_months <= 0:
        raise ValueError("term_months must be positive")
    r = annual_rate / _HUNDRED / _MONTHS_PER_YEAR
    if r == 0:
        return (principal / term_months).quantize(_CENTS, ROUND_HALF_UP)
    payment = principal * r / (_ONE - (_ONE + r) ** -term_months)
    return payment.quantize(_CENTS, ROUND_HALF_UP)


def compute_dti(record: CreditRecord) -> Decimal | None:
    """Monthly debt payments over monthly income; None when income is not positive."""
    if record.monthly_income is None or record.monthly_income <= 0:
        return None
    return (record.monthly_debt_payments or _ZERO) / record.monthly_income


def rate_adjustments(
    record: CreditRecord, dti: Decimal | None, policy: LendingPolicy
) -> dict[str, Decimal]:
    """Triggered adjustment code -> delta, in evaluation order."""
    triggered: dict[str, Decimal] = {}
    conditions = {
        "HIGH_DTI": dti is not None and dti > policy.max_dti,
        "EMPLOYMENT_UNSTABLE": (
            record.employment_status is not None and not record.has_stable_employment
        ),
        "RECENT_DEFAULT": (record.defaults_count or 0) > 0,
    }
    for code, hit in conditions.items():
        if hit and code in policy.rate_adjustments:
            triggered[code] = policy.rate_adjustments[code]
    if policy.recession_mode and policy.recession.rate_increase:
        triggered[RECESSION] = policy.recession.rate_increase
    return triggered


def _has_collateral(record: CreditRecord) -> bool:
    return record.collateral_value is not None and record.collateral_value > 0


@traced_engine("lending_policy", ENGINE_VERSION, ("score_result", "record", "policy"))
def evaluate_lending(
    *,
    score_result: ScoreResult,
    record: CreditRecord,
    policy: LendingPolicy,
) -> DecisionDraft:
    recession = policy.recession if policy.recession_mode else None
    shift = recession.min_score_increase if recession else 0
    effective_min = policy.min_approval_score + shift
    exact = score_result.exact_score
    lookup_score = (score_result.score if exact is None else exact) - shift
    tier = band_score(lookup_score, score_result.banding)

    dti = compute_dti(record)

    # Hard rejections
    rejections: list[str] = []
    if score_result.forced_outcome == DecisionOutcome.REJECTED:
        rejections.extend(score_result.rejection_reasons)
    if dti is not None and dti > policy.auto_reject_dti:
        rejections.append(DTI_EXCEEDED)
    if score_result.score < effective_min:
        rejections.append(SCORE_BELOW_MINIMUM)

    # Manual review triggers
    reviews: list[str] = []
    if score_result.forced_outcome == DecisionOutcome.MANUAL_REVIEW:
        reviews.extend(score_result.rejection_reasons or score_result.review_reasons)
    if dti is None:
        reviews.append(INCOME_UNVERIFIED)
    if tier in policy.require_collateral_for and not _has_collateral(record):
        reviews.append(COLLATERAL_REQUIRED)

    # Amount
    base_amount = policy.base_loan_amounts.get(tier, _ZERO)
    income_amount = None
    if dti is not None:
        income_amount = record.monthly_income * policy.income_multipliers.get(tier, _ZERO)
    amount = base_amount
    if policy.allow_income_based_override and income_amount is not None:
        amount = max(base_amount, income_amount)
    if recession:
        amount = amount * recession.amount_factor
    amount = amount.quantize(_CENTS, ROUND_HALF_UP)

    # Rate
    adjustments = rate_adjustments(record, dti, policy)
    uncapped = policy.base_rate + sum(adjustments.values(), _ZERO)
    rate = min(uncapped, policy.max_rate)

    # Term
    terms = tuple(
        sorted(
            t
            for t in policy.term_options
            if not (recession and recession.max_term is not None and t > recession.max_term)
        )
    )

    if rejections:
        outcome = DecisionOutcome.REJECTED
        reasons = tuple(rejections)
    elif reviews:
        outcome = DecisionOutcome.MANUAL_REVIEW
        reasons = tuple(reviews)
    else:
        outcome = DecisionOutcome.APPROVED
        reasons = ()

    offer = None
    if outcome != DecisionOutcome.REJECTED and terms and amount > 0:
        offer = OfferTerms(
            amount=amount,
            rate=rate,
            term_months=terms[-1],
            available_terms=terms,
            monthly_payment=monthly_payment(amount, rate, terms[-1]),
        )

    breakdown = score_result.breakdown()
    breakdown["policy"] = to_json_safe(
        {
            "recession_mode": policy.recession_mode,
            "min_approval_score": effective_min,
            "tier_lookup_score": lookup_score,
            "tier": tier.value,
            "dti": None if dti is None else quantize_ratio(dti),
            "max_dti": policy.max_dti,
            "auto_reject_dti": policy.auto_reject_dti,
            "base_amount": base_amount,
            "income_based_amount": income_amount,
            "rate_adjustments": adjustments,
            "uncapped_rate": uncapped,
            "rate_capped": uncapped > policy.max_rate,
        }
    )

    return DecisionDraft(
        outcome=outcome,
        score=score_result.score,
        engine=score_result.engine,
        tier=tier,
        reasons=reasons,
        offer=offer,
        breakdown=breakdown,
        dti=None if dti is None else quantize_ratio(dti),
    )
