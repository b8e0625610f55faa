"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross package boundaries:
    field-level errors produced by mapping and validation, the credit tier
    and decision outcome vocabularies, offer terms, and the DecisionDraft
    handed from the lending policy evaluator to the audit recorder.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies; the audit recorder converts DecisionDraft
    into a persisted Decision row.

Invariants enforced:
    - Every FieldError carries a machine-readable code.
    - A DecisionDraft never carries offer terms when its outcome is REJECTED.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class Tier(str, Enum):
    """Ordered credit-quality bucket, best first."""

    EXCELLENT = "EXCELLENT"
    VERY_GOOD = "VERY_GOOD"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


TIER_ORDER: tuple[Tier, ...] = (
    Tier.EXCELLENT,
    Tier.VERY_GOOD,
    Tier.GOOD,
    Tier.FAIR,
    Tier.POOR,
)


class DecisionOutcome(str, Enum):
    """
    Lifecycle states of a single decision.

    DRAFT exists only inside the policy evaluator; persisted decisions are
    always in one of the terminal states.
    """

    DRAFT = "draft"
    APPROVED = "approved"
    REJECTED = "rejected"
    MANUAL_REVIEW = "manual_review"


@dataclass(frozen=True)
class FieldError:
    """
    A single field-level problem in an imported row.

    Contract:
        Carries a machine-readable code, human-readable message, the
        canonical field name, and the offending value (as received).

    Non-goals:
        Does NOT raise -- it IS the error representation.
    """

    code: str
    message: str
    field: str | None = None
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "field": self.field,
            "value": None if self.value is None else str(self.value),
        }


@dataclass(frozen=True)
class OfferTerms:
    """Loan offer: principal, annual rate (percent), term and payment."""

    amount: Decimal
    rate: Decimal
    term_months: int
    available_terms: tuple[int, ...] = ()
    monthly_payment: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": str(self.amount),
            "rate": str(self.rate),
            "term_months": self.term_months,
            "available_terms": list(self.available_terms),
            "monthly_payment": (
                None if self.monthly_payment is None else str(self.monthly_payment)
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OfferTerms:
        payment = data.get("monthly_payment")
        return cls(
            amount=Decimal(str(data["amount"])),
            rate=Decimal(str(data["rate"])),
            term_months=int(data["term_months"]),
            available_terms=tuple(int(t) for t in data.get("available_terms", ())),
            monthly_payment=None if payment is None else Decimal(str(payment)),
        )


@dataclass(frozen=True)
class DecisionDraft:
    """
    Output of the lending policy evaluator, before it is recorded.

    ``breakdown`` is the verbatim score breakdown (JSON-safe dict) so the
    recorded decision never needs to recompute it.
    """

    outcome: DecisionOutcome
    score: int
    engine: str
    tier: Tier
    reasons: tuple[str, ...] = ()
    offer: OfferTerms | None = None
    breakdown: dict[str, Any] = field(default_factory=dict)
    dti: Decimal | None = None

    def __post_init__(self) -> None:
        if self.outcome == DecisionOutcome.REJECTED and self.offer is not None:
            raise ValueError("A rejected decision cannot carry offer terms")
        if self.outcome == DecisionOutcome.DRAFT:
            raise ValueError("A decision draft must resolve to a terminal outcome")


@dataclass(frozen=True)
class DecisionRecord:
    """
    A persisted, immutable decision audit entry.

    ``version`` starts at 1 for the automated decision; each manual override
    appends version N+1 whose ``supersedes_id`` points at version N.
    """

    id: UUID
    seq: int
    partner_id: str
    applicant_key: str
    outcome: DecisionOutcome
    score: int
    engine: str
    tier: Tier
    reasons: tuple[str, ...]
    breakdown: dict[str, Any]
    offer: OfferTerms | None
    is_manual: bool
    actor_id: str
    occurred_at: datetime
    version: int = 1
    supersedes_id: UUID | None = None
    override_note: str | None = None
    record_id: UUID | None = None
    batch_id: UUID | None = None
    dti: Decimal | None = None
    config_versions: dict[str, str] = field(default_factory=dict)
    hash: str = ""

    def to_output(self) -> dict[str, Any]:
        """Per-record output shape exposed to collaborators."""
        return {
            "decision_id": str(self.id),
            "score": self.score,
            "score_breakdown": self.breakdown,
            "decision": self.outcome.value,
            "offer_terms": self.offer.to_dict() if self.offer else None,
            "reasons": list(self.reasons),
            "is_manual": self.is_manual,
        }
