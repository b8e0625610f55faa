"""
Module: credit_kernel.models.decision
Responsibility: ORM persistence for the append-only decision audit trail.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py only.

Invariants enforced:
    - Rows are append-only; UPDATE and DELETE are refused by the listeners
      in db/immutability.py.
    - Chain integrity: hash = H(id | applicant_key | outcome | payload_hash |
      prev_hash).  Written and verified by DecisionRecorder.
    - seq is unique and increases with insertion order.
    - (record_id, version) is unique: one decision lineage per record.

Audit relevance:
    A Decision row IS the audit entry.  The score breakdown is stored
    verbatim so a decision can be explained without recomputation, and the
    config version ids pin which ScoringConfig/LendingPolicy judged it.
    ``record_id`` and ``batch_id`` are plain columns (no foreign keys) so the
    entry survives purging of the source CreditRecord.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from credit_kernel.db.base import Base, UTCDateTime, UUIDString
from credit_kernel.domain.dtos import (
    DecisionOutcome,
    DecisionRecord,
    OfferTerms,
    Tier,
)


class DecisionModel(Base):
    """One immutable decision (automated, or a manual override version)."""

    __tablename__ = "decisions"
    __table_args__ = (
        UniqueConstraint("record_id", "version", name="uq_decision_record_version"),
        Index("idx_decision_applicant", "applicant_key"),
        Index("idx_decision_batch", "batch_id"),
        Index("idx_decision_actor", "actor_id"),
        Index("idx_decision_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    applicant_key: Mapped[str] = mapped_column(String(255), nullable=False)
    record_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    supersedes_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    engine: Mapped[str] = mapped_column(String(20), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    dti: Mapped[Decimal | None] = mapped_column(nullable=True)

    breakdown: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    reasons: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    offer: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    config_versions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<Decision {self.outcome} v{self.version} for {self.applicant_key}>"

    def to_dto(self) -> DecisionRecord:
        return DecisionRecord(
            id=self.id,
            seq=self.seq,
            partner_id=self.partner_id,
            applicant_key=self.applicant_key,
            outcome=DecisionOutcome(self.outcome),
            score=self.score,
            engine=self.engine,
            tier=Tier(self.tier),
            reasons=tuple(self.reasons or ()),
            breakdown=dict(self.breakdown or {}),
            offer=OfferTerms.from_dict(self.offer) if self.offer else None,
            is_manual=self.is_manual,
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
            version=self.version,
            supersedes_id=self.supersedes_id,
            override_note=self.override_note,
            record_id=self.record_id,
            batch_id=self.batch_id,
            dti=self.dti,
            config_versions=dict(self.config_versions or {}),
            hash=self.hash,
        )
