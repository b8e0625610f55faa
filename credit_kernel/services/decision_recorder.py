"""
DecisionRecorder -- append-only, hash-chained decision audit trail.

Responsibility:
    Persists every automated decision and every manual override as an
    immutable Decision row.  Provides the audit queries (by applicant,
    batch, actor, date range), lineage history, and chain verification.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the batch
    orchestrator (automated decisions) and by the administrative service
    (manual overrides, queries).

Invariants enforced:
    - Append-only: rows are never updated or deleted (ORM listeners).
    - Corrections are new versions: an override writes version N+1 with
      ``supersedes_id`` = version N; only the head of a lineage can be
      overridden.
    - Override transitions: MANUAL_REVIEW -> {APPROVED, REJECTED} and
      REJECTED -> APPROVED.  Actor and non-empty justification mandatory.
    - Chain integrity: hash = H(id | applicant_key | outcome | payload_hash |
      prev_hash), seq allocated by SequenceService.

Failure modes:
    - DecisionNotFoundError, InvalidDecisionTransitionError,
      OverrideJustificationRequiredError on bad override requests.
    - AuditChainBrokenError from verify_chain() when a row was tampered with.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from credit_kernel.db.immutability import register_immutability_listeners
from credit_kernel.domain.clock import Clock, SystemClock
from credit_kernel.domain.dtos import (
    DecisionDraft,
    DecisionOutcome,
    DecisionRecord,
    OfferTerms,
)
from credit_kernel.exceptions import (
    AuditChainBrokenError,
    DecisionNotFoundError,
    InvalidDecisionTransitionError,
    OverrideJustificationRequiredError,
)
from credit_kernel.logging_config import get_logger
from credit_kernel.models.decision import DecisionModel
from credit_kernel.services.sequence_service import SequenceService
from credit_kernel.utils.hashing import hash_decision_entry, hash_payload, to_json_safe

logger = get_logger("services.decision_recorder")

MANUAL_OVERRIDE_REASON = "MANUAL_OVERRIDE"

# Columns covered by payload_hash besides id, seq, outcome, offer, breakdown
# and occurred_at.
_PAYLOAD_FIELDS = (
    "partner_id",
    "applicant_key",
    "record_id",
    "batch_id",
    "version",
    "supersedes_id",
    "engine",
    "score",
    "tier",
    "dti",
    "reasons",
    "config_versions",
    "is_manual",
    "override_note",
    "actor_id",
)

OVERRIDE_TRANSITIONS: dict[DecisionOutcome, frozenset[DecisionOutcome]] = {
    DecisionOutcome.MANUAL_REVIEW: frozenset(
        {DecisionOutcome.APPROVED, DecisionOutcome.REJECTED}
    ),
    DecisionOutcome.REJECTED: frozenset({DecisionOutcome.APPROVED}),
    DecisionOutcome.APPROVED: frozenset(),
}


class DecisionRecorder:
    """Writes and queries the decision audit trail."""

    def __init__(self, session: Session, clock: Clock | None = None):
        register_immutability_listeners()
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        draft: DecisionDraft,
        *,
        partner_id: str,
        applicant_key: str,
        actor_id: str,
        record_id: UUID | None = None,
        batch_id: UUID | None = None,
        config_versions: dict[str, str] | None = None,
    ) -> DecisionRecord:
        """Append the automated decision (version 1) for a record."""
        model = self._append(
            partner_id=partner_id,
            applicant_key=applicant_key,
            record_id=record_id,
            batch_id=batch_id,
            version=1,
            supersedes_id=None,
            outcome=draft.outcome,
            engine=draft.engine,
            score=draft.score,
            tier=draft.tier.value,
            dti=draft.dti,
            breakdown=draft.breakdown,
            reasons=list(draft.reasons),
            offer=draft.offer,
            config_versions=dict(config_versions or {}),
            is_manual=False,
            override_note=None,
            actor_id=actor_id,
        )
        return model.to_dto()

    def override(
        self,
        decision_id: UUID,
        *,
        new_outcome: DecisionOutcome,
        actor_id: str | None,
        justification: str | None,
        offer: OfferTerms | None = None,
    ) -> DecisionRecord:
        """
        Manually move a decision to a new outcome.

        Appends a new version referencing the overridden one.  The overridden
        decision's reasons (e.g. ``DTI_EXCEEDED``) are carried on the new
        version after ``MANUAL_OVERRIDE`` so the pair stays explainable.
        """
        if not actor_id or not actor_id.strip():
            raise OverrideJustificationRequiredError(str(decision_id), "an actor")
        if not justification or not justification.strip():
            raise OverrideJustificationRequiredError(str(decision_id), "a justification")

        current = self._get_model(decision_id)
        current_outcome = DecisionOutcome(current.outcome)

        successor = self._session.execute(
            select(DecisionModel.id).where(DecisionModel.supersedes_id == current.id)
        ).first()
        if successor is not None:
            raise InvalidDecisionTransitionError(
                str(decision_id),
                current_outcome.value,
                new_outcome.value,
                reason="decision has already been superseded",
            )

        if new_outcome not in OVERRIDE_TRANSITIONS.get(current_outcome, frozenset()):
            raise InvalidDecisionTransitionError(
                str(decision_id), current_outcome.value, new_outcome.value
            )

        if new_outcome == DecisionOutcome.APPROVED:
            if offer is None and current.offer:
                offer = OfferTerms.from_dict(current.offer)
            if offer is None:
                raise InvalidDecisionTransitionError(
                    str(decision_id),
                    current_outcome.value,
                    new_outcome.value,
                    reason="approval requires offer terms",
                )
        else:
            offer = None

        reasons = [MANUAL_OVERRIDE_REASON] + [
            r for r in (current.reasons or []) if r != MANUAL_OVERRIDE_REASON
        ]

        model = self._append(
            partner_id=current.partner_id,
            applicant_key=current.applicant_key,
            record_id=current.record_id,
            batch_id=current.batch_id,
            version=current.version + 1,
            supersedes_id=current.id,
            outcome=new_outcome,
            engine=current.engine,
            score=current.score,
            tier=current.tier,
            dti=current.dti,
            breakdown=dict(current.breakdown or {}),
            reasons=reasons,
            offer=offer,
            config_versions=dict(current.config_versions or {}),
            is_manual=True,
            override_note=justification.strip(),
            actor_id=actor_id.strip(),
        )

        logger.info(
            "decision_overridden",
            extra={
                "decision_id": str(model.id),
                "supersedes_id": str(current.id),
                "from_outcome": current_outcome.value,
                "to_outcome": new_outcome.value,
                "actor_id": model.actor_id,
            },
        )
        return model.to_dto()

    def _append(
        self,
        *,
        outcome: DecisionOutcome,
        offer: OfferTerms | None,
        breakdown: dict[str, Any],
        **fields: Any,
    ) -> DecisionModel:
        decision_id = uuid4()
        seq = self._sequences.next_value(SequenceService.DECISION)
        prev_hash = self._last_hash()
        occurred_at = self._clock.now()

        model = DecisionModel(
            id=decision_id,
            seq=seq,
            outcome=outcome.value,
            offer=offer.to_dict() if offer else None,
            breakdown=to_json_safe(breakdown),
            occurred_at=occurred_at,
            prev_hash=prev_hash,
            **fields,
        )
        model.payload_hash = hash_payload(_payload_of(model))
        model.hash = hash_decision_entry(
            decision_id=str(decision_id),
            applicant_key=model.applicant_key,
            outcome=model.outcome,
            payload_hash=model.payload_hash,
            prev_hash=prev_hash,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "decision_recorded",
            extra={
                "decision_id": str(decision_id),
                "seq": seq,
                "outcome": outcome.value,
                "version": fields["version"],
                "is_manual": fields["is_manual"],
            },
        )
        return model

    def _last_hash(self) -> str | None:
        last = self._session.execute(
            select(DecisionModel.hash).order_by(DecisionModel.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get_model(self, decision_id: UUID) -> DecisionModel:
        model = self._session.get(DecisionModel, decision_id)
        if model is None:
            raise DecisionNotFoundError(str(decision_id))
        return model

    def get(self, decision_id: UUID) -> DecisionRecord:
        return self._get_model(decision_id).to_dto()

    def latest_for_record(self, record_id: UUID) -> DecisionRecord | None:
        """Effective (highest-version) decision for a CreditRecord."""
        model = self._session.execute(
            select(DecisionModel)
            .where(DecisionModel.record_id == record_id)
            .order_by(DecisionModel.version.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model else None

    def history(self, decision_id: UUID) -> list[DecisionRecord]:
        """Full lineage containing ``decision_id``, oldest first."""
        model = self._get_model(decision_id)
        while model.supersedes_id is not None:
            model = self._get_model(model.supersedes_id)

        chain = [model]
        while True:
            nxt = self._session.execute(
                select(DecisionModel).where(DecisionModel.supersedes_id == chain[-1].id)
            ).scalar_one_or_none()
            if nxt is None:
                break
            chain.append(nxt)
        return [m.to_dto() for m in chain]

    def query(
        self,
        *,
        applicant_key: str | None = None,
        batch_id: UUID | None = None,
        actor_id: str | None = None,
        occurred_from: datetime | None = None,
        occurred_to: datetime | None = None,
        limit: int | None = None,
    ) -> list[DecisionRecord]:
        """
        Filter the audit trail; filters combine with AND.

        Date bounds are inclusive.  Results are in append (seq) order.
        """
        stmt = select(DecisionModel)
        if applicant_key is not None:
            stmt = stmt.where(DecisionModel.applicant_key == applicant_key)
        if batch_id is not None:
            stmt = stmt.where(DecisionModel.batch_id == batch_id)
        if actor_id is not None:
            stmt = stmt.where(DecisionModel.actor_id == actor_id)
        if occurred_from is not None:
            stmt = stmt.where(DecisionModel.occurred_at >= occurred_from)
        if occurred_to is not None:
            stmt = stmt.where(DecisionModel.occurred_at <= occurred_to)
        stmt = stmt.order_by(DecisionModel.seq)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def verify_chain(self) -> bool:
        """
        Rebuild every payload from its row, recompute every entry hash and
        check predecessor linkage.

        Raises:
            AuditChainBrokenError at the first mismatch.
        """
        entries = self._session.execute(
            select(DecisionModel).order_by(DecisionModel.seq)
        ).scalars().all()

        prev: str | None = None
        for entry in entries:
            if entry.prev_hash != prev:
                logger.critical(
                    "decision_chain_broken",
                    extra={"decision_id": str(entry.id), "check": "linkage"},
                )
                raise AuditChainBrokenError(
                    str(entry.id), prev or "None", entry.prev_hash or "None"
                )
            payload_hash = hash_payload(_payload_of(entry))
            if entry.payload_hash != payload_hash:
                logger.critical(
                    "decision_chain_broken",
                    extra={"decision_id": str(entry.id), "check": "payload"},
                )
                raise AuditChainBrokenError(str(entry.id), payload_hash, entry.payload_hash)
            expected = hash_decision_entry(
                decision_id=str(entry.id),
                applicant_key=entry.applicant_key,
                outcome=entry.outcome,
                payload_hash=entry.payload_hash,
                prev_hash=entry.prev_hash,
            )
            if entry.hash != expected:
                logger.critical(
                    "decision_chain_broken",
                    extra={"decision_id": str(entry.id), "check": "hash"},
                )
                raise AuditChainBrokenError(str(entry.id), expected, entry.hash)
            prev = entry.hash

        logger.info("decision_chain_valid", extra={"entry_count": len(entries)})
        return True


def _payload_of(model: DecisionModel) -> dict[str, Any]:
    """The hashed content of a decision row, as canonical JSON values."""
    payload = {
        "decision_id": model.id,
        "seq": model.seq,
        "outcome": model.outcome,
        "offer": model.offer,
        "breakdown": model.breakdown,
        "occurred_at": model.occurred_at,
    }
    payload.update((name, getattr(model, name)) for name in _PAYLOAD_FIELDS)
    return to_json_safe(payload)
