"""
Tests for DecisionRecorder -- the append-only decision audit trail.

Covers:
- Automated decisions recorded as version 1 with the full breakdown
- Manual overrides as new versions (allowed transitions only)
- Mandatory actor and justification
- Lineage history and audit queries
- Hash chain verification and tamper detection
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from credit_kernel.domain.dtos import DecisionDraft, DecisionOutcome, OfferTerms, Tier
from credit_kernel.exceptions import (
    AuditChainBrokenError,
    DecisionNotFoundError,
    InvalidDecisionTransitionError,
    OverrideJustificationRequiredError,
)
from credit_kernel.models.decision import DecisionModel

PARTNER = "bank-a"

OFFER = OfferTerms(
    amount=Decimal("50000.00"),
    rate=Decimal("12.5"),
    term_months=36,
    available_terms=(12, 24, 36),
    monthly_payment=Decimal("1672.68"),
)


def draft(outcome=DecisionOutcome.APPROVED, reasons=(), offer=OFFER, score=700):
    if outcome == DecisionOutcome.REJECTED:
        offer = None
    return DecisionDraft(
        outcome=outcome,
        score=score,
        engine="weighted",
        tier=Tier.GOOD,
        reasons=tuple(reasons),
        offer=offer,
        breakdown={"engine": "weighted", "score": score, "base_score": Decimal("695.50")},
        dti=Decimal("0.2500"),
    )


def record(recorder, outcome=DecisionOutcome.APPROVED, applicant="a@example.com", **kwargs):
    reasons = kwargs.pop("reasons", ())
    return recorder.record(
        draft(outcome, reasons=reasons),
        partner_id=PARTNER,
        applicant_key=applicant,
        actor_id=kwargs.pop("actor_id", "system:batch"),
        **kwargs,
    )


class TestRecord:
    def test_automated_decision_is_version_one(self, recorder, clock):
        batch_id, record_id = uuid4(), uuid4()
        decision = record(
            recorder,
            record_id=record_id,
            batch_id=batch_id,
            config_versions={"lending_policy": "v-1"},
        )

        assert decision.version == 1
        assert decision.supersedes_id is None
        assert decision.is_manual is False
        assert decision.outcome == DecisionOutcome.APPROVED
        assert decision.offer == OFFER
        assert decision.tier == Tier.GOOD
        assert decision.dti == Decimal("0.2500")
        assert decision.record_id == record_id
        assert decision.batch_id == batch_id
        assert decision.config_versions == {"lending_policy": "v-1"}
        assert decision.occurred_at == clock.now()
        assert len(decision.hash) == 64

    def test_breakdown_stored_json_safe(self, recorder):
        decision = record(recorder)
        assert decision.breakdown == {"engine": "weighted", "score": 700, "base_score": "695.5"}

    def test_output_shape(self, recorder):
        output = record(recorder, DecisionOutcome.REJECTED, reasons=("DTI_EXCEEDED",)).to_output()

        assert output["decision"] == "rejected"
        assert output["offer_terms"] is None
        assert output["reasons"] == ["DTI_EXCEEDED"]
        assert output["score"] == 700
        assert output["is_manual"] is False
        assert set(output) == {
            "decision_id",
            "score",
            "score_breakdown",
            "decision",
            "offer_terms",
            "reasons",
            "is_manual",
        }

    def test_sequence_is_monotonic(self, recorder):
        first = record(recorder)
        second = record(recorder, applicant="b@example.com")
        assert second.seq > first.seq

    def test_logged(self, recorder, captured_logs):
        record(recorder)
        logs = [r for r in captured_logs() if r["message"] == "decision_recorded"]
        assert logs[0]["outcome"] == "approved"
        assert logs[0]["is_manual"] is False


class TestOverride:
    def test_review_to_approved_keeps_offer(self, recorder):
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW, reasons=("COLLATERAL_REQUIRED",))

        approved = recorder.override(
            original.id,
            new_outcome=DecisionOutcome.APPROVED,
            actor_id=" officer:7 ",
            justification="Collateral verified in branch",
        )

        assert approved.version == 2
        assert approved.supersedes_id == original.id
        assert approved.is_manual is True
        assert approved.actor_id == "officer:7"
        assert approved.override_note == "Collateral verified in branch"
        assert approved.offer == OFFER
        assert approved.reasons == ("MANUAL_OVERRIDE", "COLLATERAL_REQUIRED")
        assert approved.score == original.score
        assert approved.breakdown == original.breakdown

    def test_review_to_rejected_drops_offer(self, recorder):
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW)
        rejected = recorder.override(
            original.id,
            new_outcome=DecisionOutcome.REJECTED,
            actor_id="officer:7",
            justification="Could not verify income",
        )
        assert rejected.outcome == DecisionOutcome.REJECTED
        assert rejected.offer is None

    def test_rejected_to_approved_needs_offer(self, recorder):
        original = record(recorder, DecisionOutcome.REJECTED, reasons=("DTI_EXCEEDED",))

        with pytest.raises(InvalidDecisionTransitionError) as exc_info:
            recorder.override(
                original.id,
                new_outcome=DecisionOutcome.APPROVED,
                actor_id="officer:7",
                justification="Debt refinanced",
            )
        assert exc_info.value.reason == "approval requires offer terms"

        approved = recorder.override(
            original.id,
            new_outcome=DecisionOutcome.APPROVED,
            actor_id="officer:7",
            justification="Debt refinanced",
            offer=OFFER,
        )
        assert approved.reasons == ("MANUAL_OVERRIDE", "DTI_EXCEEDED")
        assert approved.offer == OFFER

    @pytest.mark.parametrize(
        "start,target",
        [
            (DecisionOutcome.APPROVED, DecisionOutcome.REJECTED),
            (DecisionOutcome.APPROVED, DecisionOutcome.MANUAL_REVIEW),
            (DecisionOutcome.REJECTED, DecisionOutcome.MANUAL_REVIEW),
            (DecisionOutcome.MANUAL_REVIEW, DecisionOutcome.MANUAL_REVIEW),
        ],
    )
    def test_disallowed_transitions(self, recorder, start, target):
        original = record(recorder, start)
        with pytest.raises(InvalidDecisionTransitionError) as exc_info:
            recorder.override(
                original.id, new_outcome=target, actor_id="officer:7", justification="because"
            )
        assert exc_info.value.from_outcome == start.value

    def test_only_head_can_be_overridden(self, recorder):
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW)
        recorder.override(
            original.id,
            new_outcome=DecisionOutcome.REJECTED,
            actor_id="officer:7",
            justification="Fraud flag",
        )

        with pytest.raises(InvalidDecisionTransitionError) as exc_info:
            recorder.override(
                original.id,
                new_outcome=DecisionOutcome.APPROVED,
                actor_id="officer:8",
                justification="Second opinion",
            )
        assert exc_info.value.reason == "decision has already been superseded"

    def test_second_override_does_not_repeat_marker(self, recorder):
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW, reasons=("HIGH_DTI",))
        rejected = recorder.override(
            original.id,
            new_outcome=DecisionOutcome.REJECTED,
            actor_id="officer:7",
            justification="Fraud flag",
        )
        approved = recorder.override(
            rejected.id,
            new_outcome=DecisionOutcome.APPROVED,
            actor_id="officer:8",
            justification="Flag cleared",
            offer=OFFER,
        )
        assert approved.version == 3
        assert approved.reasons == ("MANUAL_OVERRIDE", "HIGH_DTI")

    @pytest.mark.parametrize(
        "actor,note,missing",
        [
            (None, "ok", "an actor"),
            ("  ", "ok", "an actor"),
            ("officer:7", None, "a justification"),
            ("officer:7", "   ", "a justification"),
        ],
    )
    def test_actor_and_justification_required(self, recorder, actor, note, missing):
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW)
        with pytest.raises(OverrideJustificationRequiredError) as exc_info:
            recorder.override(
                original.id,
                new_outcome=DecisionOutcome.APPROVED,
                actor_id=actor,
                justification=note,
            )
        assert exc_info.value.missing == missing
        assert recorder.history(original.id) == [original]

    def test_unknown_decision(self, recorder):
        with pytest.raises(DecisionNotFoundError):
            recorder.override(
                uuid4(),
                new_outcome=DecisionOutcome.APPROVED,
                actor_id="officer:7",
                justification="x",
            )

    def test_override_is_logged(self, recorder, captured_logs):
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW)
        recorder.override(
            original.id,
            new_outcome=DecisionOutcome.REJECTED,
            actor_id="officer:7",
            justification="Fraud flag",
        )
        logs = [r for r in captured_logs() if r["message"] == "decision_overridden"]
        assert logs[0]["from_outcome"] == "manual_review"
        assert logs[0]["to_outcome"] == "rejected"
        assert logs[0]["supersedes_id"] == str(original.id)


class TestReads:
    def test_history_from_any_member(self, recorder):
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW)
        override = recorder.override(
            original.id,
            new_outcome=DecisionOutcome.REJECTED,
            actor_id="officer:7",
            justification="Fraud flag",
        )

        expected = [original.id, override.id]
        assert [d.id for d in recorder.history(original.id)] == expected
        assert [d.id for d in recorder.history(override.id)] == expected

    def test_latest_for_record(self, recorder):
        record_id = uuid4()
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW, record_id=record_id)
        assert recorder.latest_for_record(record_id).id == original.id

        override = recorder.override(
            original.id,
            new_outcome=DecisionOutcome.APPROVED,
            actor_id="officer:7",
            justification="ok",
        )
        assert recorder.latest_for_record(record_id).id == override.id
        assert recorder.latest_for_record(uuid4()) is None

    def test_get_unknown(self, recorder):
        with pytest.raises(DecisionNotFoundError):
            recorder.get(uuid4())

    def test_query_filters_combine(self, recorder, clock):
        batch_id = uuid4()
        start = clock.now()
        first = record(recorder, applicant="a@example.com", batch_id=batch_id)
        clock.advance(3600)
        second = record(recorder, applicant="b@example.com", batch_id=batch_id)
        clock.advance(3600)
        third = record(recorder, applicant="a@example.com", actor_id="system:api")

        assert [d.id for d in recorder.query(applicant_key="a@example.com")] == [first.id, third.id]
        assert [d.id for d in recorder.query(batch_id=batch_id)] == [first.id, second.id]
        assert [d.id for d in recorder.query(actor_id="system:api")] == [third.id]
        assert [
            d.id
            for d in recorder.query(
                occurred_from=start + timedelta(minutes=30),
                occurred_to=start + timedelta(hours=1),
            )
        ] == [second.id]
        assert [d.id for d in recorder.query(applicant_key="a@example.com", batch_id=batch_id)] == [
            first.id
        ]
        assert len(recorder.query(limit=2)) == 2


class TestChain:
    def test_valid_chain(self, recorder):
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW)
        record(recorder, applicant="b@example.com")
        recorder.override(
            original.id,
            new_outcome=DecisionOutcome.APPROVED,
            actor_id="officer:7",
            justification="ok",
        )
        assert recorder.verify_chain() is True

    def test_genesis_links_to_nothing(self, recorder, session):
        first = record(recorder)
        second = record(recorder, applicant="b@example.com")

        assert session.get(DecisionModel, first.id).prev_hash is None
        assert session.get(DecisionModel, second.id).prev_hash == first.hash

    def test_empty_chain_is_valid(self, recorder):
        assert recorder.verify_chain() is True

    def test_tampered_outcome_detected(self, recorder, session, captured_logs):
        record(recorder)
        victim = record(recorder, DecisionOutcome.REJECTED, applicant="b@example.com")
        record(recorder, applicant="c@example.com")

        # Bypass the ORM guards the way a direct SQL edit would.
        session.execute(
            update(DecisionModel.__table__)
            .where(DecisionModel.__table__.c.id == str(victim.id))
            .values(outcome="approved")
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            recorder.verify_chain()
        assert exc_info.value.decision_id == str(victim.id)
        assert any(r["message"] == "decision_chain_broken" for r in captured_logs())

    def test_tampered_score_detected(self, recorder, session, captured_logs):
        record(recorder)
        victim = record(recorder, DecisionOutcome.REJECTED, applicant="b@example.com")

        # Only a hashed column changes; the chain fields stay intact.
        session.execute(
            update(DecisionModel.__table__)
            .where(DecisionModel.__table__.c.id == str(victim.id))
            .values(score=850)
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            recorder.verify_chain()
        assert exc_info.value.decision_id == str(victim.id)
        broken = [r for r in captured_logs() if r["message"] == "decision_chain_broken"]
        assert broken[0]["check"] == "payload"

    def test_tampered_breakdown_detected(self, recorder, session):
        victim = record(recorder)
        session.execute(
            update(DecisionModel.__table__)
            .where(DecisionModel.__table__.c.id == str(victim.id))
            .values(breakdown={"engine": "weighted", "score": 850})
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError):
            recorder.verify_chain()

    def test_reloaded_chain_verifies(self, recorder, session, clock):
        original = record(recorder, DecisionOutcome.MANUAL_REVIEW, record_id=uuid4())
        recorder.override(
            original.id,
            new_outcome=DecisionOutcome.APPROVED,
            actor_id="officer:7",
            justification="verified income",
        )
        session.expire_all()

        assert recorder.verify_chain() is True
        reloaded = recorder.get(original.id)
        assert reloaded.occurred_at == clock.now()
        assert reloaded.occurred_at.tzinfo is not None
        assert reloaded.dti == Decimal("0.2500")
