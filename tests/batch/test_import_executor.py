"""
Tests for ImportExecutor -- staging, running, resuming and cancelling batches.

Uses the real pipeline and a seeded partner; failures are injected through
recorder subclasses, checkpoint callbacks and monkeypatched row evaluation.
"""

from uuid import uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from credit_batch.domain.types import CreditRecordStatus, ImportBatchStatus
from credit_batch.models.batch import CreditRecordModel
from credit_batch.pipeline import evaluate_row
from credit_batch.services.executor import ExecutorSettings, ImportExecutor
from credit_config.schema import ConfigKind
from credit_kernel.domain.dtos import DecisionOutcome
from credit_kernel.exceptions import (
    BatchAlreadyFinalizedError,
    BatchNotFoundError,
    ConfigurationError,
)
from credit_kernel.services.decision_recorder import DecisionRecorder

from tests.factories import TEST_ACTOR_ID, default_document, make_rows


class Crash(Exception):
    """Simulated process death at a checkpoint."""


class FlakyRecorder(DecisionRecorder):
    """Fails the first ``failures`` record() calls with a database error."""

    def __init__(self, session, clock, failures):
        super().__init__(session, clock)
        self.failures = failures
        self.calls = 0

    def record(self, draft, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise OperationalError("INSERT INTO decisions", {}, Exception("database is locked"))
        return super().record(draft, **kwargs)


@pytest.fixture
def failing_error_writes():
    """Fails UPDATEs that mark a credit record as errored.

    Set ``remaining`` to the number of failures to inject.
    """
    state = {"remaining": 0, "calls": 0}

    def _fail(mapper, connection, target):
        if target.status != CreditRecordStatus.ERROR.value:
            return
        state["calls"] += 1
        if state["remaining"] > 0:
            state["remaining"] -= 1
            raise OperationalError("UPDATE credit_records", {}, Exception("database is locked"))

    event.listen(CreditRecordModel, "before_update", _fail)
    yield state
    event.remove(CreditRecordModel, "before_update", _fail)


@pytest.fixture(autouse=True)
def _seed_partner(seeded_partner):
    return seeded_partner


@pytest.fixture
def executor(session, config_service, recorder, clock):
    return ImportExecutor(session, config_service, recorder, clock)


def serial_executor(session, config_service, recorder, clock, **settings):
    defaults = dict(max_workers=1, max_in_flight=1, checkpoint_every=1)
    defaults.update(settings)
    return ImportExecutor(session, config_service, recorder, clock, ExecutorSettings(**defaults))


def run(executor, rows, **kwargs):
    return executor.process_batch("bank-a", "applicants.csv", rows, actor_id=TEST_ACTOR_ID, **kwargs)


def assert_counters(summary):
    assert summary.processed_records == summary.successful_records + summary.failed_records
    assert summary.processed_records <= summary.total_records


class TestHappyPath:
    def test_all_rows_succeed(self, executor):
        summary = run(executor, make_rows(5))

        assert summary.status == ImportBatchStatus.COMPLETED
        assert summary.total_records == 5
        assert summary.processed_records == 5
        assert summary.successful_records == 5
        assert summary.errors == ()
        assert summary.error_summary is None

    def test_decisions_recorded_with_pinned_versions(self, executor, recorder):
        summary = run(executor, make_rows(3))
        batch = executor.get_batch(summary.batch_id)

        decisions = recorder.query(batch_id=summary.batch_id)
        assert [d.applicant_key for d in decisions] == [
            "applicant1@example.com",
            "applicant2@example.com",
            "applicant3@example.com",
        ]
        assert all(d.config_versions == batch.config_versions for d in decisions)
        assert all(d.actor_id == TEST_ACTOR_ID for d in decisions)
        assert recorder.verify_chain()

    def test_record_outcomes(self, executor):
        summary = run(executor, make_rows(2))
        outcomes = executor.get_record_outcomes(summary.batch_id)

        assert [o.row_index for o in outcomes] == [1, 2]
        first = outcomes[0]
        assert first.status == CreditRecordStatus.PROCESSED
        assert first.decision == DecisionOutcome.APPROVED
        assert first.score == 751
        assert first.offer_terms["amount"] == "75000.00"
        assert first.score_breakdown["engine"] == "weighted"
        assert first.decision_id is not None

    def test_empty_batch_completes(self, executor):
        summary = run(executor, [])
        assert summary.status == ImportBatchStatus.COMPLETED
        assert summary.processed_records == 0

    def test_lifecycle_logged(self, executor, captured_logs):
        run(executor, make_rows(2))
        messages = [r["message"] for r in captured_logs()]

        staged = [r for r in captured_logs() if r["message"] == "batch_staged"]
        assert staged[0]["source_filename"] == "applicants.csv"
        assert staged[0]["total_records"] == 2
        assert "batch_run_started" in messages
        completed = [r for r in captured_logs() if r["message"] == "batch_run_completed"]
        assert completed[0]["status"] == "completed"
        assert completed[0]["batch_id"]


class TestRowFailures:
    def test_missing_email_gives_partial(self, executor):
        rows = make_rows(4)
        del rows[2]["email"]

        summary = run(executor, rows)

        assert summary.status == ImportBatchStatus.PARTIAL
        assert summary.processed_records == 4
        assert summary.successful_records == 3
        assert summary.failed_records == 1
        assert_counters(summary)
        (error,) = summary.to_dict()["errorList"]
        assert error["row"] == 3
        assert error["field"] == "email"
        assert error["code"] == "MISSING_REQUIRED_FIELD"
        assert summary.error_summary == "1 row(s) failed"

    def test_failed_row_outcome(self, executor):
        rows = make_rows(2)
        rows[0]["creditMix"] = "150%"
        summary = run(executor, rows)
        outcomes = executor.get_record_outcomes(summary.batch_id)

        assert outcomes[0].status == CreditRecordStatus.ERROR
        assert outcomes[0].decision is None
        assert outcomes[0].errors[0].code == "FACTOR_OUT_OF_RANGE"
        assert outcomes[1].status == CreditRecordStatus.PROCESSED

    def test_all_rows_fail(self, executor):
        rows = make_rows(3, monthlyIncome="plenty")
        summary = run(executor, rows)

        assert summary.status == ImportBatchStatus.FAILED
        assert summary.failed_records == 3
        assert summary.successful_records == 0
        assert [e.row for e in summary.errors] == [1, 2, 3]

    def test_errors_sorted_by_row(self, executor):
        rows = make_rows(6)
        for i in (4, 1):
            del rows[i]["email"]
        summary = run(executor, rows)
        assert [e.row for e in summary.errors] == [2, 5]

    def test_unexpected_exception_fails_only_that_row(self, executor, monkeypatch):
        def exploding(row, snapshot):
            if row.row_index == 2:
                raise RuntimeError("boom")
            return evaluate_row(row, snapshot)

        monkeypatch.setattr("credit_batch.services.executor.evaluate_row", exploding)
        summary = run(executor, make_rows(3))

        assert summary.status == ImportBatchStatus.PARTIAL
        assert summary.errors[0].code == "UNHANDLED_EXCEPTION"
        assert summary.errors[0].row == 2

    def test_non_finite_cell_reported_with_its_field(self, executor):
        rows = make_rows(3)
        rows[1]["creditMix"] = "NaN"
        rows[2]["defaultCountLast3Years"] = "Infinity"

        summary = run(executor, rows)

        assert summary.status == ImportBatchStatus.PARTIAL
        assert summary.successful_records == 1
        assert_counters(summary)
        assert [(e["row"], e["field"], e["code"]) for e in summary.to_dict()["errorList"]] == [
            (2, "credit_mix", "INVALID_NUMBER"),
            (3, "defaults_count", "INVALID_INTEGER"),
        ]

    def test_malformed_number_reported_with_its_field(self, executor):
        rows = make_rows(2)
        rows[0]["monthlyIncome"] = "12..5"

        summary = run(executor, rows)

        (error,) = summary.to_dict()["errorList"]
        assert (error["row"], error["field"], error["code"]) == (
            1, "monthly_income", "INVALID_NUMBER"
        )

    def test_rejected_applicant_is_a_success(self, executor):
        summary = run(executor, make_rows(1, monthlyDebtPayments="4000"))

        assert summary.status == ImportBatchStatus.COMPLETED
        outcome = executor.get_record_outcomes(summary.batch_id)[0]
        assert outcome.decision == DecisionOutcome.REJECTED
        assert outcome.reasons == ("DTI_EXCEEDED",)
        assert outcome.offer_terms is None


class TestConfiguration:
    def test_unseeded_partner_fails_before_any_row(self, session, config_service, recorder, clock):
        executor = ImportExecutor(session, config_service, recorder, clock)
        summary = executor.process_batch(
            "unknown-partner", "a.csv", make_rows(3), actor_id=TEST_ACTOR_ID
        )

        assert summary.status == ImportBatchStatus.FAILED
        assert summary.total_records == 3
        assert summary.processed_records == 0
        assert summary.error_summary.startswith("CONFIG_NOT_FOUND")
        assert recorder.query() == []

    def test_unknown_mapping_profile(self, executor):
        summary = run(executor, make_rows(2), mapping_profile="mobile")
        assert summary.status == ImportBatchStatus.FAILED
        assert summary.processed_records == 0

    def test_mid_run_configuration_error_fails_batch(self, executor, monkeypatch):
        def broken(row, snapshot):
            if row.row_index == 3:
                raise ConfigurationError("engine cannot run", partner_id="bank-a")
            return evaluate_row(row, snapshot)

        monkeypatch.setattr("credit_batch.services.executor.evaluate_row", broken)
        summary = run(executor, make_rows(5))

        assert summary.status == ImportBatchStatus.FAILED
        assert summary.error_summary.startswith("CONFIGURATION_ERROR")
        assert_counters(summary)

    def test_config_pinned_despite_mid_batch_publish(
        self, session, config_service, recorder, clock
    ):
        executor = serial_executor(session, config_service, recorder, clock)
        policy = default_document(ConfigKind.LENDING_POLICY)
        policy["min_approval_score"] = 800
        published = []

        def publish_once(summary):
            if not published:
                config_service.save_version(
                    "bank-a", ConfigKind.LENDING_POLICY, policy, actor_id=TEST_ACTOR_ID
                )
                published.append(True)

        summary = run(executor, make_rows(3), checkpoint=publish_once)

        assert published
        outcomes = executor.get_record_outcomes(summary.batch_id)
        assert {o.decision for o in outcomes} == {DecisionOutcome.APPROVED}

        later = run(executor, make_rows(1))
        assert executor.get_record_outcomes(later.batch_id)[0].decision == DecisionOutcome.REJECTED


class TestResume:
    def test_resume_after_crash_processes_remaining_rows(
        self, session, config_service, recorder, clock
    ):
        executor = serial_executor(session, config_service, recorder, clock)
        batch = executor.stage_batch("bank-a", "a.csv", make_rows(5), actor_id=TEST_ACTOR_ID)

        def crash_after_two(summary):
            if summary.processed_records == 2:
                raise Crash()

        with pytest.raises(Crash):
            executor.run_batch(batch.batch_id, actor_id=TEST_ACTOR_ID, checkpoint=crash_after_two)

        midway = executor.get_summary(batch.batch_id)
        assert midway.status == ImportBatchStatus.PROCESSING
        assert midway.processed_records == 2

        summary = executor.run_batch(batch.batch_id, actor_id=TEST_ACTOR_ID)

        assert summary.status == ImportBatchStatus.COMPLETED
        assert summary.processed_records == 5
        assert len(recorder.query(batch_id=batch.batch_id)) == 5

    def test_finalized_batch_returns_stored_summary(self, executor, recorder):
        first = run(executor, make_rows(2))
        again = executor.run_batch(first.batch_id, actor_id=TEST_ACTOR_ID)

        assert again == first
        assert len(recorder.query(batch_id=first.batch_id)) == 2

    def test_idempotency_key_returns_existing_batch(self, executor, recorder):
        first = run(executor, make_rows(2), idempotency_key="upload-42")
        second = run(executor, make_rows(4), idempotency_key="upload-42")

        assert second.batch_id == first.batch_id
        assert second.total_records == 2
        assert len(recorder.query()) == 2

    def test_counters_never_decrease(self, session, config_service, recorder, clock):
        executor = serial_executor(session, config_service, recorder, clock)
        seen = []
        rows = make_rows(4)
        del rows[1]["email"]

        run(executor, rows, checkpoint=lambda s: seen.append(s))

        assert [s.processed_records for s in seen] == [1, 2, 3, 4]
        for snapshot in seen:
            assert_counters(snapshot)


class TestCancellation:
    def test_cancel_from_checkpoint_gives_partial(self, session, config_service, recorder, clock):
        executor = serial_executor(session, config_service, recorder, clock)
        batch = executor.stage_batch("bank-a", "a.csv", make_rows(5), actor_id=TEST_ACTOR_ID)

        summary = executor.run_batch(
            batch.batch_id,
            actor_id=TEST_ACTOR_ID,
            checkpoint=lambda s: executor.request_cancel(s.batch_id),
        )

        assert summary.status == ImportBatchStatus.PARTIAL
        assert summary.processed_records == 1
        assert summary.error_summary == "cancelled"
        pending = [
            o for o in executor.get_record_outcomes(batch.batch_id)
            if o.status == CreditRecordStatus.PENDING
        ]
        assert len(pending) == 4

    def test_token_set_before_run(self, session, config_service, recorder, clock):
        executor = serial_executor(session, config_service, recorder, clock)
        batch = executor.stage_batch("bank-a", "a.csv", make_rows(3), actor_id=TEST_ACTOR_ID)
        executor.cancellation_token(batch.batch_id).set()

        summary = executor.run_batch(batch.batch_id, actor_id=TEST_ACTOR_ID)

        assert summary.status == ImportBatchStatus.PARTIAL
        assert summary.processed_records == 0

    def test_cancel_finalized_batch(self, executor):
        summary = run(executor, make_rows(1))
        with pytest.raises(BatchAlreadyFinalizedError):
            executor.request_cancel(summary.batch_id)

    def test_cancel_unknown_batch(self, executor):
        with pytest.raises(BatchNotFoundError):
            executor.request_cancel(uuid4())


class TestPersistenceRetry:
    def test_transient_failure_is_retried(self, session, config_service, clock):
        recorder = FlakyRecorder(session, clock, failures=1)
        executor = ImportExecutor(session, config_service, recorder, clock)

        summary = run(executor, make_rows(2))

        assert summary.status == ImportBatchStatus.COMPLETED
        assert recorder.calls == 3
        assert len(recorder.query()) == 2

    def test_persistent_failure_fails_the_row(self, session, config_service, clock):
        recorder = FlakyRecorder(session, clock, failures=100)
        executor = ImportExecutor(
            session, config_service, recorder, clock, ExecutorSettings(max_persist_attempts=2)
        )

        summary = run(executor, make_rows(2))

        assert summary.status == ImportBatchStatus.FAILED
        assert {e.code for e in summary.errors} == {"PERSISTENCE_FAILED"}
        assert recorder.calls == 4
        assert_counters(summary)

    def test_transient_failure_while_recording_an_error(self, executor, failing_error_writes):
        failing_error_writes["remaining"] = 1
        rows = make_rows(3)
        del rows[1]["email"]

        summary = run(executor, rows)

        assert summary.status == ImportBatchStatus.PARTIAL
        assert failing_error_writes["calls"] == 2
        assert [(e.row, e.code) for e in summary.errors] == [(2, "MISSING_REQUIRED_FIELD")]
        outcomes = executor.get_record_outcomes(summary.batch_id)
        assert outcomes[1].status == CreditRecordStatus.ERROR
        assert_counters(summary)

    def test_error_row_still_counted_when_record_cannot_be_written(
        self, session, config_service, recorder, clock, failing_error_writes
    ):
        failing_error_writes["remaining"] = 100
        executor = serial_executor(
            session, config_service, recorder, clock, max_persist_attempts=2
        )
        rows = make_rows(3)
        del rows[1]["email"]

        summary = run(executor, rows)

        assert summary.status == ImportBatchStatus.PARTIAL
        assert summary.processed_records == 3
        assert summary.successful_records == 2
        assert summary.failed_records == 1
        assert_counters(summary)
        assert failing_error_writes["calls"] == 2
        assert {(e.row, e.code) for e in summary.errors} == {
            (2, "MISSING_REQUIRED_FIELD"),
            (2, "PERSISTENCE_FAILED"),
        }
        outcomes = executor.get_record_outcomes(summary.batch_id)
        assert outcomes[1].status == CreditRecordStatus.PENDING
        assert outcomes[1].decision is None


class TestQueries:
    def test_unknown_batch(self, executor):
        with pytest.raises(BatchNotFoundError):
            executor.get_summary(uuid4())

    def test_get_batch_carries_metadata(self, executor, clock):
        summary = run(executor, make_rows(1), idempotency_key="k-1")
        batch = executor.get_batch(summary.batch_id)

        assert batch.partner_id == "bank-a"
        assert batch.filename == "applicants.csv"
        assert batch.initiated_by == TEST_ACTOR_ID
        assert batch.idempotency_key == "k-1"
        assert batch.started_at == clock.now()
        assert batch.is_final
        assert set(batch.config_versions) == {"lending_policy", "mapping_profile", "scoring"}

    def test_reloaded_batch_keeps_utc_timestamps(self, session, executor, clock):
        summary = run(executor, make_rows(1))
        session.expire_all()

        batch = executor.get_batch(summary.batch_id)

        assert batch.started_at == clock.now()
        assert batch.started_at.tzinfo is not None
        assert batch.completed_at.tzinfo is not None
