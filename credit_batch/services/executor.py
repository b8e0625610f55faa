"""
ImportExecutor -- staged, resumable, SAVEPOINT-per-row batch imports.

Contract:
    Orchestrates the import batch lifecycle: stage (with idempotency and a
    pinned config snapshot), run (bounded worker pool, single writer),
    cancel, query.

Architecture: credit_batch/services.  Imports from credit_batch.domain,
    credit_batch.models, credit_batch.pipeline, credit_config and kernel
    services.

Invariants enforced:
    - Config snapshot: version ids are pinned when the batch is staged and
      every run rebuilds the snapshot from those ids, never from "active".
    - Single writer: workers only evaluate rows; the calling thread owns
      the session and applies every counter update.
    - Counters: each row's outcome, decision and counter increment are
      written in one SAVEPOINT, so ``processed == successful + failed``
      holds after every row and ``processed`` never decreases.
    - Idempotent resume: only ``pending`` rows are evaluated; a finalized
      batch returns its stored summary.
    - Cancellation: no new row starts once requested, in-flight rows are
      persisted, and the batch resolves to ``partial``.
    - All timestamps come from the injected Clock.

Failure modes:
    - ConfigurationError before any row runs: batch finalized ``failed``
      with zero processed rows.
    - Row-scoped mapping/validation errors: row marked ``error``, batch
      continues.
    - Persistence errors: the row's SAVEPOINT is retried up to
      ``max_persist_attempts``; then the row fails with PERSISTENCE_FAILED.
      Writing that failure is retried the same way; PersistenceError only
      escapes when not even the batch counters can be written.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries
      (optionally through the checkpoint callback).
"""

from __future__ import annotations

import contextvars
import threading
import time
from collections import deque
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from credit_config.schema import PartnerConfigSnapshot
from credit_config.service import DEFAULT_PROFILE, PartnerConfigService
from credit_kernel.domain.clock import Clock, SystemClock
from credit_kernel.domain.dtos import FieldError
from credit_kernel.exceptions import (
    BatchAlreadyFinalizedError,
    BatchNotFoundError,
    ConfigurationError,
    PersistenceError,
    RowScopedError,
)
from credit_kernel.logging_config import LogContext, get_logger
from credit_kernel.services.decision_recorder import DecisionRecorder

from credit_batch.domain.types import (
    BatchSummary,
    CreditRecordStatus,
    ImportBatch,
    ImportBatchStatus,
    RecordOutcome,
    RowError,
    StagedRow,
    final_status,
)
from credit_batch.models.batch import CreditRecordModel, ImportBatchModel
from credit_batch.pipeline import RowEvaluation, check_snapshot, evaluate_row

logger = get_logger("batch.executor")

Checkpoint = Callable[[BatchSummary], None]


@dataclass(frozen=True)
class ExecutorSettings:
    """Tuning knobs for a run."""

    max_workers: int = 4
    max_in_flight: int | None = None  # defaults to 2 * max_workers
    max_persist_attempts: int = 3
    checkpoint_every: int = 100

    @property
    def window(self) -> int:
        return self.max_in_flight or 2 * self.max_workers


class ImportExecutor:
    """Batch import engine with SAVEPOINT-per-row isolation.

    Contract:
        - ``stage_batch()`` creates a PROCESSING batch with pending rows.
        - ``run_batch()`` evaluates pending rows and finalizes the batch.
        - ``request_cancel()`` stops a running batch between rows.
        - ``get_batch()`` / ``get_summary()`` / ``get_record_outcomes()``.
    """

    def __init__(
        self,
        session: Session,
        config_service: PartnerConfigService | None = None,
        recorder: DecisionRecorder | None = None,
        clock: Clock | None = None,
        settings: ExecutorSettings | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config_service or PartnerConfigService(session, self._clock)
        self._recorder = recorder or DecisionRecorder(session, self._clock)
        self._settings = settings or ExecutorSettings()
        self._cancel_tokens: dict[UUID, threading.Event] = {}

    # -------------------------------------------------------------------------
    # Stage
    # -------------------------------------------------------------------------

    def stage_batch(
        self,
        partner_id: str,
        filename: str,
        rows: Sequence[dict[str, str]],
        *,
        actor_id: str,
        mapping_profile: str = DEFAULT_PROFILE,
        idempotency_key: str | None = None,
    ) -> ImportBatch:
        """Create a batch, pin its config and stage every raw row.

        Re-submitting an ``idempotency_key`` returns the existing batch.
        A configuration problem finalizes the batch as FAILED with zero
        processed rows instead of raising.
        """
        if idempotency_key is not None:
            existing = self._session.execute(
                select(ImportBatchModel).where(
                    ImportBatchModel.idempotency_key == idempotency_key,
                )
            ).scalar_one_or_none()
            if existing is not None:
                logger.info(
                    "batch_idempotent_hit",
                    extra={"batch_id": str(existing.id), "idempotency_key": idempotency_key},
                )
                return existing.to_dto()

        now = self._clock.now()
        batch = ImportBatchModel(
            partner_id=partner_id,
            filename=filename,
            mapping_profile=mapping_profile,
            status=ImportBatchStatus.PROCESSING.value,
            idempotency_key=idempotency_key,
            total_records=len(rows),
            errors=[],
            config_versions={},
            started_at=now,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self._session.add(batch)
        self._session.flush()

        for index, raw in enumerate(rows, start=1):
            self._session.add(
                CreditRecordModel(
                    batch_id=batch.id,
                    row_index=index,
                    raw_payload={str(k): v for k, v in raw.items()},
                    status=CreditRecordStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                    created_by_id=actor_id,
                )
            )
        self._session.flush()

        with LogContext.bind(batch_id=batch.id, partner_id=partner_id, actor_id=actor_id):
            try:
                snapshot = self._config.snapshot(partner_id, mapping_profile)
                check_snapshot(snapshot)
            except ConfigurationError as exc:
                self._fail_batch(batch, f"{exc.code}: {exc}")
                return batch.to_dto()

            batch.config_versions = dict(snapshot.version_ids)
            self._session.flush()
            logger.info(
                "batch_staged",
                extra={
                    "source_filename": filename,
                    "mapping_profile": mapping_profile,
                    "total_records": len(rows),
                    "config_versions": snapshot.version_ids,
                },
            )
        return batch.to_dto()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run_batch(
        self,
        batch_id: UUID,
        *,
        actor_id: str,
        checkpoint: Checkpoint | None = None,
    ) -> BatchSummary:
        """Evaluate every pending row of a batch and finalize it.

        Safe to call again after a crash: rows already processed are not
        evaluated or counted twice, and a finalized batch simply returns
        its stored summary.
        """
        batch = self._lock_batch(batch_id)
        if batch.status != ImportBatchStatus.PROCESSING.value:
            return BatchSummary.from_batch(batch.to_dto())

        token = self._cancel_tokens.setdefault(batch.id, threading.Event())
        with LogContext.bind(
            batch_id=batch.id, partner_id=batch.partner_id, actor_id=actor_id
        ):
            try:
                snapshot = self._config.snapshot_from_versions(
                    batch.partner_id, batch.config_versions
                )
                check_snapshot(snapshot)
            except ConfigurationError as exc:
                return self._fail_batch(batch, f"{exc.code}: {exc}")

            pending = [
                m.to_staged()
                for m in self._session.execute(
                    select(CreditRecordModel)
                    .where(
                        CreditRecordModel.batch_id == batch.id,
                        CreditRecordModel.status == CreditRecordStatus.PENDING.value,
                    )
                    .order_by(CreditRecordModel.row_index)
                ).scalars()
            ]
            logger.info(
                "batch_run_started",
                extra={
                    "pending_rows": len(pending),
                    "already_processed": batch.processed_records,
                    "max_workers": self._settings.max_workers,
                },
            )

            start = time.monotonic()
            try:
                cancelled = self._process_rows(
                    batch, pending, snapshot, actor_id, token, checkpoint
                )
            except ConfigurationError as exc:
                self._cancel_tokens.pop(batch.id, None)
                return self._fail_batch(batch, f"{exc.code}: {exc}")
            summary = self._finalize(batch, cancelled)
            self._cancel_tokens.pop(batch.id, None)

            logger.info(
                "batch_run_completed",
                extra={
                    "status": summary.status.value,
                    "processed_records": summary.processed_records,
                    "successful_records": summary.successful_records,
                    "failed_records": summary.failed_records,
                    "duration_ms": int((time.monotonic() - start) * 1000),
                },
            )
            return summary

    def process_batch(
        self,
        partner_id: str,
        filename: str,
        rows: Sequence[dict[str, str]],
        *,
        actor_id: str,
        mapping_profile: str = DEFAULT_PROFILE,
        idempotency_key: str | None = None,
        checkpoint: Checkpoint | None = None,
    ) -> BatchSummary:
        """Stage and run in one call."""
        batch = self.stage_batch(
            partner_id,
            filename,
            rows,
            actor_id=actor_id,
            mapping_profile=mapping_profile,
            idempotency_key=idempotency_key,
        )
        return self.run_batch(batch.batch_id, actor_id=actor_id, checkpoint=checkpoint)

    def _process_rows(
        self,
        batch: ImportBatchModel,
        pending: list[StagedRow],
        snapshot: PartnerConfigSnapshot,
        actor_id: str,
        token: threading.Event,
        checkpoint: Checkpoint | None,
    ) -> bool:
        """Fan rows out to workers, persist results in submission order.

        Returns True when the run stopped because of a cancellation.
        """
        in_flight: deque[tuple[StagedRow, Future]] = deque()
        queue = deque(pending)
        cancelled = False
        since_checkpoint = 0

        with ThreadPoolExecutor(
            max_workers=self._settings.max_workers,
            thread_name_prefix="credit-batch",
        ) as pool:
            while queue or in_flight:
                if not cancelled and (token.is_set() or batch.cancel_requested):
                    cancelled = True
                    logger.warning(
                        "batch_cancel_observed",
                        extra={"rows_not_started": len(queue), "rows_in_flight": len(in_flight)},
                    )
                    queue.clear()

                while queue and len(in_flight) < self._settings.window:
                    row = queue.popleft()
                    ctx = contextvars.copy_context()
                    in_flight.append((row, pool.submit(ctx.run, _evaluate, row, snapshot)))

                if not in_flight:
                    break

                row, future = in_flight.popleft()
                try:
                    evaluation = future.result()
                except RowScopedError as exc:
                    self._persist_row_failure(batch, row, list(exc.errors))
                except ConfigurationError:
                    for _, other in in_flight:
                        other.cancel()
                    raise
                except Exception as exc:
                    logger.exception("row_unhandled_exception", extra={"row": row.row_index})
                    self._persist_row_failure(
                        batch,
                        row,
                        [FieldError(code="UNHANDLED_EXCEPTION", message=str(exc))],
                    )
                else:
                    self._persist_success(batch, evaluation, snapshot, actor_id)

                since_checkpoint += 1
                if checkpoint is not None and since_checkpoint >= self._settings.checkpoint_every:
                    checkpoint(BatchSummary.from_batch(batch.to_dto()))
                    since_checkpoint = 0

        return cancelled

    # -------------------------------------------------------------------------
    # Single-writer persistence
    # -------------------------------------------------------------------------

    def _write_with_retry(self, row: StagedRow, write: Callable[[], None]) -> Exception | None:
        """Run ``write`` inside a SAVEPOINT, retrying database errors.

        Returns None once a write commits, otherwise the last error.
        """
        last_error: Exception | None = None
        for attempt in range(1, self._settings.max_persist_attempts + 1):
            savepoint = self._session.begin_nested()
            try:
                write()
                self._session.flush()
                savepoint.commit()
                return None
            except SQLAlchemyError as exc:
                savepoint.rollback()
                last_error = exc
                logger.warning(
                    "row_persist_retry",
                    extra={"row": row.row_index, "attempt": attempt, "error": str(exc)},
                )
        return last_error

    def _persist_success(
        self,
        batch: ImportBatchModel,
        evaluation: RowEvaluation,
        snapshot: PartnerConfigSnapshot,
        actor_id: str,
    ) -> None:
        row = evaluation.row

        def write() -> None:
            record = self._session.get(CreditRecordModel, row.record_id)
            existing = self._recorder.latest_for_record(row.record_id)
            if existing is None:
                self._recorder.record(
                    evaluation.draft,
                    partner_id=batch.partner_id,
                    applicant_key=evaluation.record.applicant_key,
                    actor_id=actor_id,
                    record_id=row.record_id,
                    batch_id=batch.id,
                    config_versions=snapshot.version_ids,
                )
            record.canonical_payload = evaluation.record.to_dict()
            record.applicant_key = evaluation.record.applicant_key
            record.status = CreditRecordStatus.PROCESSED.value
            record.error_message = None
            record.processed_at = self._clock.now()
            self._count(batch, success=True)

        error = self._write_with_retry(row, write)
        if error is None:
            return

        failure = self._persistence_failure(batch, row, error)
        self._persist_row_failure(
            batch,
            row,
            [FieldError(code=failure.code, message=str(failure))],
        )

    def _persist_row_failure(
        self,
        batch: ImportBatchModel,
        row: StagedRow,
        errors: list[FieldError],
    ) -> None:
        """Mark a row failed and count it.

        When the record itself cannot be written, the row keeps its
        ``pending`` status but the batch still counts it as failed, so the
        run can finalize.

        Raises:
            PersistenceError: not even the batch counters could be written.
        """
        row_errors = [RowError.from_field_error(row.row_index, e) for e in errors]

        def write_record() -> None:
            record = self._session.get(CreditRecordModel, row.record_id)
            record.status = CreditRecordStatus.ERROR.value
            record.error_message = "; ".join(
                f"{e.field}: {e.message}" if e.field else e.message for e in errors
            )
            record.processed_at = self._clock.now()
            self._count(batch, success=False, errors=row_errors)

        error = self._write_with_retry(row, write_record)
        if error is not None:
            failure = self._persistence_failure(batch, row, error)
            counted_errors = [
                *row_errors,
                RowError(row=row.row_index, code=failure.code, message=str(failure)),
            ]
            error = self._write_with_retry(
                row, lambda: self._count(batch, success=False, errors=counted_errors)
            )
            if error is not None:
                raise self._persistence_failure(batch, row, error) from error
            row_errors = counted_errors

        logger.info(
            "row_failed",
            extra={
                "row": row.row_index,
                "field": row_errors[0].field if row_errors else None,
                "error_codes": [e.code for e in row_errors],
            },
        )

    def _persistence_failure(
        self, batch: ImportBatchModel, row: StagedRow, error: Exception
    ) -> PersistenceError:
        failure = PersistenceError(
            str(batch.id), row.row_index, self._settings.max_persist_attempts, str(error)
        )
        logger.error(
            "row_persist_failed",
            extra={"row": row.row_index, "attempts": failure.attempts, "error": failure.cause},
        )
        return failure

    def _count(
        self,
        batch: ImportBatchModel,
        *,
        success: bool,
        errors: list[RowError] | None = None,
    ) -> None:
        """The only place batch counters change."""
        batch.processed_records += 1
        if success:
            batch.successful_records += 1
        else:
            batch.failed_records += 1
        if errors:
            batch.errors = [*(batch.errors or []), *(e.to_dict() for e in errors)]
        batch.updated_at = self._clock.now()

    # -------------------------------------------------------------------------
    # Finalize / fail / cancel
    # -------------------------------------------------------------------------

    def _finalize(self, batch: ImportBatchModel, cancelled: bool) -> BatchSummary:
        status = final_status(
            batch.total_records,
            batch.successful_records,
            batch.failed_records,
            cancelled=cancelled,
        )
        summary_parts = []
        if batch.failed_records:
            summary_parts.append(f"{batch.failed_records} row(s) failed")
        if cancelled:
            summary_parts.append("cancelled")
        batch.error_summary = ", ".join(summary_parts) or None
        batch.errors = sorted(batch.errors or [], key=lambda e: e["row"])
        batch.status = status.value
        batch.completed_at = self._clock.now()
        self._session.flush()
        return BatchSummary.from_batch(batch.to_dto())

    def _fail_batch(self, batch: ImportBatchModel, error_summary: str) -> BatchSummary:
        batch.status = ImportBatchStatus.FAILED.value
        batch.error_summary = error_summary
        batch.completed_at = self._clock.now()
        self._session.flush()
        logger.error(
            "batch_failed_configuration",
            extra={"batch_id": str(batch.id), "error_summary": error_summary},
        )
        return BatchSummary.from_batch(batch.to_dto())

    def request_cancel(self, batch_id: UUID) -> ImportBatch:
        """Ask a processing batch to stop between rows.

        Raises:
            BatchNotFoundError: unknown batch.
            BatchAlreadyFinalizedError: the batch already finished.
        """
        batch = self._lock_batch(batch_id)
        if batch.status != ImportBatchStatus.PROCESSING.value:
            raise BatchAlreadyFinalizedError(str(batch_id), batch.status)
        batch.cancel_requested = True
        self._session.flush()
        token = self._cancel_tokens.get(batch.id)
        if token is not None:
            token.set()
        logger.info("batch_cancel_requested", extra={"batch_id": str(batch_id)})
        return batch.to_dto()

    def cancellation_token(self, batch_id: UUID) -> threading.Event:
        """Event another thread may set to cancel a running batch."""
        return self._cancel_tokens.setdefault(batch_id, threading.Event())

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _lock_batch(self, batch_id: UUID) -> ImportBatchModel:
        model = self._session.execute(
            select(ImportBatchModel)
            .where(ImportBatchModel.id == batch_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise BatchNotFoundError(str(batch_id))
        return model

    def get_batch(self, batch_id: UUID) -> ImportBatch:
        model = self._session.get(ImportBatchModel, batch_id)
        if model is None:
            raise BatchNotFoundError(str(batch_id))
        return model.to_dto()

    def get_summary(self, batch_id: UUID) -> BatchSummary:
        return BatchSummary.from_batch(self.get_batch(batch_id))

    def get_record_outcomes(self, batch_id: UUID) -> list[RecordOutcome]:
        """Per-record outputs in row order, with the effective decision."""
        batch = self.get_batch(batch_id)
        errors_by_row: dict[int, list[RowError]] = {}
        for error in batch.errors:
            errors_by_row.setdefault(error.row, []).append(error)

        outcomes: list[RecordOutcome] = []
        records = self._session.execute(
            select(CreditRecordModel)
            .where(CreditRecordModel.batch_id == batch_id)
            .order_by(CreditRecordModel.row_index)
        ).scalars()
        for record in records:
            decision = self._recorder.latest_for_record(record.id)
            if decision is None:
                outcomes.append(
                    RecordOutcome(
                        record_id=record.id,
                        row_index=record.row_index,
                        status=record.record_status,
                        errors=tuple(errors_by_row.get(record.row_index, ())),
                    )
                )
                continue
            outcomes.append(
                RecordOutcome(
                    record_id=record.id,
                    row_index=record.row_index,
                    status=record.record_status,
                    score=decision.score,
                    score_breakdown=decision.breakdown,
                    decision=decision.outcome,
                    offer_terms=decision.offer.to_dict() if decision.offer else None,
                    reasons=decision.reasons,
                    is_manual=decision.is_manual,
                    decision_id=decision.id,
                )
            )
        return outcomes


def _evaluate(row: StagedRow, snapshot: PartnerConfigSnapshot) -> RowEvaluation:
    LogContext.set(row=row.row_index)
    return evaluate_row(row, snapshot)
