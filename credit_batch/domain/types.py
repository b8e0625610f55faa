"""
credit_batch.domain.types -- Pure frozen dataclasses for batch imports.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - ``processed == successful + failed`` on every BatchSummary.
    - Final status is a pure function of the counters (``final_status``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from credit_kernel.domain.dtos import DecisionOutcome, FieldError


# =============================================================================
# Status enums
# =============================================================================


class ImportBatchStatus(str, Enum):
    """Batch-level lifecycle status."""

    PROCESSING = "processing"  # Created, rows may still be pending
    COMPLETED = "completed"  # Every row succeeded
    FAILED = "failed"  # No row succeeded, or configuration failure
    PARTIAL = "partial"  # Some rows failed, or cancelled


FINAL_STATUSES: frozenset[ImportBatchStatus] = frozenset(
    {ImportBatchStatus.COMPLETED, ImportBatchStatus.FAILED, ImportBatchStatus.PARTIAL}
)


class CreditRecordStatus(str, Enum):
    """Per-row lifecycle status."""

    PENDING = "pending"  # Staged, not yet evaluated
    PROCESSED = "processed"  # Mapped, validated, scored, decision recorded
    ERROR = "error"  # Mapping, validation or persistence failed


def final_status(
    total: int, successful: int, failed: int, cancelled: bool = False
) -> ImportBatchStatus:
    """
    Deterministic batch outcome.

    ``failed`` iff no row succeeded out of a non-empty batch; ``completed``
    iff no row failed; ``partial`` otherwise.  A cancelled batch is always
    ``partial``.
    """
    if cancelled:
        return ImportBatchStatus.PARTIAL
    if total > 0 and successful == 0:
        return ImportBatchStatus.FAILED
    if failed == 0:
        return ImportBatchStatus.COMPLETED
    return ImportBatchStatus.PARTIAL


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class RowError:
    """One entry of a batch error list: row index (1-based) and field error."""

    row: int
    code: str
    message: str
    field: str | None = None
    value: Any = None

    @classmethod
    def from_field_error(cls, row: int, error: FieldError) -> RowError:
        return cls(
            row=row,
            code=error.code,
            message=error.message,
            field=error.field,
            value=None if error.value is None else str(error.value),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "field": self.field,
            "code": self.code,
            "message": self.message,
            "value": self.value,
        }


@dataclass(frozen=True)
class ImportBatch:
    """Immutable snapshot of an import batch."""

    batch_id: UUID
    partner_id: str
    filename: str
    mapping_profile: str
    status: ImportBatchStatus
    total_records: int = 0
    processed_records: int = 0
    successful_records: int = 0
    failed_records: int = 0
    errors: tuple[RowError, ...] = ()
    config_versions: dict[str, str] = field(default_factory=dict)
    idempotency_key: str | None = None
    cancel_requested: bool = False
    error_summary: str | None = None
    initiated_by: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES


@dataclass(frozen=True)
class BatchSummary:
    """Per-batch output exposed to collaborators."""

    batch_id: UUID
    status: ImportBatchStatus
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    errors: tuple[RowError, ...] = ()
    error_summary: str | None = None

    def __post_init__(self) -> None:
        if self.processed_records != self.successful_records + self.failed_records:
            raise ValueError(
                "processed_records must equal successful_records + failed_records"
            )

    @classmethod
    def from_batch(cls, batch: ImportBatch) -> BatchSummary:
        return cls(
            batch_id=batch.batch_id,
            status=batch.status,
            total_records=batch.total_records,
            processed_records=batch.processed_records,
            successful_records=batch.successful_records,
            failed_records=batch.failed_records,
            errors=batch.errors,
            error_summary=batch.error_summary,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": str(self.batch_id),
            "status": self.status.value,
            "totalRecords": self.total_records,
            "processedRecords": self.processed_records,
            "successfulRecords": self.successful_records,
            "failedRecords": self.failed_records,
            "errorList": [e.to_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class RecordOutcome:
    """Per-record output exposed to collaborators."""

    record_id: UUID
    row_index: int
    status: CreditRecordStatus
    score: int | None = None
    score_breakdown: dict[str, Any] = field(default_factory=dict)
    decision: DecisionOutcome | None = None
    offer_terms: dict[str, Any] | None = None
    reasons: tuple[str, ...] = ()
    is_manual: bool = False
    decision_id: UUID | None = None
    errors: tuple[RowError, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "status": self.status.value,
            "score": self.score,
            "scoreBreakdown": self.score_breakdown,
            "decision": self.decision.value if self.decision else None,
            "reasons": list(self.reasons),
            "isManual": self.is_manual,
        }
        if self.offer_terms is not None:
            out["offerTerms"] = self.offer_terms
        if self.errors:
            out["errors"] = [e.to_dict() for e in self.errors]
        return out


@dataclass(frozen=True)
class StagedRow:
    """A staged raw row as handed to a worker: identity plus opaque payload."""

    record_id: UUID
    row_index: int
    raw: dict[str, str]
