"""
ORM models for batch imports.

Contract:
    ImportBatchModel persists batch state, counters, the ordered error list
    and the pinned config version ids.  CreditRecordModel stages one raw row
    per record and, once mapped, its canonical payload.  Each has
    ``to_dto()``.

Architecture: credit_batch/models. Imports from credit_kernel.db.base only
    (plus the pure batch domain types).

Invariants enforced:
    - ``idempotency_key`` is UNIQUE on ImportBatchModel.
    - ``(batch_id, row_index)`` is UNIQUE on CreditRecordModel; row_index is
      the 1-based position in the uploaded source.
    - A finalized batch is never updated (db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from credit_batch.domain.types import (
    CreditRecordStatus,
    ImportBatch,
    ImportBatchStatus,
    RowError,
    StagedRow,
)
from credit_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class ImportBatchModel(TrackedBase):
    """Persistent import batch."""

    __tablename__ = "import_batches"

    __table_args__ = (
        Index("ix_import_batches_partner", "partner_id"),
        Index("ix_import_batches_status", "status"),
        Index("ix_import_batches_started_at", "started_at"),
    )

    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mapping_profile: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(200), nullable=True, unique=True,
    )
    total_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    config_versions: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    records: Mapped[list["CreditRecordModel"]] = relationship(
        "CreditRecordModel",
        back_populates="batch",
        foreign_keys="CreditRecordModel.batch_id",
        order_by="CreditRecordModel.row_index",
    )

    def to_dto(self) -> ImportBatch:
        return ImportBatch(
            batch_id=self.id,
            partner_id=self.partner_id,
            filename=self.filename,
            mapping_profile=self.mapping_profile,
            status=ImportBatchStatus(self.status),
            total_records=self.total_records,
            processed_records=self.processed_records,
            successful_records=self.successful_records,
            failed_records=self.failed_records,
            errors=tuple(RowError(**e) for e in (self.errors or [])),
            config_versions=dict(self.config_versions or {}),
            idempotency_key=self.idempotency_key,
            cancel_requested=self.cancel_requested,
            error_summary=self.error_summary,
            initiated_by=self.created_by_id,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


class CreditRecordModel(TrackedBase):
    """One staged row and its canonical form."""

    __tablename__ = "credit_records"

    __table_args__ = (
        UniqueConstraint("batch_id", "row_index", name="uq_credit_record_row"),
        Index("ix_credit_records_batch_status", "batch_id", "status"),
        Index("ix_credit_records_applicant", "applicant_key"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("import_batches.id"),
        nullable=False,
    )
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    raw_payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    canonical_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    applicant_key: Mapped[str | None] = mapped_column(String(320), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    batch: Mapped["ImportBatchModel"] = relationship(
        "ImportBatchModel",
        back_populates="records",
        foreign_keys=[batch_id],
    )

    @property
    def record_status(self) -> CreditRecordStatus:
        return CreditRecordStatus(self.status)

    def to_staged(self) -> StagedRow:
        return StagedRow(
            record_id=self.id,
            row_index=self.row_index,
            raw=dict(self.raw_payload),
        )
