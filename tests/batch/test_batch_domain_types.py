"""
Tests for credit_batch.domain.types -- pure batch DTOs and status rules.
"""

from uuid import uuid4

import pytest

from credit_batch.domain.types import (
    BatchSummary,
    CreditRecordStatus,
    ImportBatch,
    ImportBatchStatus,
    RecordOutcome,
    RowError,
    final_status,
)
from credit_kernel.domain.dtos import DecisionOutcome, FieldError


class TestFinalStatus:
    @pytest.mark.parametrize(
        "total,successful,failed,expected",
        [
            (3, 3, 0, ImportBatchStatus.COMPLETED),
            (3, 2, 1, ImportBatchStatus.PARTIAL),
            (3, 0, 3, ImportBatchStatus.FAILED),
            (0, 0, 0, ImportBatchStatus.COMPLETED),
        ],
    )
    def test_from_counters(self, total, successful, failed, expected):
        assert final_status(total, successful, failed) == expected

    def test_cancelled_is_always_partial(self):
        assert final_status(5, 5, 0, cancelled=True) == ImportBatchStatus.PARTIAL
        assert final_status(5, 0, 1, cancelled=True) == ImportBatchStatus.PARTIAL


class TestBatchSummary:
    def test_counters_must_add_up(self):
        with pytest.raises(ValueError):
            BatchSummary(
                batch_id=uuid4(),
                status=ImportBatchStatus.PARTIAL,
                total_records=3,
                processed_records=3,
                successful_records=1,
                failed_records=1,
            )

    def test_to_dict_uses_output_keys(self):
        batch_id = uuid4()
        summary = BatchSummary(
            batch_id=batch_id,
            status=ImportBatchStatus.PARTIAL,
            total_records=3,
            processed_records=3,
            successful_records=2,
            failed_records=1,
            errors=(RowError(row=2, code="MISSING_REQUIRED_FIELD", message="missing", field="email"),),
        )

        assert summary.to_dict() == {
            "batch_id": str(batch_id),
            "status": "partial",
            "totalRecords": 3,
            "processedRecords": 3,
            "successfulRecords": 2,
            "failedRecords": 1,
            "errorList": [
                {
                    "row": 2,
                    "field": "email",
                    "code": "MISSING_REQUIRED_FIELD",
                    "message": "missing",
                    "value": None,
                }
            ],
        }

    def test_from_batch(self):
        batch = ImportBatch(
            batch_id=uuid4(),
            partner_id="bank-a",
            filename="a.csv",
            mapping_profile="default",
            status=ImportBatchStatus.COMPLETED,
            total_records=2,
            processed_records=2,
            successful_records=2,
        )
        summary = BatchSummary.from_batch(batch)
        assert summary.status == ImportBatchStatus.COMPLETED
        assert summary.errors == ()
        assert batch.is_final


class TestRowError:
    def test_from_field_error_stringifies_value(self):
        error = RowError.from_field_error(
            4, FieldError(code="INVALID_INTEGER", message="not whole", field="defaults_count", value=2.5)
        )
        assert error.row == 4
        assert error.value == "2.5"
        assert error.field == "defaults_count"


class TestRecordOutcome:
    def test_error_row_shape(self):
        outcome = RecordOutcome(
            record_id=uuid4(),
            row_index=1,
            status=CreditRecordStatus.ERROR,
            errors=(RowError(row=1, code="INVALID_EMAIL", message="bad", field="email"),),
        )
        data = outcome.to_dict()

        assert data["status"] == "error"
        assert data["decision"] is None
        assert "offerTerms" not in data
        assert data["errors"][0]["code"] == "INVALID_EMAIL"

    def test_decided_row_shape(self):
        outcome = RecordOutcome(
            record_id=uuid4(),
            row_index=1,
            status=CreditRecordStatus.PROCESSED,
            score=751,
            decision=DecisionOutcome.APPROVED,
            offer_terms={"amount": "75000.00"},
        )
        data = outcome.to_dict()

        assert data["decision"] == "approved"
        assert data["offerTerms"] == {"amount": "75000.00"}
        assert data["isManual"] is False
        assert "errors" not in data
