"""
Pure per-row pipeline: resolve -> validate -> score -> decide.

Architecture: credit_batch. ZERO I/O; safe to run on worker threads.  The
only shared input is the frozen PartnerConfigSnapshot pinned at batch
start, so every row of a batch is judged by the same configuration.

Failure modes:
    - FieldMappingError / RecordValidationError for row-scoped problems.
    - ConfigurationError when the snapshot cannot drive its engine.
"""

from __future__ import annotations

from dataclasses import dataclass

from credit_config.schema import PartnerConfigSnapshot, ScoringEngineKind
from credit_config.validator import validate_document, validate_policy_for_engine
from credit_engines import evaluate_lending, score_capacity, score_weighted
from credit_engines.types import ScoreResult
from credit_ingestion.mapping import resolve_record
from credit_ingestion.validation import validate_record
from credit_kernel.domain.canonical import CreditRecord
from credit_kernel.domain.dtos import DecisionDraft
from credit_kernel.exceptions import (
    ConfigurationError,
    FieldMappingError,
    RecordValidationError,
)

from credit_batch.domain.types import StagedRow


@dataclass(frozen=True)
class RowEvaluation:
    row: StagedRow
    record: CreditRecord
    draft: DecisionDraft


def check_snapshot(snapshot: PartnerConfigSnapshot) -> None:
    """
    Fail closed before any row is touched.

    Raises:
        ConfigurationError: the selected engine has no config, or a pinned
            document no longer passes validation.
    """
    if snapshot.engine == ScoringEngineKind.WEIGHTED:
        engine_config = snapshot.scoring
    else:
        engine_config = snapshot.alt_scoring
    if engine_config is None:
        raise ConfigurationError(
            f"No {snapshot.engine.value} scoring config pinned for this batch",
            partner_id=snapshot.partner_id,
        )
    for document in (engine_config, snapshot.policy, snapshot.mapping_profile):
        result = validate_document(document)
        if not result.is_valid:
            raise ConfigurationError(
                f"Pinned {type(document).__name__} is invalid: {'; '.join(result.errors)}",
                partner_id=snapshot.partner_id,
            )
    fit = validate_policy_for_engine(snapshot.policy, engine_config)
    if not fit.is_valid:
        raise ConfigurationError(
            f"Pinned LendingPolicy does not fit its engine: {'; '.join(fit.errors)}",
            partner_id=snapshot.partner_id,
        )


def score_record(record: CreditRecord, snapshot: PartnerConfigSnapshot) -> ScoreResult:
    """Run the engine the partner's lending policy selects."""
    if snapshot.engine == ScoringEngineKind.WEIGHTED:
        if snapshot.scoring is None:
            raise ConfigurationError("No weighted scoring config", partner_id=snapshot.partner_id)
        return score_weighted(record=record, config=snapshot.scoring)
    if snapshot.alt_scoring is None:
        raise ConfigurationError("No capacity scoring config", partner_id=snapshot.partner_id)
    return score_capacity(record=record, config=snapshot.alt_scoring)


def evaluate_row(row: StagedRow, snapshot: PartnerConfigSnapshot) -> RowEvaluation:
    mapped = resolve_record(row.raw, snapshot.mapping_profile)
    if not mapped.success:
        raise FieldMappingError(mapped.errors, row=row.row_index)

    record, errors = validate_record(mapped.record)
    if record is None:
        raise RecordValidationError(errors, row=row.row_index)

    score = score_record(record, snapshot)
    draft = evaluate_lending(score_result=score, record=record, policy=snapshot.policy)
    return RowEvaluation(row=row, record=record, draft=draft)
