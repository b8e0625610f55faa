"""
Typed Exception Hierarchy for the Credit Decisioning Engine.

Every error has a typed class, a machine-readable ``code`` class attribute,
and carries its context as structured attributes (never parsed from the
message string).

    CreditEngineError (base)
    |
    +-- ConfigurationError             fatal; aborts a batch before any row
    |   +-- ConfigValidationError      config rejected at save time
    |   +-- ConfigNotFoundError        no active/pinned version
    |
    +-- RowScopedError                 recorded against one row; siblings continue
    |   +-- FieldMappingError
    |   +-- RecordValidationError
    |
    +-- PersistenceError               row write failed after retries
    |
    +-- BatchError
    |   +-- BatchNotFoundError
    |   +-- BatchAlreadyFinalizedError
    |
    +-- DecisionError
    |   +-- DecisionNotFoundError
    |   +-- InvalidDecisionTransitionError
    |   +-- OverrideJustificationRequiredError
    |
    +-- ImmutabilityViolationError     UPDATE/DELETE on an append-only row
    +-- AuditChainBrokenError

A policy violation (score too low, DTI exceeded, ...) is an expected
business outcome. It is represented as a reason on the decision, never
raised.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from credit_kernel.domain.dtos import FieldError


class CreditEngineError(Exception):
    """Base exception; all subclasses define a ``code`` class attribute."""

    code: str = "CREDIT_ENGINE_ERROR"


# Configuration


class ConfigurationError(CreditEngineError):
    """Configuration is missing or unusable; the whole batch fails."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, partner_id: str | None = None):
        self.partner_id = partner_id
        super().__init__(message)


class ConfigValidationError(ConfigurationError):
    """A config document failed save-time validation."""

    code: str = "CONFIG_VALIDATION_FAILED"

    def __init__(self, kind: str, errors: Sequence[str], partner_id: str | None = None):
        self.kind = kind
        self.errors = tuple(errors)
        super().__init__(
            f"Invalid {kind} configuration: {'; '.join(self.errors)}",
            partner_id=partner_id,
        )


class ConfigNotFoundError(ConfigurationError):
    """No active (or pinned) config version exists."""

    code: str = "CONFIG_NOT_FOUND"

    def __init__(self, partner_id: str, kind: str, name: str | None = None):
        self.kind = kind
        self.name = name
        label = f"{kind}:{name}" if name else kind
        super().__init__(
            f"No active {label} configuration for partner {partner_id}",
            partner_id=partner_id,
        )


# Row-scoped


class RowScopedError(CreditEngineError):
    """Error confined to a single imported row."""

    code: str = "ROW_ERROR"

    def __init__(self, errors: Sequence[FieldError], row: int | None = None):
        self.errors = tuple(errors)
        self.row = row
        first = self.errors[0] if self.errors else None
        self.field = first.field if first else None
        detail = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Row {row}: {detail}" if row is not None else detail)


class FieldMappingError(RowScopedError):
    """Raw row could not be mapped to the canonical schema."""

    code: str = "FIELD_MAPPING_FAILED"


class RecordValidationError(RowScopedError):
    """Canonical record failed validation."""

    code: str = "VALIDATION_FAILED"


# Persistence


class PersistenceError(CreditEngineError):
    """Writing a row outcome failed after all retries."""

    code: str = "PERSISTENCE_FAILED"

    def __init__(self, batch_id: str, row: int | None, attempts: int, cause: str):
        self.batch_id = batch_id
        self.row = row
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Persisting row {row} of batch {batch_id} failed after "
            f"{attempts} attempt(s): {cause}"
        )


# Batches


class BatchError(CreditEngineError):
    code: str = "BATCH_ERROR"


class BatchNotFoundError(BatchError):
    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Import batch not found: {batch_id}")


class BatchAlreadyFinalizedError(BatchError):
    """A finalized batch can never be reopened."""

    code: str = "BATCH_ALREADY_FINALIZED"

    def __init__(self, batch_id: str, status: str):
        self.batch_id = batch_id
        self.status = status
        super().__init__(f"Import batch {batch_id} is already {status}")


# Decisions


class DecisionError(CreditEngineError):
    code: str = "DECISION_ERROR"


class DecisionNotFoundError(DecisionError):
    code: str = "DECISION_NOT_FOUND"

    def __init__(self, decision_id: str):
        self.decision_id = decision_id
        super().__init__(f"Decision not found: {decision_id}")


class InvalidDecisionTransitionError(DecisionError):
    code: str = "INVALID_DECISION_TRANSITION"

    def __init__(self, decision_id: str, from_outcome: str, to_outcome: str, reason: str = ""):
        self.decision_id = decision_id
        self.from_outcome = from_outcome
        self.to_outcome = to_outcome
        self.reason = reason
        msg = f"Cannot move decision {decision_id} from {from_outcome} to {to_outcome}"
        super().__init__(f"{msg}: {reason}" if reason else msg)


class OverrideJustificationRequiredError(DecisionError):
    """Manual overrides need an actor and a non-empty justification."""

    code: str = "OVERRIDE_JUSTIFICATION_REQUIRED"

    def __init__(self, decision_id: str, missing: str):
        self.decision_id = decision_id
        self.missing = missing
        super().__init__(f"Override of decision {decision_id} requires {missing}")


# Immutability / audit


class ImmutabilityViolationError(CreditEngineError):
    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(CreditEngineError):
    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, decision_id: str, expected_hash: str, actual_hash: str):
        self.decision_id = decision_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Decision audit chain broken at {decision_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
