"""
Module: credit_kernel.db.immutability
Responsibility: ORM event listeners that enforce append-only persistence.

    - Decision rows are never updated or deleted; corrections are new
      versions with a ``supersedes_id`` back-reference.
    - PartnerConfig versions are never deleted and their payload, version
      and fingerprint never change; only ``status`` may move from
      ``active`` to ``superseded``.
    - A finalized ImportBatch (completed/failed/partial) is never reopened
      or edited.

Architecture position: Kernel > DB.  Model classes are imported lazily in
    register_immutability_listeners() so this module stays importable from
    db/engine.py without cycles.

Failure modes:
    - ImmutabilityViolationError raised from inside flush; the enclosing
      transaction (or SAVEPOINT) must be rolled back by the caller.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from credit_kernel.exceptions import ImmutabilityViolationError
from credit_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

CONFIG_MUTABLE_FIELDS = frozenset({"status", "updated_at", "updated_by_id"})

_registered = False


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type, entity_id=entity_id, reason=reason
    )


def _check_decision_update(mapper, connection, target):
    _blocked("Decision", str(target.id), "UPDATE", "Decisions are append-only")


def _check_decision_delete(mapper, connection, target):
    _blocked("Decision", str(target.id), "DELETE", "Decisions are never deleted")


def _check_config_version_update(mapper, connection, target):
    from credit_config.lifecycle import ConfigStatus, validate_transition

    state = inspect(target)
    changed = {
        attr.key
        for attr in state.attrs
        if attr.key not in CONFIG_MUTABLE_FIELDS and attr.history.has_changes()
    }
    if changed:
        _blocked(
            "PartnerConfigVersion",
            str(target.id),
            "UPDATE",
            f"Published config fields cannot change: {sorted(changed)}",
        )
    status_hist = get_history(target, "status")
    if status_hist.deleted and status_hist.added:
        old, new = status_hist.deleted[0], status_hist.added[0]
        if not validate_transition(ConfigStatus(old), ConfigStatus(new)):
            _blocked(
                "PartnerConfigVersion",
                str(target.id),
                "UPDATE",
                f"Config status cannot move from {old} to {new}",
            )


def _check_config_version_delete(mapper, connection, target):
    _blocked(
        "PartnerConfigVersion",
        str(target.id),
        "DELETE",
        "Config versions are retained for audit",
    )


def _check_batch_update(mapper, connection, target):
    status_hist = get_history(target, "status")
    previous = status_hist.deleted[0] if status_hist.deleted else target.status
    if status_hist.deleted and previous == "processing":
        return
    if previous in ("completed", "failed", "partial"):
        _blocked(
            "ImportBatch",
            str(target.id),
            "UPDATE",
            f"Batch was finalized as {previous} and cannot be reopened",
        )


def register_immutability_listeners() -> None:
    """Register all listeners once per process (idempotent)."""
    global _registered
    if _registered:
        return

    from credit_batch.models.batch import ImportBatchModel
    from credit_config.models import PartnerConfigVersionModel
    from credit_kernel.models.decision import DecisionModel

    event.listen(DecisionModel, "before_update", _check_decision_update)
    event.listen(DecisionModel, "before_delete", _check_decision_delete)

    event.listen(
        PartnerConfigVersionModel, "before_update", _check_config_version_update
    )
    event.listen(
        PartnerConfigVersionModel, "before_delete", _check_config_version_delete
    )

    event.listen(ImportBatchModel, "before_update", _check_batch_update)

    _registered = True
