"""
credit_services.admin_service -- Administrative surface for lending partners.

Responsibility:
    Single facade consumed by the (external) CRUD/API layer: publish and
    inspect partner config versions, query import batches and decisions,
    propose mappings for a new upload layout, and apply manual overrides.

Architecture position:
    Services -- stateful orchestration over config, batch and kernel
    services.  Composes PartnerConfigService, ImportExecutor and
    DecisionRecorder around one session and one Clock.

Invariants enforced:
    - Config documents are parsed and validated before they are stored.
    - Overrides require an actor and a non-empty justification and are
      recorded as new decision versions (DecisionRecorder).
    - Read paths never mutate state.

Failure modes:
    - ConfigValidationError, ConfigNotFoundError from config operations.
    - BatchNotFoundError from batch queries.
    - DecisionNotFoundError, InvalidDecisionTransitionError,
      OverrideJustificationRequiredError from overrides.

Usage:
    admin = LendingAdminService(session, clock=clock)
    admin.publish_config("bank-a", ConfigKind.LENDING_POLICY, yaml_text, actor_id="ops:7")
    admin.override_decision(decision_id, new_outcome=DecisionOutcome.APPROVED,
                            actor_id="analyst:42", justification="Verified payslips")
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from credit_batch.domain.types import BatchSummary, ImportBatch, ImportBatchStatus, RecordOutcome
from credit_batch.models.batch import ImportBatchModel
from credit_batch.services.executor import ExecutorSettings, ImportExecutor
from credit_config.loader import load_yaml_text
from credit_config.schema import ConfigKind, ConfigVersion, PartnerConfigSnapshot
from credit_config.service import DEFAULT_PROFILE, PartnerConfigService
from credit_config.validator import ConfigValidationResult
from credit_ingestion.mapping.suggest import MappingSuggestion, suggest_mappings
from credit_kernel.domain.clock import Clock, SystemClock
from credit_kernel.domain.dtos import DecisionOutcome, DecisionRecord, OfferTerms
from credit_kernel.logging_config import LogContext, get_logger
from credit_kernel.services.decision_recorder import DecisionRecorder

logger = get_logger("services.admin")


class LendingAdminService:
    """
    Administrative facade.

    Contract:
        Every method either reads, or writes through the owning service;
        nothing here bypasses validation or the audit trail.

    Non-goals:
        - Does NOT authenticate callers; ``actor_id`` is trusted input.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: ExecutorSettings | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = PartnerConfigService(session, self._clock)
        self._recorder = DecisionRecorder(session, self._clock)
        self._executor = ImportExecutor(
            session,
            config_service=self._config,
            recorder=self._recorder,
            clock=self._clock,
            settings=settings,
        )

    # ------------------------------------------------------------------
    # Partner config
    # ------------------------------------------------------------------

    def publish_config(
        self,
        partner_id: str,
        kind: ConfigKind,
        document: dict[str, Any] | str,
        *,
        actor_id: str,
        name: str = DEFAULT_PROFILE,
        activate: bool = True,
    ) -> tuple[ConfigVersion, ConfigValidationResult]:
        """Validate and store a config document given as a dict or YAML text."""
        if isinstance(document, str):
            document = load_yaml_text(document)
        with LogContext.bind(partner_id=partner_id, actor_id=actor_id):
            return self._config.save_version(
                partner_id, kind, document, actor_id=actor_id, name=name, activate=activate
            )

    def activate_config(self, version_id: UUID, *, actor_id: str) -> ConfigVersion:
        with LogContext.bind(actor_id=actor_id):
            return self._config.activate(version_id, actor_id=actor_id)

    def seed_partner(self, partner_id: str, *, actor_id: str) -> list[ConfigVersion]:
        """Publish the packaged defaults for a newly onboarded partner."""
        with LogContext.bind(partner_id=partner_id, actor_id=actor_id):
            versions = self._config.seed_defaults(partner_id, actor_id=actor_id)
        logger.info(
            "partner_seeded",
            extra={"partner_id": partner_id, "versions": len(versions)},
        )
        return versions

    def get_config_version(self, version_id: UUID) -> ConfigVersion:
        return self._config.get_version(version_id)

    def get_active_config(
        self, partner_id: str, kind: ConfigKind, name: str = DEFAULT_PROFILE
    ) -> ConfigVersion | None:
        return self._config.get_active(partner_id, kind, name)

    def list_config_versions(
        self,
        partner_id: str,
        kind: ConfigKind | None = None,
        name: str | None = None,
    ) -> list[ConfigVersion]:
        return self._config.list_versions(partner_id, kind, name)

    def preview_snapshot(
        self, partner_id: str, profile_name: str = DEFAULT_PROFILE
    ) -> PartnerConfigSnapshot:
        """The snapshot a batch started now would pin."""
        return self._config.snapshot(partner_id, profile_name)

    def suggest_mapping(self, source_headers: Sequence[str]) -> list[MappingSuggestion]:
        return suggest_mappings(source_headers)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def import_records(
        self,
        partner_id: str,
        filename: str,
        rows: Sequence[dict[str, str]],
        *,
        actor_id: str,
        mapping_profile: str = DEFAULT_PROFILE,
        idempotency_key: str | None = None,
    ) -> BatchSummary:
        return self._executor.process_batch(
            partner_id,
            filename,
            rows,
            actor_id=actor_id,
            mapping_profile=mapping_profile,
            idempotency_key=idempotency_key,
        )

    def get_batch(self, batch_id: UUID) -> ImportBatch:
        return self._executor.get_batch(batch_id)

    def get_batch_summary(self, batch_id: UUID) -> BatchSummary:
        return self._executor.get_summary(batch_id)

    def get_batch_records(self, batch_id: UUID) -> list[RecordOutcome]:
        return self._executor.get_record_outcomes(batch_id)

    def list_batches(
        self,
        partner_id: str,
        status: ImportBatchStatus | None = None,
        limit: int | None = None,
    ) -> list[ImportBatch]:
        """Batches of a partner, newest first."""
        stmt = select(ImportBatchModel).where(ImportBatchModel.partner_id == partner_id)
        if status is not None:
            stmt = stmt.where(ImportBatchModel.status == status.value)
        stmt = stmt.order_by(ImportBatchModel.started_at.desc(), ImportBatchModel.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def cancel_batch(self, batch_id: UUID, *, actor_id: str) -> ImportBatch:
        with LogContext.bind(actor_id=actor_id):
            return self._executor.request_cancel(batch_id)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def get_decision(self, decision_id: UUID) -> DecisionRecord:
        return self._recorder.get(decision_id)

    def decision_history(self, decision_id: UUID) -> list[DecisionRecord]:
        return self._recorder.history(decision_id)

    def query_decisions(
        self,
        *,
        applicant_key: str | None = None,
        batch_id: UUID | None = None,
        actor_id: str | None = None,
        occurred_from: datetime | None = None,
        occurred_to: datetime | None = None,
        limit: int | None = None,
    ) -> list[DecisionRecord]:
        return self._recorder.query(
            applicant_key=applicant_key,
            batch_id=batch_id,
            actor_id=actor_id,
            occurred_from=occurred_from,
            occurred_to=occurred_to,
            limit=limit,
        )

    def override_decision(
        self,
        decision_id: UUID,
        *,
        new_outcome: DecisionOutcome,
        actor_id: str | None,
        justification: str | None,
        offer: OfferTerms | None = None,
    ) -> DecisionRecord:
        """Manual override: recorded as a new decision version."""
        with LogContext.bind(actor_id=actor_id):
            return self._recorder.override(
                decision_id,
                new_outcome=new_outcome,
                actor_id=actor_id,
                justification=justification,
                offer=offer,
            )

    def verify_audit_trail(self) -> bool:
        return self._recorder.verify_chain()
