"""
PartnerConfigService -- versioned storage and snapshotting of partner config.

Responsibility:
    Saves validated config documents as immutable versions, moves versions
    through the lifecycle (draft -> active -> superseded), and assembles the
    PartnerConfigSnapshot a batch pins at start.

Architecture position:
    Config layer -- imperative shell over PartnerConfigVersionModel.
    Used by the administrative service and the batch orchestrator.

Invariants enforced:
    - A document is parsed (closed keys) and validated before it is stored.
    - At most one active version per (partner, kind, name); activating a
      version supersedes the previous one in the same unit of work.
    - Stored payloads never change; snapshots are rebuilt from pinned
      version ids, so a mid-batch publish never reaches a running batch.

Failure modes:
    - ConfigValidationError when a document is rejected.
    - ConfigNotFoundError when a required active or pinned version is absent.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from credit_config.lifecycle import ConfigStatus
from credit_config.loader import dump_document, load_default_documents, parse_document
from credit_config.models import PartnerConfigVersionModel
from credit_config.schema import (
    ConfigKind,
    ConfigVersion,
    PartnerConfigSnapshot,
    ScoringEngineKind,
)
from credit_config.validator import ConfigValidationResult, validate_document
from credit_kernel.domain.clock import Clock, SystemClock
from credit_kernel.exceptions import (
    ConfigNotFoundError,
    ConfigurationError,
    ConfigValidationError,
)
from credit_kernel.logging_config import get_logger
from credit_kernel.utils.hashing import hash_payload

logger = get_logger("config.service")

DEFAULT_PROFILE = "default"


class PartnerConfigService:
    """Versioned CRUD and snapshotting for partner configuration."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_version(
        self,
        partner_id: str,
        kind: ConfigKind,
        document: dict[str, Any],
        *,
        actor_id: str,
        name: str = DEFAULT_PROFILE,
        activate: bool = True,
    ) -> tuple[ConfigVersion, ConfigValidationResult]:
        """
        Validate and store ``document`` as the next version.

        Returns the stored version and the validation result (for warnings).

        Raises:
            ConfigValidationError: document failed parsing or validation.
        """
        try:
            config = parse_document(kind, document, name=name)
        except ConfigValidationError as exc:
            exc.partner_id = partner_id
            logger.warning(
                "config_rejected",
                extra={"partner_id": partner_id, "kind": kind.value, "errors": list(exc.errors)},
            )
            raise

        result = validate_document(config)
        if not result.is_valid:
            logger.warning(
                "config_rejected",
                extra={"partner_id": partner_id, "kind": kind.value, "errors": result.errors},
            )
            raise ConfigValidationError(kind.value, result.errors, partner_id=partner_id)
        for warning in result.warnings:
            logger.warning(
                "config_validation_warning",
                extra={"partner_id": partner_id, "kind": kind.value, "warning": warning},
            )

        payload = dump_document(config)
        latest = self._session.execute(
            select(func.max(PartnerConfigVersionModel.version)).where(
                PartnerConfigVersionModel.partner_id == partner_id,
                PartnerConfigVersionModel.kind == kind.value,
                PartnerConfigVersionModel.name == name,
            )
        ).scalar_one_or_none()

        previous = self._active_model(partner_id, kind, name)
        now = self._clock.now()
        model = PartnerConfigVersionModel(
            partner_id=partner_id,
            kind=kind.value,
            name=name,
            version=(latest or 0) + 1,
            status=ConfigStatus.DRAFT.value,
            payload=payload,
            fingerprint=hash_payload(payload),
            supersedes_id=previous.id if previous else None,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "config_version_saved",
            extra={
                "partner_id": partner_id,
                "kind": kind.value,
                "config_name": name,
                "version": model.version,
                "fingerprint": model.fingerprint,
            },
        )

        if activate:
            self._activate(model, actor_id)
        return model.to_dto(), result

    def activate(self, version_id: UUID, *, actor_id: str) -> ConfigVersion:
        """Activate a draft version, superseding the current active one."""
        model = self._get_model(version_id)
        if model.status != ConfigStatus.DRAFT.value:
            raise ConfigurationError(
                f"Config version {version_id} is {model.status}, only drafts can be activated",
                partner_id=model.partner_id,
            )
        self._activate(model, actor_id)
        return model.to_dto()

    def _activate(self, model: PartnerConfigVersionModel, actor_id: str) -> None:
        current = self._active_model(model.partner_id, ConfigKind(model.kind), model.name)
        if current is not None and current.id != model.id:
            current.status = ConfigStatus.SUPERSEDED.value
            current.updated_by_id = actor_id
            current.updated_at = self._clock.now()
            self._session.flush()
            logger.info(
                "config_version_superseded",
                extra={
                    "partner_id": model.partner_id,
                    "kind": model.kind,
                    "config_name": model.name,
                    "version": current.version,
                },
            )

        model.status = ConfigStatus.ACTIVE.value
        model.updated_by_id = actor_id
        model.updated_at = self._clock.now()
        self._session.flush()
        logger.info(
            "config_version_activated",
            extra={
                "partner_id": model.partner_id,
                "kind": model.kind,
                "config_name": model.name,
                "version": model.version,
            },
        )

    def seed_defaults(self, partner_id: str, *, actor_id: str) -> list[ConfigVersion]:
        """Publish the packaged default documents for a new partner."""
        docs = load_default_documents()
        saved: list[ConfigVersion] = []
        for kind in (ConfigKind.SCORING, ConfigKind.ALT_SCORING, ConfigKind.LENDING_POLICY):
            if kind in docs:
                version, _ = self.save_version(partner_id, kind, docs[kind], actor_id=actor_id)
                saved.append(version)
        for name, doc in docs.get(ConfigKind.MAPPING_PROFILE, {}).items():
            version, _ = self.save_version(
                partner_id, ConfigKind.MAPPING_PROFILE, doc, actor_id=actor_id, name=name
            )
            saved.append(version)
        return saved

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get_model(self, version_id: UUID) -> PartnerConfigVersionModel:
        model = self._session.get(PartnerConfigVersionModel, version_id)
        if model is None:
            raise ConfigNotFoundError(partner_id="?", kind=f"version {version_id}")
        return model

    def _active_model(
        self, partner_id: str, kind: ConfigKind, name: str
    ) -> PartnerConfigVersionModel | None:
        return self._session.execute(
            select(PartnerConfigVersionModel).where(
                PartnerConfigVersionModel.partner_id == partner_id,
                PartnerConfigVersionModel.kind == kind.value,
                PartnerConfigVersionModel.name == name,
                PartnerConfigVersionModel.status == ConfigStatus.ACTIVE.value,
            )
        ).scalar_one_or_none()

    def get_version(self, version_id: UUID) -> ConfigVersion:
        return self._get_model(version_id).to_dto()

    def get_active(
        self, partner_id: str, kind: ConfigKind, name: str = DEFAULT_PROFILE
    ) -> ConfigVersion | None:
        model = self._active_model(partner_id, kind, name)
        return model.to_dto() if model else None

    def list_versions(
        self,
        partner_id: str,
        kind: ConfigKind | None = None,
        name: str | None = None,
    ) -> list[ConfigVersion]:
        stmt = select(PartnerConfigVersionModel).where(
            PartnerConfigVersionModel.partner_id == partner_id
        )
        if kind is not None:
            stmt = stmt.where(PartnerConfigVersionModel.kind == kind.value)
        if name is not None:
            stmt = stmt.where(PartnerConfigVersionModel.name == name)
        stmt = stmt.order_by(
            PartnerConfigVersionModel.kind,
            PartnerConfigVersionModel.name,
            PartnerConfigVersionModel.version,
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self, partner_id: str, profile_name: str = DEFAULT_PROFILE) -> PartnerConfigSnapshot:
        """
        Pin the currently active versions for a batch.

        Raises:
            ConfigNotFoundError: the lending policy, the mapping profile, or
                the config of the engine the policy selects is not active.
        """
        versions: dict[ConfigKind, ConfigVersion] = {}
        for kind, name in (
            (ConfigKind.LENDING_POLICY, DEFAULT_PROFILE),
            (ConfigKind.MAPPING_PROFILE, profile_name),
            (ConfigKind.SCORING, DEFAULT_PROFILE),
            (ConfigKind.ALT_SCORING, DEFAULT_PROFILE),
        ):
            version = self.get_active(partner_id, kind, name)
            if version is not None:
                versions[kind] = version
        return self._assemble(partner_id, versions, profile_name)

    def snapshot_from_versions(
        self, partner_id: str, version_ids: dict[str, str]
    ) -> PartnerConfigSnapshot:
        """Rebuild a pinned snapshot (used when a batch is resumed)."""
        versions: dict[ConfigKind, ConfigVersion] = {}
        for kind_value, version_id in version_ids.items():
            version = self.get_version(UUID(version_id))
            if version.partner_id != partner_id:
                raise ConfigurationError(
                    f"Pinned config {version_id} belongs to partner {version.partner_id}",
                    partner_id=partner_id,
                )
            versions[ConfigKind(kind_value)] = version
        profile = versions.get(ConfigKind.MAPPING_PROFILE)
        return self._assemble(
            partner_id, versions, profile.name if profile else DEFAULT_PROFILE
        )

    def _assemble(
        self,
        partner_id: str,
        versions: dict[ConfigKind, ConfigVersion],
        profile_name: str,
    ) -> PartnerConfigSnapshot:
        if ConfigKind.LENDING_POLICY not in versions:
            raise ConfigNotFoundError(partner_id, ConfigKind.LENDING_POLICY.value)
        if ConfigKind.MAPPING_PROFILE not in versions:
            raise ConfigNotFoundError(partner_id, ConfigKind.MAPPING_PROFILE.value, profile_name)

        def typed(kind: ConfigKind):
            version = versions[kind]
            return parse_document(kind, version.payload, name=version.name)

        policy = typed(ConfigKind.LENDING_POLICY)
        needed = (
            ConfigKind.SCORING
            if policy.scoring_engine == ScoringEngineKind.WEIGHTED
            else ConfigKind.ALT_SCORING
        )
        if needed not in versions:
            raise ConfigNotFoundError(partner_id, needed.value)

        used = {ConfigKind.LENDING_POLICY, ConfigKind.MAPPING_PROFILE, needed}
        snapshot = PartnerConfigSnapshot(
            partner_id=partner_id,
            policy=policy,
            mapping_profile=typed(ConfigKind.MAPPING_PROFILE),
            scoring=typed(ConfigKind.SCORING) if needed == ConfigKind.SCORING else None,
            alt_scoring=typed(ConfigKind.ALT_SCORING) if needed == ConfigKind.ALT_SCORING else None,
            version_ids={k.value: str(versions[k].id) for k in used},
        )
        logger.info(
            "config_snapshot_pinned",
            extra={
                "partner_id": partner_id,
                "engine": policy.scoring_engine.value,
                "version_ids": snapshot.version_ids,
            },
        )
        return snapshot
