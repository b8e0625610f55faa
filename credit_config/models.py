"""
Module: credit_config.models
Responsibility: ORM persistence for versioned partner configuration.

Invariants enforced:
    - (partner_id, kind, name, version) is unique.
    - Payload, fingerprint and version never change after insert; only
      ``status`` moves along the lifecycle (db/immutability.py).
    - Rows are never deleted: batches and decisions reference them by id.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from credit_config.lifecycle import ConfigStatus
from credit_config.schema import ConfigKind, ConfigVersion
from credit_kernel.db.base import TrackedBase, UUIDString


class PartnerConfigVersionModel(TrackedBase):
    """One stored version of a partner's config document."""

    __tablename__ = "partner_config_versions"
    __table_args__ = (
        UniqueConstraint(
            "partner_id", "kind", "name", "version", name="uq_partner_config_version"
        ),
        Index("ix_partner_config_lookup", "partner_id", "kind", "name", "status"),
    )

    partner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="default")
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    supersedes_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_dto(self) -> ConfigVersion:
        return ConfigVersion(
            id=self.id,
            partner_id=self.partner_id,
            kind=ConfigKind(self.kind),
            name=self.name,
            version=self.version,
            status=ConfigStatus(self.status),
            fingerprint=self.fingerprint,
            payload=dict(self.payload),
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            supersedes_id=self.supersedes_id,
        )
