"""
Tests for credit_config.service.PartnerConfigService.

Covers versioning, the draft -> active -> superseded lifecycle, rejected
documents, and snapshot pinning.
"""

from uuid import uuid4

import pytest

from credit_config.lifecycle import ConfigStatus
from credit_config.loader import dump_document
from credit_config.schema import ConfigKind, ScoringEngineKind
from credit_kernel.exceptions import (
    ConfigNotFoundError,
    ConfigurationError,
    ConfigValidationError,
)

from tests.factories import TEST_ACTOR_ID, default_config, default_document

PARTNER = "bank-b"


def publish(service, kind, document=None, **kwargs):
    version, _ = service.save_version(
        PARTNER, kind, document or default_document(kind), actor_id=TEST_ACTOR_ID, **kwargs
    )
    return version


def policy_document(**overrides):
    doc = default_document(ConfigKind.LENDING_POLICY)
    doc.update(overrides)
    return doc


class TestSaveVersion:
    def test_first_version_is_active(self, config_service, clock):
        version = publish(config_service, ConfigKind.LENDING_POLICY)

        assert version.version == 1
        assert version.status == ConfigStatus.ACTIVE
        assert version.partner_id == PARTNER
        assert version.name == "default"
        assert version.created_by_id == TEST_ACTOR_ID
        assert version.created_at == clock.now()
        assert version.supersedes_id is None
        assert version.payload == dump_document(default_config(ConfigKind.LENDING_POLICY))
        assert len(version.fingerprint) == 64

    def test_new_version_supersedes_active(self, config_service):
        first = publish(config_service, ConfigKind.LENDING_POLICY)
        second = publish(config_service, ConfigKind.LENDING_POLICY, policy_document(min_approval_score=600))

        assert second.version == 2
        assert second.supersedes_id == first.id
        assert config_service.get_version(first.id).status == ConfigStatus.SUPERSEDED
        assert config_service.get_active(PARTNER, ConfigKind.LENDING_POLICY).id == second.id
        assert second.fingerprint != first.fingerprint

    def test_identical_document_same_fingerprint(self, config_service):
        first = publish(config_service, ConfigKind.SCORING)
        second = publish(config_service, ConfigKind.SCORING)
        assert first.fingerprint == second.fingerprint
        assert second.version == 2

    def test_versions_are_numbered_per_profile_name(self, config_service):
        doc = default_document(ConfigKind.MAPPING_PROFILE)
        publish(config_service, ConfigKind.MAPPING_PROFILE, doc)
        other = publish(config_service, ConfigKind.MAPPING_PROFILE, doc, name="mobile")

        assert other.version == 1
        assert other.name == "mobile"
        assert config_service.get_active(PARTNER, ConfigKind.MAPPING_PROFILE).status == ConfigStatus.ACTIVE

    def test_warnings_are_returned(self, config_service, captured_logs):
        doc = default_document(ConfigKind.SCORING)
        doc["weights"] = {k: v * 2 for k, v in doc["weights"].items()}
        version, result = config_service.save_version(
            PARTNER, ConfigKind.SCORING, doc, actor_id=TEST_ACTOR_ID
        )

        assert version.status == ConfigStatus.ACTIVE
        assert len(result.warnings) == 1
        assert any(r["message"] == "config_validation_warning" for r in captured_logs())


class TestRejectedDocuments:
    def test_semantic_error_stores_nothing(self, config_service, captured_logs):
        with pytest.raises(ConfigValidationError) as exc_info:
            publish(config_service, ConfigKind.LENDING_POLICY, policy_document(base_rate=50))

        assert exc_info.value.partner_id == PARTNER
        assert exc_info.value.kind == "lending_policy"
        assert config_service.list_versions(PARTNER) == []
        rejected = [r for r in captured_logs() if r["message"] == "config_rejected"]
        assert rejected and rejected[0]["partner_id"] == PARTNER

    def test_structural_error_stores_nothing(self, config_service):
        with pytest.raises(ConfigValidationError) as exc_info:
            publish(config_service, ConfigKind.LENDING_POLICY, policy_document(bonus_rate=1))

        assert exc_info.value.partner_id == PARTNER
        assert config_service.list_versions(PARTNER) == []

    def test_rejection_keeps_previous_active(self, config_service):
        first = publish(config_service, ConfigKind.LENDING_POLICY)
        with pytest.raises(ConfigValidationError):
            publish(config_service, ConfigKind.LENDING_POLICY, policy_document(max_dti=0.9))
        assert config_service.get_active(PARTNER, ConfigKind.LENDING_POLICY).id == first.id

    def test_engine_switch_needs_a_floor_on_the_new_scale(self, config_service):
        publish(config_service, ConfigKind.LENDING_POLICY)
        with pytest.raises(ConfigValidationError) as exc_info:
            publish(
                config_service,
                ConfigKind.LENDING_POLICY,
                policy_document(scoring_engine="capacity"),
            )
        assert any("min_approval_score" in e for e in exc_info.value.errors)


class TestLifecycle:
    def test_draft_does_not_replace_active(self, config_service):
        active = publish(config_service, ConfigKind.LENDING_POLICY)
        draft = publish(
            config_service,
            ConfigKind.LENDING_POLICY,
            policy_document(min_approval_score=600),
            activate=False,
        )

        assert draft.status == ConfigStatus.DRAFT
        assert config_service.get_active(PARTNER, ConfigKind.LENDING_POLICY).id == active.id

    def test_activate_draft(self, config_service):
        active = publish(config_service, ConfigKind.LENDING_POLICY)
        draft = publish(config_service, ConfigKind.LENDING_POLICY, activate=False)

        activated = config_service.activate(draft.id, actor_id="ops:lead")

        assert activated.status == ConfigStatus.ACTIVE
        assert config_service.get_version(active.id).status == ConfigStatus.SUPERSEDED

    def test_only_drafts_can_be_activated(self, config_service):
        active = publish(config_service, ConfigKind.LENDING_POLICY)
        with pytest.raises(ConfigurationError):
            config_service.activate(active.id, actor_id=TEST_ACTOR_ID)

    def test_unknown_version(self, config_service):
        with pytest.raises(ConfigNotFoundError):
            config_service.get_version(uuid4())

    def test_list_versions_filters(self, config_service):
        publish(config_service, ConfigKind.LENDING_POLICY)
        publish(config_service, ConfigKind.LENDING_POLICY)
        publish(config_service, ConfigKind.SCORING)

        policies = config_service.list_versions(PARTNER, ConfigKind.LENDING_POLICY)
        assert [(v.version, v.status) for v in policies] == [
            (1, ConfigStatus.SUPERSEDED),
            (2, ConfigStatus.ACTIVE),
        ]
        assert len(config_service.list_versions(PARTNER)) == 3
        assert config_service.list_versions("nobody") == []

    def test_seed_defaults(self, config_service):
        versions = config_service.seed_defaults(PARTNER, actor_id=TEST_ACTOR_ID)

        assert {v.kind for v in versions} == set(ConfigKind)
        assert all(v.status == ConfigStatus.ACTIVE for v in versions)


class TestSnapshot:
    def test_weighted_snapshot(self, config_service, seeded_partner):
        snapshot = config_service.snapshot(seeded_partner)

        assert snapshot.engine == ScoringEngineKind.WEIGHTED
        assert snapshot.scoring == default_config(ConfigKind.SCORING)
        assert snapshot.alt_scoring is None
        assert snapshot.mapping_profile.name == "default"
        assert set(snapshot.version_ids) == {"lending_policy", "mapping_profile", "scoring"}

    def test_capacity_snapshot(self, config_service, seeded_partner):
        config_service.save_version(
            seeded_partner,
            ConfigKind.LENDING_POLICY,
            policy_document(scoring_engine="capacity", min_approval_score=60),
            actor_id=TEST_ACTOR_ID,
        )
        snapshot = config_service.snapshot(seeded_partner)

        assert snapshot.engine == ScoringEngineKind.CAPACITY
        assert snapshot.scoring is None
        assert snapshot.alt_scoring == default_config(ConfigKind.ALT_SCORING)
        assert "alt_scoring" in snapshot.version_ids

    def test_unknown_partner(self, config_service):
        with pytest.raises(ConfigNotFoundError) as exc_info:
            config_service.snapshot("nobody")
        assert exc_info.value.kind == "lending_policy"

    def test_missing_profile(self, config_service, seeded_partner):
        with pytest.raises(ConfigNotFoundError) as exc_info:
            config_service.snapshot(seeded_partner, profile_name="mobile")
        assert exc_info.value.kind == "mapping_profile"
        assert exc_info.value.name == "mobile"

    def test_missing_engine_config(self, config_service):
        publish(
            config_service,
            ConfigKind.LENDING_POLICY,
            policy_document(scoring_engine="capacity", min_approval_score=60),
        )
        publish(config_service, ConfigKind.MAPPING_PROFILE)
        publish(config_service, ConfigKind.SCORING)

        with pytest.raises(ConfigNotFoundError) as exc_info:
            config_service.snapshot(PARTNER)
        assert exc_info.value.kind == "alt_scoring"

    def test_pinned_snapshot_ignores_later_publish(self, config_service, seeded_partner):
        pinned = config_service.snapshot(seeded_partner)
        config_service.save_version(
            seeded_partner,
            ConfigKind.LENDING_POLICY,
            policy_document(min_approval_score=700),
            actor_id=TEST_ACTOR_ID,
        )

        rebuilt = config_service.snapshot_from_versions(seeded_partner, pinned.version_ids)
        assert rebuilt == pinned
        assert rebuilt.policy.min_approval_score == 550
        assert config_service.snapshot(seeded_partner).policy.min_approval_score == 700

    def test_pinned_versions_must_belong_to_partner(self, config_service, seeded_partner):
        pinned = config_service.snapshot(seeded_partner)
        with pytest.raises(ConfigurationError):
            config_service.snapshot_from_versions("bank-z", pinned.version_ids)

    def test_snapshot_is_logged(self, config_service, seeded_partner, captured_logs):
        config_service.snapshot(seeded_partner)
        pinned = [r for r in captured_logs() if r["message"] == "config_snapshot_pinned"]
        assert pinned[0]["engine"] == "weighted"
