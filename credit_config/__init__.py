"""
Partner configuration: typed schema, loader, validator, versioned store.

Public entry points:
    credit_config.service.PartnerConfigService -- versions and snapshots
    parse_document        -- dict/YAML document -> typed config
    validate_document     -- save-time semantic checks
"""

from credit_config.lifecycle import ConfigStatus
from credit_config.loader import dump_document, load_default_documents, parse_document
from credit_config.schema import (
    AltScoringConfig,
    ConfigKind,
    ConfigVersion,
    LendingPolicy,
    MappingProfile,
    PartnerConfigSnapshot,
    ScoringConfig,
    ScoringEngineKind,
)
from credit_config.validator import ConfigValidationResult, validate_document

__all__ = [
    "AltScoringConfig",
    "ConfigKind",
    "ConfigStatus",
    "ConfigValidationResult",
    "ConfigVersion",
    "LendingPolicy",
    "MappingProfile",
    "PartnerConfigSnapshot",
    "ScoringConfig",
    "ScoringEngineKind",
    "dump_document",
    "load_default_documents",
    "parse_document",
    "validate_document",
]
