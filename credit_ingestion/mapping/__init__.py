"""Mapping: pure raw-row to CreditRecord resolution and mapping suggestions."""

from credit_ingestion.mapping.engine import (
    MappingResult,
    TransformResult,
    apply_transform,
    coerce_to_canonical,
    resolve_record,
)
from credit_ingestion.mapping.suggest import MappingSuggestion, suggest_mappings

__all__ = [
    "resolve_record",
    "apply_transform",
    "coerce_to_canonical",
    "MappingResult",
    "TransformResult",
    "MappingSuggestion",
    "suggest_mappings",
]
