"""
Deterministic hashing utilities.

Config fingerprints and the decision audit chain must be reproducible, so
everything is hashed from a canonical JSON rendering.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # Normalized so 12.50 and 12.5 hash the same
        return format(obj.normalize(), "f")
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """Sorted keys, no whitespace, stable rendering of Decimal/date/UUID/Enum."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(value: Any) -> Any:
    """Convert a value tree into plain JSON types for a JSON column."""
    return json.loads(canonicalize_json(value))


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON payload."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_decision_entry(
    decision_id: str,
    applicant_key: str,
    outcome: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain hash for one decision audit entry.

    Includes the previous entry's hash, so altering or removing any entry
    breaks every later hash.
    """
    components = [
        str(decision_id),
        applicant_key,
        outcome,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()
