"""
Configuration lifecycle status.

Config versions are append-only.  A version is saved as DRAFT or directly
ACTIVE; activating a version supersedes the previously active version of
the same (partner, kind, name).  Superseded versions remain for audit and
for batches that pinned them.
"""

from enum import Enum, unique


@unique
class ConfigStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    SUPERSEDED = "superseded"


ALLOWED_TRANSITIONS: dict[ConfigStatus, frozenset[ConfigStatus]] = {
    ConfigStatus.DRAFT: frozenset({ConfigStatus.ACTIVE}),
    ConfigStatus.ACTIVE: frozenset({ConfigStatus.SUPERSEDED}),
    ConfigStatus.SUPERSEDED: frozenset(),
}


def validate_transition(current: ConfigStatus, target: ConfigStatus) -> bool:
    """Check if a status transition is valid."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())
