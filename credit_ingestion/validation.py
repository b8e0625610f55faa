"""
Record validation for mapped CreditRecords.

Architecture: credit_ingestion. ZERO I/O. Imports only from credit_kernel.

Every rule runs on every record; errors are collected in one pass so the
batch report can show all problems of a row at once.  A record that passes
is returned unchanged.
"""

from __future__ import annotations

import re
from decimal import Decimal

from credit_kernel.domain.canonical import (
    COUNTER_FIELDS,
    FACTOR_FIELDS,
    MONEY_FIELDS,
    RATE_FIELDS,
    CreditRecord,
)
from credit_kernel.domain.dtos import FieldError

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?\d{9,15}$")

_ZERO = Decimal("0")
_ONE = Decimal("1")


def _non_finite(name: str, value) -> FieldError | None:
    if isinstance(value, Decimal) and not value.is_finite():
        return FieldError(
            code="INVALID_NUMBER",
            message=f"{name} must be a finite number, got {value}",
            field=name,
            value=str(value),
        )
    return None


# -----------------------------------------------------------------------------
# Field-group validators
# -----------------------------------------------------------------------------


def validate_unit_interval(
    record: CreditRecord, names: tuple[str, ...], code: str
) -> list[FieldError]:
    """Each present value must lie in [0, 1]."""
    errors: list[FieldError] = []
    for name in names:
        value = getattr(record, name)
        if value is None:
            continue
        invalid = _non_finite(name, value)
        if invalid is not None:
            errors.append(invalid)
            continue
        if not _ZERO <= value <= _ONE:
            errors.append(
                FieldError(
                    code=code,
                    message=f"{name} must be between 0 and 1, got {value}",
                    field=name,
                    value=str(value),
                )
            )
    return errors


def validate_non_negative(
    record: CreditRecord, names: tuple[str, ...], code: str
) -> list[FieldError]:
    errors: list[FieldError] = []
    for name in names:
        value = getattr(record, name)
        if value is None:
            continue
        invalid = _non_finite(name, value)
        if invalid is not None:
            errors.append(invalid)
        elif value < 0:
            errors.append(
                FieldError(
                    code=code,
                    message=f"{name} must not be negative, got {value}",
                    field=name,
                    value=str(value),
                )
            )
    return errors


def validate_contact(record: CreditRecord) -> list[FieldError]:
    errors: list[FieldError] = []
    if record.email is not None and not EMAIL_PATTERN.match(record.email):
        errors.append(
            FieldError(
                code="INVALID_EMAIL",
                message=f"Invalid email address: {record.email}",
                field="email",
                value=record.email,
            )
        )
    if record.phone_number is not None and not PHONE_PATTERN.match(record.phone_number):
        errors.append(
            FieldError(
                code="INVALID_PHONE",
                message=f"Invalid phone number: {record.phone_number}",
                field="phone_number",
                value=record.phone_number,
            )
        )
    return errors


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------


def validate_record(
    record: CreditRecord,
) -> tuple[CreditRecord | None, tuple[FieldError, ...]]:
    """Return ``(record, ())`` when valid, else ``(None, errors)``."""
    errors: list[FieldError] = []
    errors.extend(validate_unit_interval(record, FACTOR_FIELDS, "FACTOR_OUT_OF_RANGE"))
    errors.extend(validate_non_negative(record, COUNTER_FIELDS, "NEGATIVE_COUNT"))
    errors.extend(validate_non_negative(record, MONEY_FIELDS, "NEGATIVE_AMOUNT"))
    errors.extend(validate_unit_interval(record, RATE_FIELDS, "RATE_OUT_OF_RANGE"))
    errors.extend(validate_contact(record))
    if errors:
        return None, tuple(errors)
    return record, ()
