"""
Field mapping resolver: pure transformation from a raw upload row to a
canonical CreditRecord.

A raw row is an opaque ``dict[str, str]`` produced by whatever parsed the
upload.  Only this module reads raw keys; everything downstream sees
CreditRecord.  ZERO I/O, deterministic, safe to call for previews and
retries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from credit_config.schema import FieldMappingDef, MappingProfile, Transform
from credit_kernel.domain.canonical import (
    CANONICAL_FIELDS,
    REQUIRED_FIELDS,
    CreditRecord,
    FieldType,
)
from credit_kernel.domain.dtos import FieldError

_NON_DIGITS = re.compile(r"\D")
_CURRENCY_NOISE = re.compile(r"[^0-9.\-]")
_HUNDRED = Decimal("100")


# -----------------------------------------------------------------------------
# Result types
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class TransformResult:
    """Result of one transform or coercion step."""

    success: bool
    value: Any = None
    error: FieldError | None = None


@dataclass(frozen=True)
class MappingResult:
    """Result of resolving one raw row against a mapping profile."""

    success: bool
    record: CreditRecord | None = None
    mapped_data: dict[str, Any] = field(default_factory=dict)
    errors: tuple[FieldError, ...] = ()


def _fail(code: str, message: str, target: str, value: Any) -> TransformResult:
    return TransformResult(
        success=False,
        error=FieldError(code=code, message=message, field=target, value=value),
    )


def _parse_finite(text: str) -> Decimal | None:
    """Parse a decimal literal; NaN and Infinity count as unparseable."""
    try:
        number = Decimal(text)
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


# -----------------------------------------------------------------------------
# Transforms (pure)
# -----------------------------------------------------------------------------


def normalize_phone(value: str, country_code: str, target: str = "phone_number") -> TransformResult:
    """
    Strip non-digits and coerce a local number to international form.

    ``0911 23 45 67`` -> ``+251911234567`` for country code 251.
    """
    digits = _NON_DIGITS.sub("", value)
    if digits.startswith("00"):
        digits = digits[2:]
    elif digits.startswith("0"):
        digits = country_code + digits[1:]
    elif len(digits) == 9:
        digits = country_code + digits
    if not 9 <= len(digits) <= 15:
        return _fail("INVALID_PHONE", f"Cannot normalize phone number {value!r}", target, value)
    return TransformResult(success=True, value=f"+{digits}")


def parse_currency(value: str, target: str = "") -> TransformResult:
    """``"ETB 12,500.00"`` -> ``Decimal("12500.00")``; ``"(1,200)"`` is negative."""
    s = value.strip()
    negative = s.startswith("(") and s.endswith(")")
    cleaned = _CURRENCY_NOISE.sub("", s)
    amount = _parse_finite(cleaned)
    if amount is None:
        return _fail("INVALID_NUMBER", f"Cannot parse amount {value!r}", target, value)
    return TransformResult(success=True, value=-amount if negative else amount)


def parse_percentage(value: str, target: str = "") -> TransformResult:
    """``"45%"``, ``"45"`` and ``"0.45"`` all become ``Decimal("0.45")``."""
    s = value.strip().rstrip("%").strip()
    number = _parse_finite(s)
    if number is None:
        return _fail("INVALID_NUMBER", f"Cannot parse percentage {value!r}", target, value)
    if number > 1:
        number = number / _HUNDRED
    return TransformResult(success=True, value=number)


def parse_date(value: str, formats: tuple[str, ...], target: str = "") -> TransformResult:
    """Try each format in order; unparseable input fails closed."""
    s = value.strip()
    for fmt in formats:
        try:
            return TransformResult(success=True, value=datetime.strptime(s, fmt).date())
        except ValueError:
            continue
    try:
        return TransformResult(success=True, value=date.fromisoformat(s[:10]))
    except ValueError:
        return _fail("INVALID_DATE", f"Cannot parse date {value!r}", target, value)


def apply_transform(
    value: str, fm: FieldMappingDef, profile: MappingProfile
) -> TransformResult:
    """Apply the mapping's transform. Pure function."""
    if fm.transform == Transform.PHONE:
        return normalize_phone(value, profile.country_code, fm.target)
    if fm.transform == Transform.CURRENCY:
        return parse_currency(value, fm.target)
    if fm.transform == Transform.PERCENTAGE:
        return parse_percentage(value, fm.target)
    if fm.transform == Transform.DATE:
        return parse_date(value, profile.date_formats, fm.target)
    return TransformResult(success=True, value=value.strip())


# -----------------------------------------------------------------------------
# Coercion to the canonical type
# -----------------------------------------------------------------------------


def coerce_to_canonical(
    value: Any, field_type: FieldType, target: str, formats: tuple[str, ...]
) -> TransformResult:
    """Coerce a transformed value to the canonical field's type."""
    if field_type == FieldType.STRING:
        return TransformResult(success=True, value=str(value).strip())

    if field_type == FieldType.DECIMAL:
        number = value if isinstance(value, Decimal) else _parse_finite(str(value).strip())
        if number is not None and number.is_finite():
            return TransformResult(success=True, value=number)
        return _fail("INVALID_NUMBER", f"Cannot coerce {value!r} to a number", target, value)

    if field_type == FieldType.INTEGER:
        number = _parse_finite(str(value).strip())
        if number is None:
            return _fail("INVALID_INTEGER", f"Cannot coerce {value!r} to an integer", target, value)
        if number != number.to_integral_value():
            return _fail("INVALID_INTEGER", f"{value!r} is not a whole number", target, value)
        return TransformResult(success=True, value=int(number))

    if isinstance(value, date):
        return TransformResult(success=True, value=value)
    return parse_date(str(value), formats, target)


# -----------------------------------------------------------------------------
# Resolve (pure)
# -----------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def resolve_record(raw: dict[str, Any], profile: MappingProfile) -> MappingResult:
    """
    Map one raw row to a CreditRecord. Pure function.

    Unknown source columns are ignored.  Every problem in the row is
    collected; a required canonical field that is absent or blank yields
    ``MISSING_REQUIRED_FIELD`` for that field.
    """
    errors: list[FieldError] = []
    mapped: dict[str, Any] = {}

    for target in sorted(REQUIRED_FIELDS - {fm.target for fm in profile.fields}):
        errors.append(
            FieldError(
                code="MISSING_REQUIRED_FIELD",
                message=f"Required field {target!r} has no source column in profile {profile.name!r}",
                field=target,
            )
        )

    for fm in profile.fields:
        spec = CANONICAL_FIELDS.get(fm.target)
        if spec is None:
            continue
        raw_value = raw.get(fm.source) if isinstance(raw, dict) else None

        if _is_blank(raw_value):
            if fm.required or spec.required:
                errors.append(
                    FieldError(
                        code="MISSING_REQUIRED_FIELD",
                        message=f"Required field {fm.target!r} (column {fm.source!r}) is missing",
                        field=fm.target,
                        value=raw_value,
                    )
                )
            continue

        transformed = apply_transform(str(raw_value), fm, profile)
        if not transformed.success:
            errors.append(transformed.error)
            continue

        coerced = coerce_to_canonical(
            transformed.value, spec.field_type, fm.target, profile.date_formats
        )
        if not coerced.success:
            errors.append(coerced.error)
            continue
        mapped[fm.target] = coerced.value

    if errors:
        return MappingResult(success=False, mapped_data=mapped, errors=tuple(errors))
    return MappingResult(success=True, record=CreditRecord(**mapped), mapped_data=mapped)
