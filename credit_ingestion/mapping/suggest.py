"""
Mapping suggestions for onboarding a new upload layout.

Given the header row of a partner file, propose which source column should
feed each canonical field.  Suggestions only seed a draft MappingProfile;
an administrator confirms them before the profile is saved.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from credit_config.schema import Transform
from credit_kernel.domain.canonical import (
    CANONICAL_FIELDS,
    FACTOR_FIELDS,
    MONEY_FIELDS,
    RATE_FIELDS,
    FieldType,
)

_SPLIT = re.compile(r"[^a-z0-9]+")
_CAMEL = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

CONFIDENCE_EXACT = Decimal("1.00")
CONFIDENCE_NORMALIZED = Decimal("0.90")
CONFIDENCE_ALIAS = Decimal("0.75")
CONFIDENCE_PARTIAL = Decimal("0.50")

# Common spellings seen in bank and fintech exports.
ALIASES: dict[str, tuple[str, ...]] = {
    "full_name": ("name", "customer_name", "applicant_name", "borrower_name"),
    "email": ("email_address", "mail", "e_mail"),
    "national_id": ("nid", "id_number", "national_id_number", "fayda_id"),
    "phone_number": ("phone", "mobile", "msisdn", "telephone", "mobile_number"),
    "payment_history": ("repayment_history", "payment_score"),
    "credit_utilization": ("utilization", "utilisation", "credit_utilisation"),
    "credit_age": ("account_age_score", "history_length"),
    "credit_mix": ("product_mix", "account_mix"),
    "inquiries": ("inquiry_score", "enquiries"),
    "monthly_income": ("income", "salary", "net_income", "monthly_salary"),
    "monthly_debt_payments": ("debt_payments", "monthly_debt", "loan_repayments"),
    "total_debt": ("outstanding_debt", "debt", "outstanding_balance"),
    "monthly_expenses": ("expenses", "spending", "monthly_spending"),
    "defaults_count": ("defaults", "number_of_defaults"),
    "missed_payments_last_12": ("missed_payments", "late_payments"),
    "employment_status": ("employment", "employment_type", "job_status"),
    "collateral_value": ("collateral", "security_value", "asset_value"),
    "last_active_date": ("last_active", "last_activity_date", "last_transaction_date"),
}


@dataclass(frozen=True)
class MappingSuggestion:
    target: str
    source: str
    confidence: Decimal
    transform: Transform


def normalize_header(header: str) -> str:
    """``"Monthly Income (ETB)"`` -> ``"monthly_income_etb"``; camelCase is split."""
    spaced = _CAMEL.sub("_", header.strip())
    return "_".join(p for p in _SPLIT.split(spaced.lower()) if p)


def default_transform(target: str) -> Transform:
    """Transform a newly suggested mapping should start with."""
    if target == "phone_number":
        return Transform.PHONE
    if target in MONEY_FIELDS:
        return Transform.CURRENCY
    if target in FACTOR_FIELDS or target in RATE_FIELDS:
        return Transform.PERCENTAGE
    if CANONICAL_FIELDS[target].field_type == FieldType.DATE:
        return Transform.DATE
    return Transform.IDENTITY


def _score(target: str, header: str) -> Decimal:
    if header.strip() == target:
        return CONFIDENCE_EXACT
    normalized = normalize_header(header)
    if normalized == target:
        return CONFIDENCE_NORMALIZED
    if normalized in ALIASES.get(target, ()):
        return CONFIDENCE_ALIAS
    if len(normalized) >= 4 and (target in normalized or normalized in target):
        return CONFIDENCE_PARTIAL
    return Decimal("0")


def suggest_mappings(
    source_headers: Sequence[str],
    min_confidence: Decimal = CONFIDENCE_PARTIAL,
) -> list[MappingSuggestion]:
    """
    Propose canonical-field -> source-column pairs.

    Each source column is used at most once.  Candidates are assigned
    greedily by confidence (ties keep canonical field order, then header
    order), so an exact match always wins over a partial one.
    """
    candidates: list[tuple[Decimal, int, int, str, str]] = []
    targets = list(CANONICAL_FIELDS)
    for t_index, target in enumerate(targets):
        for h_index, header in enumerate(source_headers):
            confidence = _score(target, header)
            if confidence >= min_confidence and confidence > 0:
                candidates.append((confidence, t_index, h_index, target, header))

    candidates.sort(key=lambda c: (-c[0], c[1], c[2]))
    used_targets: set[str] = set()
    used_headers: set[str] = set()
    chosen: list[MappingSuggestion] = []
    for confidence, _, _, target, header in candidates:
        if target in used_targets or header in used_headers:
            continue
        used_targets.add(target)
        used_headers.add(header)
        chosen.append(
            MappingSuggestion(
                target=target,
                source=header,
                confidence=confidence,
                transform=default_transform(target),
            )
        )

    order = {t: i for i, t in enumerate(targets)}
    chosen.sort(key=lambda s: order[s.target])
    return chosen
