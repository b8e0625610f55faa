"""
Canonical credit record schema.

Responsibility:
    The single definition of the post-mapping record shape: which canonical
    fields exist, their types, which are required, and the subset of facts
    that scoring rules may test.  Mapping profiles, rule configs, the
    validator and both engines all refer to these names.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - CreditRecord never carries raw upload keys; it is built only by the
      field mapping resolver from a MappingProfile.
    - The five factor scores are 0-1 values where 1.0 is the best outcome
      (low utilization and few inquiries score close to 1.0).
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any


class FieldType(str, Enum):
    STRING = "string"
    DECIMAL = "decimal"
    INTEGER = "integer"
    DATE = "date"


@dataclass(frozen=True)
class CanonicalField:
    name: str
    field_type: FieldType
    required: bool = False


FACTOR_FIELDS: tuple[str, ...] = (
    "payment_history",
    "credit_utilization",
    "credit_age",
    "credit_mix",
    "inquiries",
)

CANONICAL_FIELDS: dict[str, CanonicalField] = {
    f.name: f
    for f in (
        # Identity
        CanonicalField("full_name", FieldType.STRING),
        CanonicalField("email", FieldType.STRING, required=True),
        CanonicalField("national_id", FieldType.STRING),
        CanonicalField("phone_number", FieldType.STRING),
        # Normalized factor scores
        *(CanonicalField(name, FieldType.DECIMAL, required=True) for name in FACTOR_FIELDS),
        # Money
        CanonicalField("monthly_income", FieldType.DECIMAL, required=True),
        CanonicalField("monthly_debt_payments", FieldType.DECIMAL, required=True),
        CanonicalField("total_debt", FieldType.DECIMAL),
        CanonicalField("monthly_expenses", FieldType.DECIMAL),
        CanonicalField("collateral_value", FieldType.DECIMAL),
        # Counters
        CanonicalField("defaults_count", FieldType.INTEGER),
        CanonicalField("missed_payments_last_12", FieldType.INTEGER),
        CanonicalField("consecutive_missed_payments", FieldType.INTEGER),
        CanonicalField("inquiry_count", FieldType.INTEGER),
        CanonicalField("months_since_last_delinquency", FieldType.INTEGER),
        CanonicalField("oldest_account_age_months", FieldType.INTEGER),
        CanonicalField("transactions_last_90_days", FieldType.INTEGER),
        # Rates (0-1)
        CanonicalField("on_time_payment_rate", FieldType.DECIMAL),
        CanonicalField("cash_flow_stability", FieldType.DECIMAL),
        CanonicalField("savings_consistency", FieldType.DECIMAL),
        CanonicalField("budgeting_consistency", FieldType.DECIMAL),
        # Categorical
        CanonicalField("employment_status", FieldType.STRING),
        CanonicalField("industry_risk", FieldType.STRING),
        CanonicalField("last_active_date", FieldType.DATE),
    )
}

REQUIRED_FIELDS: frozenset[str] = frozenset(
    name for name, f in CANONICAL_FIELDS.items() if f.required
)

COUNTER_FIELDS: tuple[str, ...] = tuple(
    name for name, f in CANONICAL_FIELDS.items() if f.field_type == FieldType.INTEGER
)

MONEY_FIELDS: tuple[str, ...] = (
    "monthly_income",
    "monthly_debt_payments",
    "total_debt",
    "monthly_expenses",
    "collateral_value",
)

RATE_FIELDS: tuple[str, ...] = (
    "on_time_payment_rate",
    "cash_flow_stability",
    "savings_consistency",
    "budgeting_consistency",
)

# Facts a penalty/bonus/rejection rule may test (numeric only).
RULE_FACTS: frozenset[str] = frozenset(FACTOR_FIELDS + MONEY_FIELDS + RATE_FIELDS + COUNTER_FIELDS)

STABLE_EMPLOYMENT: frozenset[str] = frozenset({"employed", "self_employed"})


@dataclass(frozen=True)
class CreditRecord:
    """One applicant's canonical, typed record."""

    email: str | None = None
    full_name: str | None = None
    national_id: str | None = None
    phone_number: str | None = None

    payment_history: Decimal | None = None
    credit_utilization: Decimal | None = None
    credit_age: Decimal | None = None
    credit_mix: Decimal | None = None
    inquiries: Decimal | None = None

    monthly_income: Decimal | None = None
    monthly_debt_payments: Decimal | None = None
    total_debt: Decimal | None = None
    monthly_expenses: Decimal | None = None
    collateral_value: Decimal | None = None

    defaults_count: int | None = None
    missed_payments_last_12: int | None = None
    consecutive_missed_payments: int | None = None
    inquiry_count: int | None = None
    months_since_last_delinquency: int | None = None
    oldest_account_age_months: int | None = None
    transactions_last_90_days: int | None = None

    on_time_payment_rate: Decimal | None = None
    cash_flow_stability: Decimal | None = None
    savings_consistency: Decimal | None = None
    budgeting_consistency: Decimal | None = None

    employment_status: str | None = None
    industry_risk: str | None = None
    last_active_date: date | None = None

    @property
    def applicant_key(self) -> str:
        """Stable applicant identity: email, else national id, else phone."""
        if self.email:
            return self.email.lower()
        if self.national_id:
            return f"nid:{self.national_id}"
        if self.phone_number:
            return f"tel:{self.phone_number}"
        return "unknown"

    @property
    def has_stable_employment(self) -> bool:
        return (self.employment_status or "").lower() in STABLE_EMPLOYMENT

    def fact(self, name: str) -> Any:
        return getattr(self, name)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe rendering for the staging table."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, date):
                value = value.isoformat()
            out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CreditRecord:
        kwargs: dict[str, Any] = {}
        for name, spec in CANONICAL_FIELDS.items():
            value = data.get(name)
            if value is None:
                kwargs[name] = None
            elif spec.field_type == FieldType.DECIMAL:
                kwargs[name] = Decimal(str(value))
            elif spec.field_type == FieldType.INTEGER:
                kwargs[name] = int(value)
            elif spec.field_type == FieldType.DATE:
                kwargs[name] = value if isinstance(value, date) else date.fromisoformat(value)
            else:
                kwargs[name] = str(value)
        return cls(**kwargs)
