"""
Configuration Loader (``credit_config.loader``).

Responsibility
--------------
Parses partner configuration documents (YAML files or plain dicts coming
from the administrative surface) into the frozen types of
``credit_config.schema``, and renders typed configs back to canonical
JSON payloads for storage.

Invariants enforced
-------------------
* Closed key sets: an unrecognized key anywhere in a document is an error,
  never silently ignored.
* Every parse problem in a document is collected before raising, so the
  caller sees all of them at once.
* ``dump_document(parse_document(kind, d))`` is stable: re-parsing a stored
  payload yields an equal config.

Failure modes
-------------
* ``ConfigValidationError`` listing every structural problem.
* Missing YAML file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from credit_config.schema import (
    PILLAR_SUB_FACTORS,
    RATE_ADJUSTMENT_CODES,
    AltScoringConfig,
    ConditionRule,
    ConfigKind,
    FieldMappingDef,
    LendingPolicy,
    MappingProfile,
    RecessionAdjustments,
    RuleOperator,
    ScoringConfig,
    ScoringEngineKind,
    Transform,
)
from credit_kernel.domain.canonical import FACTOR_FIELDS
from credit_kernel.domain.dtos import Tier
from credit_kernel.exceptions import ConfigValidationError

DEFAULTS_PATH = Path(__file__).parent / "defaults" / "partner_defaults.yaml"

ConfigDocument = ScoringConfig | AltScoringConfig | LendingPolicy | MappingProfile


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_yaml_text(text: str) -> dict[str, Any]:
    """Parse a YAML document submitted as text; the top level must be a mapping."""
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ConfigValidationError("document", ["top level must be a mapping"])
    return data


def load_default_documents(path: Path | None = None) -> dict[ConfigKind, Any]:
    """
    Raw default documents keyed by kind.

    Mapping profiles are returned as ``{profile_name: document}``.
    """
    data = load_yaml_file(path or DEFAULTS_PATH)
    unknown = set(data) - {k.value for k in ConfigKind} - {"mapping_profiles"}
    if unknown:
        raise ConfigValidationError("defaults", [f"unknown section(s): {sorted(unknown)}"])
    docs: dict[ConfigKind, Any] = {}
    for kind in (ConfigKind.SCORING, ConfigKind.ALT_SCORING, ConfigKind.LENDING_POLICY):
        if kind.value in data:
            docs[kind] = data[kind.value]
    if "mapping_profiles" in data:
        docs[ConfigKind.MAPPING_PROFILE] = data["mapping_profiles"]
    return docs


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class _Errors(list):
    def add(self, context: str, message: str) -> None:
        self.append(f"{context}: {message}" if context else message)


def _check_keys(data: Any, allowed: set[str], context: str, errors: _Errors) -> dict:
    if not isinstance(data, dict):
        errors.add(context, "expected a mapping")
        return {}
    unknown = sorted(set(data) - allowed)
    if unknown:
        errors.add(context, f"unrecognized key(s) {unknown}")
    return data


def _decimal(value: Any, context: str, errors: _Errors) -> Decimal | None:
    if isinstance(value, bool):
        errors.add(context, f"expected a number, got {value!r}")
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors.add(context, f"expected a number, got {value!r}")
        return None


def _int(value: Any, context: str, errors: _Errors) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        errors.add(context, f"expected an integer, got {value!r}")
        return None
    try:
        return int(value)
    except ValueError:
        errors.add(context, f"expected an integer, got {value!r}")
        return None


def _bool(value: Any, context: str, errors: _Errors) -> bool | None:
    if not isinstance(value, bool):
        errors.add(context, f"expected true/false, got {value!r}")
        return None
    return value


def _enum(enum_cls: type[Enum], value: Any, context: str, errors: _Errors):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [m.value for m in enum_cls]
        errors.add(context, f"{value!r} is not one of {allowed}")
        return None


def _decimal_map(
    data: Any, allowed: set[str] | None, context: str, errors: _Errors
) -> dict[str, Decimal]:
    if not isinstance(data, dict):
        errors.add(context, "expected a mapping")
        return {}
    out: dict[str, Decimal] = {}
    for key, raw in data.items():
        if allowed is not None and key not in allowed:
            errors.add(context, f"unrecognized key {key!r}")
            continue
        value = _decimal(raw, f"{context}.{key}", errors)
        if value is not None:
            out[key] = value
    return out


def _tier_map(data: Any, context: str, errors: _Errors) -> dict[Tier, Decimal]:
    raw = _decimal_map(data, {t.value for t in Tier}, context, errors)
    return {Tier(k): v for k, v in raw.items()}


def _rules(data: Any, context: str, errors: _Errors) -> tuple[ConditionRule, ...]:
    if not isinstance(data, list):
        errors.add(context, "expected a list of rules")
        return ()
    rules: list[ConditionRule] = []
    for i, item in enumerate(data):
        ctx = f"{context}[{i}]"
        item = _check_keys(item, {"code", "fact", "operator", "threshold", "points"}, ctx, errors)
        missing = {"code", "fact", "operator", "threshold"} - set(item)
        if missing:
            errors.add(ctx, f"missing key(s) {sorted(missing)}")
            continue
        operator = _enum(RuleOperator, item["operator"], f"{ctx}.operator", errors)
        threshold = _decimal(item["threshold"], f"{ctx}.threshold", errors)
        points = _int(item.get("points", 0), f"{ctx}.points", errors)
        if operator is None or threshold is None or points is None:
            continue
        rules.append(
            ConditionRule(
                code=str(item["code"]),
                fact=str(item["fact"]),
                operator=operator,
                threshold=threshold,
                points=points,
            )
        )
    return tuple(rules)


def _apply_scalars(
    data: dict, spec: dict[str, Any], context: str, errors: _Errors
) -> dict[str, Any]:
    """Parse scalar keys with the given converters; absent keys keep defaults."""
    out: dict[str, Any] = {}
    for key, convert in spec.items():
        if key in data:
            value = convert(data[key], f"{context}.{key}", errors)
            if value is not None:
                out[key] = value
    return out


def parse_scoring_config(data: Any, errors: _Errors) -> ScoringConfig:
    ctx = ConfigKind.SCORING.value
    allowed = {f.name for f in fields(ScoringConfig)}
    data = _check_keys(data, allowed, ctx, errors)
    kwargs = _apply_scalars(
        data,
        {
            "min_score": _int,
            "max_score": _int,
            "allow_manual_override": _bool,
        },
        ctx,
        errors,
    )
    kwargs["weights"] = _decimal_map(
        data.get("weights", {}), set(FACTOR_FIELDS), f"{ctx}.weights", errors
    )
    for key in ("penalties", "bonuses", "rejection_rules"):
        if key in data:
            kwargs[key] = _rules(data[key], f"{ctx}.{key}", errors)
    if "tier_thresholds" in data:
        tiers = _tier_map(data["tier_thresholds"], f"{ctx}.tier_thresholds", errors)
        kwargs["tier_thresholds"] = {t: int(v) for t, v in tiers.items()}
    return ScoringConfig(**kwargs)


def parse_alt_scoring_config(data: Any, errors: _Errors) -> AltScoringConfig:
    ctx = ConfigKind.ALT_SCORING.value
    allowed = {f.name for f in fields(AltScoringConfig)}
    data = _check_keys(data, allowed, ctx, errors)
    kwargs = _apply_scalars(
        data,
        {
            "max_dti": _decimal,
            "min_savings_rate": _decimal,
            "stable_employment_required": _bool,
            "collateral_reference_amount": _decimal,
            "high_risk_threshold": _decimal,
            "moderate_risk_threshold": _decimal,
            "low_risk_threshold": _decimal,
            "allow_manual_review": _bool,
        },
        ctx,
        errors,
    )
    kwargs["pillar_weights"] = _decimal_map(
        data.get("pillar_weights", {}), set(PILLAR_SUB_FACTORS), f"{ctx}.pillar_weights", errors
    )
    sub = _check_keys(
        data.get("sub_factor_weights", {}),
        set(PILLAR_SUB_FACTORS),
        f"{ctx}.sub_factor_weights",
        errors,
    )
    kwargs["sub_factor_weights"] = {
        pillar: _decimal_map(
            weights,
            set(PILLAR_SUB_FACTORS[pillar]),
            f"{ctx}.sub_factor_weights.{pillar}",
            errors,
        )
        for pillar, weights in sub.items()
        if pillar in PILLAR_SUB_FACTORS
    }
    return AltScoringConfig(**kwargs)


def _parse_recession(data: Any, context: str, errors: _Errors) -> RecessionAdjustments:
    data = _check_keys(data, {f.name for f in fields(RecessionAdjustments)}, context, errors)
    kwargs = _apply_scalars(
        data,
        {
            "amount_factor": _decimal,
            "min_score_increase": _int,
            "rate_increase": _decimal,
        },
        context,
        errors,
    )
    if "max_term" in data:
        kwargs["max_term"] = (
            None if data["max_term"] is None else _int(data["max_term"], f"{context}.max_term", errors)
        )
    return RecessionAdjustments(**kwargs)


def parse_lending_policy(data: Any, errors: _Errors) -> LendingPolicy:
    ctx = ConfigKind.LENDING_POLICY.value
    allowed = {f.name for f in fields(LendingPolicy)}
    data = _check_keys(data, allowed, ctx, errors)
    kwargs = _apply_scalars(
        data,
        {
            "min_approval_score": _int,
            "allow_income_based_override": _bool,
            "base_rate": _decimal,
            "max_rate": _decimal,
            "max_dti": _decimal,
            "auto_reject_dti": _decimal,
            "recession_mode": _bool,
        },
        ctx,
        errors,
    )
    if "scoring_engine" in data:
        engine = _enum(ScoringEngineKind, data["scoring_engine"], f"{ctx}.scoring_engine", errors)
        if engine is not None:
            kwargs["scoring_engine"] = engine
    for key in ("base_loan_amounts", "income_multipliers"):
        if key in data:
            kwargs[key] = _tier_map(data[key], f"{ctx}.{key}", errors)
    if "rate_adjustments" in data:
        kwargs["rate_adjustments"] = _decimal_map(
            data["rate_adjustments"], set(RATE_ADJUSTMENT_CODES), f"{ctx}.rate_adjustments", errors
        )
    if "term_options" in data:
        terms = data["term_options"]
        if not isinstance(terms, list):
            errors.add(f"{ctx}.term_options", "expected a list")
        else:
            parsed = [_int(t, f"{ctx}.term_options", errors) for t in terms]
            kwargs["term_options"] = tuple(t for t in parsed if t is not None)
    if "require_collateral_for" in data:
        tiers = data["require_collateral_for"]
        if not isinstance(tiers, list):
            errors.add(f"{ctx}.require_collateral_for", "expected a list")
        else:
            parsed = [_enum(Tier, t, f"{ctx}.require_collateral_for", errors) for t in tiers]
            kwargs["require_collateral_for"] = frozenset(t for t in parsed if t is not None)
    if "recession" in data:
        kwargs["recession"] = _parse_recession(data["recession"], f"{ctx}.recession", errors)
    return LendingPolicy(**kwargs)


def parse_mapping_profile(data: Any, errors: _Errors, name: str = "default") -> MappingProfile:
    ctx = f"{ConfigKind.MAPPING_PROFILE.value}:{name}"
    data = _check_keys(data, {"fields", "country_code", "date_formats"}, ctx, errors)
    kwargs: dict[str, Any] = {"name": name}
    if "country_code" in data:
        code = str(data["country_code"]).lstrip("+")
        if not code.isdigit():
            errors.add(f"{ctx}.country_code", f"expected digits, got {data['country_code']!r}")
        kwargs["country_code"] = code
    if "date_formats" in data:
        formats = data["date_formats"]
        if not isinstance(formats, list) or not formats:
            errors.add(f"{ctx}.date_formats", "expected a non-empty list")
        else:
            kwargs["date_formats"] = tuple(str(f) for f in formats)

    mappings: list[FieldMappingDef] = []
    raw_fields = data.get("fields", {})
    if not isinstance(raw_fields, dict):
        errors.add(f"{ctx}.fields", "expected a mapping of canonical field to source")
        raw_fields = {}
    for target, spec in raw_fields.items():
        fctx = f"{ctx}.fields.{target}"
        if isinstance(spec, str):
            spec = {"source": spec}
        spec = _check_keys(spec, {"source", "transform", "required"}, fctx, errors)
        if "source" not in spec:
            errors.add(fctx, "missing key 'source'")
            continue
        transform = _enum(Transform, spec.get("transform", "identity"), f"{fctx}.transform", errors)
        required = _bool(spec.get("required", False), f"{fctx}.required", errors)
        if transform is None or required is None:
            continue
        mappings.append(
            FieldMappingDef(
                target=str(target),
                source=str(spec["source"]),
                transform=transform,
                required=required,
            )
        )
    kwargs["fields"] = tuple(mappings)
    return MappingProfile(**kwargs)


def parse_document(kind: ConfigKind, data: Any, name: str = "default") -> ConfigDocument:
    """
    Parse one document of ``kind``.

    Raises:
        ConfigValidationError: listing every structural problem found.
    """
    errors = _Errors()
    if kind == ConfigKind.SCORING:
        config = parse_scoring_config(data, errors)
    elif kind == ConfigKind.ALT_SCORING:
        config = parse_alt_scoring_config(data, errors)
    elif kind == ConfigKind.LENDING_POLICY:
        config = parse_lending_policy(data, errors)
    else:
        config = parse_mapping_profile(data, errors, name=name)
    if errors:
        raise ConfigValidationError(kind.value, errors)
    return config


# ---------------------------------------------------------------------------
# Dumping
# ---------------------------------------------------------------------------


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if is_dataclass(value):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {_plain(k): _plain(v) for k, v in value.items()}
    if isinstance(value, frozenset):
        return sorted(_plain(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def dump_document(config: ConfigDocument) -> dict[str, Any]:
    """Canonical JSON-safe payload for storage and fingerprinting."""
    if isinstance(config, MappingProfile):
        return {
            "fields": {
                fm.target: {
                    "source": fm.source,
                    "transform": fm.transform.value,
                    "required": fm.required,
                }
                for fm in config.fields
            },
            "country_code": config.country_code,
            "date_formats": list(config.date_formats),
        }
    return _plain(config)
