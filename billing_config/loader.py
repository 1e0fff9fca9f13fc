"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses
of ``billing_config.schema``.  Runtime callers use
``billing_config.get_active_config()`` instead of calling this directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ConfigurationError`` naming the offending key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    BillingConfig,
    DerivationConfig,
    DocumentTypeDefaults,
    NumberingConfig,
)
from billing_kernel.db.types import to_decimal
from billing_kernel.domain.numbering import NumberingRule
from billing_kernel.domain.tax import UnsupportedRatePolicy
from billing_kernel.domain.values import CallPath, DocumentType, NumberFormat
from billing_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of the raw configuration."""
    canonical = json.dumps(data, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _enum(enum_type, value: Any, key: str):
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_type)
        raise ConfigurationError(key, f"must be one of {allowed}, got {value!r}") from None


def _positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(key, f"must be a positive integer, got {value!r}")
    return value


def parse_numbering_rule(data: dict[str, Any], key: str) -> NumberingRule:
    number_format = _enum(NumberFormat, data.get("format", "monthly"), f"{key}.format")
    prefix = data.get("prefix") or ""
    if number_format is NumberFormat.PREFIXED and not prefix:
        raise ConfigurationError(f"{key}.prefix", "is required for the prefixed format")
    if number_format is NumberFormat.MONTHLY and prefix:
        raise ConfigurationError(f"{key}.prefix", "is not allowed for the monthly format")
    return NumberingRule(number_format=number_format, prefix=prefix)


def parse_numbering(data: dict[str, Any]) -> NumberingConfig:
    default_rule = parse_numbering_rule(data.get("default") or {}, "numbering.default")
    rules: dict[tuple[DocumentType, CallPath], NumberingRule] = {}
    for i, override in enumerate(data.get("overrides") or []):
        key = f"numbering.overrides[{i}]"
        document_type = _enum(DocumentType, override.get("document_type"), f"{key}.document_type")
        call_path = _enum(CallPath, override.get("call_path"), f"{key}.call_path")
        rules[(document_type, call_path)] = parse_numbering_rule(override, key)
    return NumberingConfig(default_rule=default_rule, rules=rules)


def parse_document_defaults(document_type: DocumentType, data: dict[str, Any]) -> DocumentTypeDefaults:
    key = f"documents.{document_type.value}"
    statuses = tuple(data.get("statuses") or ("draft", "sent"))
    if "draft" not in statuses:
        raise ConfigurationError(f"{key}.statuses", "must include 'draft'")

    valid_until_days = data.get("valid_until_days")
    if valid_until_days is not None:
        valid_until_days = _positive_int(valid_until_days, f"{key}.valid_until_days")
    delivery_days = data.get("delivery_days")
    if delivery_days is not None:
        delivery_days = _positive_int(delivery_days, f"{key}.delivery_days")

    return DocumentTypeDefaults(
        document_type=document_type,
        statuses=statuses,
        default_remarks=data.get("default_remarks"),
        default_honorific=data.get("default_honorific"),
        derived_remarks=data.get("derived_remarks"),
        duplicate_subject_suffix=data.get("duplicate_subject_suffix") or "",
        valid_until_days=valid_until_days,
        delivery_days=delivery_days,
        delivery_location=data.get("delivery_location"),
        payment_terms=data.get("payment_terms"),
    )


def _rates_by_type(data: dict[str, Any], name: str) -> dict[DocumentType, Decimal]:
    rates: dict[DocumentType, Decimal] = {}
    for type_name, rate in (data.get(name) or {}).items():
        key = f"derivation.{name}.{type_name}"
        document_type = _enum(DocumentType, type_name, key)
        try:
            rates[document_type] = to_decimal(rate)
        except ValueError as exc:
            raise ConfigurationError(key, str(exc)) from None
    return rates


def parse_derivation(data: dict[str, Any]) -> DerivationConfig:
    targets = frozenset(
        _enum(DocumentType, t, "derivation.targets")
        for t in data.get("targets") or DerivationConfig().targets
    )
    if DocumentType.ESTIMATE in targets:
        raise ConfigurationError("derivation.targets", "an estimate cannot be a derivation target")

    overrides = _rates_by_type(data, "tax_rate_overrides")
    fallbacks = _rates_by_type(data, "zero_rate_fallbacks")
    keep_item_rates = frozenset(
        _enum(DocumentType, t, "derivation.keep_item_rates")
        for t in data.get("keep_item_rates", [DocumentType.DELIVERY_NOTE.value]) or ()
    )
    return DerivationConfig(
        targets=targets,
        tax_rate_overrides=overrides,
        zero_rate_fallbacks=fallbacks,
        keep_item_rates=keep_item_rates,
    )


def parse_config(data: dict[str, Any]) -> BillingConfig:
    """
    Parse a raw configuration dict.

    Raises:
        ConfigurationError: on any invalid value.
    """
    allocation = data.get("allocation") or {}
    tax = data.get("tax") or {}

    documents = {
        document_type: parse_document_defaults(
            document_type, (data.get("documents") or {}).get(document_type.value) or {}
        )
        for document_type in DocumentType
    }
    unknown = set((data.get("documents") or {}).keys()) - {t.value for t in DocumentType}
    if unknown:
        raise ConfigurationError("documents", f"unknown document types: {sorted(unknown)}")

    return BillingConfig(
        numbering=parse_numbering(data.get("numbering") or {}),
        allocation_max_attempts=_positive_int(
            allocation.get("max_attempts", 3), "allocation.max_attempts"
        ),
        unsupported_rate_policy=_enum(
            UnsupportedRatePolicy,
            tax.get("unsupported_rate_policy", "exclude"),
            "tax.unsupported_rate_policy",
        ),
        derivation=parse_derivation(data.get("derivation") or {}),
        documents=documents,
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> BillingConfig:
    """Load and parse a YAML configuration file."""
    return parse_config(load_yaml_file(path))
