"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Reads a configuration set's ``root.yaml`` and parses it into the frozen
``stock_config.schema`` types.  Runtime code never calls this directly; the
single entry point is ``stock_config.get_active_config()``.

Invariants enforced
-------------------
* Required keys raise ``KeyError``; there are no silent defaults for them.
* Decimal settings are parsed from their string form, never via float.
* ``compute_checksum`` is deterministic for identical YAML content.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError``.
* Malformed YAML  -> ``yaml.YAMLError``.
* Non-numeric decimal setting  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    DatabaseSettings,
    ReferenceTypeRule,
    ReportCategoryGroup,
    SnapshotPolicy,
    StockConfiguration,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields ``{}``."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} must be a decimal number, got {value!r}") from None


def parse_reference_rule(data: dict[str, Any]) -> ReferenceTypeRule:
    return ReferenceTypeRule(
        reference_type=data["reference_type"],
        transaction_types=tuple(data["transaction_types"]),
        label_prefix=data.get("label_prefix", data["reference_type"]),
    )


def parse_report_groups(data: dict[str, Any]) -> tuple[ReportCategoryGroup, ...]:
    return tuple(
        ReportCategoryGroup(name=name, categories=tuple(categories))
        for name, categories in sorted(data.items())
    )


def parse_snapshot_policy(data: dict[str, Any] | None) -> SnapshotPolicy:
    data = data or {}
    return SnapshotPolicy(enabled=bool(data.get("enabled", False)))


def parse_database(data: dict[str, Any] | None) -> DatabaseSettings:
    data = data or {}
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=data.get("url", defaults.url),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
    )


def parse_configuration(data: dict[str, Any], checksum: str = "") -> StockConfiguration:
    """Parse a whole root.yaml mapping."""
    valuation = data["valuation"]
    process_items = data.get("process_items", {}) or {}
    return StockConfiguration(
        config_id=data["config_id"],
        version=int(data["version"]),
        description=data.get("description", ""),
        bag_unit_weight=parse_decimal(valuation["bag_unit_weight"], "bag_unit_weight"),
        statement_epsilon=parse_decimal(valuation["statement_epsilon"], "statement_epsilon"),
        reference_types=tuple(parse_reference_rule(r) for r in data["reference_types"]),
        report_groups=parse_report_groups(data["report_groups"]),
        melting_items=tuple(sorted((process_items.get("melting") or {}).items())),
        snapshots=parse_snapshot_policy(data.get("snapshots")),
        database=parse_database(data.get("database")),
        checksum=checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization (sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_configuration_set(set_dir: Path) -> StockConfiguration:
    """Load ``<set_dir>/root.yaml`` with its checksum."""
    data = load_yaml_file(set_dir / "root.yaml")
    return parse_configuration(data, checksum=compute_checksum(data))
