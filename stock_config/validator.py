"""
Configuration validation.

Checks a parsed StockConfiguration for structural problems before it is
handed to runtime code.  Returns every problem at once rather than failing
on the first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from stock_config.schema import StockConfiguration
from stock_engines.process_costing import MELTING_INPUT_ROLES
from stock_kernel.domain.dtos import ItemCategory, ReferenceType, TransactionType


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_configuration(config: StockConfiguration) -> ValidationResult:
    result = ValidationResult()
    errors = result.errors

    if config.bag_unit_weight <= Decimal("0"):
        errors.append(f"bag_unit_weight must be positive, got {config.bag_unit_weight}")
    if config.statement_epsilon < Decimal("0"):
        errors.append(f"statement_epsilon must not be negative, got {config.statement_epsilon}")

    known_refs = {r.value for r in ReferenceType}
    known_verbs = {t.value for t in TransactionType}
    seen: set[str] = set()
    for rule in config.reference_types:
        if rule.reference_type not in known_refs:
            errors.append(f"unknown reference type {rule.reference_type!r}")
            continue
        if rule.reference_type in seen:
            errors.append(f"duplicate rule for reference type {rule.reference_type!r}")
        seen.add(rule.reference_type)
        if not rule.transaction_types:
            errors.append(f"{rule.reference_type}: no transaction types allowed")
        for verb in rule.transaction_types:
            if verb not in known_verbs:
                errors.append(f"{rule.reference_type}: unknown transaction type {verb!r}")
    for missing in sorted(known_refs - seen):
        errors.append(f"no rule for reference type {missing!r}")

    known_categories = {c.value for c in ItemCategory}
    for group in config.report_groups:
        for category in group.categories:
            if category not in known_categories:
                errors.append(f"report group {group.name!r}: unknown category {category!r}")

    roles = dict(config.melting_items)
    for role in roles:
        if role not in MELTING_INPUT_ROLES:
            errors.append(f"process_items.melting: unknown role {role!r}")
    for role in MELTING_INPUT_ROLES:
        if role not in roles:
            errors.append(f"process_items.melting: no item code for role {role!r}")

    return result
