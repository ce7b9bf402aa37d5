"""
StockConfiguration schema.

The reviewable source artifact for ledger configuration.  YAML under
``stock_config/sets/<name>/root.yaml`` is parsed into these frozen types by
the loader and checked by the validator before ``get_active_config()``
hands it out.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from stock_kernel.domain.dtos import ItemCategory, ReferenceType, TransactionType

# ---------------------------------------------------------------------------
# Ledger vocabulary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReferenceTypeRule:
    """Which verbs a document type may carry, and how reports label it."""

    reference_type: str
    transaction_types: tuple[str, ...]
    label_prefix: str


@dataclass(frozen=True)
class ReportCategoryGroup:
    """A named set of item categories a report filters on."""

    name: str
    categories: tuple[str, ...]


# ---------------------------------------------------------------------------
# Runtime settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SnapshotPolicy:
    """Persisted lot-queue checkpoints; off unless replay cost demands it."""

    enabled: bool = False


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///stock_ledger.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 5


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockConfiguration:
    """
    Root configuration artifact.

    ``checksum`` is the SHA-256 of the canonical JSON of the source YAML and
    identifies exactly which configuration produced a report.
    """

    config_id: str
    version: int
    bag_unit_weight: Decimal
    statement_epsilon: Decimal
    reference_types: tuple[ReferenceTypeRule, ...]
    report_groups: tuple[ReportCategoryGroup, ...]
    melting_items: tuple[tuple[str, str], ...] = ()
    snapshots: SnapshotPolicy = field(default_factory=SnapshotPolicy)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    description: str = ""
    checksum: str = ""

    def reference_rules(self) -> dict[ReferenceType, frozenset[TransactionType]]:
        """Rules in the shape LedgerStore expects."""
        return {
            ReferenceType(rule.reference_type): frozenset(
                TransactionType(t) for t in rule.transaction_types
            )
            for rule in self.reference_types
        }

    def label_prefixes(self) -> Mapping[str, str]:
        return {rule.reference_type: rule.label_prefix for rule in self.reference_types}

    def categories_for(self, group: str) -> tuple[ItemCategory, ...]:
        for entry in self.report_groups:
            if entry.name == group:
                return tuple(ItemCategory(c) for c in entry.categories)
        raise KeyError(f"Unknown report group: {group}")

    def melting_item_codes(self) -> dict[str, str]:
        """Melting input role -> item code."""
        return dict(self.melting_items)
