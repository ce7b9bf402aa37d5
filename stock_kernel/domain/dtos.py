"""
DTOs -- Data transfer objects crossing the ledger boundary.

Responsibility:
    Defines the vocabulary shared by upstream producers, the Ledger Store,
    the engines and the report layer: item categories, transaction verbs,
    document reference types, and frozen transaction records.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.  ORM models convert to these
    DTOs at the store boundary; nothing above the kernel sees ORM rows.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable, hashable).
    - Quantities, rates and amounts are Decimal, never float.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class ItemCategory(str, Enum):
    """Production stage of an item."""

    RAW_MATERIAL = "RawMaterial"
    MINERAL = "Mineral"
    WIP = "WIP"
    FINISHED_GOOD = "FinishedGood"


class TransactionType(str, Enum):
    """The ledger's two verbs."""

    RECEIPT = "RECEIPT"
    ISSUE = "ISSUE"


class ReferenceType(str, Enum):
    """Originating process of a ledger row."""

    GRN = "GRN"
    MELTING = "MELTING"
    MELTING_OUTPUT = "MELTING_OUTPUT"
    HEAT_TREATMENT = "HEAT_TREATMENT"
    HEAT_TREATMENT_OUTPUT = "HEAT_TREATMENT_OUTPUT"
    DISPATCH = "DISPATCH"
    OPENING_STOCK = "OPENING_STOCK"
    ADJUSTMENT = "ADJUSTMENT"

    @property
    def output_type(self) -> ReferenceType:
        """The ``<process>_OUTPUT`` counterpart of a process reference type."""
        return ReferenceType(f"{self.value}_OUTPUT")


_RECEIPT_ONLY = frozenset({TransactionType.RECEIPT})
_ISSUE_ONLY = frozenset({TransactionType.ISSUE})

# Which verbs each document type may carry.  stock_config overrides this
# through its reference_types section.
DEFAULT_REFERENCE_RULES: Mapping[ReferenceType, frozenset[TransactionType]] = {
    ReferenceType.GRN: _RECEIPT_ONLY,
    ReferenceType.MELTING: _ISSUE_ONLY,
    ReferenceType.MELTING_OUTPUT: _RECEIPT_ONLY,
    ReferenceType.HEAT_TREATMENT: _ISSUE_ONLY,
    ReferenceType.HEAT_TREATMENT_OUTPUT: _RECEIPT_ONLY,
    ReferenceType.DISPATCH: _ISSUE_ONLY,
    ReferenceType.OPENING_STOCK: _RECEIPT_ONLY,
    ReferenceType.ADJUSTMENT: _RECEIPT_ONLY | _ISSUE_ONLY,
}


@dataclass(frozen=True, slots=True)
class Item:
    """Read-only view of an item master row."""

    id: int
    code: str
    name: str
    category: ItemCategory
    uom: str
    unit_weight: Decimal | None = None
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class StockTransactionInput:
    """
    What an upstream producer asks the ledger to record.

    ``amount`` is optional: when omitted the store computes
    ``round_amount(quantity * rate)``.  Callers that already know the exact
    cost (the process allocator) pass it so no rounding is reintroduced.
    """

    transaction_date: date
    transaction_type: TransactionType | str
    item_id: int
    quantity: Decimal
    rate: Decimal
    reference_type: ReferenceType | str
    reference_id: str
    remarks: str = ""
    amount: Decimal | None = None


@dataclass(frozen=True, slots=True)
class StockTransaction:
    """A persisted ledger row."""

    id: int
    transaction_date: date
    transaction_type: TransactionType
    item_id: int
    quantity: Decimal
    rate: Decimal
    amount: Decimal
    reference_type: ReferenceType
    reference_id: str
    remarks: str = ""
    created_at: datetime | None = None

    @property
    def is_receipt(self) -> bool:
        return self.transaction_type == TransactionType.RECEIPT

    @property
    def is_issue(self) -> bool:
        return self.transaction_type == TransactionType.ISSUE

    @property
    def replay_key(self) -> tuple[date, int]:
        """FIFO sequencing key: (transaction_date, id)."""
        return (self.transaction_date, self.id)
