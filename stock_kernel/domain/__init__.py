"""Pure domain vocabulary: DTOs, enums and the injectable clock."""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.dtos import (
    DEFAULT_REFERENCE_RULES,
    Item,
    ItemCategory,
    ReferenceType,
    StockTransaction,
    StockTransactionInput,
    TransactionType,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "DEFAULT_REFERENCE_RULES",
    "Item",
    "ItemCategory",
    "ReferenceType",
    "StockTransaction",
    "StockTransactionInput",
    "TransactionType",
]
