"""Kernel services: the ledger write path, item master access and item locks."""

from stock_kernel.services.item_locks import ItemLockRegistry, get_item_lock_registry
from stock_kernel.services.item_registry import ItemRegistry
from stock_kernel.services.ledger_store import LedgerStore, remaining_receipt_quantities

__all__ = [
    "ItemLockRegistry",
    "ItemRegistry",
    "LedgerStore",
    "get_item_lock_registry",
    "remaining_receipt_quantities",
]
