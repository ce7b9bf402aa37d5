"""Read-only ledger queries."""

from stock_kernel.selectors.movement_selector import MovementRow, MovementSelector

__all__ = ["MovementRow", "MovementSelector"]
