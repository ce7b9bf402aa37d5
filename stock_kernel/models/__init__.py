"""ORM models. Importing this package registers every table on Base.metadata."""

from stock_kernel.models.item import ItemModel
from stock_kernel.models.lot_snapshot import LotSnapshotModel
from stock_kernel.models.stock_transaction import StockTransactionModel

__all__ = [
    "ItemModel",
    "LotSnapshotModel",
    "StockTransactionModel",
]
