"""
Module: stock_kernel.selectors.movement_selector
Responsibility: Read-only, cross-item views of the stock ledger: the
    flattened movement listing, per-document row listings, and the
    canonical ledger hash used to compare a rebuilt ledger with the
    original.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Movement listings are newest first: (transaction_date DESC, id DESC).
    - canonical_hash() is deterministic: the same rows always hash the same,
      independent of insertion order of unrelated items.

Failure modes:
    - Empty list / hash of an empty ledger when nothing matches.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from stock_kernel.models.item import ItemModel
from stock_kernel.models.stock_transaction import StockTransactionModel
from stock_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class MovementRow:
    """One ledger row joined with its item."""

    transaction_id: int
    transaction_date: date
    transaction_type: str
    item_id: int
    item_code: str
    item_name: str
    category: str
    uom: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal
    reference_type: str
    reference_id: str
    remarks: str

    @property
    def quantity_in(self) -> Decimal:
        return self.quantity if self.transaction_type == "RECEIPT" else Decimal("0")

    @property
    def quantity_out(self) -> Decimal:
        return self.quantity if self.transaction_type == "ISSUE" else Decimal("0")


class MovementSelector(BaseSelector):
    """Cross-item ledger listings."""

    def movements(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        item_name: str | None = None,
        transaction_type: str | None = None,
        reference_types: list[str] | None = None,
        categories: list[str] | None = None,
        newest_first: bool = True,
    ) -> list[MovementRow]:
        query = select(StockTransactionModel, ItemModel).join(
            ItemModel, ItemModel.id == StockTransactionModel.item_id
        )
        if date_from is not None:
            query = query.where(StockTransactionModel.transaction_date >= date_from)
        if date_to is not None:
            query = query.where(StockTransactionModel.transaction_date <= date_to)
        if item_name:
            query = query.where(ItemModel.name.ilike(f"%{item_name}%"))
        if transaction_type:
            query = query.where(StockTransactionModel.transaction_type == transaction_type)
        if reference_types:
            query = query.where(StockTransactionModel.reference_type.in_(reference_types))
        if categories:
            query = query.where(ItemModel.category.in_(categories))

        if newest_first:
            query = query.order_by(
                StockTransactionModel.transaction_date.desc(),
                StockTransactionModel.id.desc(),
            )
        else:
            query = query.order_by(
                StockTransactionModel.transaction_date,
                StockTransactionModel.id,
            )

        return [
            MovementRow(
                transaction_id=tx.id,
                transaction_date=tx.transaction_date,
                transaction_type=tx.transaction_type,
                item_id=item.id,
                item_code=item.code,
                item_name=item.name,
                category=item.category,
                uom=item.uom,
                quantity=tx.quantity,
                rate=tx.rate,
                amount=tx.amount,
                reference_type=tx.reference_type,
                reference_id=tx.reference_id,
                remarks=tx.remarks or "",
            )
            for tx, item in self.session.execute(query).all()
        ]

    def item_ids_with_activity(self, date_to: date | None = None) -> list[int]:
        """Distinct item ids that have at least one row on or before ``date_to``."""
        query = select(StockTransactionModel.item_id).distinct()
        if date_to is not None:
            query = query.where(StockTransactionModel.transaction_date <= date_to)
        return sorted(self.session.execute(query).scalars())

    def canonical_hash(self) -> str:
        """
        SHA-256 over every ledger row in replay order.

        Ids are excluded and items are keyed by code, so a ledger rebuilt
        into a fresh database from the same documents hashes identically.
        """
        query = (
            select(StockTransactionModel, ItemModel.code)
            .join(ItemModel, ItemModel.id == StockTransactionModel.item_id)
            .order_by(
                ItemModel.code,
                StockTransactionModel.transaction_date,
                StockTransactionModel.id,
            )
        )
        digest = hashlib.sha256()
        for tx, item_code in self.session.execute(query).all():
            record = [
                item_code,
                tx.transaction_date.isoformat(),
                tx.transaction_type,
                str(tx.quantity),
                str(tx.rate),
                str(tx.amount),
                tx.reference_type,
                tx.reference_id,
            ]
            digest.update(json.dumps(record, separators=(",", ":")).encode("utf-8"))
            digest.update(b"\n")
        return digest.hexdigest()
