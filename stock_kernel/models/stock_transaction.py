"""
Module: stock_kernel.models.stock_transaction
Responsibility: ORM persistence for the stock ledger -- the only persisted
    entity of the valuation core.  Each row is one RECEIPT or ISSUE of one
    item, tagged with the document that produced it.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    L1 -- Replay order.  (item_id, transaction_date, id) index supports the
          FIFO sequencing query; id is monotonic and breaks same-day ties.
    L2 -- quantity > 0 and rate >= 0, validated in LedgerStore.append before
          anything reaches the session.  transaction_type has a CHECK.
    L3 -- amount is stored, never recomputed, so historical rounding is
          preserved across replays.
    L4 -- Immutability.  Rows are append-only; see db/immutability.py.

Failure modes:
    - IntegrityError on CHECK violation or unknown item_id (FK).
    - ImmutabilityViolationError on UPDATE, or DELETE outside a
      compensating-delete scope.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, FixedDecimal, IdentityInteger

if TYPE_CHECKING:
    from stock_kernel.domain.dtos import StockTransaction


class StockTransactionModel(Base):
    """
    Persistent storage for ledger rows.

    Contract:
        Written only by LedgerStore.append(); deleted only by
        LedgerStore.remove_last().  Readers sort by (transaction_date, id).
    """

    __tablename__ = "stock_transactions"

    __table_args__ = (
        # Query: replay for one item up to a cutoff
        Index("idx_stock_tx_item_date", "item_id", "transaction_date", "id"),
        # Query: all rows of one document (compensating delete, audit)
        Index("idx_stock_tx_reference", "reference_type", "reference_id"),
        # Query: movement report by date
        Index("idx_stock_tx_date", "transaction_date"),
        CheckConstraint("transaction_type IN ('RECEIPT', 'ISSUE')", name="ck_stock_tx_type"),
    )

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(10), nullable=False)

    item_id: Mapped[int] = mapped_column(
        IdentityInteger,
        ForeignKey("items.id"),
        nullable=False,
    )

    # INVARIANT L2: quantity > 0 (enforced at service layer)
    quantity: Mapped[Decimal] = mapped_column(FixedDecimal(20, 3), nullable=False)

    # Informational unit rate; amount is the stored truth
    rate: Mapped[Decimal] = mapped_column(FixedDecimal(20, 4), nullable=False)

    # INVARIANT L3: stored, never recomputed
    amount: Mapped[Decimal] = mapped_column(FixedDecimal(24, 3), nullable=False)

    reference_type: Mapped[str] = mapped_column(String(30), nullable=False)

    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)

    remarks: Mapped[str] = mapped_column(String(1000), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<StockTransaction {self.id}: {self.transaction_date} {self.transaction_type} "
            f"item={self.item_id} qty={self.quantity} @ {self.rate}>"
        )

    def to_dto(self) -> StockTransaction:
        """Convert ORM row to the frozen ledger DTO."""
        from stock_kernel.domain.dtos import (
            ReferenceType,
            StockTransaction as StockTransactionDTO,
            TransactionType,
        )

        return StockTransactionDTO(
            id=self.id,
            transaction_date=self.transaction_date,
            transaction_type=TransactionType(self.transaction_type),
            item_id=self.item_id,
            quantity=self.quantity,
            rate=self.rate,
            amount=self.amount,
            reference_type=ReferenceType(self.reference_type),
            reference_id=self.reference_id,
            remarks=self.remarks or "",
            created_at=self.created_at,
        )
