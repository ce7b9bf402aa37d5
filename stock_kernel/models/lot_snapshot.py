"""
Module: stock_kernel.models.lot_snapshot
Responsibility: Optional persisted FIFO queue checkpoints that bound replay
    cost for items with long histories.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    S1 -- A snapshot covers every ledger row with transaction_date <=
          snapshot_date for its item, and no other rows.
    S2 -- Snapshots are derived data.  Any compensating delete dated on or
          before a snapshot's date invalidates (deletes) that snapshot.
    S3 -- One snapshot per (item_id, snapshot_date).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, FixedDecimal, IdentityInteger


class LotSnapshotModel(Base):
    """Serialized FIFO queue for one item as of the end of snapshot_date."""

    __tablename__ = "lot_snapshots"

    __table_args__ = (
        UniqueConstraint("item_id", "snapshot_date", name="uq_lot_snapshot_item_date"),
        Index("idx_lot_snapshot_item_date", "item_id", "snapshot_date"),
    )

    item_id: Mapped[int] = mapped_column(
        IdentityInteger,
        ForeignKey("items.id"),
        nullable=False,
    )

    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Highest ledger id folded into this snapshot (0 when the item had none)
    last_transaction_id: Mapped[int] = mapped_column(IdentityInteger, nullable=False, default=0)

    # [{"origin_transaction_id", "remaining_quantity", "rate", "remaining_value"}, ...]
    lots: Mapped[list] = mapped_column(JSON, nullable=False)

    total_quantity: Mapped[Decimal] = mapped_column(FixedDecimal(20, 3), nullable=False)

    total_value: Mapped[Decimal] = mapped_column(FixedDecimal(24, 3), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<LotSnapshot item={self.item_id} as_of={self.snapshot_date} "
            f"qty={self.total_quantity}>"
        )
