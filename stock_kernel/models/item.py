"""
Module: stock_kernel.models.item
Responsibility: Minimal ORM mirror of the item master.  The master-data
    module owns items; the ledger reads them to validate postings, filter
    reports by category, and convert finished-goods kilograms into bags.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique.
    - category holds an ItemCategory value (RawMaterial, Mineral, WIP,
      FinishedGood).
    - An item is immutable once referenced by a transaction; the ledger
      never updates item rows.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, FixedDecimal

if TYPE_CHECKING:
    from stock_kernel.domain.dtos import Item


class ItemModel(Base):
    """Item master row as seen by the stock ledger."""

    __tablename__ = "items"

    __table_args__ = (
        Index("idx_item_category", "category"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    category: Mapped[str] = mapped_column(String(20), nullable=False)

    uom: Mapped[str] = mapped_column(String(20), nullable=False, default="KG")

    # kg per bag for finished goods; NULL falls back to the configured default
    unit_weight: Mapped[Decimal | None] = mapped_column(
        FixedDecimal(20, 3),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Item {self.id}: {self.code} ({self.category})>"

    def to_dto(self) -> Item:
        """Convert ORM row to the frozen Item DTO."""
        from stock_kernel.domain.dtos import Item as ItemDTO, ItemCategory

        return ItemDTO(
            id=self.id,
            code=self.code,
            name=self.name,
            category=ItemCategory(self.category),
            uom=self.uom,
            unit_weight=self.unit_weight,
            is_active=self.is_active,
        )
