"""
ItemRegistry -- minimal item master access for the ledger.

Responsibility:
    Registers and looks up items.  The full master-data module (CRUD,
    permissions, UI) lives outside the ledger; this registry is what the
    ledger, the report facade, the seeding scripts and the tests use.

Architecture position:
    Kernel > Services.  Reads and writes ``ItemModel`` only.

Invariants enforced:
    - Item codes are unique (DuplicateItemError before the INSERT).
    - Returned items are frozen ``Item`` DTOs.

Failure modes:
    - ItemNotFoundError for unknown id or code.
    - DuplicateItemError for a code already registered.
"""

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import select

from stock_kernel.db.types import round_quantity
from stock_kernel.domain.dtos import Item, ItemCategory
from stock_kernel.exceptions import DuplicateItemError, ItemNotFoundError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.item import ItemModel
from stock_kernel.services.base import BaseService

logger = get_logger("services.item_registry")


class ItemRegistry(BaseService):
    """Register and query items."""

    def register(
        self,
        code: str,
        name: str,
        category: ItemCategory | str,
        uom: str = "KG",
        unit_weight: Decimal | None = None,
        is_active: bool = True,
    ) -> Item:
        category = ItemCategory(category)
        existing = self.session.execute(
            select(ItemModel.id).where(ItemModel.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateItemError(code)

        model = ItemModel(
            code=code,
            name=name,
            category=category.value,
            uom=uom,
            unit_weight=round_quantity(unit_weight) if unit_weight is not None else None,
            is_active=is_active,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "item_registered",
            extra={"item_id": model.id, "item_code": code, "category": category.value},
        )
        return model.to_dto()

    def get(self, item_id: int) -> Item:
        model = self.session.get(ItemModel, item_id)
        if model is None:
            raise ItemNotFoundError(str(item_id))
        return model.to_dto()

    def get_by_code(self, code: str) -> Item:
        model = self.session.execute(
            select(ItemModel).where(ItemModel.code == code)
        ).scalar_one_or_none()
        if model is None:
            raise ItemNotFoundError(code)
        return model.to_dto()

    def list_items(
        self,
        categories: Iterable[ItemCategory | str] | None = None,
        name_filter: str | None = None,
        active_only: bool = True,
    ) -> list[Item]:
        """
        Items ordered by name, optionally restricted to categories and a
        case-insensitive substring of the name.
        """
        query = select(ItemModel)
        if categories is not None:
            values = [ItemCategory(c).value for c in categories]
            query = query.where(ItemModel.category.in_(values))
        if name_filter:
            query = query.where(ItemModel.name.ilike(f"%{name_filter}%"))
        if active_only:
            query = query.where(ItemModel.is_active.is_(True))
        query = query.order_by(ItemModel.name, ItemModel.id)
        return [m.to_dto() for m in self.session.execute(query).scalars()]
