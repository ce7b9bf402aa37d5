"""
ORM-level tests for the ledger tables.

Covers exact Decimal round-trips through FixedDecimal, the schema-level
constraints, and DTO conversion.  Append-only enforcement is exercised in
tests/services/test_ledger_store.py.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stock_kernel.domain.dtos import ItemCategory, ReferenceType, TransactionType
from stock_kernel.models.item import ItemModel
from stock_kernel.models.stock_transaction import StockTransactionModel


def _row(item_id, **overrides) -> StockTransactionModel:
    values = dict(
        transaction_date=date(2024, 1, 1),
        transaction_type="RECEIPT",
        item_id=item_id,
        quantity=Decimal("12.345"),
        rate=Decimal("10.1234"),
        amount=Decimal("124.973"),
        reference_type="GRN",
        reference_id="1",
    )
    values.update(overrides)
    return StockTransactionModel(**values)


class TestFixedDecimal:
    def test_values_round_trip_exactly(self, session, make_item):
        item = make_item()
        session.add(_row(item.id))
        session.flush()
        session.expire_all()

        stored = session.execute(
            select(StockTransactionModel).where(StockTransactionModel.item_id == item.id)
        ).scalar_one()

        assert stored.quantity == Decimal("12.345")
        assert stored.rate == Decimal("10.1234")
        assert stored.amount == Decimal("124.973")
        assert isinstance(stored.amount, Decimal)

    def test_scale_applied_on_write(self, session, make_item):
        item = make_item()
        session.add(_row(item.id, quantity=Decimal("1.23456")))
        session.flush()
        session.expire_all()

        stored = session.execute(
            select(StockTransactionModel.quantity).where(StockTransactionModel.item_id == item.id)
        ).scalar_one()

        assert str(stored) == "1.235"

    def test_large_amount(self, session, make_item):
        item = make_item()
        big = Decimal("987654321012345.678")
        session.add(_row(item.id, amount=big))
        session.flush()
        session.expire_all()

        stored = session.execute(
            select(StockTransactionModel.amount).where(StockTransactionModel.item_id == item.id)
        ).scalar_one()
        assert stored == big


class TestConstraints:
    def test_unknown_transaction_type(self, session, make_item):
        item = make_item()
        session.add(_row(item.id, transaction_type="TRANSFER"))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_unknown_item(self, session, db_tables):
        session.add(_row(31337))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_duplicate_item_code(self, session, db_tables):
        session.add(ItemModel(code="DUP", name="A", category="Mineral", uom="KG"))
        session.add(ItemModel(code="DUP", name="B", category="Mineral", uom="KG"))
        with pytest.raises(IntegrityError):
            session.flush()


class TestDtoConversion:
    def test_transaction_dto(self, session, make_item):
        item = make_item()
        model = _row(item.id, reference_type="MELTING_OUTPUT", reference_id="4", remarks="")
        session.add(model)
        session.flush()

        dto = model.to_dto()

        assert dto.id == model.id
        assert dto.transaction_type == TransactionType.RECEIPT
        assert dto.reference_type == ReferenceType.MELTING_OUTPUT
        assert dto.replay_key == (date(2024, 1, 1), model.id)
        assert dto.created_at is not None
        assert dto.is_receipt and not dto.is_issue

    def test_item_dto(self, session, db_tables):
        model = ItemModel(
            code="FG-1", name="Shot", category="FinishedGood", uom="KG", unit_weight=Decimal("25")
        )
        session.add(model)
        session.flush()

        dto = model.to_dto()

        assert dto.category == ItemCategory.FINISHED_GOOD
        assert dto.unit_weight == Decimal("25")
        assert dto.is_active is True
