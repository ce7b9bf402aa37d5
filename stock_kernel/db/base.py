"""
Module: stock_kernel.db.base
Responsibility: Declarative base class for all SQLAlchemy ORM models and the
    portable fixed-point column type.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Monotonic integer primary keys: ledger replay order is
      (transaction_date, id), so ids are database-assigned and increasing.
    - Decimal precision: FixedDecimal stores Decimal values exactly on every
      backend.  NEVER use float for quantities, rates or amounts.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from sqlalchemy import BigInteger, DateTime, Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# BIGINT autoincrement is not available on SQLite; INTEGER PRIMARY KEY is.
IdentityInteger = BigInteger().with_variant(Integer(), "sqlite")


class FixedDecimal(TypeDecorator):
    """
    Decimal column that round-trips exactly on every dialect.

    Contract:
        On PostgreSQL the value is stored as NUMERIC(precision, scale).
        SQLite has no native decimal type (SQLAlchemy would coerce through
        float), so there the value is stored as its canonical string.

    Guarantees:
        - process_result_value always returns a Decimal quantized to scale.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 20, scale: int = 3):
        super().__init__()
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        """Quantize on the way in; strings on SQLite."""
        if value is None:
            return None
        quantized = Decimal(value).quantize(Decimal(1).scaleb(-self.scale))
        if dialect.name == "sqlite":
            return str(quantized)
        return quantized

    def process_result_value(self, value, dialect):
        """Always hand back a Decimal."""
        if value is None:
            return None
        return Decimal(str(value)).quantize(Decimal(1).scaleb(-self.scale))


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Contract:
        Every ORM model in the system inherits from Base.  Base provides a
        monotonic integer primary key and a type_annotation_map that enforces
        consistent column types across the schema.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: FixedDecimal(20, 3),
        datetime: DateTime(timezone=True),
        int: IdentityInteger,
    }

    id: Mapped[int] = mapped_column(
        IdentityInteger,
        primary_key=True,
        autoincrement=True,
    )
