"""Database layer - engine, base classes, fixed-point types, immutability."""

from stock_kernel.db.base import Base, FixedDecimal, IdentityInteger
from stock_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from stock_kernel.db.types import round_amount, round_quantity, round_rate

__all__ = [
    "Base",
    "FixedDecimal",
    "IdentityInteger",
    "create_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
    "round_amount",
    "round_quantity",
    "round_rate",
]
