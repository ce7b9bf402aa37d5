"""
ORM-level immutability enforcement for the stock ledger.

A StockTransaction is immutable after insert.  Corrections are made by
posting compensating transactions, never by editing history that prior
reports relied on.  The only sanctioned delete is LedgerStore.remove_last(),
which removes the rows of one not-yet-consumed document inside a
``compensating_delete`` scope.

Layer 1 is THIS FILE (ORM event listeners).  PostgreSQL deployments may add
database triggers on top; the listeners alone cover every code path that
goes through the ORM.

Design decision: created_at is written once at insert and is therefore
covered by the same rule as the financial fields.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

COMPENSATING_DELETE_KEY = "stock_kernel.compensating_delete"

_PROTECTED_FIELDS = (
    "transaction_date",
    "transaction_type",
    "item_id",
    "quantity",
    "rate",
    "amount",
    "reference_type",
    "reference_id",
    "remarks",
    "created_at",
)


@contextmanager
def compensating_delete(session: Session) -> Generator[Session, None, None]:
    """Allow StockTransaction deletes flushed within this block."""
    previous = session.info.get(COMPENSATING_DELETE_KEY, False)
    session.info[COMPENSATING_DELETE_KEY] = True
    try:
        yield session
    finally:
        session.info[COMPENSATING_DELETE_KEY] = previous


def _check_stock_transaction_immutability(mapper, connection, target):
    """Reject any change to a persisted ledger row."""
    state = inspect(target)
    changed = [
        name for name in _PROTECTED_FIELDS
        if name in state.attrs and state.attrs[name].history.has_changes()
    ]
    if not changed:
        return

    logger.error(
        "stock_transaction_update_blocked",
        extra={"transaction_id": target.id, "fields": changed},
    )
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=str(target.id),
        reason=f"ledger rows are append-only; attempted change to {', '.join(changed)}",
    )


def _check_stock_transaction_delete(mapper, connection, target):
    """Only compensating deletes may remove ledger rows."""
    session = object_session(target)
    if session is not None and session.info.get(COMPENSATING_DELETE_KEY):
        return

    logger.error(
        "stock_transaction_delete_blocked",
        extra={"transaction_id": target.id},
    )
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=str(target.id),
        reason="use LedgerStore.remove_last() for compensating deletes",
    )


_LISTENERS = (
    ("before_update", _check_stock_transaction_immutability),
    ("before_delete", _check_stock_transaction_delete),
)


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners (idempotent).
    """
    from stock_kernel.models.stock_transaction import StockTransactionModel

    for name, fn in _LISTENERS:
        if not event.contains(StockTransactionModel, name, fn):
            event.listen(StockTransactionModel, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    from stock_kernel.models.stock_transaction import StockTransactionModel

    for name, fn in _LISTENERS:
        if event.contains(StockTransactionModel, name, fn):
            event.remove(StockTransactionModel, name, fn)
