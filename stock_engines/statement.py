"""
stock_engines.statement -- FIFO stock statement row assembly.

Responsibility:
    Given an item's opening lot queue and its in-range transactions, build
    one statement row: opening, receipts, issues and closing, each as
    (quantity, rate, amount), and check that the row balances.  Also sums
    rows into grand totals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ValuationReportService
    supplies the replayed opening queue and the transactions.

Invariants enforced:
    ST1 -- closing.quantity == opening.quantity + receipts.quantity
           - issues.quantity, and the same for amount, within epsilon.
    ST2 -- Issue cost is always recomputed by FIFO from the working queue;
           the rate stored on an issue row is never trusted.
    ST3 -- Rates are never summed.  Opening/closing rates are the queue's
           weighted average; receipt/issue/total rates are amount / qty.

Failure modes:
    - Never raises for data problems.  A shortfall or an unbalanced row
      comes back as a flagged row; callers wrap unexpected exceptions into
      error_row() so one item cannot abort a statement.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from stock_engines.lot_queue import FIFOLotQueue, QueueState
from stock_engines.tracer import traced_engine
from stock_kernel.db.types import ZERO, safe_rate
from stock_kernel.domain.dtos import Item, StockTransaction
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.statement")

DEFAULT_EPSILON = Decimal("0.001")


class RowStatus(str, Enum):
    """Health of one statement row."""

    OK = "OK"
    SHORTFALL = "SHORTFALL"
    DISCREPANCY = "DISCREPANCY"
    ERROR = "ERROR"


@dataclass(frozen=True, slots=True)
class Position:
    """A (quantity, rate, amount) triple."""

    quantity: Decimal
    rate: Decimal
    amount: Decimal

    @classmethod
    def zero(cls) -> Position:
        return cls(quantity=ZERO, rate=safe_rate(ZERO, ZERO), amount=ZERO)

    @classmethod
    def of(cls, quantity: Decimal, amount: Decimal) -> Position:
        """Position whose rate is amount / quantity."""
        return cls(quantity=quantity, rate=safe_rate(amount, quantity), amount=amount)

    @classmethod
    def from_state(cls, state: QueueState) -> Position:
        return cls(
            quantity=state.total_quantity,
            rate=state.weighted_average_rate,
            amount=state.total_value,
        )


@dataclass(frozen=True, slots=True)
class StatementRow:
    """One item's opening / receipts / issues / closing."""

    item_id: int
    item_code: str
    item_name: str
    category: str
    uom: str
    opening: Position
    receipts: Position
    issues: Position
    closing: Position
    status: RowStatus = RowStatus.OK
    shortfall: Decimal = ZERO
    discrepancy_quantity: Decimal = ZERO
    discrepancy_amount: Decimal = ZERO
    message: str = ""

    @property
    def is_flagged(self) -> bool:
        return self.status != RowStatus.OK


@dataclass(frozen=True, slots=True)
class StatementTotals:
    """Grand totals; rates recomputed from summed quantities and amounts."""

    opening: Position
    receipts: Position
    issues: Position
    closing: Position
    item_count: int
    flagged_count: int


@traced_engine("statement", "1.0", fingerprint_fields=("date_from", "date_to"))
def build_statement_row(
    item: Item,
    opening_queue: FIFOLotQueue,
    transactions: Iterable[StockTransaction],
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    epsilon: Decimal = DEFAULT_EPSILON,
) -> StatementRow:
    """
    Roll ``opening_queue`` forward through ``transactions``.

    ``transactions`` must already be restricted to the statement range and
    sorted in replay order.  ``opening_queue`` is not modified.
    """
    opening = Position.from_state(opening_queue.current_state())
    working = opening_queue.copy()

    receipt_quantity = receipt_amount = ZERO
    issue_quantity = issue_amount = ZERO
    shortfall = ZERO

    for tx in transactions:
        if tx.is_receipt:
            working.receive(tx.quantity, tx.rate, tx.id, amount=tx.amount)
            receipt_quantity += tx.quantity
            receipt_amount += tx.amount
        else:
            result = working.issue(tx.quantity)
            issue_quantity += tx.quantity
            issue_amount += result.consumed_cost
            shortfall += result.shortfall

    closing = Position.from_state(working.current_state())
    receipts = Position.of(receipt_quantity, receipt_amount)
    issues = Position.of(issue_quantity, issue_amount)

    expected_quantity = opening.quantity + receipts.quantity - issues.quantity
    expected_amount = opening.amount + receipts.amount - issues.amount
    discrepancy_quantity = closing.quantity - expected_quantity
    discrepancy_amount = closing.amount - expected_amount

    status = RowStatus.OK
    message = ""
    if shortfall > ZERO:
        status = RowStatus.SHORTFALL
        message = f"issues exceed available stock by {shortfall}"
    elif abs(discrepancy_quantity) > epsilon or abs(discrepancy_amount) > epsilon:
        status = RowStatus.DISCREPANCY
        message = (
            f"closing differs from opening + receipts - issues by "
            f"{discrepancy_quantity} qty / {discrepancy_amount} amount"
        )

    if status != RowStatus.OK:
        logger.warning(
            "statement_row_flagged",
            extra={
                "item_id": item.id,
                "status": status.value,
                "shortfall": str(shortfall),
                "discrepancy_quantity": str(discrepancy_quantity),
                "discrepancy_amount": str(discrepancy_amount),
            },
        )

    return StatementRow(
        item_id=item.id,
        item_code=item.code,
        item_name=item.name,
        category=item.category.value,
        uom=item.uom,
        opening=opening,
        receipts=receipts,
        issues=issues,
        closing=closing,
        status=status,
        shortfall=shortfall,
        discrepancy_quantity=discrepancy_quantity,
        discrepancy_amount=discrepancy_amount,
        message=message,
    )


def error_row(item: Item, message: str) -> StatementRow:
    """Flagged placeholder for an item whose row could not be computed."""
    return StatementRow(
        item_id=item.id,
        item_code=item.code,
        item_name=item.name,
        category=item.category.value,
        uom=item.uom,
        opening=Position.zero(),
        receipts=Position.zero(),
        issues=Position.zero(),
        closing=Position.zero(),
        status=RowStatus.ERROR,
        message=message,
    )


def summarize(rows: Sequence[StatementRow]) -> StatementTotals:
    def total(attr: str) -> Position:
        quantity = sum((getattr(r, attr).quantity for r in rows), ZERO)
        amount = sum((getattr(r, attr).amount for r in rows), ZERO)
        return Position.of(quantity, amount)

    return StatementTotals(
        opening=total("opening"),
        receipts=total("receipts"),
        issues=total("issues"),
        closing=total("closing"),
        item_count=len(rows),
        flagged_count=sum(1 for r in rows if r.is_flagged),
    )
