"""
stock_services.valuation_report_service -- FIFO stock statement.

Responsibility:
    For a set of items and a date range, produce one row per item with
    opening, receipts, issues and closing (quantity, rate, amount), plus
    grand totals.  Issue costs are recomputed by FIFO on every run.

Architecture position:
    Services -- read-only orchestration.  ReplayEngine supplies the opening
    queue; stock_engines.statement does the row arithmetic.

Invariants enforced:
    V1 -- Opening is the replayed queue at the end of date_from - 1 day.
    V2 -- Each row balances within epsilon, or is flagged.
    V3 -- The statement never fails because of one item: an item whose row
          cannot be computed becomes an ERROR row with a warning.
    V4 -- Reads take no locks.

Failure modes:
    - InvalidDateRangeError when date_to < date_from (the only raise).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from stock_engines.statement import (
    DEFAULT_EPSILON,
    StatementRow,
    StatementTotals,
    build_statement_row,
    error_row,
    summarize,
)
from stock_kernel.domain.dtos import Item
from stock_kernel.exceptions import InvalidDateRangeError, ItemNotFoundError
from stock_kernel.logging_config import get_logger
from stock_kernel.services.item_registry import ItemRegistry
from stock_kernel.services.ledger_store import LedgerStore
from stock_services.replay_service import ReplayEngine

logger = get_logger("services.valuation_report")


@dataclass(frozen=True)
class StockStatement:
    date_from: date
    date_to: date
    rows: tuple[StatementRow, ...]
    totals: StatementTotals
    warnings: tuple[str, ...] = ()

    @property
    def flagged_rows(self) -> tuple[StatementRow, ...]:
        return tuple(r for r in self.rows if r.is_flagged)

    def row_for(self, item_id: int) -> StatementRow:
        for row in self.rows:
            if row.item_id == item_id:
                return row
        raise KeyError(item_id)


def check_date_range(date_from: date | None, date_to: date | None) -> None:
    if date_from is not None and date_to is not None and date_to < date_from:
        raise InvalidDateRangeError(date_from.isoformat(), date_to.isoformat())


class ValuationReportService:
    """Builds FIFO stock statements."""

    def __init__(
        self,
        session: Session,
        ledger: LedgerStore | None = None,
        replay: ReplayEngine | None = None,
        items: ItemRegistry | None = None,
        epsilon: Decimal = DEFAULT_EPSILON,
    ):
        self.session = session
        self.ledger = ledger or LedgerStore(session)
        self.replay = replay or ReplayEngine(session, self.ledger)
        self.items = items or ItemRegistry(session)
        self.epsilon = epsilon

    def statement(
        self,
        item_ids: Iterable[int],
        date_from: date,
        date_to: date,
    ) -> StockStatement:
        check_date_range(date_from, date_to)

        rows: list[StatementRow] = []
        warnings: list[str] = []
        for item_id in item_ids:
            try:
                item = self.items.get(item_id)
            except ItemNotFoundError:
                warnings.append(f"item {item_id}: not found, skipped")
                logger.warning("statement_item_missing", extra={"item_id": item_id})
                continue
            row = self.row_for_item(item, date_from, date_to)
            if row.is_flagged:
                warnings.append(f"{item.code}: {row.status.value} {row.message}".rstrip())
            rows.append(row)

        statement = StockStatement(
            date_from=date_from,
            date_to=date_to,
            rows=tuple(rows),
            totals=summarize(rows),
            warnings=tuple(warnings),
        )
        logger.info(
            "statement_completed",
            extra={
                "date_from": date_from,
                "date_to": date_to,
                "item_count": len(rows),
                "flagged_count": statement.totals.flagged_count,
            },
        )
        return statement

    def row_for_item(self, item: Item, date_from: date, date_to: date) -> StatementRow:
        """One row; unexpected failures come back as an ERROR row."""
        try:
            opening_queue = self.replay.state_as_of(item.id, date_from - timedelta(days=1))
            in_range = self.ledger.query(item.id, date_from=date_from, date_to=date_to)
            return build_statement_row(
                item,
                opening_queue,
                in_range,
                date_from=date_from,
                date_to=date_to,
                epsilon=self.epsilon,
            )
        except Exception as exc:
            # One corrupt item must not block the rest of the statement.
            logger.error(
                "statement_row_failed",
                extra={
                    "item_id": item.id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return error_row(item, f"{type(exc).__name__}: {exc}")
