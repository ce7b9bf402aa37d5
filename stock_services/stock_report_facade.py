"""
stock_services.stock_report_facade -- The report surface consumed by the UI.

Responsibility:
    Thin adapters that pick items by category and delegate to the replay
    engine or the valuation report service: raw-material stock, WIP stock,
    finished-goods stock (with bag counts), the movement listing, the FIFO
    stock statement and the melting material-consumption report.

Architecture position:
    Services -- read-only.  No write path is exposed to report consumers.

Invariants enforced:
    - "As of now" reports take today's date from the injected Clock.
    - Category groups come from configuration (raw_material = RawMaterial
      and Mineral).
    - Bag count = closing quantity / unit weight (item's own, else the
      configured bag weight).
    - Movement rows are newest first and labelled ``<prefix>-<document>``.
    - Issue amounts in listings are recomputed by FIFO replay; the stored
      rate of a dispatch or adjustment is only an estimate.

Failure modes:
    - InvalidDateRangeError when date_to < date_from.
    - Never raises for one bad item in a position report: its row comes
      back with status ERROR and the failure is logged.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from stock_config.schema import StockConfiguration
from stock_engines.statement import RowStatus
from stock_kernel.db.types import ZERO, round_quantity, safe_rate
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import Item, ItemCategory, ReferenceType, TransactionType
from stock_kernel.logging_config import get_logger
from stock_kernel.selectors.movement_selector import MovementRow, MovementSelector
from stock_kernel.services.item_registry import ItemRegistry
from stock_kernel.services.ledger_store import LedgerStore
from stock_services.replay_service import ReplayEngine
from stock_services.snapshot_service import SnapshotService
from stock_services.valuation_report_service import (
    StockStatement,
    ValuationReportService,
    check_date_range,
)

logger = get_logger("services.report_facade")


@dataclass(frozen=True)
class StockPositionRow:
    """An item's replayed position on one date."""

    item_id: int
    item_code: str
    item_name: str
    category: str
    uom: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal
    shortfall: Decimal = ZERO
    status: RowStatus = RowStatus.OK
    message: str = ""


@dataclass(frozen=True)
class FinishedGoodsRow(StockPositionRow):
    unit_weight: Decimal = ZERO
    bags: Decimal = ZERO


@dataclass(frozen=True)
class MovementReportRow:
    transaction_id: int
    transaction_date: date
    item_id: int
    item_code: str
    item_name: str
    category: str
    movement_type: str
    quantity_in: Decimal
    quantity_out: Decimal
    rate: Decimal
    amount: Decimal
    reference_type: str
    reference_id: str
    reference_label: str
    remarks: str


@dataclass(frozen=True)
class ConsumptionLine:
    item_id: int
    item_code: str
    item_name: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class ConsumptionDocument:
    """Every material issued by one melting run."""

    reference_id: str
    reference_label: str
    transaction_date: date
    lines: tuple[ConsumptionLine, ...]

    @property
    def total_quantity(self) -> Decimal:
        return sum((line.quantity for line in self.lines), ZERO)

    @property
    def total_cost(self) -> Decimal:
        return sum((line.amount for line in self.lines), ZERO)


class StockReportFacade:
    """Category-filtered report entry points."""

    def __init__(
        self,
        session: Session,
        config: StockConfiguration,
        clock: Clock | None = None,
        replay: ReplayEngine | None = None,
    ):
        self.session = session
        self.config = config
        self.clock = clock or SystemClock()
        self.ledger = LedgerStore(session, reference_rules=config.reference_rules())
        if replay is None:
            snapshots = SnapshotService(session, self.ledger) if config.snapshots.enabled else None
            replay = ReplayEngine(session, self.ledger, snapshots=snapshots)
        self.replay = replay
        self.items = ItemRegistry(session)
        self.valuation = ValuationReportService(
            session,
            ledger=self.ledger,
            replay=self.replay,
            items=self.items,
            epsilon=config.statement_epsilon,
        )
        self.movements = MovementSelector(session)

    # -----------------------------------------------------------------
    # Position reports
    # -----------------------------------------------------------------

    def raw_material_stock(
        self,
        as_of: date | None = None,
        name_filter: str | None = None,
        category: ItemCategory | str | None = None,
    ) -> list[StockPositionRow]:
        """RawMaterial and Mineral items as of ``as_of`` (default today)."""
        categories = self.config.categories_for("raw_material")
        if category is not None:
            categories = tuple(c for c in categories if c == ItemCategory(category))
        as_of = as_of or self.clock.today()
        items = self.items.list_items(categories=categories, name_filter=name_filter)
        return [self._position(item, as_of) for item in items]

    def finished_goods_stock(
        self,
        as_of: date | None = None,
        name_filter: str | None = None,
    ) -> list[FinishedGoodsRow]:
        as_of = as_of or self.clock.today()
        items = self.items.list_items(
            categories=self.config.categories_for("finished_goods"),
            name_filter=name_filter,
        )
        rows = []
        for item in items:
            position = self._position(item, as_of)
            unit_weight = item.unit_weight or self.config.bag_unit_weight
            rows.append(
                FinishedGoodsRow(
                    item_id=position.item_id,
                    item_code=position.item_code,
                    item_name=position.item_name,
                    category=position.category,
                    uom=position.uom,
                    quantity=position.quantity,
                    rate=position.rate,
                    amount=position.amount,
                    shortfall=position.shortfall,
                    status=position.status,
                    message=position.message,
                    unit_weight=unit_weight,
                    bags=round_quantity(position.quantity / unit_weight),
                )
            )
        return rows

    def _position(self, item: Item, as_of: date) -> StockPositionRow:
        """One item's position; unexpected failures come back as an ERROR row."""
        try:
            result = self.replay.replay_as_of(item.id, as_of)
        except Exception as exc:
            # One corrupt item must not block the rest of the report.
            logger.error(
                "position_row_failed",
                extra={
                    "item_id": item.id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return StockPositionRow(
                item_id=item.id,
                item_code=item.code,
                item_name=item.name,
                category=item.category.value,
                uom=item.uom,
                quantity=ZERO,
                rate=ZERO,
                amount=ZERO,
                status=RowStatus.ERROR,
                message=f"{type(exc).__name__}: {exc}",
            )

        state = result.queue.current_state()
        return StockPositionRow(
            item_id=item.id,
            item_code=item.code,
            item_name=item.name,
            category=item.category.value,
            uom=item.uom,
            quantity=state.total_quantity,
            rate=state.weighted_average_rate,
            amount=state.total_value,
            shortfall=result.shortfall,
            status=RowStatus.SHORTFALL if result.shortfall > ZERO else RowStatus.OK,
        )

    # -----------------------------------------------------------------
    # Statements
    # -----------------------------------------------------------------

    def wip_stock(self, date_from: date, date_to: date) -> StockStatement:
        return self._statement_for(self.config.categories_for("wip"), date_from, date_to)

    def stock_statement(
        self,
        date_from: date,
        date_to: date,
        category: ItemCategory | str | None = None,
    ) -> StockStatement:
        categories = (ItemCategory(category),) if category is not None else None
        return self._statement_for(categories, date_from, date_to)

    def _statement_for(
        self,
        categories: tuple[ItemCategory, ...] | None,
        date_from: date,
        date_to: date,
    ) -> StockStatement:
        check_date_range(date_from, date_to)
        items = self.items.list_items(categories=categories)
        return self.valuation.statement([i.id for i in items], date_from, date_to)

    # -----------------------------------------------------------------
    # Listings
    # -----------------------------------------------------------------

    def reference_label(self, reference_type: str, reference_id: str) -> str:
        prefix = self.config.label_prefixes().get(reference_type, reference_type)
        return f"{prefix}-{reference_id}"

    def movement(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        item_name: str | None = None,
        movement_type: TransactionType | str | None = None,
    ) -> list[MovementReportRow]:
        """
        Every ledger row in range, newest first.

        Issue rows carry their replayed FIFO cost, not the stored estimate.
        """
        check_date_range(date_from, date_to)
        transaction_type = TransactionType(movement_type).value if movement_type else None
        rows = self.movements.movements(
            date_from=date_from,
            date_to=date_to,
            item_name=item_name,
            transaction_type=transaction_type,
        )
        costs = self._fifo_issue_costs(rows)

        report = []
        for row in rows:
            amount, rate = row.amount, row.rate
            if row.transaction_id in costs:
                amount = costs[row.transaction_id]
                rate = safe_rate(amount, row.quantity)
            report.append(
                MovementReportRow(
                    transaction_id=row.transaction_id,
                    transaction_date=row.transaction_date,
                    item_id=row.item_id,
                    item_code=row.item_code,
                    item_name=row.item_name,
                    category=row.category,
                    movement_type=row.transaction_type,
                    quantity_in=row.quantity_in,
                    quantity_out=row.quantity_out,
                    rate=rate,
                    amount=amount,
                    reference_type=row.reference_type,
                    reference_id=row.reference_id,
                    reference_label=self.reference_label(row.reference_type, row.reference_id),
                    remarks=row.remarks,
                )
            )
        return report

    def _fifo_issue_costs(self, rows: list[MovementRow]) -> dict[int, Decimal]:
        """Replayed FIFO cost of every ISSUE in ``rows``; one replay per item."""
        cutoffs: dict[int, date] = {}
        for row in rows:
            if row.transaction_type != TransactionType.ISSUE.value:
                continue
            if row.item_id not in cutoffs or row.transaction_date > cutoffs[row.item_id]:
                cutoffs[row.item_id] = row.transaction_date
        costs: dict[int, Decimal] = {}
        for item_id, cutoff in cutoffs.items():
            costs.update(self.replay.issue_costs(item_id, cutoff))
        return costs

    def material_consumption(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[ConsumptionDocument]:
        """Melting issues grouped by melting document, newest first."""
        check_date_range(date_from, date_to)
        rows = self.movements.movements(
            date_from=date_from,
            date_to=date_to,
            transaction_type=TransactionType.ISSUE.value,
            reference_types=[ReferenceType.MELTING.value],
        )
        costs = self._fifo_issue_costs(rows)

        grouped: OrderedDict[str, list] = OrderedDict()
        for row in rows:
            grouped.setdefault(row.reference_id, []).append(row)

        documents = []
        for reference_id, doc_rows in grouped.items():
            documents.append(
                ConsumptionDocument(
                    reference_id=reference_id,
                    reference_label=self.reference_label(ReferenceType.MELTING.value, reference_id),
                    transaction_date=doc_rows[0].transaction_date,
                    lines=tuple(
                        ConsumptionLine(
                            item_id=r.item_id,
                            item_code=r.item_code,
                            item_name=r.item_name,
                            quantity=r.quantity,
                            rate=safe_rate(costs[r.transaction_id], r.quantity),
                            amount=costs[r.transaction_id],
                        )
                        for r in sorted(doc_rows, key=lambda r: r.transaction_id)
                    ),
                )
            )
        return documents
