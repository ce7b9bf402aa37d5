"""
stock_services.posting -- Producer contracts for the upstream modules.

Responsibility:
    One method per upstream document type (GRN, melting, heat treatment,
    dispatch, opening stock, manual adjustment) plus document cancellation.
    Each method translates the document into ledger rows and owns the
    transaction boundary.

Architecture position:
    Services -- the outermost write surface.  Delegates process documents to
    ProcessCostAllocator and everything else to LedgerStore.  The only
    component that commits or rolls back.

Invariants enforced:
    P1 -- Commit on success; rollback and re-raise on any failure, so a
          document is either fully in the ledger or not at all.
    P2 -- Per-item locks are held from the first read until after commit.
    P3 -- Dispatch and outgoing adjustments store the item's current
          weighted-average rate as an estimate; reports recompute FIFO cost.
    P4 -- Cancelling a process document removes its output receipt before
          its input issues, and refuses if the output lot was drawn.

Failure modes:
    - Anything raised by LedgerStore, ProcessCostAllocator or the scrap
      expression evaluator, after rollback.
    - ItemNotFoundError when a configured melting input item is missing.
    - InvalidTransactionError for an empty document or a melting run with
      neither scrap_total nor scrap_expression.

Audit relevance:
    Every call runs under LogContext with the producer and document
    reference, and emits ``posting_started`` / ``posting_completed`` /
    ``posting_failed``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TypeVar
from uuid import uuid4

from sqlalchemy.orm import Session

from stock_config.schema import StockConfiguration
from stock_engines.process_costing import MELTING_INPUT_ROLES, HeatTreatmentProcess, MeltingProcess
from stock_engines.scrap_expression import evaluate_scrap_expression
from stock_kernel.db.types import ZERO, round_rate, to_decimal
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    ReferenceType,
    StockTransaction,
    StockTransactionInput,
    TransactionType,
)
from stock_kernel.exceptions import InvalidTransactionError, TransactionNotFoundError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.item_locks import ItemLockRegistry, get_item_lock_registry
from stock_kernel.services.item_registry import ItemRegistry
from stock_kernel.services.ledger_store import LedgerStore
from stock_services.cost_allocator import AllocationResult, ProcessCostAllocator
from stock_services.replay_service import ReplayEngine
from stock_services.snapshot_service import SnapshotService

logger = get_logger("services.posting")

T = TypeVar("T")


@dataclass(frozen=True)
class ReceiptLine:
    """One incoming line of a GRN, opening-stock sheet or adjustment."""

    item_id: int
    quantity: Decimal
    rate: Decimal
    remarks: str = ""


@dataclass(frozen=True)
class DispatchLine:
    item_id: int
    quantity: Decimal
    remarks: str = ""


@dataclass(frozen=True)
class PostingResult:
    """Rows written for one document."""

    reference_type: ReferenceType
    reference_id: str
    transactions: tuple[StockTransaction, ...]
    allocation: AllocationResult | None = None

    @property
    def total_amount(self) -> Decimal:
        return sum((t.amount for t in self.transactions), ZERO)


class StockPostingService:
    """
    Write surface for upstream producers.

    Contract:
        Every public method commits when ``auto_commit`` is True (the
        default).  With ``auto_commit=False`` the caller owns the
        transaction, as when several documents are backfilled in one batch.
    """

    def __init__(
        self,
        session: Session,
        config: StockConfiguration,
        clock: Clock | None = None,
        lock_registry: ItemLockRegistry | None = None,
        auto_commit: bool = True,
    ):
        self.session = session
        self.config = config
        self.clock = clock or SystemClock()
        self._locks = lock_registry or get_item_lock_registry()
        self._auto_commit = auto_commit

        self.ledger = LedgerStore(
            session,
            reference_rules=config.reference_rules(),
            lock_registry=self._locks,
        )
        snapshots = SnapshotService(session, self.ledger) if config.snapshots.enabled else None
        self.replay = ReplayEngine(session, self.ledger, snapshots=snapshots)
        self.allocator = ProcessCostAllocator(
            session,
            ledger=self.ledger,
            replay=self.replay,
            lock_registry=self._locks,
        )
        self.items = ItemRegistry(session)

    # -----------------------------------------------------------------
    # Receipts
    # -----------------------------------------------------------------

    def post_grn(
        self,
        grn_id: str,
        grn_date: date,
        lines: Sequence[ReceiptLine],
    ) -> PostingResult:
        """Receive purchased material at the invoiced rate."""
        return self._post_receipts(ReferenceType.GRN, grn_id, grn_date, lines, "grn")

    def post_opening_stock(
        self,
        reference_id: str,
        as_of: date,
        lines: Sequence[ReceiptLine],
    ) -> PostingResult:
        """Seed balances carried over from before the ledger existed."""
        return self._post_receipts(
            ReferenceType.OPENING_STOCK, reference_id, as_of, lines, "opening_stock"
        )

    def _post_receipts(
        self,
        reference_type: ReferenceType,
        reference_id: str,
        posting_date: date,
        lines: Sequence[ReceiptLine],
        producer: str,
    ) -> PostingResult:
        lines = list(lines)
        if not lines:
            raise InvalidTransactionError("document has no lines", "reference_id", str(reference_id))

        def write() -> PostingResult:
            rows = [
                self.ledger.append(
                    StockTransactionInput(
                        transaction_date=posting_date,
                        transaction_type=TransactionType.RECEIPT,
                        item_id=line.item_id,
                        quantity=line.quantity,
                        rate=line.rate,
                        reference_type=reference_type,
                        reference_id=str(reference_id),
                        remarks=line.remarks,
                    )
                )
                for line in lines
            ]
            return PostingResult(reference_type, str(reference_id), tuple(rows))

        return self._run(
            producer, reference_type, reference_id, [line.item_id for line in lines], write
        )

    # -----------------------------------------------------------------
    # Processes
    # -----------------------------------------------------------------

    def post_melting(
        self,
        melting_id: str,
        melting_date: date,
        wip_item_id: int,
        *,
        scrap_total: Decimal | None = None,
        scrap_expression: str | None = None,
        carbon: Decimal = ZERO,
        manganese: Decimal = ZERO,
        silicon: Decimal = ZERO,
        aluminium: Decimal = ZERO,
        calcium: Decimal = ZERO,
    ) -> PostingResult:
        """
        Melt scrap and minerals into WIP.

        The scrap weight is ``scrap_total`` or, when that is omitted, the
        value of ``scrap_expression`` (e.g. ``"100+200+250"``).  Input items
        are resolved from the configured melting item codes.
        """
        if scrap_total is None:
            if not scrap_expression:
                raise InvalidTransactionError(
                    "melting needs scrap_total or scrap_expression", "reference_id", str(melting_id)
                )
            scrap_total = evaluate_scrap_expression(scrap_expression)

        quantities = {
            "scrap": to_decimal(scrap_total),
            "carbon": to_decimal(carbon),
            "manganese": to_decimal(manganese),
            "silicon": to_decimal(silicon),
            "aluminium": to_decimal(aluminium),
            "calcium": to_decimal(calcium),
        }
        codes = self.config.melting_item_codes()
        input_items = {
            role: self.items.get_by_code(codes[role]).id
            for role in MELTING_INPUT_ROLES
            if quantities[role] != ZERO
        }
        process = MeltingProcess(
            melting_id=str(melting_id),
            melting_date=melting_date,
            wip_item_id=wip_item_id,
            input_items=input_items,
            quantities=quantities,
        )
        run = process.to_run()
        return self._run(
            "melting",
            ReferenceType.MELTING,
            melting_id,
            run.item_ids,
            lambda: self._allocation_result(self.allocator.allocate_run(run)),
        )

    def post_heat_treatment(
        self,
        heat_treatment_id: str,
        treatment_date: date,
        wip_item_id: int,
        wip_consumed_quantity: Decimal,
        finished_item_id: int,
        bags_produced: Decimal,
    ) -> PostingResult:
        """Turn WIP into bagged finished goods (bags x unit weight)."""
        finished = self.items.get(finished_item_id)
        process = HeatTreatmentProcess(
            heat_treatment_id=str(heat_treatment_id),
            treatment_date=treatment_date,
            wip_item_id=wip_item_id,
            wip_consumed_quantity=to_decimal(wip_consumed_quantity),
            finished_item_id=finished_item_id,
            bags_produced=to_decimal(bags_produced),
            unit_weight=finished.unit_weight or self.config.bag_unit_weight,
        )
        run = process.to_run()
        return self._run(
            "heat_treatment",
            ReferenceType.HEAT_TREATMENT,
            heat_treatment_id,
            run.item_ids,
            lambda: self._allocation_result(self.allocator.allocate_run(run)),
        )

    @staticmethod
    def _allocation_result(allocation: AllocationResult) -> PostingResult:
        return PostingResult(
            reference_type=allocation.reference_type,
            reference_id=allocation.reference_id,
            transactions=allocation.transactions,
            allocation=allocation,
        )

    # -----------------------------------------------------------------
    # Issues
    # -----------------------------------------------------------------

    def post_dispatch(
        self,
        dispatch_id: str,
        dispatch_date: date,
        lines: Sequence[DispatchLine],
    ) -> PostingResult:
        """Ship finished goods; each row carries an estimated rate."""
        lines = list(lines)
        if not lines:
            raise InvalidTransactionError("document has no lines", "reference_id", str(dispatch_id))

        def write() -> PostingResult:
            rows = [
                self._append_issue(
                    ReferenceType.DISPATCH, dispatch_id, dispatch_date,
                    line.item_id, line.quantity, None, line.remarks,
                )
                for line in lines
            ]
            return PostingResult(ReferenceType.DISPATCH, str(dispatch_id), tuple(rows))

        return self._run(
            "dispatch", ReferenceType.DISPATCH, dispatch_id, [line.item_id for line in lines], write
        )

    def post_adjustment(
        self,
        adjustment_id: str,
        adjustment_date: date,
        item_id: int,
        quantity: Decimal,
        direction: TransactionType | str,
        rate: Decimal | None = None,
        remarks: str = "",
    ) -> PostingResult:
        """
        Manual stock correction in either direction.

        ``rate`` defaults to the item's weighted-average rate on the date.
        """
        direction = TransactionType(direction)

        def write() -> PostingResult:
            if direction == TransactionType.ISSUE:
                row = self._append_issue(
                    ReferenceType.ADJUSTMENT, adjustment_id, adjustment_date,
                    item_id, quantity, rate, remarks,
                )
            else:
                row = self.ledger.append(
                    StockTransactionInput(
                        transaction_date=adjustment_date,
                        transaction_type=TransactionType.RECEIPT,
                        item_id=item_id,
                        quantity=quantity,
                        rate=rate if rate is not None else self.estimated_rate(item_id, adjustment_date),
                        reference_type=ReferenceType.ADJUSTMENT,
                        reference_id=str(adjustment_id),
                        remarks=remarks,
                    )
                )
            return PostingResult(ReferenceType.ADJUSTMENT, str(adjustment_id), (row,))

        return self._run("adjustment", ReferenceType.ADJUSTMENT, adjustment_id, [item_id], write)

    def _append_issue(
        self,
        reference_type: ReferenceType,
        reference_id: str,
        posting_date: date,
        item_id: int,
        quantity: Decimal,
        rate: Decimal | None,
        remarks: str,
    ) -> StockTransaction:
        return self.ledger.append(
            StockTransactionInput(
                transaction_date=posting_date,
                transaction_type=TransactionType.ISSUE,
                item_id=item_id,
                quantity=quantity,
                rate=rate if rate is not None else self.estimated_rate(item_id, posting_date),
                reference_type=reference_type,
                reference_id=str(reference_id),
                remarks=remarks,
            )
        )

    def estimated_rate(self, item_id: int, as_of: date) -> Decimal:
        """Weighted-average rate of the item's queue at the end of ``as_of``."""
        state = self.replay.state_as_of(item_id, as_of).current_state()
        return round_rate(state.weighted_average_rate)

    # -----------------------------------------------------------------
    # Cancellation
    # -----------------------------------------------------------------

    def cancel_document(
        self,
        reference_type: ReferenceType | str,
        reference_id: str,
    ) -> list[StockTransaction]:
        """
        Remove every row of a document that nothing has drawn from yet.

        For MELTING and HEAT_TREATMENT the ``_OUTPUT`` receipt goes first,
        so a WIP or finished lot that was already consumed blocks the whole
        cancellation.
        """
        reference_type = ReferenceType(reference_type)
        if reference_type in (ReferenceType.MELTING, ReferenceType.HEAT_TREATMENT):
            parts = [reference_type.output_type, reference_type]
        else:
            parts = [reference_type]

        item_ids = {
            t.item_id
            for part in parts
            for t in self.ledger.list_for_reference(part, reference_id)
        }
        if not item_ids:
            raise TransactionNotFoundError(f"{reference_type.value}:{reference_id}")

        def write() -> list[StockTransaction]:
            removed: list[StockTransaction] = []
            for part in parts:
                if self.ledger.list_for_reference(part, reference_id):
                    removed.extend(self.ledger.remove_last(part, reference_id))
            return removed

        return self._run("cancel", reference_type, reference_id, item_ids, write)

    # -----------------------------------------------------------------
    # Transaction boundary
    # -----------------------------------------------------------------

    def _run(
        self,
        producer: str,
        reference_type: ReferenceType,
        reference_id: str,
        item_ids: Iterable[int],
        work: Callable[[], T],
    ) -> T:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            producer=producer,
            reference_type=reference_type.value,
            reference_id=str(reference_id),
        ):
            logger.info("posting_started", extra={"received_at": self.clock.now()})
            t0 = time.monotonic()
            try:
                with self._locks.hold(item_ids, self.session) as locked:
                    result = work()
                    if self._auto_commit:
                        self.session.commit()
            except Exception:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self.session.rollback()
                logger.error(
                    "posting_failed",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(
                "posting_completed",
                extra={"duration_ms": duration_ms, "item_ids": list(locked)},
            )
            return result
