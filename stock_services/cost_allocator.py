"""
stock_services.cost_allocator -- Process cost roll-forward through FIFO.

Responsibility:
    Translate one multi-input production event (melting, heat treatment)
    into the ledger's two verbs: one ISSUE per input at its actual FIFO
    cost, and one RECEIPT of the output carrying the summed cost.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Uses ReplayEngine (queue before the event), FIFOLotQueue (the draw),
    LedgerStore (appends) and ItemLockRegistry (serialization).

Invariants enforced:
    A1 -- Cost conservation: output.amount == sum(input consumed_cost),
          exactly.  The output rate is informational (total / quantity).
    A2 -- Zero yield is rejected before anything is written.
    A3 -- Yield loss is absorbed into the output rate; no explicit loss row.
    A4 -- Every input item and the output item stay locked for the whole
          allocation, so two runs cannot both draw the same lot.
    A5 -- Shortfall is reported per input, never raised.  The ISSUE row
          still records the requested quantity; its amount is whatever
          FIFO could supply.

Failure modes:
    - ZeroYieldError: output quantity is zero.
    - InvalidTransactionError: not a process reference type, no inputs
      left after dropping zero quantities, or rejected by LedgerStore.
    - InvalidQuantityError: negative input or output quantity.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from stock_engines.process_costing import ProcessInput, ProcessRun
from stock_kernel.db.types import ZERO, round_quantity, safe_rate, to_decimal
from stock_kernel.domain.dtos import (
    ReferenceType,
    StockTransaction,
    StockTransactionInput,
    TransactionType,
)
from stock_kernel.exceptions import InvalidQuantityError, InvalidTransactionError, ZeroYieldError
from stock_kernel.logging_config import get_logger
from stock_kernel.services.item_locks import ItemLockRegistry, get_item_lock_registry
from stock_kernel.services.ledger_store import LedgerStore
from stock_services.replay_service import ReplayEngine

logger = get_logger("services.cost_allocator")

PROCESS_REFERENCE_TYPES = frozenset({ReferenceType.MELTING, ReferenceType.HEAT_TREATMENT})


@dataclass(frozen=True)
class InputAllocation:
    """What one input contributed to the run."""

    item_id: int
    role: str
    quantity: Decimal
    consumed_quantity: Decimal
    consumed_cost: Decimal
    shortfall: Decimal
    transaction: StockTransaction

    @property
    def rate(self) -> Decimal:
        return self.transaction.rate


@dataclass(frozen=True)
class AllocationResult:
    reference_type: ReferenceType
    reference_id: str
    inputs: tuple[InputAllocation, ...]
    output_transaction: StockTransaction
    total_cost: Decimal

    @property
    def output_quantity(self) -> Decimal:
        return self.output_transaction.quantity

    @property
    def output_rate(self) -> Decimal:
        return self.output_transaction.rate

    @property
    def total_shortfall(self) -> Decimal:
        return sum((i.shortfall for i in self.inputs), ZERO)

    @property
    def has_shortfall(self) -> bool:
        return self.total_shortfall > ZERO

    @property
    def transactions(self) -> tuple[StockTransaction, ...]:
        return tuple(i.transaction for i in self.inputs) + (self.output_transaction,)


def _coerce_input(entry: ProcessInput | Mapping[str, Any]) -> ProcessInput:
    if isinstance(entry, ProcessInput):
        return entry
    return ProcessInput(
        item_id=int(entry["item_id"]),
        quantity=to_decimal(entry["quantity"]),
        role=str(entry.get("role", "")),
    )


class ProcessCostAllocator:
    """
    Single FIFO costing path for every production process.

    Contract:
        Flushes through LedgerStore; the caller commits.
    """

    def __init__(
        self,
        session: Session,
        ledger: LedgerStore | None = None,
        replay: ReplayEngine | None = None,
        lock_registry: ItemLockRegistry | None = None,
    ):
        self.session = session
        self.ledger = ledger or LedgerStore(session, lock_registry=lock_registry)
        self.replay = replay or ReplayEngine(session, self.ledger)
        self._locks = lock_registry or get_item_lock_registry()

    def allocate(
        self,
        inputs: Iterable[ProcessInput | Mapping[str, Any]],
        output_item_id: int,
        output_quantity: Decimal,
        date: date,
        reference_type: ReferenceType | str,
        reference_id: str,
    ) -> AllocationResult:
        """
        Issue every input at FIFO cost and receive the output at their sum.

        Inputs with quantity 0 are skipped.  ``reference_type`` is the
        process type (MELTING or HEAT_TREATMENT); the output row is tagged
        with its ``_OUTPUT`` counterpart.
        """
        kept = []
        for raw in inputs:
            entry = _coerce_input(raw)
            quantity = round_quantity(entry.quantity)
            if quantity < ZERO:
                raise InvalidQuantityError(f"process input {entry.item_id}", str(quantity))
            if quantity > ZERO:
                kept.append(ProcessInput(item_id=entry.item_id, quantity=quantity, role=entry.role))

        run = ProcessRun(
            reference_type=ReferenceType(reference_type),
            reference_id=str(reference_id),
            run_date=date,
            inputs=tuple(kept),
            output_item_id=output_item_id,
            output_quantity=round_quantity(to_decimal(output_quantity)),
        )
        return self.allocate_run(run)

    def allocate_run(self, run: ProcessRun) -> AllocationResult:
        """Execute a ProcessRun built by a process variant."""
        if run.reference_type not in PROCESS_REFERENCE_TYPES:
            raise InvalidTransactionError(
                "not a process reference type", "reference_type", run.reference_type.value
            )
        if run.output_quantity < ZERO:
            raise InvalidQuantityError("process output", str(run.output_quantity))
        if run.output_quantity == ZERO:
            logger.warning(
                "allocation_zero_yield",
                extra={
                    "reference_type": run.reference_type.value,
                    "reference_id": run.reference_id,
                    "input_count": len(run.inputs),
                },
            )
            raise ZeroYieldError(run.reference_type.value, run.reference_id, len(run.inputs))
        if not run.inputs:
            raise InvalidTransactionError(
                "process run has no inputs with quantity > 0", "reference_id", run.reference_id
            )

        logger.info(
            "allocation_started",
            extra={
                "reference_type": run.reference_type.value,
                "reference_id": run.reference_id,
                "run_date": run.run_date,
                "input_count": len(run.inputs),
                "output_item_id": run.output_item_id,
                "output_quantity": str(run.output_quantity),
            },
        )

        with self._locks.hold(run.item_ids, self.session):
            allocations = [self._issue_input(run, entry) for entry in run.inputs]
            total_cost = sum((a.consumed_cost for a in allocations), ZERO)

            output = self.ledger.append(
                StockTransactionInput(
                    transaction_date=run.run_date,
                    transaction_type=TransactionType.RECEIPT,
                    item_id=run.output_item_id,
                    quantity=run.output_quantity,
                    rate=safe_rate(total_cost, run.output_quantity),
                    amount=total_cost,
                    reference_type=run.output_reference_type,
                    reference_id=run.reference_id,
                    remarks=f"{run.reference_type.value} output",
                )
            )

        result = AllocationResult(
            reference_type=run.reference_type,
            reference_id=run.reference_id,
            inputs=tuple(allocations),
            output_transaction=output,
            total_cost=total_cost,
        )
        logger.info(
            "allocation_completed",
            extra={
                "reference_type": run.reference_type.value,
                "reference_id": run.reference_id,
                "total_cost": str(total_cost),
                "output_rate": str(output.rate),
                "total_shortfall": str(result.total_shortfall),
            },
        )
        return result

    def _issue_input(self, run: ProcessRun, entry: ProcessInput) -> InputAllocation:
        queue = self.replay.state_as_of(entry.item_id, run.run_date)
        drawn = queue.issue(entry.quantity)

        if drawn.has_shortfall:
            logger.warning(
                "allocation_input_shortfall",
                extra={
                    "reference_type": run.reference_type.value,
                    "reference_id": run.reference_id,
                    "item_id": entry.item_id,
                    "requested": str(entry.quantity),
                    "shortfall": str(drawn.shortfall),
                },
            )

        transaction = self.ledger.append(
            StockTransactionInput(
                transaction_date=run.run_date,
                transaction_type=TransactionType.ISSUE,
                item_id=entry.item_id,
                quantity=entry.quantity,
                rate=safe_rate(drawn.consumed_cost, entry.quantity),
                amount=drawn.consumed_cost,
                reference_type=run.reference_type,
                reference_id=run.reference_id,
                remarks=entry.role,
            )
        )
        return InputAllocation(
            item_id=entry.item_id,
            role=entry.role,
            quantity=entry.quantity,
            consumed_quantity=drawn.consumed_quantity,
            consumed_cost=drawn.consumed_cost,
            shortfall=drawn.shortfall,
            transaction=transaction,
        )
