"""
stock_engines.process_costing -- Process variants for FIFO cost roll-forward.

Responsibility:
    Turn a melting or heat-treatment document into a ``ProcessRun``: the
    list of input items and quantities to issue, and the output item and
    quantity to receive.  The FIFO costing itself is single-sourced in
    ProcessCostAllocator; variants differ only in their input list and
    output-quantity formula.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Inputs with quantity 0 are dropped; negative quantities are rejected.
    - Melting output quantity is the scrap total only.  Minerals add cost to
      the WIP lot, not weight.
    - Heat-treatment output quantity is bags_produced * unit_weight.

Failure modes:
    - InvalidQuantityError for a negative input quantity or bag count.
    - ZeroYieldError is raised later, by the allocator, for a zero output.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from stock_engines.tracer import traced_engine
from stock_kernel.db.types import ZERO, round_quantity, to_decimal
from stock_kernel.domain.dtos import ReferenceType
from stock_kernel.exceptions import InvalidQuantityError

# Order in which melting charges are issued (and listed on the document).
MELTING_INPUT_ROLES: tuple[str, ...] = (
    "scrap",
    "carbon",
    "manganese",
    "silicon",
    "aluminium",
    "calcium",
)


@dataclass(frozen=True, slots=True)
class ProcessInput:
    """One material consumed by a process run."""

    item_id: int
    quantity: Decimal
    role: str = ""


@dataclass(frozen=True, slots=True)
class ProcessRun:
    """Everything the allocator needs to cost one process document."""

    reference_type: ReferenceType
    reference_id: str
    run_date: date
    inputs: tuple[ProcessInput, ...]
    output_item_id: int
    output_quantity: Decimal

    @property
    def output_reference_type(self) -> ReferenceType:
        return self.reference_type.output_type

    @property
    def item_ids(self) -> tuple[int, ...]:
        """Every item touched by the run (inputs and output), sorted."""
        return tuple(sorted({i.item_id for i in self.inputs} | {self.output_item_id}))


def _positive_inputs(inputs: list[ProcessInput]) -> tuple[ProcessInput, ...]:
    kept = []
    for entry in inputs:
        if entry.quantity < ZERO:
            raise InvalidQuantityError(f"process input {entry.role or entry.item_id}", str(entry.quantity))
        if entry.quantity > ZERO:
            kept.append(entry)
    return tuple(kept)


@dataclass(frozen=True)
class MeltingProcess:
    """
    Scrap plus minerals melted into WIP.

    ``input_items`` maps each role in MELTING_INPUT_ROLES to its item id;
    ``quantities`` maps roles to the charged weight.  Roles missing from
    ``quantities`` count as zero.
    """

    melting_id: str
    melting_date: date
    wip_item_id: int
    input_items: Mapping[str, int]
    quantities: Mapping[str, Decimal]

    @property
    def scrap_total(self) -> Decimal:
        return round_quantity(to_decimal(self.quantities.get("scrap", ZERO)))

    @traced_engine("process_costing.melting", "1.0")
    def to_run(self) -> ProcessRun:
        inputs = []
        for role in MELTING_INPUT_ROLES:
            quantity = round_quantity(to_decimal(self.quantities.get(role) or ZERO))
            if quantity == ZERO:
                continue
            inputs.append(ProcessInput(item_id=self.input_items[role], quantity=quantity, role=role))

        return ProcessRun(
            reference_type=ReferenceType.MELTING,
            reference_id=str(self.melting_id),
            run_date=self.melting_date,
            inputs=_positive_inputs(inputs),
            output_item_id=self.wip_item_id,
            output_quantity=self.scrap_total,
        )


@dataclass(frozen=True)
class HeatTreatmentProcess:
    """WIP consumed into bagged finished goods."""

    heat_treatment_id: str
    treatment_date: date
    wip_item_id: int
    wip_consumed_quantity: Decimal
    finished_item_id: int
    bags_produced: Decimal
    unit_weight: Decimal

    @property
    def output_quantity(self) -> Decimal:
        return round_quantity(to_decimal(self.bags_produced) * to_decimal(self.unit_weight))

    @traced_engine("process_costing.heat_treatment", "1.0")
    def to_run(self) -> ProcessRun:
        if to_decimal(self.bags_produced) < ZERO:
            raise InvalidQuantityError("bags_produced", str(self.bags_produced))

        inputs = _positive_inputs([
            ProcessInput(
                item_id=self.wip_item_id,
                quantity=round_quantity(to_decimal(self.wip_consumed_quantity)),
                role="wip",
            )
        ])
        return ProcessRun(
            reference_type=ReferenceType.HEAT_TREATMENT,
            reference_id=str(self.heat_treatment_id),
            run_date=self.treatment_date,
            inputs=inputs,
            output_item_id=self.finished_item_id,
            output_quantity=self.output_quantity,
        )
