"""
stock_engines.lot_queue -- FIFO lot queue for one item.

Responsibility:
    Hold the open cost lots of a single item in receipt order and consume
    them oldest-first.  Every valuation in the system (replay, process
    costing, statements) goes through this one implementation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel.db.types, stock_kernel.exceptions and
    stock_kernel.logging_config.

Invariants enforced:
    Q1 -- Ordering: lots are consumed strictly in the order they were
          received.  receive() appends, issue() pops from the front.
    Q2 -- Positivity: receive() and issue() reject non-positive quantities
          (InvalidQuantityError).  A lot's remaining quantity never drops
          below zero; a fully consumed lot is removed.
    Q3 -- Value conservation: each lot tracks remaining_value next to its
          rate.  A partial draw costs round_amount(quantity * rate) (never
          more than the lot still holds); a draw that empties the lot costs
          exactly its remaining_value.  Sum of all draws plus the value
          still queued always equals the value received.
    Q4 -- Shortfall is data, not an error: issuing more than the queue
          holds consumes everything and reports the remainder.

Failure modes:
    - InvalidQuantityError on quantity <= 0 or rate < 0.

Audit relevance:
    IssueResult.draws lists every lot touched with quantity and cost, so a
    consumed cost can be traced back to the receipts that supplied it.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from stock_kernel.db.types import ZERO, round_amount, round_quantity, round_rate, safe_rate, to_decimal
from stock_kernel.exceptions import InvalidQuantityError
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.lot_queue")


@dataclass(frozen=True, slots=True)
class Lot:
    """Unconsumed remainder of one receipt."""

    origin_transaction_id: int
    remaining_quantity: Decimal
    rate: Decimal
    remaining_value: Decimal

    @property
    def is_depleted(self) -> bool:
        return self.remaining_quantity <= ZERO

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe form used by persisted snapshots."""
        return {
            "origin_transaction_id": self.origin_transaction_id,
            "remaining_quantity": str(self.remaining_quantity),
            "rate": str(self.rate),
            "remaining_value": str(self.remaining_value),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Lot:
        return cls(
            origin_transaction_id=int(payload["origin_transaction_id"]),
            remaining_quantity=Decimal(payload["remaining_quantity"]),
            rate=Decimal(payload["rate"]),
            remaining_value=Decimal(payload["remaining_value"]),
        )


@dataclass(frozen=True, slots=True)
class LotDraw:
    """Quantity and cost taken from one lot by one issue."""

    origin_transaction_id: int
    quantity: Decimal
    rate: Decimal
    cost: Decimal
    emptied_lot: bool


@dataclass(frozen=True, slots=True)
class IssueResult:
    """Outcome of FIFOLotQueue.issue()."""

    requested_quantity: Decimal
    consumed_quantity: Decimal
    consumed_cost: Decimal
    shortfall: Decimal
    draws: tuple[LotDraw, ...] = ()

    @property
    def has_shortfall(self) -> bool:
        return self.shortfall > ZERO

    @property
    def average_rate(self) -> Decimal:
        """consumed_cost / consumed_quantity, zero when nothing was consumed."""
        return safe_rate(self.consumed_cost, self.consumed_quantity)


@dataclass(frozen=True, slots=True)
class QueueState:
    """Totals over the open lots."""

    total_quantity: Decimal
    weighted_average_rate: Decimal
    total_value: Decimal
    lot_count: int = 0


class FIFOLotQueue:
    """
    Open lots of one item, oldest first.

    Contract:
        receive() then issue() in replay order reproduces the item's FIFO
        cost history.  The queue is mutable; copy() gives an independent
        queue sharing no state (Lot is immutable, so a shallow copy of the
        deque suffices).
    """

    __slots__ = ("_lots",)

    def __init__(self) -> None:
        self._lots: deque[Lot] = deque()

    @classmethod
    def from_lots(cls, lots: Iterable[Lot]) -> FIFOLotQueue:
        """Rebuild a queue from lots in consumption order (e.g. a snapshot)."""
        queue = cls()
        for lot in lots:
            if lot.is_depleted:
                continue
            queue._lots.append(lot)
        return queue

    def copy(self) -> FIFOLotQueue:
        queue = FIFOLotQueue()
        queue._lots = deque(self._lots)
        return queue

    @property
    def lots(self) -> tuple[Lot, ...]:
        return tuple(self._lots)

    def __len__(self) -> int:
        return len(self._lots)

    @property
    def is_empty(self) -> bool:
        return not self._lots

    def receive(
        self,
        quantity: Decimal,
        rate: Decimal,
        origin_id: int,
        amount: Decimal | None = None,
    ) -> Lot:
        """
        Append a lot for a receipt.

        ``amount`` is the receipt's stored value; when omitted it is
        ``round_amount(quantity * rate)``.  Passing the stored amount keeps
        replay faithful to whatever rounding the producer applied.
        """
        quantity = round_quantity(quantity)
        if quantity <= ZERO:
            logger.error(
                "lot_queue_invalid_receive",
                extra={"origin_transaction_id": origin_id, "quantity": str(quantity)},
            )
            raise InvalidQuantityError("receive", str(quantity))
        rate = to_decimal(rate)
        if rate < ZERO:
            raise InvalidQuantityError("receive (negative rate)", str(rate))

        value = round_amount(amount if amount is not None else quantity * rate)
        lot = Lot(
            origin_transaction_id=origin_id,
            remaining_quantity=quantity,
            rate=round_rate(rate),
            remaining_value=value,
        )
        self._lots.append(lot)
        return lot

    def issue(self, quantity: Decimal) -> IssueResult:
        """
        Consume ``quantity`` oldest-first.

        Never raises for insufficient stock: whatever cannot be satisfied is
        returned as ``shortfall`` and the queue ends empty.
        """
        requested = round_quantity(quantity)
        if requested <= ZERO:
            logger.error("lot_queue_invalid_issue", extra={"quantity": str(requested)})
            raise InvalidQuantityError("issue", str(requested))

        needed = requested
        consumed_cost = ZERO
        draws: list[LotDraw] = []

        while needed > ZERO and self._lots:
            head = self._lots[0]
            take = min(needed, head.remaining_quantity)
            if take == head.remaining_quantity:
                cost = head.remaining_value
                self._lots.popleft()
                emptied = True
            else:
                cost = min(round_amount(take * head.rate), head.remaining_value)
                self._lots[0] = Lot(
                    origin_transaction_id=head.origin_transaction_id,
                    remaining_quantity=head.remaining_quantity - take,
                    rate=head.rate,
                    remaining_value=head.remaining_value - cost,
                )
                emptied = False

            draws.append(
                LotDraw(
                    origin_transaction_id=head.origin_transaction_id,
                    quantity=take,
                    rate=head.rate,
                    cost=cost,
                    emptied_lot=emptied,
                )
            )
            consumed_cost += cost
            needed -= take

        if needed > ZERO:
            logger.warning(
                "lot_queue_shortfall",
                extra={"requested": str(requested), "shortfall": str(needed)},
            )

        return IssueResult(
            requested_quantity=requested,
            consumed_quantity=requested - needed,
            consumed_cost=consumed_cost,
            shortfall=needed,
            draws=tuple(draws),
        )

    def current_state(self) -> QueueState:
        total_quantity = sum((lot.remaining_quantity for lot in self._lots), ZERO)
        total_value = sum((lot.remaining_value for lot in self._lots), ZERO)
        return QueueState(
            total_quantity=total_quantity,
            weighted_average_rate=safe_rate(total_value, total_quantity),
            total_value=total_value,
            lot_count=len(self._lots),
        )

    def __repr__(self) -> str:
        state = self.current_state()
        return f"<FIFOLotQueue lots={state.lot_count} qty={state.total_quantity} value={state.total_value}>"
