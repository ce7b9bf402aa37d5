"""
stock_services.replay_service -- FIFO queue reconstruction from the ledger.

Responsibility:
    Rebuild an item's lot queue as of any date by feeding its ledger rows,
    in replay order, into a fresh FIFOLotQueue.  There are no stored
    running balances anywhere; every valuation starts here.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Reads through LedgerStore; optionally starts from a persisted snapshot
    via SnapshotService.

Invariants enforced:
    R1 -- Determinism: the same ledger prefix always yields the same queue
          (same lots, same remaining values, same order).
    R2 -- Idempotence: state_as_of() has no side effects.
    R3 -- Snapshot equivalence: replay from a snapshot plus the rows dated
          after it equals a full replay.  Snapshots are only consulted when
          enabled.

Failure modes:
    - InvalidQuantityError propagates if a stored row has a non-positive
      quantity (the store never writes one, so this means corruption).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from stock_engines.lot_queue import FIFOLotQueue
from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import StockTransaction
from stock_kernel.logging_config import get_logger
from stock_kernel.services.ledger_store import LedgerStore

if TYPE_CHECKING:
    from stock_services.snapshot_service import SnapshotService

logger = get_logger("services.replay")


@dataclass(frozen=True)
class ReplayResult:
    """Queue after replay plus what was observed on the way."""

    queue: FIFOLotQueue
    transactions_applied: int
    shortfall: Decimal
    last_transaction_id: int = 0
    snapshot_date: date | None = None


class ReplayEngine:
    """
    Rebuilds lot queues on demand.

    Contract:
        Read-only.  Never flushes, never locks.
    """

    def __init__(
        self,
        session: Session,
        ledger: LedgerStore | None = None,
        snapshots: SnapshotService | None = None,
    ):
        self.session = session
        self.ledger = ledger or LedgerStore(session)
        self.snapshots = snapshots

    @staticmethod
    def replay(
        transactions: Iterable[StockTransaction],
        queue: FIFOLotQueue | None = None,
    ) -> ReplayResult:
        """
        Apply ``transactions`` (already in replay order) to ``queue``.

        ``queue`` is mutated; pass ``queue.copy()`` to keep the original.
        Issue costs are discarded; only the resulting queue matters here.
        """
        queue = queue if queue is not None else FIFOLotQueue()
        applied = 0
        shortfall = ZERO
        last_id = 0
        for tx in transactions:
            if tx.is_receipt:
                queue.receive(tx.quantity, tx.rate, tx.id, amount=tx.amount)
            else:
                shortfall += queue.issue(tx.quantity).shortfall
            applied += 1
            last_id = max(last_id, tx.id)
        return ReplayResult(
            queue=queue,
            transactions_applied=applied,
            shortfall=shortfall,
            last_transaction_id=last_id,
        )

    def replay_as_of(self, item_id: int, cutoff_date: date) -> ReplayResult:
        """Replay every row of ``item_id`` dated on or before ``cutoff_date``."""
        snapshot = None
        if self.snapshots is not None:
            snapshot = self.snapshots.latest_before(item_id, cutoff_date)

        if snapshot is None:
            result = self.replay(self.ledger.query(item_id, date_to=cutoff_date))
        else:
            tail = self.ledger.query(
                item_id,
                date_from=snapshot.snapshot_date + timedelta(days=1),
                date_to=cutoff_date,
            )
            partial = self.replay(tail, snapshot.to_queue())
            result = ReplayResult(
                queue=partial.queue,
                transactions_applied=partial.transactions_applied,
                shortfall=partial.shortfall,
                last_transaction_id=max(partial.last_transaction_id, snapshot.last_transaction_id),
                snapshot_date=snapshot.snapshot_date,
            )

        logger.debug(
            "replay_completed",
            extra={
                "item_id": item_id,
                "cutoff_date": cutoff_date,
                "transactions_applied": result.transactions_applied,
                "from_snapshot": result.snapshot_date,
                "shortfall": str(result.shortfall),
            },
        )
        return result

    def issue_costs(self, item_id: int, cutoff_date: date | None = None) -> dict[int, Decimal]:
        """
        FIFO cost of each of the item's issues, keyed by transaction id.

        Stored rates on dispatch and adjustment issues are estimates; this
        replays the full history so reports can show what the lots cost.
        """
        queue = FIFOLotQueue()
        costs: dict[int, Decimal] = {}
        for tx in self.ledger.query(item_id, date_to=cutoff_date):
            if tx.is_receipt:
                queue.receive(tx.quantity, tx.rate, tx.id, amount=tx.amount)
            else:
                costs[tx.id] = queue.issue(tx.quantity).consumed_cost
        return costs

    def state_as_of(self, item_id: int, cutoff_date: date) -> FIFOLotQueue:
        """The item's lot queue at the end of ``cutoff_date``."""
        return self.replay_as_of(item_id, cutoff_date).queue
