"""
stock_services.snapshot_service -- Persisted lot-queue checkpoints.

Responsibility:
    Capture an item's replayed queue at the end of a date (typically a
    month end) so later replays can start there instead of at the first
    ledger row, and find the newest usable checkpoint for a cutoff.

Architecture position:
    Services -- writes LotSnapshotModel rows; reads the ledger through
    ReplayEngine (without snapshots, so a capture is always a full replay).

Invariants enforced:
    S1 -- A snapshot holds exactly the rows dated on or before its date.
    S2 -- LedgerStore deletes snapshots on any append or compensating delete
          dated on or before them; invalidate_from() exposes the same rule.
    S3 -- One snapshot per (item, date); re-capturing replaces it.

Failure modes:
    - ItemNotFoundError if the item does not exist.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from stock_engines.lot_queue import FIFOLotQueue, Lot
from stock_kernel.db.types import round_amount, round_quantity
from stock_kernel.exceptions import ItemNotFoundError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.item import ItemModel
from stock_kernel.models.lot_snapshot import LotSnapshotModel
from stock_kernel.services.ledger_store import LedgerStore
from stock_services.replay_service import ReplayEngine

logger = get_logger("services.snapshots")


@dataclass(frozen=True)
class LotSnapshot:
    item_id: int
    snapshot_date: date
    last_transaction_id: int
    lots: tuple[Lot, ...]
    total_quantity: Decimal
    total_value: Decimal

    def to_queue(self) -> FIFOLotQueue:
        return FIFOLotQueue.from_lots(self.lots)


def _to_snapshot(model: LotSnapshotModel) -> LotSnapshot:
    return LotSnapshot(
        item_id=model.item_id,
        snapshot_date=model.snapshot_date,
        last_transaction_id=model.last_transaction_id,
        lots=tuple(Lot.from_payload(p) for p in model.lots),
        total_quantity=model.total_quantity,
        total_value=model.total_value,
    )


class SnapshotService:
    """Capture, look up and invalidate lot snapshots."""

    def __init__(self, session: Session, ledger: LedgerStore | None = None):
        self.session = session
        self.ledger = ledger or LedgerStore(session)

    def capture(self, item_id: int, snapshot_date: date) -> LotSnapshot:
        """Replay the item to ``snapshot_date`` and persist the queue (flushes)."""
        if self.session.get(ItemModel, item_id) is None:
            raise ItemNotFoundError(str(item_id))

        result = ReplayEngine(self.session, self.ledger).replay_as_of(item_id, snapshot_date)
        state = result.queue.current_state()

        self.session.execute(
            delete(LotSnapshotModel)
            .where(LotSnapshotModel.item_id == item_id)
            .where(LotSnapshotModel.snapshot_date == snapshot_date)
        )
        model = LotSnapshotModel(
            item_id=item_id,
            snapshot_date=snapshot_date,
            last_transaction_id=result.last_transaction_id,
            lots=[lot.to_payload() for lot in result.queue.lots],
            total_quantity=round_quantity(state.total_quantity),
            total_value=round_amount(state.total_value),
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "snapshot_captured",
            extra={
                "item_id": item_id,
                "snapshot_date": snapshot_date,
                "lot_count": state.lot_count,
                "total_quantity": str(state.total_quantity),
                "last_transaction_id": result.last_transaction_id,
            },
        )
        return _to_snapshot(model)

    def latest_before(self, item_id: int, cutoff: date) -> LotSnapshot | None:
        """Newest snapshot dated on or before ``cutoff``."""
        model = self.session.execute(
            select(LotSnapshotModel)
            .where(LotSnapshotModel.item_id == item_id)
            .where(LotSnapshotModel.snapshot_date <= cutoff)
            .order_by(LotSnapshotModel.snapshot_date.desc())
            .limit(1)
        ).scalar_one_or_none()
        return _to_snapshot(model) if model is not None else None

    def invalidate_from(self, item_id: int, from_date: date) -> int:
        """Delete the item's snapshots dated on or after ``from_date``."""
        return self.ledger.invalidate_snapshots(item_id, from_date)
