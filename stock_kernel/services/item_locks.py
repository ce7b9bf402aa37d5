"""
ItemLockRegistry -- per-item serialization of ledger writes.

Responsibility:
    Serializes writers that touch the same item so that a replay followed by
    an append (the allocator's read-modify-write) never interleaves with
    another writer on that item.  Readers take no locks.

Architecture position:
    Kernel > Services.  Used by LedgerStore.append(), ProcessCostAllocator
    and StockPostingService.

Invariants enforced:
    - Locks are acquired in ascending item-id order, so two writers that
      share items can never deadlock on each other.
    - Locks are re-entrant: the posting service holds them across commit
      while the allocator and store re-acquire them inside.
    - When a session is supplied, the item rows are also locked with
      ``SELECT ... FOR UPDATE`` (PostgreSQL).  SQLite ignores FOR UPDATE;
      the in-process locks alone cover single-process deployments.

Failure modes:
    - A writer that dies while holding a lock releases it on exit from the
      ``hold()`` block (try/finally).
"""

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
import threading

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.logging_config import get_logger
from stock_kernel.models.item import ItemModel

logger = get_logger("services.item_locks")


class ItemLockRegistry:
    """One ``threading.RLock`` per item id, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.RLock] = {}

    def lock_for(self, item_id: int) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(item_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[item_id] = lock
            return lock

    @contextmanager
    def hold(
        self,
        item_ids: Iterable[int],
        session: Session | None = None,
    ) -> Iterator[tuple[int, ...]]:
        """
        Hold the locks of every item in ``item_ids`` for the block.

        Yields the sorted, de-duplicated id tuple actually locked.
        """
        ordered = tuple(sorted(set(item_ids)))
        acquired: list[threading.RLock] = []
        try:
            for item_id in ordered:
                lock = self.lock_for(item_id)
                lock.acquire()
                acquired.append(lock)
            if session is not None and ordered:
                lock_item_rows(session, ordered)
            logger.debug("item_locks_acquired", extra={"item_ids": list(ordered)})
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()


def lock_item_rows(session: Session, item_ids: Iterable[int]) -> list[int]:
    """``SELECT id FROM items WHERE id IN (...) ORDER BY id FOR UPDATE``."""
    ordered = sorted(set(item_ids))
    return list(
        session.execute(
            select(ItemModel.id)
            .where(ItemModel.id.in_(ordered))
            .order_by(ItemModel.id)
            .with_for_update()
        ).scalars()
    )


_default_registry = ItemLockRegistry()


def get_item_lock_registry() -> ItemLockRegistry:
    """Process-wide registry shared by every service that does not get one injected."""
    return _default_registry
