"""
Concurrent posting against a file-backed SQLite database.

Each worker thread gets its own session; all of them share one
ItemLockRegistry.  SQLite serializes writers through BEGIN IMMEDIATE, the
registry serializes the replay-then-append window per item.

Run with:
    pytest tests/concurrency -m slow_locks
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy.orm import sessionmaker

from stock_kernel.db.engine import build_engine, create_tables
from stock_kernel.domain.dtos import ItemCategory, ReferenceType
from stock_kernel.services.item_locks import ItemLockRegistry
from stock_kernel.services.item_registry import ItemRegistry
from stock_kernel.services.ledger_store import LedgerStore
from stock_services.posting import DispatchLine, ReceiptLine, StockPostingService
from stock_services.stock_report_facade import StockReportFacade

pytestmark = pytest.mark.slow_locks

NUM_THREADS = 8


@pytest.fixture
def file_db(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    create_tables(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def shot_item(file_db):
    with file_db() as session:
        item = ItemRegistry(session).register(
            "FG-SHOT", "Steel Shot", ItemCategory.FINISHED_GOOD, unit_weight=Decimal("25")
        )
        session.commit()
    return item


def _run_threads(work):
    barrier = Barrier(NUM_THREADS, timeout=30)

    def start(thread_id):
        barrier.wait()
        return work(thread_id)

    with ThreadPoolExecutor(max_workers=NUM_THREADS) as executor:
        return list(executor.map(start, range(NUM_THREADS)))


class TestConcurrentPosting:
    def test_parallel_receipts_all_land(self, file_db, shot_item, stock_config):
        locks = ItemLockRegistry()

        def receive(thread_id):
            with file_db() as session:
                service = StockPostingService(session, stock_config, lock_registry=locks)
                return service.post_grn(
                    f"T{thread_id}",
                    date(2024, 1, 2),
                    [ReceiptLine(shot_item.id, Decimal("10"), Decimal("5"))],
                )

        results = _run_threads(receive)

        assert len(results) == NUM_THREADS
        with file_db() as session:
            rows = LedgerStore(session, lock_registry=locks).query(shot_item.id)
        assert len(rows) == NUM_THREADS
        assert len({r.id for r in rows}) == NUM_THREADS
        assert sum(r.quantity for r in rows) == Decimal("10") * NUM_THREADS

    def test_parallel_dispatches_conserve_value(self, file_db, shot_item, stock_config):
        locks = ItemLockRegistry()
        with file_db() as session:
            StockPostingService(session, stock_config, lock_registry=locks).post_grn(
                "1", date(2024, 1, 2), [ReceiptLine(shot_item.id, Decimal("100"), Decimal("10"))]
            )

        def dispatch(thread_id):
            with file_db() as session:
                service = StockPostingService(session, stock_config, lock_registry=locks)
                return service.post_dispatch(
                    f"D{thread_id}",
                    date(2024, 1, 20),
                    [DispatchLine(shot_item.id, Decimal("5"))],
                )

        _run_threads(dispatch)

        with file_db() as session:
            row = StockReportFacade(session, stock_config).stock_statement(
                date(2024, 1, 1), date(2024, 1, 31)
            ).row_for(shot_item.id)
            dispatches = [
                t
                for t in LedgerStore(session, lock_registry=locks).query(shot_item.id)
                if t.reference_type == ReferenceType.DISPATCH
            ]

        issued = Decimal("5") * NUM_THREADS
        assert len(dispatches) == NUM_THREADS
        assert row.issues.quantity == issued
        assert row.issues.amount == issued * 10
        assert row.closing.quantity == Decimal("100") - issued
        assert row.closing.amount == (Decimal("100") - issued) * 10


class TestItemLockRegistry:
    def test_same_item_is_exclusive(self):
        locks = ItemLockRegistry()
        inside = 0
        peak = 0
        guard = threading.Lock()

        def work(thread_id):
            nonlocal inside, peak
            with locks.hold([1]):
                with guard:
                    inside += 1
                    peak = max(peak, inside)
                time.sleep(0.01)
                with guard:
                    inside -= 1

        _run_threads(work)

        assert peak == 1

    def test_opposite_order_does_not_deadlock(self):
        locks = ItemLockRegistry()

        def work(thread_id):
            ids = [1, 2, 3] if thread_id % 2 else [3, 2, 1]
            for _ in range(20):
                with locks.hold(ids) as held:
                    assert held == (1, 2, 3)
            return True

        assert all(_run_threads(work))

    def test_reentrant_hold(self):
        locks = ItemLockRegistry()
        with locks.hold([5, 6]):
            with locks.hold([6]) as inner:
                assert inner == (6,)
