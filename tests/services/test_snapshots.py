"""
Tests for SnapshotService and snapshot-assisted replay.

A replay that starts from a snapshot must produce exactly the queue a full
replay produces.
"""

from datetime import date
from decimal import Decimal

import pytest

from stock_kernel.exceptions import ItemNotFoundError
from stock_services.replay_service import ReplayEngine
from stock_services.stock_report_facade import StockReportFacade


@pytest.fixture
def history(make_item, add_receipt, add_issue):
    item = make_item()
    add_receipt(item.id, 100, 10, date(2024, 1, 1))
    add_receipt(item.id, 50, 12, date(2024, 1, 10))
    add_issue(item.id, 120, date(2024, 1, 15))
    add_receipt(item.id, 40, 13, date(2024, 2, 2))
    add_issue(item.id, 35, date(2024, 2, 20))
    return item


class TestCapture:
    def test_capture_holds_month_end_queue(self, snapshots, history):
        snap = snapshots.capture(history.id, date(2024, 1, 31))

        assert snap.total_quantity == Decimal("30")
        assert snap.total_value == Decimal("360")
        assert [lot.rate for lot in snap.lots] == [Decimal("12")]

    def test_recapture_replaces(self, snapshots, history):
        snapshots.capture(history.id, date(2024, 1, 31))
        snap = snapshots.capture(history.id, date(2024, 1, 31))

        assert snapshots.latest_before(history.id, date(2024, 1, 31)) == snap

    def test_capture_unknown_item(self, snapshots):
        with pytest.raises(ItemNotFoundError):
            snapshots.capture(515151, date(2024, 1, 31))

    def test_latest_before_picks_newest_eligible(self, snapshots, history):
        snapshots.capture(history.id, date(2024, 1, 31))
        snapshots.capture(history.id, date(2024, 2, 29))

        assert snapshots.latest_before(history.id, date(2024, 2, 15)).snapshot_date == date(2024, 1, 31)
        assert snapshots.latest_before(history.id, date(2024, 3, 1)).snapshot_date == date(2024, 2, 29)
        assert snapshots.latest_before(history.id, date(2024, 1, 30)) is None

    def test_invalidate_from(self, snapshots, history):
        snapshots.capture(history.id, date(2024, 1, 31))
        snapshots.capture(history.id, date(2024, 2, 29))

        assert snapshots.invalidate_from(history.id, date(2024, 2, 1)) == 1
        assert snapshots.latest_before(history.id, date(2024, 3, 1)).snapshot_date == date(2024, 1, 31)


class TestSnapshotEquivalence:
    @pytest.mark.parametrize(
        "cutoff",
        [date(2024, 1, 31), date(2024, 2, 5), date(2024, 2, 20), date(2024, 3, 31)],
    )
    def test_snapshot_replay_equals_full_replay(self, session, ledger, snapshots, history, cutoff):
        snapshots.capture(history.id, date(2024, 1, 31))
        full = ReplayEngine(session, ledger)
        assisted = ReplayEngine(session, ledger, snapshots=snapshots)

        expected = full.replay_as_of(history.id, cutoff)
        actual = assisted.replay_as_of(history.id, cutoff)

        assert actual.queue.lots == expected.queue.lots
        assert actual.snapshot_date == date(2024, 1, 31)
        assert actual.last_transaction_id == expected.last_transaction_id

    def test_backdated_row_after_capture_still_counted(
        self, session, ledger, snapshots, history, add_receipt
    ):
        snapshots.capture(history.id, date(2024, 1, 31))
        add_receipt(history.id, 5, 9, date(2024, 1, 20))
        assisted = ReplayEngine(session, ledger, snapshots=snapshots)

        result = assisted.replay_as_of(history.id, date(2024, 2, 29))

        assert result.snapshot_date is None
        assert result.queue.current_state().total_quantity == Decimal("40")

    def test_facade_statement_identical_with_snapshots(
        self, session, stock_config, snapshot_config, snapshots, history
    ):
        snapshots.capture(history.id, date(2024, 1, 31))

        plain = StockReportFacade(session, stock_config).stock_statement(
            date(2024, 2, 1), date(2024, 2, 29)
        )
        fast = StockReportFacade(session, snapshot_config).stock_statement(
            date(2024, 2, 1), date(2024, 2, 29)
        )

        assert plain.row_for(history.id) == fast.row_for(history.id)
