"""
Tests for ReplayEngine - lot queue reconstruction from ledger history.
"""

from datetime import date
from decimal import Decimal

from stock_services.replay_service import ReplayEngine


class TestStateAsOf:
    def test_queue_after_receipts_and_issue(self, replay, make_item, add_receipt, add_issue):
        item = make_item()
        add_receipt(item.id, 100, 10, date(2024, 1, 1))
        add_receipt(item.id, 50, 12, date(2024, 1, 10))
        add_issue(item.id, 120, date(2024, 1, 15))

        state = replay.state_as_of(item.id, date(2024, 1, 31)).current_state()

        assert state.total_quantity == Decimal("30")
        assert state.weighted_average_rate == Decimal("12")
        assert state.total_value == Decimal("360")

    def test_cutoff_excludes_later_rows(self, replay, make_item, add_receipt, add_issue):
        item = make_item()
        add_receipt(item.id, 100, 10, date(2024, 1, 1))
        add_receipt(item.id, 50, 12, date(2024, 1, 10))
        add_issue(item.id, 120, date(2024, 1, 15))

        state = replay.state_as_of(item.id, date(2024, 1, 10)).current_state()

        assert state.total_quantity == Decimal("150")
        assert state.total_value == Decimal("1600")

    def test_backdated_receipt_replays_in_date_order(self, replay, make_item, add_receipt, add_issue):
        """A receipt keyed in late but dated early is consumed first."""
        item = make_item()
        add_receipt(item.id, 10, 7, date(2024, 1, 5))
        add_issue(item.id, 10, date(2024, 1, 6))
        add_receipt(item.id, 10, 5, date(2024, 1, 2))

        (lot,) = replay.state_as_of(item.id, date(2024, 1, 31)).lots

        assert lot.rate == Decimal("7")

    def test_no_history(self, replay, make_item):
        item = make_item()
        assert replay.state_as_of(item.id, date(2024, 1, 31)).is_empty

    def test_idempotent(self, replay, make_item, add_receipt, add_issue):
        item = make_item()
        add_receipt(item.id, 10, 5, date(2024, 1, 1))
        add_receipt(item.id, 10, 7, date(2024, 1, 2))
        add_issue(item.id, 15, date(2024, 1, 3))

        first = replay.state_as_of(item.id, date(2024, 1, 31))
        second = replay.state_as_of(item.id, date(2024, 1, 31))

        assert first.lots == second.lots


class TestReplayResult:
    def test_shortfall_and_counts(self, replay, make_item, add_receipt, add_issue):
        item = make_item()
        add_receipt(item.id, 30, 10, date(2024, 1, 1))
        last = add_issue(item.id, 50, date(2024, 1, 2))

        result = replay.replay_as_of(item.id, date(2024, 1, 31))

        assert result.transactions_applied == 2
        assert result.shortfall == Decimal("20")
        assert result.last_transaction_id == last.id
        assert result.snapshot_date is None
        assert result.queue.is_empty

    def test_static_replay_starts_from_empty_queue(self, ledger, make_item, add_receipt):
        item = make_item()
        add_receipt(item.id, 4, 2, date(2024, 1, 1))

        result = ReplayEngine.replay(ledger.query(item.id))

        assert result.queue.current_state().total_value == Decimal("8")

    def test_static_replay_onto_existing_queue(self, ledger, make_item, add_issue):
        from stock_engines.lot_queue import FIFOLotQueue

        item = make_item()
        add_issue(item.id, 3, date(2024, 1, 1))
        start = FIFOLotQueue()
        start.receive(Decimal("5"), Decimal("2"), 0)

        result = ReplayEngine.replay(ledger.query(item.id), start)

        assert result.queue is start
        assert start.current_state().total_quantity == Decimal("2")


class TestIssueCosts:
    def test_costs_keyed_by_issue(self, replay, make_item, add_receipt, add_issue):
        item = make_item()
        add_receipt(item.id, 10, 5, date(2024, 1, 1))
        add_receipt(item.id, 10, 7, date(2024, 1, 2))
        first = add_issue(item.id, 15, date(2024, 1, 3), rate="6")
        second = add_issue(item.id, 10, date(2024, 1, 4), rate="6")

        costs = replay.issue_costs(item.id)

        assert costs == {first.id: Decimal("85"), second.id: Decimal("35")}

    def test_cutoff(self, replay, make_item, add_receipt, add_issue):
        item = make_item()
        add_receipt(item.id, 10, 5, date(2024, 1, 1))
        first = add_issue(item.id, 4, date(2024, 1, 3))
        add_issue(item.id, 4, date(2024, 1, 9))

        assert list(replay.issue_costs(item.id, date(2024, 1, 5))) == [first.id]
