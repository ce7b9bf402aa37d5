"""Tests for stock_kernel.logging_config: JSON lines, posting context, setup."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from stock_kernel.domain.dtos import ReferenceType
from stock_kernel.exceptions import LotAlreadyConsumedError
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    """Start unconfigured; hand the suite back its DEBUG configuration afterwards."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def json_lines():
    """Configure logging onto a buffer; calling the fixture value returns parsed lines."""
    buffer = StringIO()
    configure_logging(handler=logging.StreamHandler(buffer))

    def read() -> list[dict]:
        return [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    return read


class TestRecordShape:
    def test_core_fields(self, json_lines):
        get_logger("services.ledger_store").info("ledger_append_completed")

        (record,) = json_lines()
        assert record["message"] == "ledger_append_completed"
        assert record["level"] == "INFO"
        assert record["logger"] == "stock_kernel.services.ledger_store"
        assert record["ts"].endswith("+00:00")

    def test_extra_fields(self, json_lines):
        get_logger("test").info("appended", extra={"transaction_id": 42, "item_id": 7})

        (record,) = json_lines()
        assert (record["transaction_id"], record["item_id"]) == (42, 7)

    def test_ledger_values_serialized(self, json_lines):
        get_logger("test").info(
            "valued",
            extra={
                "amount": Decimal("1240.000"),
                "cutoff_date": date(2024, 1, 15),
                "reference_type": ReferenceType.MELTING_OUTPUT,
                "item_ids": frozenset({3, 1}),
            },
        )

        (record,) = json_lines()
        assert record["amount"] == "1240.000"
        assert record["cutoff_date"] == "2024-01-15"
        assert record["reference_type"] == "MELTING_OUTPUT"
        assert record["item_ids"] == [1, 3]

    def test_plain_exception(self, json_lines):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        (record,) = json_lines()
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_kernel_exception_fields(self, json_lines):
        try:
            raise LotAlreadyConsumedError(5, 3, "100.000", "40.000")
        except LotAlreadyConsumedError:
            get_logger("test").error("remove_refused", exc_info=True)

        (record,) = json_lines()
        assert record["exc_code"] == "LOT_ALREADY_CONSUMED"
        assert record["exc_type"] == "LotAlreadyConsumedError"
        assert record["exc_transaction_id"] == 5
        assert record["exc_remaining_quantity"] == "40.000"

    def test_level_filtering(self, json_lines):
        logger = get_logger("test")
        logger.debug("dropped")
        logger.info("kept")
        logger.warning("kept_too", extra={"k": "v"})

        assert [r["message"] for r in json_lines()] == ["kept", "kept_too"]


class TestLogContext:
    def test_context_on_records(self, json_lines):
        LogContext.set(correlation_id="abc-123", reference_type="GRN", reference_id="12")
        get_logger("test").info("posting_started")

        (record,) = json_lines()
        assert record["correlation_id"] == "abc-123"
        assert record["reference_type"] == "GRN"
        assert record["reference_id"] == "12"

    def test_empty_context_adds_nothing(self, json_lines):
        get_logger("test").info("bare")

        (record,) = json_lines()
        assert "correlation_id" not in record

    def test_set_ignores_none(self):
        LogContext.set(correlation_id="x", producer="grn")
        LogContext.set(producer=None)
        assert LogContext.get_all() == {"correlation_id": "x", "producer": "grn"}

    def test_unknown_fields_ignored(self):
        LogContext.set(shift="night")
        assert LogContext.get_all() == {}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", reference_id="MP-4"):
            assert LogContext.get_all() == {"correlation_id": "inner", "reference_id": "MP-4"}
        assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(producer="melting"):
                raise RuntimeError("allocation failed")
        assert LogContext.get_all() == {}

    def test_bind_stringifies(self):
        with LogContext.bind(item_id=17):
            assert LogContext.get_all()["item_id"] == "17"

    def test_every_field(self):
        LogContext.set(
            correlation_id="c",
            actor_id="a",
            producer="p",
            item_id="1",
            reference_type="MELTING",
            reference_id="4",
        )
        assert set(LogContext.get_all()) == set(LogContext.FIELDS)


class TestConfigureLogging:
    def test_second_call_is_noop(self):
        first = logging.StreamHandler(StringIO())
        second = logging.StreamHandler(StringIO())

        configure_logging(handler=first)
        configure_logging(handler=second)

        root = logging.getLogger("stock_kernel")
        assert first in root.handlers
        assert second not in root.handlers
        assert isinstance(first.formatter, StructuredFormatter)
        assert root.propagate is False

    def test_children_inherit(self, json_lines):
        logging.getLogger("stock_kernel").setLevel(logging.DEBUG)
        get_logger("engines.tracer").debug("nested")

        (record,) = json_lines()
        assert record["logger"] == "stock_kernel.engines.tracer"

    def test_reset_detaches_only_its_handler(self):
        foreign = logging.StreamHandler(StringIO())
        installed = logging.StreamHandler(StringIO())
        root = logging.getLogger("stock_kernel")
        root.addHandler(foreign)
        try:
            configure_logging(handler=installed)
            reset_logging()

            assert installed not in root.handlers
            assert foreign in root.handlers
        finally:
            root.removeHandler(foreign)
