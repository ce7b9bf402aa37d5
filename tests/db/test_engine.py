"""Tests for engine construction and the process-wide session helpers."""

import pytest
from sqlalchemy import text

from stock_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from stock_kernel.domain.dtos import ItemCategory
from stock_kernel.exceptions import ItemNotFoundError
from stock_kernel.services.item_registry import ItemRegistry


@pytest.fixture
def process_engine(tmp_path):
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'scope.db'}")
    create_tables()
    yield engine
    reset_engine()


class TestBuildEngine:
    def test_sqlite_enforces_foreign_keys(self):
        engine = build_engine("sqlite:///:memory:")
        try:
            with engine.connect() as conn:
                assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
        finally:
            engine.dispose()

    def test_memory_database_is_shared(self):
        """Tables created on one connection are visible on the next."""
        engine = build_engine("sqlite:///:memory:")
        try:
            create_tables(engine)
            with engine.connect() as conn:
                tables = set(
                    conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'")).scalars()
                )
            assert {"items", "stock_transactions", "lot_snapshots"} <= tables
        finally:
            engine.dispose()


class TestProcessEngine:
    def test_uninitialized(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()

    def test_session_scope_commits(self, process_engine):
        with session_scope() as session:
            ItemRegistry(session).register("CARBON", "Carbon", ItemCategory.MINERAL)

        with session_scope() as session:
            assert ItemRegistry(session).get_by_code("CARBON").name == "Carbon"

    def test_session_scope_rolls_back(self, process_engine, captured_logs):
        with pytest.raises(RuntimeError, match="abort"):
            with session_scope() as session:
                ItemRegistry(session).register("SILICON", "Silicon", ItemCategory.MINERAL)
                raise RuntimeError("abort")

        with session_scope() as session:
            with pytest.raises(ItemNotFoundError):
                ItemRegistry(session).get_by_code("SILICON")
        assert any(r["message"] == "session_rolled_back" for r in captured_logs())

    def test_reinit_replaces_engine(self, process_engine, tmp_path):
        replacement = init_engine_from_url(f"sqlite:///{tmp_path / 'other.db'}")
        assert get_engine() is replacement
        assert replacement is not process_engine
