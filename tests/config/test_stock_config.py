"""
Tests for the configuration entrypoint, loader and validator.

Custom sets are written under tmp_path by editing a copy of the shipped
default set, so the shipped YAML stays the single source of truth.
"""

import dataclasses
from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from stock_config import DATABASE_URL_ENV, get_active_config
from stock_config.loader import compute_checksum, load_configuration_set, parse_decimal
from stock_config.schema import ReferenceTypeRule, ReportCategoryGroup
from stock_config.validator import validate_configuration
from stock_kernel.domain.dtos import ItemCategory, ReferenceType, TransactionType

DEFAULT_ROOT = Path(__file__).resolve().parents[2] / "stock_config" / "sets" / "default" / "root.yaml"


@pytest.fixture
def write_set(tmp_path):
    """Write a modified copy of the default set and return its sets dir."""

    def _write(name="custom", mutate=None):
        with open(DEFAULT_ROOT) as f:
            data = yaml.safe_load(f)
        if mutate is not None:
            mutate(data)
        set_dir = tmp_path / name
        set_dir.mkdir()
        with open(set_dir / "root.yaml", "w") as f:
            yaml.safe_dump(data, f)
        return tmp_path

    return _write


class TestGetActiveConfig:
    def test_default_set(self, monkeypatch):
        monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
        config = get_active_config()

        assert config.config_id == "default"
        assert config.version == 1
        assert config.bag_unit_weight == Decimal("25")
        assert config.statement_epsilon == Decimal("0.001")
        assert config.snapshots.enabled is False
        assert config.database.url == "sqlite:///stock_ledger.db"
        assert len(config.checksum) == 64

    def test_missing_set(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config("nope", config_dir=tmp_path)

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv(DATABASE_URL_ENV, "postgresql://stock@localhost/stock")
        config = get_active_config()
        assert config.database.url == "postgresql://stock@localhost/stock"

    def test_invalid_set_lists_errors(self, write_set):
        def break_it(data):
            data["valuation"]["bag_unit_weight"] = "0"
            data["report_groups"]["wip"] = ["Slag"]

        config_dir = write_set(mutate=break_it)

        with pytest.raises(ValueError) as exc_info:
            get_active_config("custom", config_dir=config_dir)

        message = str(exc_info.value)
        assert "bag_unit_weight must be positive" in message
        assert "unknown category 'Slag'" in message

    def test_custom_set_loads(self, write_set, monkeypatch):
        monkeypatch.delenv(DATABASE_URL_ENV, raising=False)

        def enable_snapshots(data):
            data["config_id"] = "plant-2"
            data["snapshots"] = {"enabled": True}
            data["valuation"]["bag_unit_weight"] = "50"

        config = get_active_config("custom", config_dir=write_set(mutate=enable_snapshots))

        assert config.config_id == "plant-2"
        assert config.snapshots.enabled is True
        assert config.bag_unit_weight == Decimal("50")

    def test_trace_logged(self, captured_logs):
        config = get_active_config()

        trace = next(r for r in captured_logs() if r["message"] == "STOCK_CONFIG_TRACE")
        assert trace["config_set_id"] == "default"
        assert trace["config_set_version"] == 1
        assert trace["checksum"] == config.checksum
        assert trace["snapshots_enabled"] is False


class TestLoader:
    def test_checksum_is_deterministic(self, write_set):
        config_dir = write_set()
        first = load_configuration_set(config_dir / "custom")
        second = load_configuration_set(config_dir / "custom")
        assert first.checksum == second.checksum

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_bad_decimal(self):
        with pytest.raises(ValueError, match="bag_unit_weight"):
            parse_decimal("heavy", "bag_unit_weight")

    def test_missing_required_key(self, write_set):
        config_dir = write_set(mutate=lambda data: data.pop("valuation"))
        with pytest.raises(KeyError):
            load_configuration_set(config_dir / "custom")


class TestConfigurationAccessors:
    def test_reference_rules(self, stock_config):
        rules = stock_config.reference_rules()

        assert set(rules) == set(ReferenceType)
        assert rules[ReferenceType.GRN] == frozenset({TransactionType.RECEIPT})
        assert rules[ReferenceType.ADJUSTMENT] == frozenset(
            {TransactionType.RECEIPT, TransactionType.ISSUE}
        )

    def test_label_prefixes(self, stock_config):
        prefixes = stock_config.label_prefixes()

        assert prefixes["MELTING"] == prefixes["MELTING_OUTPUT"] == "MP"
        assert prefixes["HEAT_TREATMENT_OUTPUT"] == "HT"
        assert prefixes["DISPATCH"] == "DISP"

    def test_categories_for(self, stock_config):
        assert stock_config.categories_for("raw_material") == (
            ItemCategory.RAW_MATERIAL,
            ItemCategory.MINERAL,
        )
        with pytest.raises(KeyError):
            stock_config.categories_for("scrap_yard")

    def test_melting_item_codes(self, stock_config):
        codes = stock_config.melting_item_codes()
        assert codes["scrap"] == "MS-SCRAP"
        assert set(codes) == {"scrap", "carbon", "manganese", "silicon", "aluminium", "calcium"}


class TestValidator:
    def test_default_is_valid(self, stock_config):
        assert validate_configuration(stock_config).is_valid

    @pytest.mark.parametrize(
        "changes, expected",
        [
            ({"bag_unit_weight": Decimal("-1")}, "bag_unit_weight must be positive"),
            ({"statement_epsilon": Decimal("-0.1")}, "statement_epsilon must not be negative"),
            ({"melting_items": (("scrap", "MS-SCRAP"),)}, "no item code for role 'carbon'"),
        ],
    )
    def test_scalar_errors(self, stock_config, changes, expected):
        result = validate_configuration(dataclasses.replace(stock_config, **changes))

        assert not result.is_valid
        assert any(expected in e for e in result.errors)

    def test_unknown_reference_type(self, stock_config):
        rules = stock_config.reference_types + (ReferenceTypeRule("TRANSFER", ("ISSUE",), "TR"),)
        result = validate_configuration(dataclasses.replace(stock_config, reference_types=rules))
        assert "unknown reference type 'TRANSFER'" in result.errors

    def test_duplicate_reference_type(self, stock_config):
        rules = stock_config.reference_types + (ReferenceTypeRule("GRN", ("RECEIPT",), "GRN"),)
        result = validate_configuration(dataclasses.replace(stock_config, reference_types=rules))
        assert "duplicate rule for reference type 'GRN'" in result.errors

    def test_missing_reference_type(self, stock_config):
        rules = tuple(r for r in stock_config.reference_types if r.reference_type != "DISPATCH")
        result = validate_configuration(dataclasses.replace(stock_config, reference_types=rules))
        assert result.errors == ["no rule for reference type 'DISPATCH'"]

    def test_unknown_verb(self, stock_config):
        rules = tuple(
            ReferenceTypeRule("GRN", ("RECEIPT", "TRANSFER"), "GRN") if r.reference_type == "GRN" else r
            for r in stock_config.reference_types
        )
        result = validate_configuration(dataclasses.replace(stock_config, reference_types=rules))
        assert result.errors == ["GRN: unknown transaction type 'TRANSFER'"]

    def test_unknown_melting_role(self, stock_config):
        items = stock_config.melting_items + (("chromium", "CR"),)
        result = validate_configuration(dataclasses.replace(stock_config, melting_items=items))
        assert result.errors == ["process_items.melting: unknown role 'chromium'"]

    def test_unknown_category(self, stock_config):
        groups = stock_config.report_groups + (ReportCategoryGroup("slag", ("Slag",)),)
        result = validate_configuration(dataclasses.replace(stock_config, report_groups=groups))
        assert result.errors == ["report group 'slag': unknown category 'Slag'"]
