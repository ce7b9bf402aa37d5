"""Tests for ItemRegistry."""

from decimal import Decimal

import pytest

from stock_kernel.domain.dtos import ItemCategory
from stock_kernel.exceptions import DuplicateItemError, ItemNotFoundError


class TestRegister:
    def test_register_and_get(self, item_registry):
        item = item_registry.register(
            code="FG-SHOT-S230",
            name="Steel Shot S230",
            category="FinishedGood",
            unit_weight=Decimal("25"),
        )

        assert item.id > 0
        assert item.category == ItemCategory.FINISHED_GOOD
        assert item.uom == "KG"
        assert item.unit_weight == Decimal("25")
        assert item_registry.get(item.id) == item
        assert item_registry.get_by_code("FG-SHOT-S230") == item

    def test_duplicate_code(self, item_registry):
        item_registry.register(code="CARBON", name="Carbon", category=ItemCategory.MINERAL)
        with pytest.raises(DuplicateItemError):
            item_registry.register(code="CARBON", name="Carbon 2", category=ItemCategory.MINERAL)

    def test_unknown_category(self, item_registry):
        with pytest.raises(ValueError):
            item_registry.register(code="X", name="X", category="Consumable")

    def test_unknown_lookups(self, item_registry):
        with pytest.raises(ItemNotFoundError):
            item_registry.get(424242)
        with pytest.raises(ItemNotFoundError):
            item_registry.get_by_code("NOPE")


class TestListItems:
    @pytest.fixture
    def catalog(self, make_item):
        return [
            make_item("S1", "MS Scrap", ItemCategory.RAW_MATERIAL),
            make_item("M1", "Ferro Manganese", ItemCategory.MINERAL),
            make_item("W1", "Molten Metal", ItemCategory.WIP),
            make_item("F1", "Steel Grit", ItemCategory.FINISHED_GOOD),
            make_item("S2", "Old Scrap", ItemCategory.RAW_MATERIAL, is_active=False),
        ]

    def test_ordered_by_name(self, item_registry, catalog):
        names = [i.name for i in item_registry.list_items()]
        assert names == sorted(names)
        assert "Old Scrap" not in names

    def test_category_filter(self, item_registry, catalog):
        items = item_registry.list_items(categories=["RawMaterial", ItemCategory.MINERAL])
        assert [i.code for i in items] == ["M1", "S1"]

    def test_name_filter_case_insensitive(self, item_registry, catalog):
        items = item_registry.list_items(name_filter="scrap", active_only=False)
        assert {i.code for i in items} == {"S1", "S2"}

    def test_inactive_included_on_request(self, item_registry, catalog):
        assert len(item_registry.list_items(active_only=False)) == len(catalog)
