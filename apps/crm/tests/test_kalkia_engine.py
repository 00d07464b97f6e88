"""
Tests for the Kalkia calculation engine on plain objects.
"""

import uuid

import pytest

from ..core.settings import settings
from ..services.kalkia_engine import (
    CalculatedItem,
    CalculationConditions,
    KalkiaCalculationEngine,
    SupplierPriceOverride,
    get_factor_value,
    is_condition_met,
    seconds_to_hours,
)
from ..services.pricing import calculate_sale_price

NODE_ID = uuid.uuid4()
VARIANT_ID = uuid.uuid4()
MATERIAL_ID = uuid.uuid4()


def make_node(**overrides):
    node = {
        "id": NODE_ID,
        "name": "Stikkontakt",
        "base_time_seconds": 600,
        "default_sale_price": 0.0,
    }
    node.update(overrides)
    return node


def make_variant(**overrides):
    variant = {
        "id": VARIANT_ID,
        "name": "Betonvæg",
        "base_time_seconds": 0,
        "time_multiplier": 1.0,
        "extra_time_seconds": 0,
        "price_multiplier": 1.0,
        "waste_percentage": 0.0,
    }
    variant.update(overrides)
    return variant


def height_rule(**overrides):
    rule = {
        "node_id": NODE_ID,
        "rule_name": "Arbejde i højden",
        "rule_type": "height",
        "condition": {"min_height": 3},
        "time_multiplier": 1.5,
        "extra_time_seconds": 0,
        "priority": 0,
        "is_active": True,
    }
    rule.update(overrides)
    return rule


def test_factor_values():
    factors = [
        {"factor_key": "indirect_time", "value_type": "percentage", "value": 20, "is_active": True},
        {"factor_key": "overhead", "value_type": "multiplier", "value": 0.3, "is_active": True},
        {"factor_key": "personal_time", "value_type": "percentage", "value": 50, "is_active": False},
    ]
    assert get_factor_value(factors, "indirect_time", 0.15) == pytest.approx(0.2)
    assert get_factor_value(factors, "overhead", 0.12) == 0.3
    assert get_factor_value(factors, "personal_time", 0.08) == 0.08


class TestConditions:
    def test_height_range(self):
        assert is_condition_met(height_rule(), CalculationConditions(height=4)) is True
        assert is_condition_met(height_rule(), CalculationConditions(height=2)) is False

    def test_missing_input_never_matches(self):
        assert is_condition_met(height_rule(), CalculationConditions()) is False

    def test_access_type(self):
        rule = {"rule_type": "access", "condition": {"type": "difficult"}}
        assert is_condition_met(rule, CalculationConditions(access="difficult")) is True
        assert is_condition_met(rule, CalculationConditions(access="easy")) is False

    def test_custom_requires_all_keys(self):
        rule = {"rule_type": "custom", "condition": {"roof": "tile", "floors": 2}}
        assert is_condition_met(rule, CalculationConditions(custom={"roof": "tile", "floors": 2})) is True
        assert is_condition_met(rule, CalculationConditions(custom={"roof": "tile"})) is False


class TestNodeTime:
    def test_rule_applies_per_unit(self):
        engine = KalkiaCalculationEngine()
        result = engine.calculate_node_time(
            make_node(), None, 2, CalculationConditions(height=4), [height_rule()]
        )

        assert result.base_time_seconds == 1200
        assert result.adjusted_time_seconds == 1800
        assert result.rules_applied == ["Arbejde i højden"]

    def test_unmet_rule_leaves_time(self):
        engine = KalkiaCalculationEngine()
        result = engine.calculate_node_time(
            make_node(), None, 1, CalculationConditions(height=2), [height_rule()]
        )
        assert result.adjusted_time_seconds == 600
        assert result.rules_applied == []

    def test_variant_adjusts_base_time(self):
        engine = KalkiaCalculationEngine()
        variant = make_variant(time_multiplier=1.2, extra_time_seconds=60)
        result = engine.calculate_node_time(make_node(), variant, 1, CalculationConditions(), [])
        assert result.base_time_seconds == 780

    def test_building_profile_multiplies_time(self):
        engine = KalkiaCalculationEngine(building_profile={"time_multiplier": 1.5})
        result = engine.calculate_node_time(make_node(), None, 1, CalculationConditions(), [])
        assert result.adjusted_time_seconds == 900


class TestMaterialCost:
    materials = [{"id": MATERIAL_ID, "quantity": 2, "cost_price": 10.0}]

    def test_stored_cost_and_default_waste(self):
        engine = KalkiaCalculationEngine()
        result = engine.calculate_material_cost(self.materials, 3)

        assert result.material_cost == pytest.approx(60.0)
        assert result.material_waste == pytest.approx(3.0)
        assert result.supplier_prices_used == 0

    def _override(self, is_stale):
        return SupplierPriceOverride(
            material_id=MATERIAL_ID,
            supplier_product_id=uuid.uuid4(),
            base_cost_price=9.0,
            effective_cost_price=8.0,
            effective_sale_price=10.0,
            is_stale=is_stale,
        )

    def test_fresh_supplier_price_wins(self):
        engine = KalkiaCalculationEngine(supplier_prices={MATERIAL_ID: self._override(False)})
        result = engine.calculate_material_cost(self.materials, 3)

        assert result.material_cost == pytest.approx(48.0)
        assert result.supplier_prices_used == 1

    def test_stale_supplier_price_is_ignored(self):
        engine = KalkiaCalculationEngine(supplier_prices={MATERIAL_ID: self._override(True)})
        result = engine.calculate_material_cost(self.materials, 3)
        assert result.material_cost == pytest.approx(60.0)


def test_item_without_sale_price_uses_fallback_margin():
    engine = KalkiaCalculationEngine(hourly_rate=360)
    item = engine.calculate_item(make_node(), make_variant(), [], [], 1)

    assert item.labor_cost == pytest.approx(60.0)
    assert item.total_cost == pytest.approx(60.0)
    assert item.sale_price == calculate_sale_price(60.0, settings.KALKIA_FALLBACK_MARGIN)
    assert item.description == "Stikkontakt - Betonvæg"


def test_item_sale_price_from_node_and_variant():
    engine = KalkiaCalculationEngine()
    item = engine.calculate_item(
        make_node(default_sale_price=200.0), make_variant(price_multiplier=1.5), [], [], 2
    )
    assert item.total_sale == pytest.approx(600.0)


def test_final_pricing():
    engine = KalkiaCalculationEngine(hourly_rate=500)
    item = CalculatedItem(
        quantity=1,
        description="Tavle",
        base_time_seconds=3600,
        adjusted_time_seconds=3600,
        material_cost=100.0,
        material_waste=5.0,
        labor_cost=500.0,
        total_cost=605.0,
        sale_price=0.0,
        total_sale=0.0,
    )

    result = engine.calculate_final_pricing([item], margin_percentage=25, vat_percentage=25)

    assert result.total_indirect_time_seconds == 540
    assert result.total_personal_time_seconds == 288
    assert result.total_labor_time_seconds == 4428
    assert result.total_labor_cost == pytest.approx(615.0)
    assert result.cost_price == pytest.approx(720.0)
    assert result.overhead_amount == pytest.approx(86.4)
    assert result.sale_price_excl_vat == pytest.approx(1008.0)
    assert result.final_amount == pytest.approx(1260.0)
    assert result.db_amount == pytest.approx(288.0)
    assert result.db_percentage == pytest.approx(28.5714, rel=1e-4)


def test_final_pricing_with_discount_and_no_items():
    engine = KalkiaCalculationEngine()
    result = engine.calculate_final_pricing([], discount_percentage=10)

    assert result.net_price == 0
    assert result.db_percentage == 0.0
    assert result.db_per_hour == 0.0


def test_seconds_to_hours():
    assert seconds_to_hours(5400) == 1.5
