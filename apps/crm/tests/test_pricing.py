"""
Tests for sale price, DB and traffic light rules.
"""

import pytest

from ..core.settings import settings
from ..services.pricing import (
    DBThresholds,
    calculate_db_percentage,
    calculate_line,
    calculate_line_total,
    calculate_margin_from_prices,
    calculate_sale_price,
    compute_offer_db,
    get_db_level,
    get_line_item_margin,
    get_traffic_light,
    is_db_below_send_threshold,
    resolve_margin,
    round_half_up,
    round_money,
)


def test_round_half_up_rounds_halves_away_from_even():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_money(0.125) == 0.13


class TestSalePrice:
    def test_margin_on_cost(self):
        assert calculate_sale_price(100, 25) == 125.0

    def test_fixed_markup_added_after_margin(self):
        assert calculate_sale_price(100, 25, fixed_markup=10) == 135.0

    def test_round_to_rounds_up(self):
        assert calculate_sale_price(100, 21, round_to=10) == 130.0

    def test_round_to_keeps_exact_multiple(self):
        assert calculate_sale_price(100, 25, round_to=5) == 125.0

    def test_customer_discount_reduces_cost_first(self):
        assert calculate_sale_price(100, 25, customer_discount=10) == 112.5


def test_line_total_with_discount():
    assert calculate_line_total(4, 50, 10) == pytest.approx(180.0)


def test_db_percentage():
    assert calculate_db_percentage(60, 100) == 40
    assert calculate_db_percentage(50, 0) == 0
    assert calculate_db_percentage(120, 100) == -20


def test_margin_from_prices():
    assert calculate_margin_from_prices(100, 125) == 25
    assert calculate_margin_from_prices(0, 125) is None


def test_offer_db_falls_back_to_frozen_supplier_cost():
    summary = compute_offer_db([
        {"quantity": 2, "cost_price": 50, "total": 200},
        {"quantity": 1, "cost_price": None, "supplier_cost_price_at_creation": 30, "total": 50},
    ])

    assert summary.total_cost == 130
    assert summary.total_sale == 250
    assert summary.db_amount == 120
    assert summary.db_percentage == 48
    assert summary.has_any_cost is True


def test_offer_db_without_costs():
    summary = compute_offer_db([{"quantity": 1, "total": 100}])
    assert summary.has_any_cost is False
    assert summary.db_percentage == 100


def test_line_item_margin_prefers_recorded_supplier_margin():
    assert get_line_item_margin({"supplier_margin_applied": 30, "cost_price": 100, "unit_price": 200}) == 30
    assert get_line_item_margin({"cost_price": 100, "unit_price": 150}) == 50
    assert get_line_item_margin({"unit_price": 150}) is None


class TestTrafficLight:
    thresholds = DBThresholds(green=35, yellow=20, red=10)

    def test_levels(self):
        assert get_db_level(35, self.thresholds) == "green"
        assert get_db_level(34.9, self.thresholds) == "yellow"
        assert get_db_level(20, self.thresholds) == "yellow"
        assert get_db_level(19, self.thresholds) == "red"

    def test_send_threshold(self):
        assert is_db_below_send_threshold(9.9, self.thresholds) is True
        assert is_db_below_send_threshold(10, self.thresholds) is False

    def test_red_but_sendable(self):
        light = get_traffic_light(15, self.thresholds)
        assert light.level == "red"
        assert light.label == "Lavt"
        assert light.can_send is True

    def test_defaults_come_from_settings(self):
        assert DBThresholds.from_settings().green == settings.DB_THRESHOLD_GREEN


def test_calculate_line():
    line = calculate_line(100, 25, 2, DBThresholds())

    assert line.sale_price == 125.0
    assert line.total == 250.0
    assert line.db_amount == 50.0
    assert line.db_percentage == 20
    assert line.traffic_light == "yellow"


def test_resolve_margin_order():
    assert resolve_margin(0, 30) == 0
    assert resolve_margin(-1, 30) == 30
    assert resolve_margin(None, None, "materials") == settings.MATERIAL_MARGIN
    assert resolve_margin(None, None) == settings.PRODUCT_MARGIN
