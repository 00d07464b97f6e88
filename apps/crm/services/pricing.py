"""
Pricing rules shared by offers, supplier products and Kalkia.

Sale price from cost and margin, line totals, DB (dækningsbidrag, the
contribution margin) and the traffic light used to decide whether an offer
is profitable enough to send. Everything here is a pure function over
numbers or plain objects; no database access.
"""

import math
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from ..core.settings import settings


class DBThresholds(BaseModel):
    """DB percentage limits: >= green is green, >= yellow is yellow, below is red."""
    green: float = 35.0
    yellow: float = 20.0
    red: float = 10.0

    @classmethod
    def from_settings(cls) -> "DBThresholds":
        return cls(**settings.db_thresholds)


class TrafficLight(BaseModel):
    level: str
    label: str
    can_send: bool


class LineCalculation(BaseModel):
    sale_price: float
    total: float
    db_amount: float
    db_percentage: int
    traffic_light: str


class OfferDBSummary(BaseModel):
    total_cost: float
    total_sale: float
    db_amount: float
    db_percentage: int
    has_any_cost: bool


DB_LABELS = {"green": "Godt", "yellow": "OK", "red": "Lavt"}


def round_half_up(value: float, decimals: int = 0) -> float:
    """Round like a spreadsheet does (0.5 goes up), not banker's rounding."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def round_money(value: float) -> float:
    return round_half_up(value, 2)


def calculate_sale_price(
    cost_price: float,
    margin_percentage: float,
    fixed_markup: float = 0.0,
    round_to: Optional[float] = None,
    customer_discount: float = 0.0,
) -> float:
    """
    Sale price from cost and margin.

    The customer discount reduces the cost before the margin is applied. When
    round_to is given the price is rounded up to the next multiple of it.
    """
    effective_cost = cost_price * (1 - customer_discount / 100)
    price = effective_cost * (1 + margin_percentage / 100) + fixed_markup

    if round_to and round_to > 0:
        # Float noise must not push an exact multiple up one step
        price = math.ceil(round(price / round_to, 9)) * round_to

    return round_money(price)


def calculate_line_total(quantity: float, unit_price: float, discount_percentage: float = 0.0) -> float:
    return quantity * unit_price * (1 - discount_percentage / 100)


def calculate_db_amount(total_cost: float, total_sale: float) -> float:
    return total_sale - total_cost


def calculate_db_percentage(total_cost: float, total_sale: float) -> int:
    """DB as a whole percentage of the sale; 0 when nothing is sold."""
    if total_sale <= 0:
        return 0
    return int(round_half_up((total_sale - total_cost) / total_sale * 100))


def calculate_margin_from_prices(cost_price: float, sale_price: float) -> Optional[int]:
    """Markup on cost as a whole percentage, None without a cost price."""
    if cost_price <= 0:
        return None
    return int(round_half_up((sale_price / cost_price - 1) * 100))


def _get(item: Any, key: str) -> Any:
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)


def compute_offer_db(line_items: Iterable[Any]) -> OfferDBSummary:
    """
    DB summary for a set of offer lines.

    Accepts ORM rows or dicts. The cost per unit is the line's cost price,
    falling back to the supplier cost frozen when the line was created.
    """
    total_cost = 0.0
    total_sale = 0.0
    has_any_cost = False

    for item in line_items:
        quantity = _get(item, "quantity") or 0
        unit_cost = _get(item, "cost_price") or _get(item, "supplier_cost_price_at_creation") or 0
        if unit_cost:
            has_any_cost = True
        total_cost += unit_cost * quantity
        total_sale += _get(item, "total") or 0

    return OfferDBSummary(
        total_cost=round_money(total_cost),
        total_sale=round_money(total_sale),
        db_amount=round_money(calculate_db_amount(total_cost, total_sale)),
        db_percentage=calculate_db_percentage(total_cost, total_sale),
        has_any_cost=has_any_cost,
    )


def get_line_item_margin(item: Any) -> Optional[float]:
    """Margin applied on a line: the recorded supplier margin, else derived from prices."""
    applied = _get(item, "supplier_margin_applied")
    if applied is not None:
        return applied

    cost = _get(item, "cost_price") or _get(item, "supplier_cost_price_at_creation")
    if not cost:
        return None
    return calculate_margin_from_prices(cost, _get(item, "unit_price") or 0)


def get_db_level(percentage: float, thresholds: Optional[DBThresholds] = None) -> str:
    thresholds = thresholds or DBThresholds.from_settings()
    if percentage >= thresholds.green:
        return "green"
    if percentage >= thresholds.yellow:
        return "yellow"
    return "red"


def is_db_below_send_threshold(percentage: float, thresholds: Optional[DBThresholds] = None) -> bool:
    """True when the DB is too low for the offer to be sent."""
    thresholds = thresholds or DBThresholds.from_settings()
    return percentage < thresholds.red


def get_traffic_light(percentage: float, thresholds: Optional[DBThresholds] = None) -> TrafficLight:
    level = get_db_level(percentage, thresholds)
    return TrafficLight(
        level=level,
        label=DB_LABELS[level],
        can_send=not is_db_below_send_threshold(percentage, thresholds),
    )


def calculate_line(
    cost_price: float,
    margin_percentage: float,
    quantity: float,
    thresholds: Optional[DBThresholds] = None,
) -> LineCalculation:
    sale_price = calculate_sale_price(cost_price, margin_percentage)
    total = calculate_line_total(quantity, sale_price)
    total_cost = cost_price * quantity
    db_percentage = calculate_db_percentage(total_cost, total)

    return LineCalculation(
        sale_price=sale_price,
        total=round_money(total),
        db_amount=round_money(calculate_db_amount(total_cost, total)),
        db_percentage=db_percentage,
        traffic_light=get_db_level(db_percentage, thresholds),
    )


def resolve_margin(
    custom_margin: Optional[float] = None,
    product_margin: Optional[float] = None,
    fallback: str = "products",
) -> float:
    """First usable margin of custom, product, then the company default."""
    if custom_margin is not None and custom_margin >= 0:
        return custom_margin
    if product_margin is not None and product_margin >= 0:
        return product_margin
    if fallback == "materials":
        return settings.MATERIAL_MARGIN
    return settings.PRODUCT_MARGIN
