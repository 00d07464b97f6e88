"""
Kalkia calculation engine.

Rolls a list of components up into a priced job: node time adjusted by the
chosen variant, site rules and the building profile; material cost with
waste; labor from the hourly rate; then indirect and personal time,
overhead, risk, margin, discount and VAT on the totals.

The engine only reads attributes from the objects it is given (ORM rows or
anything shaped like them) and never touches the database.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, Field

from .pricing import calculate_sale_price, round_half_up
from ..core.settings import settings


DEFAULT_INDIRECT_TIME_FACTOR = 0.15
DEFAULT_PERSONAL_TIME_FACTOR = 0.08
DEFAULT_OVERHEAD_FACTOR = 0.12
DEFAULT_MATERIAL_WASTE_FACTOR = 0.05
DEFAULT_VAT_PERCENTAGE = 25.0


class CalculationConditions(BaseModel):
    """Site conditions that rules are matched against."""
    height: Optional[float] = None
    quantity: Optional[float] = None
    access: Optional[str] = None
    distance: Optional[float] = None
    custom: Optional[Dict[str, Any]] = None


class SupplierPriceOverride(BaseModel):
    """Live supplier price for one variant material."""
    material_id: UUID
    supplier_product_id: UUID
    supplier_name: Optional[str] = None
    supplier_sku: Optional[str] = None
    base_cost_price: float
    effective_cost_price: float
    effective_sale_price: float
    discount_percentage: float = 0.0
    margin_percentage: float = 0.0
    price_source: str = "standard"
    is_stale: bool = False


class MaterialCostResult(BaseModel):
    material_cost: float
    material_waste: float
    supplier_prices_used: int


class NodeTimeResult(BaseModel):
    base_time_seconds: float
    adjusted_time_seconds: float
    rules_applied: List[str] = Field(default_factory=list)


class CalculatedItem(BaseModel):
    node_id: Optional[UUID] = None
    variant_id: Optional[UUID] = None
    quantity: float
    description: str
    unit: str = "stk"
    section: Optional[str] = None
    base_time_seconds: float
    adjusted_time_seconds: float
    rules_applied: List[str] = Field(default_factory=list)
    material_cost: float
    material_waste: float
    labor_cost: float
    total_cost: float
    sale_price: float
    total_sale: float
    supplier_prices_used: int = 0
    conditions: Dict[str, Any] = Field(default_factory=dict)


class CalculationResult(BaseModel):
    total_direct_time_seconds: float
    total_indirect_time_seconds: float
    total_personal_time_seconds: float
    total_labor_time_seconds: float
    total_labor_hours: float

    total_material_cost: float
    total_material_waste: float
    total_labor_cost: float
    total_other_costs: float
    cost_price: float

    overhead_amount: float
    risk_amount: float
    sales_basis: float
    margin_amount: float
    sale_price_excl_vat: float
    discount_amount: float
    net_price: float
    vat_amount: float
    final_amount: float

    db_amount: float
    db_percentage: float
    db_per_hour: float
    coverage_ratio: float

    factors_used: Dict[str, float]


def _value(obj: Any, attr: str, default: Any = None) -> Any:
    if obj is None:
        return default
    value = obj.get(attr) if isinstance(obj, dict) else getattr(obj, attr, None)
    return default if value is None else value


def get_factor_value(factors: Iterable[Any], key: str, default: float) -> float:
    """Active factor by key; percentage factors are returned as fractions."""
    for factor in factors:
        if _value(factor, "factor_key") == key and _value(factor, "is_active", True):
            if _value(factor, "value_type") == "percentage":
                return _value(factor, "value", 0) / 100
            return _value(factor, "value", 0)
    return default


def _within(value: float, minimum: Optional[float], maximum: Optional[float]) -> bool:
    if minimum is not None and value < minimum:
        return False
    if maximum is not None and value > maximum:
        return False
    return True


def is_condition_met(rule: Any, conditions: CalculationConditions) -> bool:
    """Whether the site conditions trigger a rule. Missing inputs never match."""
    rule_condition = _value(rule, "condition", {}) or {}
    rule_type = _value(rule, "rule_type")

    if rule_type == "height":
        if conditions.height is None:
            return False
        return _within(conditions.height, rule_condition.get("min_height"), rule_condition.get("max_height"))

    if rule_type == "quantity":
        if conditions.quantity is None:
            return False
        return _within(conditions.quantity, rule_condition.get("min_quantity"), rule_condition.get("max_quantity"))

    if rule_type == "access":
        if conditions.access is None:
            return False
        return rule_condition.get("type") == conditions.access

    if rule_type == "distance":
        if conditions.distance is None:
            return False
        return _within(conditions.distance, rule_condition.get("min_distance"), rule_condition.get("max_distance"))

    if rule_type == "custom":
        if conditions.custom is None:
            return False
        return all(conditions.custom.get(key) == value for key, value in rule_condition.items())

    return False


class KalkiaCalculationEngine:
    """
    Calculation context for one job.

    Global factors and building profile multipliers are resolved once at
    construction; every item calculated with the instance uses them.
    """

    def __init__(
        self,
        global_factors: Optional[Iterable[Any]] = None,
        building_profile: Any = None,
        hourly_rate: Optional[float] = None,
        supplier_prices: Optional[Dict[UUID, SupplierPriceOverride]] = None,
    ):
        factors = list(global_factors or [])
        self.hourly_rate = hourly_rate or settings.DEFAULT_HOURLY_RATE
        self.supplier_prices = supplier_prices or {}

        self.indirect_time_factor = get_factor_value(factors, "indirect_time", DEFAULT_INDIRECT_TIME_FACTOR)
        self.personal_time_factor = get_factor_value(factors, "personal_time", DEFAULT_PERSONAL_TIME_FACTOR)
        self.overhead_factor = get_factor_value(factors, "overhead", DEFAULT_OVERHEAD_FACTOR)
        self.material_waste_factor = get_factor_value(factors, "material_waste", DEFAULT_MATERIAL_WASTE_FACTOR)

        self.profile_multipliers = {
            "time": _value(building_profile, "time_multiplier", 1.0),
            "difficulty": _value(building_profile, "difficulty_multiplier", 1.0),
            "waste": _value(building_profile, "material_waste_multiplier", 1.0),
            "overhead": _value(building_profile, "overhead_multiplier", 1.0),
        }

    def calculate_node_time(
        self,
        node: Any,
        variant: Any,
        quantity: float,
        conditions: CalculationConditions,
        rules: Iterable[Any],
    ) -> NodeTimeResult:
        base_time = _value(node, "base_time_seconds", 0)

        if variant is not None:
            base_time = round_half_up(
                base_time * _value(variant, "time_multiplier", 1.0)
                + _value(variant, "extra_time_seconds", 0)
                + _value(variant, "base_time_seconds", 0)
            )

        node_id = _value(node, "id")
        variant_id = _value(variant, "id")

        applicable = [
            rule for rule in rules
            if _value(rule, "is_active", True) and (
                (node_id is not None and _value(rule, "node_id") == node_id)
                or (variant_id is not None and _value(rule, "variant_id") == variant_id)
            )
        ]
        applicable.sort(key=lambda rule: _value(rule, "priority", 0))

        adjusted_time = base_time
        rules_applied = []
        for rule in applicable:
            if is_condition_met(rule, conditions):
                adjusted_time = round_half_up(
                    adjusted_time * _value(rule, "time_multiplier", 1.0)
                    + _value(rule, "extra_time_seconds", 0)
                )
                rules_applied.append(_value(rule, "rule_name", ""))

        adjusted_time = round_half_up(adjusted_time * self.profile_multipliers["time"])

        return NodeTimeResult(
            base_time_seconds=base_time * quantity,
            adjusted_time_seconds=adjusted_time * quantity,
            rules_applied=rules_applied,
        )

    def calculate_material_cost(
        self,
        materials: Iterable[Any],
        quantity: float,
        waste_percentage: float = 0.0,
    ) -> MaterialCostResult:
        """
        Material cost for a quantity of a variant.

        A fresh supplier price for the material wins over the stored cost
        price; the stored sale price is the last resort.
        """
        total_cost = 0.0
        supplier_prices_used = 0

        for material in materials:
            material_quantity = _value(material, "quantity", 0) * quantity
            override = self.supplier_prices.get(_value(material, "id"))

            if override is not None and not override.is_stale:
                price = override.effective_cost_price
                supplier_prices_used += 1
            else:
                price = _value(material, "cost_price", _value(material, "sale_price", 0))

            total_cost += material_quantity * price

        effective_waste = (waste_percentage / 100 + self.material_waste_factor) * self.profile_multipliers["waste"]

        return MaterialCostResult(
            material_cost=total_cost,
            material_waste=total_cost * effective_waste,
            supplier_prices_used=supplier_prices_used,
        )

    def calculate_labor_cost(self, time_seconds: float) -> float:
        return time_seconds / 3600 * self.hourly_rate

    def calculate_item(
        self,
        node: Any,
        variant: Any,
        materials: Iterable[Any],
        rules: Iterable[Any],
        quantity: float,
        conditions: Optional[CalculationConditions] = None,
        section: Optional[str] = None,
    ) -> CalculatedItem:
        conditions = conditions or CalculationConditions()

        time_result = self.calculate_node_time(node, variant, quantity, conditions, rules)
        material_result = self.calculate_material_cost(
            materials,
            quantity,
            _value(variant, "waste_percentage", 0.0),
        )
        labor_cost = self.calculate_labor_cost(time_result.adjusted_time_seconds)
        total_cost = material_result.material_cost + material_result.material_waste + labor_cost

        sale_price = _value(node, "default_sale_price", 0.0) * quantity
        if variant is not None:
            sale_price *= _value(variant, "price_multiplier", 1.0)
        if sale_price == 0:
            sale_price = calculate_sale_price(total_cost, settings.KALKIA_FALLBACK_MARGIN)

        name = _value(node, "name", "")
        description = f"{name} - {_value(variant, 'name')}" if variant is not None else name

        return CalculatedItem(
            node_id=_value(node, "id"),
            variant_id=_value(variant, "id"),
            quantity=quantity,
            description=description,
            section=section,
            base_time_seconds=time_result.base_time_seconds,
            adjusted_time_seconds=time_result.adjusted_time_seconds,
            rules_applied=time_result.rules_applied,
            material_cost=material_result.material_cost,
            material_waste=material_result.material_waste,
            labor_cost=labor_cost,
            total_cost=total_cost,
            sale_price=sale_price,
            total_sale=sale_price,
            supplier_prices_used=material_result.supplier_prices_used,
            conditions=conditions.model_dump(exclude_none=True),
        )

    def calculate_final_pricing(
        self,
        items: List[CalculatedItem],
        margin_percentage: float = 0.0,
        discount_percentage: float = 0.0,
        vat_percentage: float = DEFAULT_VAT_PERCENTAGE,
        risk_percentage: float = 0.0,
    ) -> CalculationResult:
        direct_time = sum(item.adjusted_time_seconds for item in items)
        material_cost = sum(item.material_cost for item in items)
        material_waste = sum(item.material_waste for item in items)

        indirect_time = round_half_up(direct_time * self.indirect_time_factor)
        personal_time = round_half_up(direct_time * self.personal_time_factor)
        labor_time = direct_time + indirect_time + personal_time
        labor_hours = labor_time / 3600
        labor_cost = labor_hours * self.hourly_rate

        other_costs = 0.0
        cost_price = material_cost + material_waste + labor_cost + other_costs

        effective_overhead_factor = self.overhead_factor * self.profile_multipliers["overhead"]
        overhead_amount = cost_price * effective_overhead_factor
        risk_amount = cost_price * (risk_percentage / 100)
        sales_basis = cost_price + overhead_amount + risk_amount

        margin_amount = sales_basis * (margin_percentage / 100)
        sale_price_excl_vat = sales_basis + margin_amount

        discount_amount = sale_price_excl_vat * (discount_percentage / 100)
        net_price = sale_price_excl_vat - discount_amount

        vat_amount = net_price * (vat_percentage / 100)
        final_amount = net_price + vat_amount

        db_amount = net_price - cost_price
        db_percentage = db_amount / net_price * 100 if net_price > 0 else 0.0
        db_per_hour = db_amount / labor_hours if labor_hours > 0 else 0.0

        return CalculationResult(
            total_direct_time_seconds=direct_time,
            total_indirect_time_seconds=indirect_time,
            total_personal_time_seconds=personal_time,
            total_labor_time_seconds=labor_time,
            total_labor_hours=labor_hours,
            total_material_cost=material_cost,
            total_material_waste=material_waste,
            total_labor_cost=labor_cost,
            total_other_costs=other_costs,
            cost_price=cost_price,
            overhead_amount=overhead_amount,
            risk_amount=risk_amount,
            sales_basis=sales_basis,
            margin_amount=margin_amount,
            sale_price_excl_vat=sale_price_excl_vat,
            discount_amount=discount_amount,
            net_price=net_price,
            vat_amount=vat_amount,
            final_amount=final_amount,
            db_amount=db_amount,
            db_percentage=db_percentage,
            db_per_hour=db_per_hour,
            coverage_ratio=db_percentage,
            factors_used={
                "indirect_time_factor": self.indirect_time_factor,
                "personal_time_factor": self.personal_time_factor,
                "overhead_factor": effective_overhead_factor,
                "material_waste_factor": self.material_waste_factor,
            },
        )


def seconds_to_hours(seconds: float) -> float:
    return round_half_up(seconds / 3600, 2)


def calculate_db_metrics(net_price: float, cost_price: float, labor_hours: float) -> Tuple[float, float, float]:
    """DB amount, DB percentage and DB per labor hour."""
    db_amount = net_price - cost_price
    db_percentage = db_amount / net_price * 100 if net_price > 0 else 0.0
    db_per_hour = db_amount / labor_hours if labor_hours > 0 else 0.0
    return db_amount, db_percentage, db_per_hour
