"""
Kalkia persistence and orchestration.

Loads catalog data for the calculation engine, saves calculations with their
rows and turns a calculation into an offer.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload

from .kalkia_engine import (
    CalculatedItem,
    CalculationConditions,
    CalculationResult,
    KalkiaCalculationEngine,
)
from .offers import (
    default_valid_until,
    generate_offer_number,
    lines_from_calculation,
    log_offer_activity,
    recalculate_offer_totals,
)
from .supplier_pricing import load_supplier_prices_for_variant
from ..core.errors import NotFoundError, ValidationError
from ..core.logging import get_logger
from ..core.settings import settings
from ..db.kalkia_models import (
    CalculationStatus,
    KalkiaBuildingProfile,
    KalkiaCalculation,
    KalkiaCalculationRow,
    KalkiaGlobalFactor,
    KalkiaNode,
    KalkiaRule,
    KalkiaVariant,
)
from ..db.offer_models import Offer

logger = get_logger(__name__)


class CalculationItemInput(BaseModel):
    node_id: UUID
    variant_id: Optional[UUID] = None
    quantity: float = Field(default=1.0, gt=0)
    section: Optional[str] = None
    conditions: CalculationConditions = Field(default_factory=CalculationConditions)


class CalculationPricing(BaseModel):
    hourly_rate: Optional[float] = None
    margin_percentage: float = 0.0
    discount_percentage: float = 0.0
    vat_percentage: float = 25.0
    risk_percentage: float = 0.0


# Node tree

def build_node_path(parent: Optional[KalkiaNode], code: str) -> str:
    return f"{parent.path}.{code}" if parent is not None else code


def get_node(db: Session, node_id: UUID) -> KalkiaNode:
    node = db.query(KalkiaNode).filter(KalkiaNode.id == node_id).first()
    if not node:
        raise NotFoundError("Node", node_id)
    return node


def create_node(db: Session, data: Dict[str, Any]) -> KalkiaNode:
    """New node; path and depth follow from the parent."""
    parent = get_node(db, data["parent_id"]) if data.get("parent_id") else None
    node = KalkiaNode(**data)
    node.path = build_node_path(parent, data["code"])
    node.depth = parent.depth + 1 if parent is not None else 0
    db.add(node)
    return node


def update_node(db: Session, node: KalkiaNode, data: Dict[str, Any]) -> KalkiaNode:
    for field, value in data.items():
        setattr(node, field, value)

    if "code" in data or "parent_id" in data:
        if node.parent_id is not None and node.parent_id == node.id:
            raise ValidationError("A node cannot be its own parent")
        parent = get_node(db, node.parent_id) if node.parent_id else None
        node.path = build_node_path(parent, node.code)
        node.depth = parent.depth + 1 if parent is not None else 0
    return node


def _node_dict(node: KalkiaNode) -> Dict[str, Any]:
    return {
        "id": str(node.id),
        "parent_id": str(node.parent_id) if node.parent_id else None,
        "code": node.code,
        "name": node.name,
        "path": node.path,
        "depth": node.depth,
        "node_type": node.node_type,
        "base_time_seconds": node.base_time_seconds,
        "default_cost_price": node.default_cost_price,
        "default_sale_price": node.default_sale_price,
        "difficulty_level": node.difficulty_level,
        "is_active": node.is_active,
        "sort_order": node.sort_order,
    }


def get_node_tree(db: Session, include_inactive: bool = False) -> List[Dict[str, Any]]:
    """Nested node tree built from a single query."""
    query = db.query(KalkiaNode)
    if not include_inactive:
        query = query.filter(KalkiaNode.is_active.is_(True))
    nodes = query.order_by(KalkiaNode.depth, KalkiaNode.sort_order, KalkiaNode.name).all()

    by_id = {node.id: {**_node_dict(node), "children": []} for node in nodes}
    roots = []
    for node in nodes:
        entry = by_id[node.id]
        parent = by_id.get(node.parent_id)
        if parent is not None:
            parent["children"].append(entry)
        else:
            roots.append(entry)
    return roots


def choose_variant(node: KalkiaNode, variant_id: Optional[UUID] = None) -> Optional[KalkiaVariant]:
    """Requested variant, else the default one, else the first."""
    if not node.variants:
        return None
    if variant_id is not None:
        for variant in node.variants:
            if variant.id == variant_id:
                return variant
        raise NotFoundError("Variant", variant_id)
    for variant in node.variants:
        if variant.is_default:
            return variant
    return node.variants[0]


# Calculation

def build_engine(
    db: Session,
    building_profile_id: Optional[UUID] = None,
    hourly_rate: Optional[float] = None,
    supplier_prices: Optional[Dict] = None,
) -> KalkiaCalculationEngine:
    factors = db.query(KalkiaGlobalFactor).filter(KalkiaGlobalFactor.is_active.is_(True)).all()
    profile = None
    if building_profile_id:
        profile = db.query(KalkiaBuildingProfile).filter(KalkiaBuildingProfile.id == building_profile_id).first()
        if not profile:
            raise NotFoundError("Building profile", building_profile_id)
    return KalkiaCalculationEngine(factors, profile, hourly_rate, supplier_prices)


def calculate_from_nodes(
    db: Session,
    items: List[CalculationItemInput],
    building_profile_id: Optional[UUID] = None,
    customer_id: Optional[UUID] = None,
    pricing: Optional[CalculationPricing] = None,
):
    """
    Price a list of catalog nodes.

    Returns the calculated items and the final pricing. Materials linked to
    supplier products are priced from the catalog for the given customer.
    """
    if not items:
        raise ValidationError("At least one item is required")
    pricing = pricing or CalculationPricing()

    resolved = []
    supplier_prices = {}
    for item in items:
        node = (
            db.query(KalkiaNode)
            .options(joinedload(KalkiaNode.variants).joinedload(KalkiaVariant.materials))
            .filter(KalkiaNode.id == item.node_id)
            .first()
        )
        if not node:
            raise NotFoundError("Node", item.node_id)
        variant = choose_variant(node, item.variant_id)
        if variant is not None:
            supplier_prices.update(load_supplier_prices_for_variant(db, variant, customer_id))
        resolved.append((item, node, variant))

    engine = build_engine(db, building_profile_id, pricing.hourly_rate, supplier_prices)

    calculated = []
    for item, node, variant in resolved:
        rule_filter = KalkiaRule.node_id == node.id
        if variant is not None:
            rule_filter = rule_filter | (KalkiaRule.variant_id == variant.id)
        rules = db.query(KalkiaRule).filter(rule_filter, KalkiaRule.is_active.is_(True)).all()

        calculated.append(engine.calculate_item(
            node,
            variant,
            variant.materials if variant is not None else [],
            rules,
            item.quantity,
            item.conditions,
            item.section,
        ))

    result = engine.calculate_final_pricing(
        calculated,
        pricing.margin_percentage,
        pricing.discount_percentage,
        pricing.vat_percentage,
        pricing.risk_percentage,
    )
    return calculated, result, engine


def _profile_snapshot(db: Session, building_profile_id: Optional[UUID]) -> Dict[str, Any]:
    if not building_profile_id:
        return {}
    profile = db.query(KalkiaBuildingProfile).filter(KalkiaBuildingProfile.id == building_profile_id).first()
    if not profile:
        return {}
    return {
        "code": profile.code,
        "name": profile.name,
        "time_multiplier": profile.time_multiplier,
        "difficulty_multiplier": profile.difficulty_multiplier,
        "material_waste_multiplier": profile.material_waste_multiplier,
        "overhead_multiplier": profile.overhead_multiplier,
    }


def apply_result(calculation: KalkiaCalculation, result: CalculationResult) -> KalkiaCalculation:
    for field in (
        "total_direct_time_seconds",
        "total_indirect_time_seconds",
        "total_personal_time_seconds",
        "total_labor_time_seconds",
    ):
        setattr(calculation, field, int(getattr(result, field)))
    for field in (
        "total_material_cost",
        "total_material_waste",
        "total_labor_cost",
        "total_other_costs",
        "cost_price",
        "overhead_amount",
        "risk_amount",
        "sales_basis",
        "margin_amount",
        "sale_price_excl_vat",
        "discount_amount",
        "net_price",
        "vat_amount",
        "final_amount",
        "db_amount",
        "db_percentage",
        "db_per_hour",
        "coverage_ratio",
    ):
        setattr(calculation, field, getattr(result, field))
    calculation.overhead_percentage = result.factors_used["overhead_factor"] * 100
    calculation.factors_snapshot = result.factors_used
    return calculation


def build_rows(items: List[CalculatedItem]) -> List[KalkiaCalculationRow]:
    return [
        KalkiaCalculationRow(
            node_id=item.node_id,
            variant_id=item.variant_id,
            position=position,
            section=item.section,
            description=item.description,
            quantity=item.quantity,
            unit=item.unit,
            base_time_seconds=int(item.base_time_seconds),
            adjusted_time_seconds=int(item.adjusted_time_seconds),
            material_cost=item.material_cost,
            material_waste=item.material_waste,
            labor_cost=item.labor_cost,
            total_cost=item.total_cost,
            sale_price=item.sale_price,
            total_sale=item.total_sale,
            rules_applied=item.rules_applied,
            conditions=item.conditions,
        )
        for position, item in enumerate(items, start=1)
    ]


def save_calculation(
    db: Session,
    name: str,
    items: List[CalculationItemInput],
    description: Optional[str] = None,
    customer_id: Optional[UUID] = None,
    building_profile_id: Optional[UUID] = None,
    pricing: Optional[CalculationPricing] = None,
    is_template: bool = False,
    user_id: Optional[UUID] = None,
) -> KalkiaCalculation:
    pricing = pricing or CalculationPricing()
    calculated, result, engine = calculate_from_nodes(db, items, building_profile_id, customer_id, pricing)

    calculation = KalkiaCalculation(
        name=name,
        description=description,
        customer_id=customer_id,
        building_profile_id=building_profile_id,
        hourly_rate=engine.hourly_rate,
        margin_percentage=pricing.margin_percentage,
        discount_percentage=pricing.discount_percentage,
        vat_percentage=pricing.vat_percentage,
        risk_percentage=pricing.risk_percentage,
        building_profile_snapshot=_profile_snapshot(db, building_profile_id),
        is_template=is_template,
        created_by=user_id,
    )
    apply_result(calculation, result)
    calculation.rows = build_rows(calculated)
    db.add(calculation)

    logger.info("Kalkia calculation saved", name=name, rows=len(calculated), final_amount=result.final_amount)
    return calculation


def recalculate_calculation(
    db: Session,
    calculation: KalkiaCalculation,
    items: List[CalculationItemInput],
    pricing: Optional[CalculationPricing] = None,
) -> KalkiaCalculation:
    """Replace the rows and totals of a saved calculation."""
    pricing = pricing or CalculationPricing(
        hourly_rate=calculation.hourly_rate,
        margin_percentage=calculation.margin_percentage,
        discount_percentage=calculation.discount_percentage,
        vat_percentage=calculation.vat_percentage,
        risk_percentage=calculation.risk_percentage,
    )
    calculated, result, engine = calculate_from_nodes(
        db, items, calculation.building_profile_id, calculation.customer_id, pricing
    )

    calculation.hourly_rate = engine.hourly_rate
    calculation.margin_percentage = pricing.margin_percentage
    calculation.discount_percentage = pricing.discount_percentage
    calculation.vat_percentage = pricing.vat_percentage
    calculation.risk_percentage = pricing.risk_percentage
    apply_result(calculation, result)
    calculation.rows = build_rows(calculated)
    return calculation


def clone_as_template(
    db: Session, calculation: KalkiaCalculation, name: Optional[str] = None, user_id: Optional[UUID] = None
) -> KalkiaCalculation:
    """Copy a calculation, rows included, as a reusable template."""
    excluded = {"id", "name", "status", "is_template", "offer_id", "customer_id", "created_by", "created_at", "updated_at"}
    values = {
        column.key: getattr(calculation, column.key)
        for column in KalkiaCalculation.__table__.columns
        if column.key not in excluded
    }
    template = KalkiaCalculation(
        **values,
        name=name or f"{calculation.name} (skabelon)",
        status=CalculationStatus.DRAFT.value,
        is_template=True,
        created_by=user_id,
    )

    row_excluded = {"id", "calculation_id"}
    template.rows = [
        KalkiaCalculationRow(**{
            column.key: getattr(row, column.key)
            for column in KalkiaCalculationRow.__table__.columns
            if column.key not in row_excluded
        })
        for row in calculation.rows
    ]
    db.add(template)
    return template


def create_offer_from_calculation(
    db: Session,
    calculation: KalkiaCalculation,
    title: Optional[str] = None,
    customer_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
) -> Offer:
    """
    New draft offer carrying the calculation's price.

    One line per visible row. Unit prices are scaled so the lines add up to
    the calculation's price before discount; the calculation discount becomes
    the offer discount.
    """
    if calculation.status == CalculationStatus.CONVERTED.value and calculation.offer_id:
        raise ValidationError("Calculation has already been converted to an offer")

    offer = Offer(
        offer_number=generate_offer_number(db),
        title=title or calculation.name,
        description=calculation.description,
        customer_id=customer_id or calculation.customer_id,
        discount_percentage=calculation.discount_percentage or 0.0,
        tax_percentage=calculation.vat_percentage if calculation.vat_percentage is not None else 25.0,
        currency=settings.DEFAULT_CURRENCY,
        valid_until=default_valid_until(),
        created_by=user_id,
    )
    offer.line_items = lines_from_calculation(
        calculation,
        start_position=1,
        scale_to_total=calculation.sale_price_excl_vat or None,
    )
    recalculate_offer_totals(offer)
    db.add(offer)
    db.flush()

    log_offer_activity(
        db,
        offer,
        "created",
        f'Tilbud oprettet fra kalkulation "{calculation.name}"',
        user_id,
        {"calculation_id": str(calculation.id)},
    )

    calculation.status = CalculationStatus.CONVERTED.value
    calculation.offer_id = offer.id

    logger.info("Offer created from calculation", offer_number=offer.offer_number, calculation_id=str(calculation.id))
    return offer


def import_calculation_to_offer(
    db: Session,
    offer: Offer,
    calculation: KalkiaCalculation,
    include_hidden_rows: bool = False,
    include_cost_prices: bool = True,
    user_id: Optional[UUID] = None,
) -> int:
    """Append the calculation's rows to an existing offer; returns the number of lines added."""
    start = max((item.position for item in offer.line_items), default=0) + 1
    items = lines_from_calculation(calculation, start, include_hidden_rows, include_cost_prices)
    for item in items:
        offer.line_items.append(item)
    recalculate_offer_totals(offer)

    log_offer_activity(
        db,
        offer,
        "calculation_imported",
        f'Kalkulation "{calculation.name}" importeret ({len(items)} linjer)',
        user_id,
        {"calculation_id": str(calculation.id), "lines": len(items)},
    )
    return len(items)
