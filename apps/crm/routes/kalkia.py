"""
Kalkia routes: component catalog, building profiles, global factors, rules,
calculations and conversion to offers.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from ..core.auth import get_current_user
from ..core.database import get_db
from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..core.logging import get_logger
from ..core.pagination import PaginationParams, page_meta, paginate_with_total
from ..db.kalkia_models import (
    CalculationStatus,
    FactorValueType,
    KalkiaBuildingProfile,
    KalkiaCalculation,
    KalkiaGlobalFactor,
    KalkiaNode,
    KalkiaRule,
    KalkiaVariant,
    KalkiaVariantMaterial,
    NodeType,
    RuleType,
)
from ..db.models import User
from ..services.kalkia import (
    CalculationItemInput,
    CalculationPricing,
    calculate_from_nodes,
    clone_as_template,
    create_node,
    create_offer_from_calculation,
    get_node,
    get_node_tree,
    recalculate_calculation,
    save_calculation,
    update_node,
)
from ..services.kalkia_engine import seconds_to_hours
from ..services.supplier_pricing import load_supplier_prices_for_variant

logger = get_logger(__name__)
router = APIRouter()


# Schemas

class NodeCreate(BaseModel):
    parent_id: Optional[UUID] = None
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    node_type: NodeType = NodeType.OPERATION
    base_time_seconds: int = Field(0, ge=0)
    category: Optional[str] = None
    default_cost_price: float = Field(0.0, ge=0)
    default_sale_price: float = Field(0.0, ge=0)
    difficulty_level: int = Field(1, ge=1, le=5)
    requires_certification: bool = False
    is_active: bool = True
    sort_order: int = 0
    notes: Optional[str] = None


class NodeUpdate(BaseModel):
    parent_id: Optional[UUID] = None
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    node_type: Optional[NodeType] = None
    base_time_seconds: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    default_cost_price: Optional[float] = Field(None, ge=0)
    default_sale_price: Optional[float] = Field(None, ge=0)
    difficulty_level: Optional[int] = Field(None, ge=1, le=5)
    requires_certification: Optional[bool] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None
    notes: Optional[str] = None


class MaterialCreate(BaseModel):
    material_name: str = Field(..., min_length=1, max_length=300)
    quantity: float = Field(1.0, gt=0)
    unit: str = "stk"
    cost_price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    supplier_product_id: Optional[UUID] = None
    auto_update_price: bool = False
    is_optional: bool = False
    sort_order: int = 0


class VariantCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    base_time_seconds: int = Field(0, ge=0)
    time_multiplier: float = Field(1.0, gt=0)
    extra_time_seconds: int = Field(0, ge=0)
    price_multiplier: float = Field(1.0, gt=0)
    cost_multiplier: float = Field(1.0, gt=0)
    waste_percentage: float = Field(0.0, ge=0, le=100)
    is_default: bool = False
    sort_order: int = 0
    materials: List[MaterialCreate] = Field(default_factory=list)


class VariantUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    base_time_seconds: Optional[int] = Field(None, ge=0)
    time_multiplier: Optional[float] = Field(None, gt=0)
    extra_time_seconds: Optional[int] = Field(None, ge=0)
    price_multiplier: Optional[float] = Field(None, gt=0)
    cost_multiplier: Optional[float] = Field(None, gt=0)
    waste_percentage: Optional[float] = Field(None, ge=0, le=100)
    is_default: Optional[bool] = None
    sort_order: Optional[int] = None


class BuildingProfileCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    time_multiplier: float = Field(1.0, gt=0)
    difficulty_multiplier: float = Field(1.0, gt=0)
    material_waste_multiplier: float = Field(1.0, gt=0)
    overhead_multiplier: float = Field(1.0, gt=0)
    is_active: bool = True
    sort_order: int = 0


class BuildingProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    time_multiplier: Optional[float] = Field(None, gt=0)
    difficulty_multiplier: Optional[float] = Field(None, gt=0)
    material_waste_multiplier: Optional[float] = Field(None, gt=0)
    overhead_multiplier: Optional[float] = Field(None, gt=0)
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class GlobalFactorCreate(BaseModel):
    factor_key: str = Field(..., min_length=1, max_length=100)
    factor_name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    value_type: FactorValueType = FactorValueType.PERCENTAGE
    value: float
    category: str = "time"
    is_active: bool = True


class GlobalFactorUpdate(BaseModel):
    factor_name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    value_type: Optional[FactorValueType] = None
    value: Optional[float] = None
    category: Optional[str] = None
    is_active: Optional[bool] = None


class RuleCreate(BaseModel):
    node_id: Optional[UUID] = None
    variant_id: Optional[UUID] = None
    rule_name: str = Field(..., min_length=1, max_length=200)
    rule_type: RuleType
    condition: Dict[str, Any] = Field(default_factory=dict)
    time_multiplier: float = Field(1.0, gt=0)
    extra_time_seconds: int = Field(0, ge=0)
    cost_multiplier: float = Field(1.0, gt=0)
    priority: int = 0
    is_active: bool = True


class CalculateRequest(CalculationPricing):
    items: List[CalculationItemInput] = Field(..., min_length=1)
    building_profile_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None


class CalculationSave(CalculateRequest):
    name: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    is_template: bool = False


class CalculationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    status: Optional[CalculationStatus] = None
    items: Optional[List[CalculationItemInput]] = None
    pricing: Optional[CalculationPricing] = None


class TemplateClone(BaseModel):
    name: Optional[str] = None


class OfferFromCalculation(BaseModel):
    title: Optional[str] = None
    customer_id: Optional[UUID] = None


# Serializers

def _enum_values(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: getattr(value, "value", value) for key, value in data.items()}


def material_to_dict(material: KalkiaVariantMaterial) -> Dict[str, Any]:
    return {
        "id": str(material.id),
        "material_name": material.material_name,
        "quantity": material.quantity,
        "unit": material.unit,
        "cost_price": material.cost_price,
        "sale_price": material.sale_price,
        "supplier_product_id": str(material.supplier_product_id) if material.supplier_product_id else None,
        "auto_update_price": material.auto_update_price,
        "is_optional": material.is_optional,
    }


def variant_to_dict(variant: KalkiaVariant) -> Dict[str, Any]:
    return {
        "id": str(variant.id),
        "node_id": str(variant.node_id),
        "code": variant.code,
        "name": variant.name,
        "description": variant.description,
        "base_time_seconds": variant.base_time_seconds,
        "time_multiplier": variant.time_multiplier,
        "extra_time_seconds": variant.extra_time_seconds,
        "price_multiplier": variant.price_multiplier,
        "cost_multiplier": variant.cost_multiplier,
        "waste_percentage": variant.waste_percentage,
        "is_default": variant.is_default,
        "materials": [material_to_dict(material) for material in variant.materials],
    }


def node_to_dict(node: KalkiaNode, detail: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(node.id),
        "parent_id": str(node.parent_id) if node.parent_id else None,
        "code": node.code,
        "name": node.name,
        "path": node.path,
        "depth": node.depth,
        "node_type": node.node_type,
        "base_time_seconds": node.base_time_seconds,
        "category": node.category,
        "default_cost_price": node.default_cost_price,
        "default_sale_price": node.default_sale_price,
        "difficulty_level": node.difficulty_level,
        "is_active": node.is_active,
        "sort_order": node.sort_order,
    }
    if detail:
        data["description"] = node.description
        data["notes"] = node.notes
        data["variants"] = [variant_to_dict(variant) for variant in node.variants]
        data["rules"] = [rule_to_dict(rule) for rule in node.rules]
    return data


def profile_to_dict(profile: KalkiaBuildingProfile) -> Dict[str, Any]:
    return {
        "id": str(profile.id),
        "code": profile.code,
        "name": profile.name,
        "description": profile.description,
        "time_multiplier": profile.time_multiplier,
        "difficulty_multiplier": profile.difficulty_multiplier,
        "material_waste_multiplier": profile.material_waste_multiplier,
        "overhead_multiplier": profile.overhead_multiplier,
        "is_active": profile.is_active,
    }


def factor_to_dict(factor: KalkiaGlobalFactor) -> Dict[str, Any]:
    return {
        "id": str(factor.id),
        "factor_key": factor.factor_key,
        "factor_name": factor.factor_name,
        "description": factor.description,
        "value_type": factor.value_type,
        "value": factor.value,
        "category": factor.category,
        "is_active": factor.is_active,
    }


def rule_to_dict(rule: KalkiaRule) -> Dict[str, Any]:
    return {
        "id": str(rule.id),
        "node_id": str(rule.node_id) if rule.node_id else None,
        "variant_id": str(rule.variant_id) if rule.variant_id else None,
        "rule_name": rule.rule_name,
        "rule_type": rule.rule_type,
        "condition": rule.condition or {},
        "time_multiplier": rule.time_multiplier,
        "extra_time_seconds": rule.extra_time_seconds,
        "cost_multiplier": rule.cost_multiplier,
        "priority": rule.priority,
        "is_active": rule.is_active,
    }


CALCULATION_TOTALS = (
    "total_direct_time_seconds", "total_indirect_time_seconds", "total_personal_time_seconds",
    "total_labor_time_seconds", "hourly_rate", "total_material_cost", "total_material_waste",
    "total_labor_cost", "total_other_costs", "cost_price", "overhead_percentage", "overhead_amount",
    "risk_percentage", "risk_amount", "sales_basis", "margin_percentage", "margin_amount",
    "sale_price_excl_vat", "discount_percentage", "discount_amount", "net_price", "vat_percentage",
    "vat_amount", "final_amount", "db_amount", "db_percentage", "db_per_hour", "coverage_ratio",
)


def calculation_to_dict(calculation: KalkiaCalculation, detail: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(calculation.id),
        "name": calculation.name,
        "description": calculation.description,
        "customer_id": str(calculation.customer_id) if calculation.customer_id else None,
        "building_profile_id": str(calculation.building_profile_id) if calculation.building_profile_id else None,
        "status": calculation.status,
        "is_template": calculation.is_template,
        "offer_id": str(calculation.offer_id) if calculation.offer_id else None,
        "total_labor_hours": seconds_to_hours(calculation.total_labor_time_seconds or 0),
        "created_at": calculation.created_at.isoformat(),
    }
    data.update({field: getattr(calculation, field) for field in CALCULATION_TOTALS})
    if detail:
        data["factors_snapshot"] = calculation.factors_snapshot or {}
        data["building_profile_snapshot"] = calculation.building_profile_snapshot or {}
        data["rows"] = [
            {
                "id": str(row.id),
                "position": row.position,
                "section": row.section,
                "node_id": str(row.node_id) if row.node_id else None,
                "variant_id": str(row.variant_id) if row.variant_id else None,
                "description": row.description,
                "quantity": row.quantity,
                "unit": row.unit,
                "base_time_seconds": row.base_time_seconds,
                "adjusted_time_seconds": row.adjusted_time_seconds,
                "material_cost": row.material_cost,
                "material_waste": row.material_waste,
                "labor_cost": row.labor_cost,
                "total_cost": row.total_cost,
                "sale_price": row.sale_price,
                "total_sale": row.total_sale,
                "rules_applied": row.rules_applied or [],
                "conditions": row.conditions or {},
                "show_on_offer": row.show_on_offer,
                "is_optional": row.is_optional,
            }
            for row in calculation.rows
        ]
    return data


def _get_or_404(db: Session, model, entity: str, entity_id: UUID):
    obj = db.query(model).filter(model.id == entity_id).first()
    if not obj:
        raise NotFoundError(entity, entity_id)
    return obj


def _clear_other_defaults(db: Session, variant: KalkiaVariant) -> None:
    db.query(KalkiaVariant).filter(
        KalkiaVariant.node_id == variant.node_id,
        KalkiaVariant.id != variant.id,
    ).update({KalkiaVariant.is_default: False}, synchronize_session="fetch")


def _pricing_of(request: CalculationPricing) -> CalculationPricing:
    return CalculationPricing(**request.model_dump(include=set(CalculationPricing.model_fields)))


# Nodes

@router.get("/nodes")
async def list_nodes(
    parent_id: Optional[UUID] = None,
    node_type: Optional[NodeType] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    query = db.query(KalkiaNode)
    if parent_id:
        query = query.filter(KalkiaNode.parent_id == parent_id)
    if node_type:
        query = query.filter(KalkiaNode.node_type == node_type.value)
    if not include_inactive:
        query = query.filter(KalkiaNode.is_active.is_(True))
    return [node_to_dict(node) for node in query.order_by(KalkiaNode.path).all()]


@router.get("/nodes/tree")
async def node_tree(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    return get_node_tree(db, include_inactive)


@router.get("/nodes/search")
async def search_nodes(
    q: str = Query(..., min_length=2),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    term = f"%{q.strip()}%"
    nodes = (
        db.query(KalkiaNode)
        .filter(
            KalkiaNode.is_active.is_(True),
            or_(KalkiaNode.name.ilike(term), KalkiaNode.code.ilike(term), KalkiaNode.description.ilike(term)),
        )
        .order_by(KalkiaNode.path)
        .limit(limit)
        .all()
    )
    return [node_to_dict(node) for node in nodes]


@router.get("/nodes/{node_id}")
async def get_node_detail(
    node_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    return node_to_dict(get_node(db, node_id), detail=True)


@router.post("/nodes", status_code=status.HTTP_201_CREATED)
async def create_node_endpoint(
    node_data: NodeCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    if db.query(KalkiaNode.id).filter(KalkiaNode.code == node_data.code).first():
        raise ConflictError("Node code already exists", {"code": node_data.code})
    node = create_node(db, _enum_values(node_data.model_dump()))
    db.commit()
    db.refresh(node)
    return node_to_dict(node, detail=True)


@router.put("/nodes/{node_id}")
async def update_node_endpoint(
    node_id: UUID,
    node_data: NodeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    node = get_node(db, node_id)
    changes = _enum_values(node_data.model_dump(exclude_unset=True))
    if changes.get("code") and changes["code"] != node.code:
        if db.query(KalkiaNode.id).filter(KalkiaNode.code == changes["code"]).first():
            raise ConflictError("Node code already exists", {"code": changes["code"]})
    update_node(db, node, changes)
    db.commit()
    db.refresh(node)
    return node_to_dict(node, detail=True)


@router.delete("/nodes/{node_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_node(
    node_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    node = get_node(db, node_id)
    if node.children:
        raise ConflictError("Node has child nodes", {"children": len(node.children)})
    db.delete(node)
    db.commit()


# Variants and materials

@router.post("/nodes/{node_id}/variants", status_code=status.HTTP_201_CREATED)
async def create_variant(
    node_id: UUID,
    variant_data: VariantCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    node = get_node(db, node_id)
    values = variant_data.model_dump(exclude={"materials"})
    variant = KalkiaVariant(node_id=node.id, **values)
    variant.materials = [KalkiaVariantMaterial(**material.model_dump()) for material in variant_data.materials]
    db.add(variant)
    db.flush()
    if variant.is_default:
        _clear_other_defaults(db, variant)
    db.commit()
    db.refresh(variant)
    return variant_to_dict(variant)


@router.put("/variants/{variant_id}")
async def update_variant(
    variant_id: UUID,
    variant_data: VariantUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    variant = _get_or_404(db, KalkiaVariant, "Variant", variant_id)
    for field, value in variant_data.model_dump(exclude_unset=True).items():
        setattr(variant, field, value)
    if variant.is_default:
        _clear_other_defaults(db, variant)
    db.commit()
    db.refresh(variant)
    return variant_to_dict(variant)


@router.delete("/variants/{variant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_variant(
    variant_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    variant = _get_or_404(db, KalkiaVariant, "Variant", variant_id)
    db.delete(variant)
    db.commit()


@router.post("/variants/{variant_id}/materials", status_code=status.HTTP_201_CREATED)
async def add_material(
    variant_id: UUID,
    material_data: MaterialCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    _get_or_404(db, KalkiaVariant, "Variant", variant_id)
    material = KalkiaVariantMaterial(variant_id=variant_id, **material_data.model_dump())
    db.add(material)
    db.commit()
    db.refresh(material)
    return material_to_dict(material)


@router.delete("/materials/{material_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_material(
    material_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    material = _get_or_404(db, KalkiaVariantMaterial, "Material", material_id)
    db.delete(material)
    db.commit()


@router.get("/variants/{variant_id}/supplier-prices")
async def variant_supplier_prices(
    variant_id: UUID,
    customer_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    """Live catalog prices for the variant's linked materials."""
    variant = (
        db.query(KalkiaVariant)
        .options(selectinload(KalkiaVariant.materials))
        .filter(KalkiaVariant.id == variant_id)
        .first()
    )
    if not variant:
        raise NotFoundError("Variant", variant_id)
    prices = load_supplier_prices_for_variant(db, variant, customer_id)
    return [price.model_dump(mode="json") for price in prices.values()]


# Building profiles and global factors

@router.get("/building-profiles")
async def list_building_profiles(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    query = db.query(KalkiaBuildingProfile)
    if not include_inactive:
        query = query.filter(KalkiaBuildingProfile.is_active.is_(True))
    profiles = query.order_by(KalkiaBuildingProfile.sort_order, KalkiaBuildingProfile.name).all()
    return [profile_to_dict(profile) for profile in profiles]


@router.post("/building-profiles", status_code=status.HTTP_201_CREATED)
async def create_building_profile(
    profile_data: BuildingProfileCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    if db.query(KalkiaBuildingProfile.id).filter(KalkiaBuildingProfile.code == profile_data.code).first():
        raise ConflictError("Building profile code already exists", {"code": profile_data.code})
    profile = KalkiaBuildingProfile(**profile_data.model_dump())
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile_to_dict(profile)


@router.put("/building-profiles/{profile_id}")
async def update_building_profile(
    profile_id: UUID,
    profile_data: BuildingProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    profile = _get_or_404(db, KalkiaBuildingProfile, "Building profile", profile_id)
    for field, value in profile_data.model_dump(exclude_unset=True).items():
        setattr(profile, field, value)
    db.commit()
    db.refresh(profile)
    return profile_to_dict(profile)


@router.get("/global-factors")
async def list_global_factors(
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    query = db.query(KalkiaGlobalFactor)
    if category:
        query = query.filter(KalkiaGlobalFactor.category == category)
    return [factor_to_dict(factor) for factor in query.order_by(KalkiaGlobalFactor.factor_key).all()]


@router.post("/global-factors", status_code=status.HTTP_201_CREATED)
async def create_global_factor(
    factor_data: GlobalFactorCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    if db.query(KalkiaGlobalFactor.id).filter(KalkiaGlobalFactor.factor_key == factor_data.factor_key).first():
        raise ConflictError("Factor key already exists", {"factor_key": factor_data.factor_key})
    factor = KalkiaGlobalFactor(**_enum_values(factor_data.model_dump()))
    db.add(factor)
    db.commit()
    db.refresh(factor)
    return factor_to_dict(factor)


@router.put("/global-factors/{factor_id}")
async def update_global_factor(
    factor_id: UUID,
    factor_data: GlobalFactorUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    factor = _get_or_404(db, KalkiaGlobalFactor, "Global factor", factor_id)
    for field, value in _enum_values(factor_data.model_dump(exclude_unset=True)).items():
        setattr(factor, field, value)
    db.commit()
    db.refresh(factor)
    return factor_to_dict(factor)


# Rules

@router.get("/rules")
async def list_rules(
    node_id: Optional[UUID] = None,
    variant_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    query = db.query(KalkiaRule)
    if node_id:
        query = query.filter(KalkiaRule.node_id == node_id)
    if variant_id:
        query = query.filter(KalkiaRule.variant_id == variant_id)
    return [rule_to_dict(rule) for rule in query.order_by(KalkiaRule.priority).all()]


@router.post("/rules", status_code=status.HTTP_201_CREATED)
async def create_rule(
    rule_data: RuleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    if rule_data.node_id is None and rule_data.variant_id is None:
        raise ValidationError("A rule needs a node or a variant")
    if rule_data.node_id:
        get_node(db, rule_data.node_id)
    if rule_data.variant_id:
        _get_or_404(db, KalkiaVariant, "Variant", rule_data.variant_id)

    rule = KalkiaRule(**_enum_values(rule_data.model_dump()))
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule_to_dict(rule)


# Calculations

@router.post("/calculate")
async def calculate(
    request: CalculateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """Price a set of components without saving anything."""
    items, result, _ = calculate_from_nodes(
        db, request.items, request.building_profile_id, request.customer_id, _pricing_of(request)
    )
    return {
        "items": [item.model_dump(mode="json") for item in items],
        "result": result.model_dump(),
    }


@router.get("/calculations")
async def list_calculations(
    customer_id: Optional[UUID] = None,
    status: Optional[CalculationStatus] = None,
    is_template: Optional[bool] = None,
    search: Optional[str] = None,
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    query = db.query(KalkiaCalculation)
    if customer_id:
        query = query.filter(KalkiaCalculation.customer_id == customer_id)
    if status:
        query = query.filter(KalkiaCalculation.status == status.value)
    if is_template is not None:
        query = query.filter(KalkiaCalculation.is_template.is_(is_template))
    if search:
        query = query.filter(KalkiaCalculation.name.ilike(f"%{search.strip()}%"))

    calculations, total = paginate_with_total(query.order_by(KalkiaCalculation.created_at.desc()), pagination)
    return {
        "calculations": [calculation_to_dict(calculation) for calculation in calculations],
        **page_meta(total, len(calculations), pagination),
    }


@router.post("/calculations", status_code=status.HTTP_201_CREATED)
async def save_calculation_endpoint(
    request: CalculationSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    calculation = save_calculation(
        db,
        request.name,
        request.items,
        description=request.description,
        customer_id=request.customer_id,
        building_profile_id=request.building_profile_id,
        pricing=_pricing_of(request),
        is_template=request.is_template,
        user_id=current_user.id,
    )
    db.commit()
    db.refresh(calculation)
    return calculation_to_dict(calculation, detail=True)


@router.get("/calculations/{calculation_id}")
async def get_calculation(
    calculation_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    calculation = _get_or_404(db, KalkiaCalculation, "Calculation", calculation_id)
    return calculation_to_dict(calculation, detail=True)


@router.put("/calculations/{calculation_id}")
async def update_calculation(
    calculation_id: UUID,
    update_data: CalculationUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """Rename, change status, or recalculate with new items and pricing."""
    calculation = _get_or_404(db, KalkiaCalculation, "Calculation", calculation_id)

    if update_data.name is not None:
        calculation.name = update_data.name
    if update_data.description is not None:
        calculation.description = update_data.description
    if update_data.status is not None:
        calculation.status = update_data.status.value
    if update_data.items is not None:
        recalculate_calculation(db, calculation, update_data.items, update_data.pricing)

    db.commit()
    db.refresh(calculation)
    return calculation_to_dict(calculation, detail=True)


@router.delete("/calculations/{calculation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_calculation(
    calculation_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    calculation = _get_or_404(db, KalkiaCalculation, "Calculation", calculation_id)
    db.delete(calculation)
    db.commit()


@router.post("/calculations/{calculation_id}/clone-template", status_code=status.HTTP_201_CREATED)
async def clone_calculation_as_template(
    calculation_id: UUID,
    clone_data: TemplateClone,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    calculation = _get_or_404(db, KalkiaCalculation, "Calculation", calculation_id)
    template = clone_as_template(db, calculation, clone_data.name, current_user.id)
    db.commit()
    db.refresh(template)
    return calculation_to_dict(template, detail=True)


@router.post("/calculations/{calculation_id}/create-offer", status_code=status.HTTP_201_CREATED)
async def create_offer_from_calculation_endpoint(
    calculation_id: UUID,
    offer_data: OfferFromCalculation,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    calculation = _get_or_404(db, KalkiaCalculation, "Calculation", calculation_id)
    offer = create_offer_from_calculation(db, calculation, offer_data.title, offer_data.customer_id, current_user.id)
    db.commit()
    return {
        "offer_id": str(offer.id),
        "offer_number": offer.offer_number,
        "total_amount": offer.total_amount,
        "final_amount": offer.final_amount,
        "lines": len(offer.line_items),
    }
