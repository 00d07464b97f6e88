"""
Supplier catalog routes and customer specific pricing agreements.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, validator
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from ..core.auth import get_current_user
from ..core.database import get_db
from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..core.logging import get_logger
from ..core.pagination import PaginationParams, page_meta, paginate_with_total
from ..db.kalkia_models import KalkiaVariantMaterial
from ..db.models import Customer, User
from ..db.supplier_models import (
    CustomerProductPrice,
    CustomerSupplierPrice,
    Supplier,
    SupplierMarginRule,
    SupplierProduct,
    SupplierSettings,
)
from ..services.margin_rules import (
    MarginRuleType,
    get_effective_margin,
    margin_rule_summary,
    set_default_supplier_margin,
    validate_rule_scope,
)
from ..services.price_analytics import get_product_price_history
from ..services.supplier_pricing import (
    get_best_price_for_customer,
    get_customer_effective_price,
    is_price_stale,
    link_material_to_supplier_product,
    search_products,
    sync_material_prices_from_supplier,
    update_product_prices,
)

logger = get_logger(__name__)
router = APIRouter()


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(..., min_length=1, max_length=50)
    website: Optional[str] = None
    is_active: bool = True
    default_margin_percentage: Optional[float] = Field(None, ge=0)
    is_preferred: bool = False

    @validator("code")
    def normalize_code(cls, v):
        return v.strip().upper()


class SupplierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    website: Optional[str] = None
    is_active: Optional[bool] = None
    default_margin_percentage: Optional[float] = Field(None, ge=0)
    is_preferred: Optional[bool] = None


class ProductCreate(BaseModel):
    supplier_sku: str = Field(..., min_length=1, max_length=100)
    supplier_name: str = Field(..., min_length=1, max_length=500)
    manufacturer: Optional[str] = None
    category: Optional[str] = None
    cost_price: Optional[float] = Field(None, ge=0)
    list_price: Optional[float] = Field(None, ge=0)
    margin_percentage: Optional[float] = Field(None, ge=0)
    unit: str = "stk"
    is_available: bool = True


class PriceUpdate(BaseModel):
    cost_price: Optional[float] = Field(None, ge=0)
    list_price: Optional[float] = Field(None, ge=0)
    change_source: str = Field("manual", pattern="^(manual|import|api_sync)$")


class SupplierAgreementUpsert(BaseModel):
    customer_id: UUID
    supplier_id: UUID
    discount_percentage: float = Field(0.0, ge=0, le=100)
    custom_margin_percentage: Optional[float] = Field(None, ge=0)
    price_list_code: Optional[str] = None
    notes: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True


class ProductAgreementUpsert(BaseModel):
    customer_id: UUID
    supplier_product_id: UUID
    custom_cost_price: Optional[float] = Field(None, ge=0)
    custom_list_price: Optional[float] = Field(None, ge=0)
    custom_discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    notes: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True
    source: str = "manual"


class MaterialLink(BaseModel):
    supplier_product_id: UUID
    auto_update_price: bool = False


class MarginRuleCreate(BaseModel):
    rule_type: MarginRuleType
    category: Optional[str] = None
    sub_category: Optional[str] = None
    supplier_product_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None
    margin_percentage: float = Field(..., ge=0)
    min_margin_percentage: Optional[float] = Field(None, ge=0)
    max_margin_percentage: Optional[float] = Field(None, ge=0)
    fixed_markup: float = Field(0.0, ge=0)
    round_to: Optional[float] = Field(None, gt=0)
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    priority: int = 0
    notes: Optional[str] = None


class MarginRuleUpdate(BaseModel):
    margin_percentage: Optional[float] = Field(None, ge=0)
    min_margin_percentage: Optional[float] = Field(None, ge=0)
    max_margin_percentage: Optional[float] = Field(None, ge=0)
    fixed_markup: Optional[float] = Field(None, ge=0)
    round_to: Optional[float] = Field(None, gt=0)
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None
    notes: Optional[str] = None

    @validator("margin_percentage", "fixed_markup", "is_active", "priority")
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class DefaultMargin(BaseModel):
    margin_percentage: float = Field(..., ge=0)
    fixed_markup: float = Field(0.0, ge=0)
    round_to: Optional[float] = Field(None, gt=0)


def supplier_to_dict(supplier: Supplier) -> Dict[str, Any]:
    supplier_settings = supplier.settings
    return {
        "id": str(supplier.id),
        "name": supplier.name,
        "code": supplier.code,
        "website": supplier.website,
        "is_active": supplier.is_active,
        "default_margin_percentage": supplier_settings.default_margin_percentage if supplier_settings else None,
        "is_preferred": bool(supplier_settings and supplier_settings.is_preferred),
    }


def product_to_dict(product: SupplierProduct) -> Dict[str, Any]:
    return {
        "id": str(product.id),
        "supplier_id": str(product.supplier_id),
        "supplier_sku": product.supplier_sku,
        "supplier_name": product.supplier_name,
        "manufacturer": product.manufacturer,
        "category": product.category,
        "cost_price": product.cost_price,
        "list_price": product.list_price,
        "margin_percentage": product.margin_percentage,
        "unit": product.unit,
        "is_available": product.is_available,
        "last_synced_at": product.last_synced_at.isoformat() if product.last_synced_at else None,
        "is_stale": is_price_stale(product.last_synced_at),
    }


def _agreement_dict(agreement, fields) -> Dict[str, Any]:
    data = {"id": str(agreement.id), "customer_id": str(agreement.customer_id), "is_active": agreement.is_active}
    for field in fields:
        value = getattr(agreement, field)
        data[field] = str(value) if isinstance(value, UUID) else value.isoformat() if isinstance(value, date) else value
    return data


SUPPLIER_AGREEMENT_FIELDS = (
    "supplier_id", "discount_percentage", "custom_margin_percentage",
    "price_list_code", "notes", "valid_from", "valid_to",
)
PRODUCT_AGREEMENT_FIELDS = (
    "supplier_product_id", "custom_cost_price", "custom_list_price",
    "custom_discount_percentage", "notes", "valid_from", "valid_to", "source",
)


MARGIN_RULE_FIELDS = (
    "supplier_id", "rule_type", "category", "sub_category", "supplier_product_id", "customer_id",
    "margin_percentage", "min_margin_percentage", "max_margin_percentage", "fixed_markup", "round_to",
    "valid_from", "valid_to", "is_active", "priority", "notes",
)


def margin_rule_to_dict(rule: SupplierMarginRule) -> Dict[str, Any]:
    data = {"id": str(rule.id)}
    for field in MARGIN_RULE_FIELDS:
        value = getattr(rule, field)
        data[field] = str(value) if isinstance(value, UUID) else value.isoformat() if isinstance(value, date) else value
    return data


def get_margin_rule_or_404(db: Session, rule_id: UUID) -> SupplierMarginRule:
    rule = db.query(SupplierMarginRule).filter(SupplierMarginRule.id == rule_id).first()
    if not rule:
        raise NotFoundError("Margin rule", rule_id)
    return rule


def get_supplier_or_404(db: Session, supplier_id: UUID) -> Supplier:
    supplier = db.query(Supplier).filter(Supplier.id == supplier_id).first()
    if not supplier:
        raise NotFoundError("Supplier", supplier_id)
    return supplier


def get_product_or_404(db: Session, product_id: UUID) -> SupplierProduct:
    product = (
        db.query(SupplierProduct)
        .options(selectinload(SupplierProduct.supplier))
        .filter(SupplierProduct.id == product_id)
        .first()
    )
    if not product:
        raise NotFoundError("Supplier product", product_id)
    return product


def _ensure_customer(db: Session, customer_id: UUID) -> None:
    if not db.query(Customer.id).filter(Customer.id == customer_id).first():
        raise NotFoundError("Customer", customer_id)


def _check_window(valid_from: Optional[date], valid_to: Optional[date]) -> None:
    if valid_from and valid_to and valid_to < valid_from:
        raise ValidationError("valid_to must not be before valid_from")


# Suppliers

@router.get("")
async def list_suppliers(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    query = db.query(Supplier).options(selectinload(Supplier.settings))
    if not include_inactive:
        query = query.filter(Supplier.is_active.is_(True))
    return [supplier_to_dict(supplier) for supplier in query.order_by(Supplier.name).all()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_supplier(
    supplier_data: SupplierCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    if db.query(Supplier.id).filter(Supplier.code == supplier_data.code).first():
        raise ConflictError("Supplier code already exists", {"code": supplier_data.code})

    supplier = Supplier(
        name=supplier_data.name,
        code=supplier_data.code,
        website=supplier_data.website,
        is_active=supplier_data.is_active,
    )
    supplier.settings = SupplierSettings(
        default_margin_percentage=supplier_data.default_margin_percentage,
        is_preferred=supplier_data.is_preferred,
    )
    db.add(supplier)
    db.commit()
    db.refresh(supplier)
    return supplier_to_dict(supplier)


@router.put("/{supplier_id}")
async def update_supplier(
    supplier_id: UUID,
    supplier_data: SupplierUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    supplier = get_supplier_or_404(db, supplier_id)
    changes = supplier_data.model_dump(exclude_unset=True)

    if supplier.settings is None:
        supplier.settings = SupplierSettings()
    for field in ("default_margin_percentage", "is_preferred"):
        if field in changes:
            setattr(supplier.settings, field, changes.pop(field))
    for field, value in changes.items():
        setattr(supplier, field, value)

    db.commit()
    db.refresh(supplier)
    return supplier_to_dict(supplier)


# Products

@router.get("/products/search")
async def search_supplier_products(
    q: str = Query(..., min_length=2),
    customer_id: Optional[UUID] = None,
    supplier_id: Optional[UUID] = None,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    return search_products(db, q, customer_id, supplier_id, limit)


@router.get("/products/best-price")
async def best_price_for_customer(
    customer_id: UUID,
    sku: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    """Every available offer for the SKU, best first."""
    return [
        {**row, "supplier_product_id": str(row["supplier_product_id"]), "supplier_id": str(row["supplier_id"])}
        for row in get_best_price_for_customer(db, customer_id, sku)
    ]


@router.get("/products/{product_id}")
async def get_product(
    product_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    product = get_product_or_404(db, product_id)
    return {**product_to_dict(product), "supplier_name": product.supplier.name}


@router.put("/products/{product_id}/prices")
async def update_prices(
    product_id: UUID,
    price_data: PriceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    product = get_product_or_404(db, product_id)
    history = update_product_prices(db, product, price_data.cost_price, price_data.list_price, price_data.change_source)
    db.commit()
    db.refresh(product)
    return {
        "product": product_to_dict(product),
        "price_changed": history is not None,
        "change_percentage": history.change_percentage if history is not None else None,
    }


@router.get("/products/{product_id}/price-history")
async def product_price_history(
    product_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    get_product_or_404(db, product_id)
    return get_product_price_history(db, product_id, limit)


@router.get("/products/{product_id}/effective-price")
async def customer_effective_price(
    product_id: UUID,
    customer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    price = get_customer_effective_price(db, customer_id, product_id)
    return price.model_dump(mode="json")


@router.get("/{supplier_id}/products")
async def list_products(
    supplier_id: UUID,
    search: Optional[str] = None,
    category: Optional[str] = None,
    is_available: Optional[bool] = None,
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    get_supplier_or_404(db, supplier_id)
    query = db.query(SupplierProduct).filter(SupplierProduct.supplier_id == supplier_id)

    if category:
        query = query.filter(SupplierProduct.category == category)
    if is_available is not None:
        query = query.filter(SupplierProduct.is_available.is_(is_available))
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(SupplierProduct.supplier_sku.ilike(term), SupplierProduct.supplier_name.ilike(term)))

    products, total = paginate_with_total(query.order_by(SupplierProduct.supplier_name), pagination)
    return {
        "products": [product_to_dict(product) for product in products],
        **page_meta(total, len(products), pagination),
    }


@router.post("/{supplier_id}/products", status_code=status.HTTP_201_CREATED)
async def create_product(
    supplier_id: UUID,
    product_data: ProductCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    get_supplier_or_404(db, supplier_id)
    exists = db.query(SupplierProduct.id).filter(
        SupplierProduct.supplier_id == supplier_id,
        SupplierProduct.supplier_sku == product_data.supplier_sku,
    ).first()
    if exists:
        raise ConflictError("SKU already exists for this supplier", {"supplier_sku": product_data.supplier_sku})

    product = SupplierProduct(supplier_id=supplier_id, last_synced_at=datetime.utcnow(), **product_data.model_dump())
    db.add(product)
    db.commit()
    db.refresh(product)
    return product_to_dict(product)


# Margin rules

@router.get("/{supplier_id}/margin-rules")
async def list_margin_rules(
    supplier_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    get_supplier_or_404(db, supplier_id)
    rules = (
        db.query(SupplierMarginRule)
        .filter(SupplierMarginRule.supplier_id == supplier_id)
        .order_by(SupplierMarginRule.priority.desc(), SupplierMarginRule.rule_type)
        .all()
    )
    return [margin_rule_to_dict(rule) for rule in rules]


@router.get("/{supplier_id}/margin-rules/summary")
async def margin_rules_summary(
    supplier_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    get_supplier_or_404(db, supplier_id)
    return margin_rule_summary(db, supplier_id)


@router.post("/{supplier_id}/margin-rules", status_code=status.HTTP_201_CREATED)
async def create_margin_rule(
    supplier_id: UUID,
    rule_data: MarginRuleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    get_supplier_or_404(db, supplier_id)
    validate_rule_scope(
        rule_data.rule_type.value,
        rule_data.category,
        rule_data.sub_category,
        rule_data.supplier_product_id,
        rule_data.customer_id,
    )
    _check_window(rule_data.valid_from, rule_data.valid_to)
    if rule_data.supplier_product_id:
        product = get_product_or_404(db, rule_data.supplier_product_id)
        if product.supplier_id != supplier_id:
            raise ValidationError("Product belongs to another supplier")
    if rule_data.customer_id:
        _ensure_customer(db, rule_data.customer_id)

    values = rule_data.model_dump()
    values["rule_type"] = rule_data.rule_type.value
    rule = SupplierMarginRule(supplier_id=supplier_id, is_active=True, created_by=current_user.id, **values)
    db.add(rule)
    db.commit()
    db.refresh(rule)

    logger.info("Margin rule created", supplier_id=str(supplier_id), rule_type=rule.rule_type, margin=rule.margin_percentage)
    return margin_rule_to_dict(rule)


@router.put("/margin-rules/{rule_id}")
async def update_margin_rule(
    rule_id: UUID,
    rule_data: MarginRuleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    rule = get_margin_rule_or_404(db, rule_id)
    changes = rule_data.model_dump(exclude_unset=True)
    _check_window(changes.get("valid_from", rule.valid_from), changes.get("valid_to", rule.valid_to))

    for field, value in changes.items():
        setattr(rule, field, value)

    db.commit()
    db.refresh(rule)
    return margin_rule_to_dict(rule)


@router.post("/margin-rules/{rule_id}/toggle")
async def toggle_margin_rule(
    rule_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    rule = get_margin_rule_or_404(db, rule_id)
    rule.is_active = not rule.is_active
    db.commit()
    db.refresh(rule)
    return margin_rule_to_dict(rule)


@router.delete("/margin-rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_margin_rule(
    rule_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    rule = get_margin_rule_or_404(db, rule_id)
    db.delete(rule)
    db.commit()


@router.put("/{supplier_id}/default-margin")
async def set_default_margin(
    supplier_id: UUID,
    margin_data: DefaultMargin,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    get_supplier_or_404(db, supplier_id)
    rule = set_default_supplier_margin(
        db,
        supplier_id,
        margin_data.margin_percentage,
        margin_data.fixed_markup,
        margin_data.round_to,
        current_user.id,
    )
    db.commit()
    db.refresh(rule)
    return margin_rule_to_dict(rule)


@router.get("/{supplier_id}/effective-margin")
async def effective_margin(
    supplier_id: UUID,
    supplier_product_id: Optional[UUID] = None,
    category: Optional[str] = None,
    sub_category: Optional[str] = None,
    customer_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Optional[Dict[str, Any]]:
    """Winning rule for the given scope, null when none applies."""
    get_supplier_or_404(db, supplier_id)
    rule = get_effective_margin(db, supplier_id, supplier_product_id, category, sub_category, customer_id)
    if rule is None:
        return None
    return {
        "margin_percentage": rule.margin_percentage,
        "fixed_markup": rule.fixed_markup,
        "round_to": rule.round_to,
        "rule_type": rule.rule_type,
        "rule_id": str(rule.id),
    }


# Customer agreements

@router.get("/customer-prices/{customer_id}")
async def list_customer_agreements(
    customer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    _ensure_customer(db, customer_id)
    supplier_agreements = db.query(CustomerSupplierPrice).filter(CustomerSupplierPrice.customer_id == customer_id).all()
    product_agreements = db.query(CustomerProductPrice).filter(CustomerProductPrice.customer_id == customer_id).all()
    return {
        "supplier_agreements": [_agreement_dict(a, SUPPLIER_AGREEMENT_FIELDS) for a in supplier_agreements],
        "product_prices": [_agreement_dict(a, PRODUCT_AGREEMENT_FIELDS) for a in product_agreements],
    }


@router.put("/customer-prices/supplier")
async def upsert_supplier_agreement(
    agreement_data: SupplierAgreementUpsert,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """Create or replace the customer's agreement with a supplier."""
    _ensure_customer(db, agreement_data.customer_id)
    get_supplier_or_404(db, agreement_data.supplier_id)
    _check_window(agreement_data.valid_from, agreement_data.valid_to)

    agreement = db.query(CustomerSupplierPrice).filter(
        CustomerSupplierPrice.customer_id == agreement_data.customer_id,
        CustomerSupplierPrice.supplier_id == agreement_data.supplier_id,
    ).first()
    if agreement is None:
        agreement = CustomerSupplierPrice()
        db.add(agreement)
    for field, value in agreement_data.model_dump().items():
        setattr(agreement, field, value)

    db.commit()
    db.refresh(agreement)
    logger.info("Customer supplier agreement saved", customer_id=str(agreement.customer_id), supplier_id=str(agreement.supplier_id))
    return _agreement_dict(agreement, SUPPLIER_AGREEMENT_FIELDS)


@router.delete("/customer-prices/supplier/{agreement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_supplier_agreement(
    agreement_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    agreement = db.query(CustomerSupplierPrice).filter(CustomerSupplierPrice.id == agreement_id).first()
    if not agreement:
        raise NotFoundError("Customer supplier price", agreement_id)
    db.delete(agreement)
    db.commit()


@router.put("/customer-prices/product")
async def upsert_product_agreement(
    agreement_data: ProductAgreementUpsert,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """Create or replace a customer's price on a single product."""
    _ensure_customer(db, agreement_data.customer_id)
    get_product_or_404(db, agreement_data.supplier_product_id)
    _check_window(agreement_data.valid_from, agreement_data.valid_to)

    agreement = db.query(CustomerProductPrice).filter(
        CustomerProductPrice.customer_id == agreement_data.customer_id,
        CustomerProductPrice.supplier_product_id == agreement_data.supplier_product_id,
    ).first()
    if agreement is None:
        agreement = CustomerProductPrice()
        db.add(agreement)
    for field, value in agreement_data.model_dump().items():
        setattr(agreement, field, value)

    db.commit()
    db.refresh(agreement)
    return _agreement_dict(agreement, PRODUCT_AGREEMENT_FIELDS)


@router.delete("/customer-prices/product/{agreement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product_agreement(
    agreement_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    agreement = db.query(CustomerProductPrice).filter(CustomerProductPrice.id == agreement_id).first()
    if not agreement:
        raise NotFoundError("Customer product price", agreement_id)
    db.delete(agreement)
    db.commit()


# Kalkia material links

@router.put("/materials/{material_id}/link")
async def link_material(
    material_id: UUID,
    link_data: MaterialLink,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    material = db.query(KalkiaVariantMaterial).filter(KalkiaVariantMaterial.id == material_id).first()
    if not material:
        raise NotFoundError("Material", material_id)
    product = get_product_or_404(db, link_data.supplier_product_id)

    link_material_to_supplier_product(db, material, product, link_data.auto_update_price)
    db.commit()
    return {
        "id": str(material.id),
        "supplier_product_id": str(material.supplier_product_id),
        "auto_update_price": material.auto_update_price,
        "cost_price": material.cost_price,
        "sale_price": material.sale_price,
    }


@router.post("/variants/{variant_id}/sync-material-prices")
async def sync_variant_material_prices(
    variant_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, int]:
    result = sync_material_prices_from_supplier(db, variant_id)
    db.commit()
    return result
