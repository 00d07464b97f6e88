"""
Customer specific supplier pricing.

Resolves what a supplier product effectively costs for a customer:
a product level agreement wins, then a supplier wide agreement, then the
standard catalog price. Also records price changes on catalog products and
keeps Kalkia materials linked to them in step.
"""

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from .kalkia_engine import SupplierPriceOverride
from .pricing import round_half_up, round_money
from ..core.errors import NotFoundError, ValidationError
from ..core.logging import get_logger
from ..core.settings import settings
from ..db.kalkia_models import KalkiaVariant, KalkiaVariantMaterial
from ..db.supplier_models import (
    CustomerProductPrice,
    CustomerSupplierPrice,
    PriceHistory,
    Supplier,
    SupplierProduct,
)

logger = get_logger(__name__)


class EffectivePrice(BaseModel):
    supplier_product_id: UUID
    supplier_id: UUID
    base_cost_price: float
    effective_cost_price: float
    effective_list_price: Optional[float] = None
    discount_percentage: float
    margin_percentage: float
    effective_sale_price: float
    price_source: str


def _is_current(agreement, today: date) -> bool:
    if not agreement.is_active:
        return False
    if agreement.valid_from and agreement.valid_from > today:
        return False
    if agreement.valid_to and agreement.valid_to < today:
        return False
    return True


def get_product_agreement(
    db: Session, customer_id: Optional[UUID], product_id: UUID, today: Optional[date] = None
) -> Optional[CustomerProductPrice]:
    if customer_id is None:
        return None
    today = today or date.today()
    agreement = db.query(CustomerProductPrice).filter(
        CustomerProductPrice.customer_id == customer_id,
        CustomerProductPrice.supplier_product_id == product_id,
    ).first()
    return agreement if agreement and _is_current(agreement, today) else None


def get_supplier_agreement(
    db: Session, customer_id: Optional[UUID], supplier_id: UUID, today: Optional[date] = None
) -> Optional[CustomerSupplierPrice]:
    if customer_id is None:
        return None
    today = today or date.today()
    agreement = db.query(CustomerSupplierPrice).filter(
        CustomerSupplierPrice.customer_id == customer_id,
        CustomerSupplierPrice.supplier_id == supplier_id,
    ).first()
    return agreement if agreement and _is_current(agreement, today) else None


def resolve_effective_price(
    db: Session,
    product: SupplierProduct,
    customer_id: Optional[UUID] = None,
    today: Optional[date] = None,
) -> EffectivePrice:
    """Effective cost and sale price of a catalog product for a customer."""
    cost = product.cost_price or 0.0
    list_price = product.list_price
    discount = 0.0
    margin = product.margin_percentage
    source = "standard"

    product_agreement = get_product_agreement(db, customer_id, product.id, today)
    if product_agreement is not None:
        source = "customer_product"
        if product_agreement.custom_cost_price is not None:
            cost = product_agreement.custom_cost_price
        if product_agreement.custom_list_price is not None:
            list_price = product_agreement.custom_list_price
        if product_agreement.custom_discount_percentage is not None:
            discount = product_agreement.custom_discount_percentage
    else:
        supplier_agreement = get_supplier_agreement(db, customer_id, product.supplier_id, today)
        if supplier_agreement is not None:
            source = "customer_supplier"
            discount = supplier_agreement.discount_percentage or 0.0
            if supplier_agreement.custom_margin_percentage is not None:
                margin = supplier_agreement.custom_margin_percentage

    if margin is None:
        supplier_settings = product.supplier.settings if product.supplier else None
        if supplier_settings and supplier_settings.default_margin_percentage is not None:
            margin = supplier_settings.default_margin_percentage
        else:
            margin = settings.MATERIAL_MARGIN

    effective_cost = cost * (1 - discount / 100)

    return EffectivePrice(
        supplier_product_id=product.id,
        supplier_id=product.supplier_id,
        base_cost_price=product.cost_price or 0.0,
        effective_cost_price=round_money(effective_cost),
        effective_list_price=list_price,
        discount_percentage=discount,
        margin_percentage=margin,
        effective_sale_price=round_money(effective_cost * (1 + margin / 100)),
        price_source=source,
    )


def get_customer_effective_price(db: Session, customer_id: UUID, supplier_product_id: UUID) -> EffectivePrice:
    product = db.query(SupplierProduct).filter(SupplierProduct.id == supplier_product_id).first()
    if not product:
        raise NotFoundError("Supplier product", supplier_product_id)
    return resolve_effective_price(db, product, customer_id)


def get_best_price_for_customer(db: Session, customer_id: UUID, sku: str, limit: int = 10) -> List[Dict]:
    """
    Offers for one SKU across active suppliers.

    Preferred suppliers come first, then the lowest effective cost.
    """
    products = (
        db.query(SupplierProduct)
        .join(Supplier)
        .options(joinedload(SupplierProduct.supplier).joinedload(Supplier.settings))
        .filter(
            SupplierProduct.supplier_sku == sku,
            SupplierProduct.is_available.is_(True),
            Supplier.is_active.is_(True),
        )
        .all()
    )

    results = []
    for product in products:
        price = resolve_effective_price(db, product, customer_id)
        supplier_settings = product.supplier.settings
        results.append({
            **price.model_dump(),
            "supplier_name": product.supplier.name,
            "supplier_code": product.supplier.code,
            "is_preferred": bool(supplier_settings and supplier_settings.is_preferred),
            "is_available": product.is_available,
        })

    results.sort(key=lambda row: (not row["is_preferred"], row["effective_cost_price"]))
    return results[:limit]


def is_price_stale(last_synced_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """A catalog price is stale when it was never synced or not within the window."""
    if last_synced_at is None:
        return True
    now = now or datetime.utcnow()
    return now - last_synced_at > timedelta(days=settings.SUPPLIER_PRICE_STALE_DAYS)


def load_supplier_prices_for_variant(
    db: Session, variant: KalkiaVariant, customer_id: Optional[UUID] = None
) -> Dict[UUID, SupplierPriceOverride]:
    """Live prices for the variant's materials that are linked to catalog products."""
    overrides = {}

    for material in variant.materials:
        if material.supplier_product_id is None or material.supplier_product is None:
            continue
        product = material.supplier_product
        if not product.cost_price:
            continue

        price = resolve_effective_price(db, product, customer_id)
        overrides[material.id] = SupplierPriceOverride(
            material_id=material.id,
            supplier_product_id=product.id,
            supplier_name=product.supplier.name if product.supplier else None,
            supplier_sku=product.supplier_sku,
            base_cost_price=price.base_cost_price,
            effective_cost_price=price.effective_cost_price,
            effective_sale_price=price.effective_sale_price,
            discount_percentage=price.discount_percentage,
            margin_percentage=price.margin_percentage,
            price_source=price.price_source,
            is_stale=is_price_stale(product.last_synced_at),
        )

    return overrides


def calculate_change_percentage(old_price: Optional[float], new_price: Optional[float]) -> Optional[float]:
    if not old_price or new_price is None:
        return None
    return round_half_up((new_price - old_price) / old_price * 100, 2)


def update_product_prices(
    db: Session,
    product: SupplierProduct,
    cost_price: Optional[float] = None,
    list_price: Optional[float] = None,
    change_source: str = "manual",
) -> Optional[PriceHistory]:
    """
    Apply new catalog prices and record the change.

    A history row is written only when a price actually changes. The change
    percentage follows the cost price.
    """
    new_cost = product.cost_price if cost_price is None else cost_price
    new_list = product.list_price if list_price is None else list_price

    if (new_cost is not None and new_cost < 0) or (new_list is not None and new_list < 0):
        raise ValidationError("Prices cannot be negative")

    if new_cost == product.cost_price and new_list == product.list_price:
        return None

    history = PriceHistory(
        supplier_product_id=product.id,
        old_cost_price=product.cost_price,
        new_cost_price=new_cost,
        old_list_price=product.list_price,
        new_list_price=new_list,
        change_percentage=calculate_change_percentage(product.cost_price, new_cost),
        change_source=change_source,
    )
    db.add(history)

    product.cost_price = new_cost
    product.list_price = new_list
    product.last_synced_at = datetime.utcnow()

    logger.info(
        "Supplier product price changed",
        supplier_product_id=str(product.id),
        sku=product.supplier_sku,
        change_percentage=history.change_percentage,
        source=change_source,
    )
    return history


def link_material_to_supplier_product(
    db: Session, material: KalkiaVariantMaterial, product: SupplierProduct, auto_update_price: bool = False
) -> KalkiaVariantMaterial:
    material.supplier_product_id = product.id
    material.auto_update_price = auto_update_price

    if auto_update_price:
        if product.cost_price:
            material.cost_price = product.cost_price
        if product.list_price:
            material.sale_price = product.list_price

    return material


def sync_material_prices_from_supplier(db: Session, variant_id: UUID) -> Dict[str, int]:
    """Copy catalog prices onto auto-updating materials of a variant."""
    materials = (
        db.query(KalkiaVariantMaterial)
        .options(joinedload(KalkiaVariantMaterial.supplier_product))
        .filter(
            KalkiaVariantMaterial.variant_id == variant_id,
            KalkiaVariantMaterial.supplier_product_id.isnot(None),
        )
        .all()
    )

    updated = 0
    skipped = 0
    for material in materials:
        product = material.supplier_product
        if not material.auto_update_price or product is None:
            skipped += 1
            continue
        if product.cost_price == material.cost_price and product.list_price == material.sale_price:
            skipped += 1
            continue
        material.cost_price = product.cost_price
        material.sale_price = product.list_price
        updated += 1

    return {"updated": updated, "skipped": skipped}


def search_products(
    db: Session,
    query: str,
    customer_id: Optional[UUID] = None,
    supplier_id: Optional[UUID] = None,
    limit: int = 20,
) -> List[Dict]:
    """Catalog search on SKU or name among active suppliers, priced for the customer."""
    term = f"%{query.strip()}%"
    q = (
        db.query(SupplierProduct)
        .join(Supplier)
        .options(joinedload(SupplierProduct.supplier).joinedload(Supplier.settings))
        .filter(
            Supplier.is_active.is_(True),
            or_(SupplierProduct.supplier_sku.ilike(term), SupplierProduct.supplier_name.ilike(term)),
        )
    )
    if supplier_id:
        q = q.filter(SupplierProduct.supplier_id == supplier_id)

    results = []
    for product in q.order_by(SupplierProduct.supplier_name).limit(limit).all():
        price = resolve_effective_price(db, product, customer_id)
        results.append({
            "id": str(product.id),
            "supplier_id": str(product.supplier_id),
            "supplier_name": product.supplier.name,
            "supplier_code": product.supplier.code,
            "supplier_sku": product.supplier_sku,
            "name": product.supplier_name,
            "unit": product.unit,
            "cost_price": product.cost_price,
            "list_price": product.list_price,
            "is_available": product.is_available,
            "is_stale": is_price_stale(product.last_synced_at),
            "effective_cost_price": price.effective_cost_price,
            "estimated_sale_price": price.effective_sale_price,
            "margin_percentage": price.margin_percentage,
            "price_source": price.price_source,
        })
    return results
