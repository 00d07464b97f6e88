"""
Price engine routes: tiers, volume brackets, price calculation, supplier
comparison, margin analysis and price suggestions.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ..core.auth import get_current_user
from ..core.database import get_db
from ..core.errors import NotFoundError, ValidationError
from ..core.logging import get_logger
from ..db.models import Customer, User
from ..db.offer_models import Offer, OfferLineItem, OfferStatus
from ..db.supplier_models import Supplier, SupplierProduct
from ..services.price_engine import (
    CUSTOMER_TIERS,
    DEFAULT_VOLUME_BRACKETS,
    ComparableProduct,
    CustomerTier,
    MarginLine,
    PriceCalculationInput,
    analyze_margins,
    calculate_price,
    compare_supplier_prices,
    get_volume_discount,
    suggest_price,
)

logger = get_logger(__name__)
router = APIRouter()


class TierUpdate(BaseModel):
    tier: CustomerTier


class SuggestionRequest(BaseModel):
    cost_price: float = Field(..., ge=0)
    target_margin: float = Field(25.0, ge=0)
    supplier_product_id: Optional[UUID] = None
    competitor_prices: List[float] = Field(default_factory=list)


def get_customer_or_404(db: Session, customer_id: UUID) -> Customer:
    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    if not customer:
        raise NotFoundError("Customer", customer_id)
    return customer


def customer_tier(customer: Optional[Customer]) -> CustomerTier:
    if customer is None or not customer.pricing_tier:
        return CustomerTier.STANDARD
    return CustomerTier(customer.pricing_tier)


@router.get("/config")
async def pricing_config(
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    return {
        "tiers": {tier.value: config.model_dump(mode="json") for tier, config in CUSTOMER_TIERS.items()},
        "volume_brackets": [bracket.model_dump() for bracket in DEFAULT_VOLUME_BRACKETS],
    }


@router.get("/volume-discount")
async def volume_discount(
    quantity: float = Query(..., gt=0),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    return get_volume_discount(quantity).model_dump()


@router.post("/calculate")
async def calculate(
    price_input: PriceCalculationInput,
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    return calculate_price(price_input).model_dump(mode="json")


@router.get("/compare")
async def compare_prices(
    q: str = Query(..., min_length=2),
    quantity: float = Query(1, gt=0),
    margin_percent: float = Query(25, ge=0),
    customer_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """The matching catalog products of every active supplier, priced for the customer's tier."""
    tier = customer_tier(get_customer_or_404(db, customer_id)) if customer_id else CustomerTier.STANDARD

    term = f"%{q.strip()}%"
    products = (
        db.query(SupplierProduct)
        .join(Supplier)
        .options(joinedload(SupplierProduct.supplier))
        .filter(
            Supplier.is_active.is_(True),
            or_(SupplierProduct.supplier_name.ilike(term), SupplierProduct.supplier_sku.ilike(term)),
        )
        .limit(50)
        .all()
    )

    comparable = [
        ComparableProduct(
            supplier_id=str(product.supplier_id),
            supplier_name=product.supplier.name if product.supplier else "Ukendt",
            supplier_product_id=str(product.id),
            sku=product.supplier_sku,
            product_name=product.supplier_name,
            cost_price=product.cost_price or 0.0,
            list_price=product.list_price,
            is_available=product.is_available,
        )
        for product in products
    ]
    return compare_supplier_prices(comparable, quantity, margin_percent, tier, description=q).model_dump()


@router.get("/offers/{offer_id}/margin-analysis")
async def offer_margin_analysis(
    offer_id: UUID,
    minimum_margin_percent: float = Query(15, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    if not db.query(Offer.id).filter(Offer.id == offer_id).first():
        raise NotFoundError("Offer", offer_id)

    line_items = (
        db.query(OfferLineItem)
        .filter(OfferLineItem.offer_id == offer_id)
        .order_by(OfferLineItem.position)
        .all()
    )
    if not line_items:
        raise ValidationError("Offer has no line items")

    lines = [
        MarginLine(
            description=item.description or "Unavngiven",
            cost=(item.cost_price or 0.0) * (item.quantity or 1),
            sale=(item.unit_price or 0.0) * (item.quantity or 1),
        )
        for item in line_items
    ]
    return analyze_margins(lines, minimum_margin_percent).model_dump()


@router.post("/suggestions")
async def price_suggestions(
    request: SuggestionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    """Suggestions; with a product, its prices on the last 20 accepted offer lines count as history."""
    historical = []
    if request.supplier_product_id:
        rows = (
            db.query(OfferLineItem.unit_price)
            .join(Offer)
            .filter(
                OfferLineItem.supplier_product_id == request.supplier_product_id,
                Offer.status == OfferStatus.ACCEPTED.value,
            )
            .order_by(OfferLineItem.created_at.desc())
            .limit(20)
            .all()
        )
        historical = [row.unit_price for row in rows if row.unit_price and row.unit_price > 0]

    suggestions = suggest_price(request.cost_price, request.target_margin, historical, request.competitor_prices)
    return [suggestion.model_dump() for suggestion in suggestions]


@router.get("/customers/{customer_id}/tier")
async def get_customer_tier(
    customer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    tier = customer_tier(get_customer_or_404(db, customer_id))
    return {"tier": tier.value, "config": CUSTOMER_TIERS[tier].model_dump(mode="json")}


@router.put("/customers/{customer_id}/tier")
async def set_customer_tier(
    customer_id: UUID,
    tier_data: TierUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, str]:
    customer = get_customer_or_404(db, customer_id)
    customer.pricing_tier = tier_data.tier.value
    db.commit()

    logger.info("Customer tier updated", customer_id=str(customer_id), tier=tier_data.tier.value)
    return {"tier": tier_data.tier.value}
