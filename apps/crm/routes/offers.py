"""
Offer routes: offers, line items, status changes and the imports from the
supplier catalog and Kalkia.
"""

from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, validator
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from ..core.auth import get_current_user
from ..core.database import get_db
from ..core.errors import NotFoundError
from ..core.logging import get_logger
from ..core.pagination import PaginationParams, page_meta, paginate_with_total
from ..core.settings import settings
from ..db.kalkia_models import KalkiaCalculation
from ..db.models import Customer, User
from ..db.offer_models import Offer, OfferActivity, OfferLineItem, OfferStatus
from ..db.supplier_models import SupplierProduct
from ..services.kalkia import import_calculation_to_offer
from ..services.offers import (
    apply_line_total,
    build_line_from_supplier_product,
    default_valid_until,
    generate_offer_number,
    log_offer_activity,
    next_position,
    offer_db_summary,
    recalculate_offer_totals,
    update_offer_status,
)
from ..services.pricing import get_line_item_margin
from ..services.supplier_pricing import search_products

logger = get_logger(__name__)
router = APIRouter()


class LineItemCreate(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: float = Field(1.0, gt=0)
    unit: str = "stk"
    unit_price: float = Field(0.0, ge=0)
    discount_percentage: float = Field(0.0, ge=0, le=100)
    cost_price: Optional[float] = Field(None, ge=0)
    section: Optional[str] = None
    position: Optional[int] = Field(None, ge=1)


class LineItemUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1)
    quantity: Optional[float] = Field(None, gt=0)
    unit: Optional[str] = None
    unit_price: Optional[float] = Field(None, ge=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    cost_price: Optional[float] = Field(None, ge=0)
    section: Optional[str] = None
    position: Optional[int] = Field(None, ge=1)

    @validator("description", "quantity", "unit", "unit_price", "discount_percentage", "position")
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class OfferCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    customer_id: Optional[UUID] = None
    lead_id: Optional[UUID] = None
    discount_percentage: float = Field(0.0, ge=0, le=100)
    tax_percentage: float = Field(settings.DEFAULT_TAX_RATE, ge=0, le=100)
    valid_until: Optional[date] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
    line_items: List[LineItemCreate] = Field(default_factory=list)


class OfferUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    customer_id: Optional[UUID] = None
    lead_id: Optional[UUID] = None
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    tax_percentage: Optional[float] = Field(None, ge=0, le=100)
    valid_until: Optional[date] = None
    terms: Optional[str] = None
    notes: Optional[str] = None

    @validator("title", "discount_percentage", "tax_percentage")
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class OfferStatusUpdate(BaseModel):
    status: OfferStatus


class SupplierLineCreate(BaseModel):
    supplier_product_id: UUID
    quantity: float = Field(1.0, gt=0)
    custom_margin_percentage: Optional[float] = Field(None, ge=0)
    discount_percentage: float = Field(0.0, ge=0, le=100)
    description: Optional[str] = None
    section: Optional[str] = None
    fixed_markup: float = Field(0.0, ge=0)
    round_to: Optional[float] = Field(None, gt=0)


class CalculationImport(BaseModel):
    calculation_id: UUID
    include_hidden_rows: bool = False
    include_cost_prices: bool = True


def line_item_to_dict(item: OfferLineItem) -> Dict[str, Any]:
    return {
        "id": str(item.id),
        "position": item.position,
        "section": item.section,
        "description": item.description,
        "quantity": item.quantity,
        "unit": item.unit,
        "unit_price": item.unit_price,
        "discount_percentage": item.discount_percentage,
        "total": item.total,
        "cost_price": item.cost_price,
        "margin_percentage": get_line_item_margin(item),
        "supplier_product_id": str(item.supplier_product_id) if item.supplier_product_id else None,
        "supplier_cost_price_at_creation": item.supplier_cost_price_at_creation,
        "supplier_margin_applied": item.supplier_margin_applied,
        "supplier_name_at_creation": item.supplier_name_at_creation,
    }


def offer_to_dict(offer: Offer, detail: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(offer.id),
        "offer_number": offer.offer_number,
        "title": offer.title,
        "description": offer.description,
        "status": offer.status,
        "customer_id": str(offer.customer_id) if offer.customer_id else None,
        "customer_name": offer.customer.company_name if offer.customer else None,
        "lead_id": str(offer.lead_id) if offer.lead_id else None,
        "total_amount": offer.total_amount,
        "discount_percentage": offer.discount_percentage,
        "discount_amount": offer.discount_amount,
        "tax_percentage": offer.tax_percentage,
        "tax_amount": offer.tax_amount,
        "final_amount": offer.final_amount,
        "currency": offer.currency,
        "valid_until": offer.valid_until.isoformat() if offer.valid_until else None,
        "sent_at": offer.sent_at.isoformat() if offer.sent_at else None,
        "viewed_at": offer.viewed_at.isoformat() if offer.viewed_at else None,
        "accepted_at": offer.accepted_at.isoformat() if offer.accepted_at else None,
        "rejected_at": offer.rejected_at.isoformat() if offer.rejected_at else None,
        "created_at": offer.created_at.isoformat(),
    }
    if detail:
        data.update({
            "terms": offer.terms,
            "notes": offer.notes,
            "line_items": [line_item_to_dict(item) for item in offer.line_items],
            "db_summary": offer_db_summary(offer),
        })
    return data


def activity_to_dict(activity: OfferActivity) -> Dict[str, Any]:
    return {
        "id": str(activity.id),
        "activity_type": activity.activity_type,
        "description": activity.description,
        "performed_by": str(activity.performed_by) if activity.performed_by else None,
        "metadata": activity.metadata_json or {},
        "created_at": activity.created_at.isoformat(),
    }


def get_offer_or_404(db: Session, offer_id: UUID) -> Offer:
    offer = (
        db.query(Offer)
        .options(selectinload(Offer.line_items), selectinload(Offer.customer))
        .filter(Offer.id == offer_id)
        .first()
    )
    if not offer:
        raise NotFoundError("Offer", offer_id)
    return offer


def get_line_item_or_404(offer: Offer, item_id: UUID) -> OfferLineItem:
    for item in offer.line_items:
        if item.id == item_id:
            return item
    raise NotFoundError("Line item", item_id)


def _ensure_customer(db: Session, customer_id: Optional[UUID]) -> None:
    if customer_id and not db.query(Customer.id).filter(Customer.id == customer_id).first():
        raise NotFoundError("Customer", customer_id)


@router.get("")
async def list_offers(
    search: Optional[str] = None,
    status: Optional[OfferStatus] = None,
    customer_id: Optional[UUID] = None,
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    query = db.query(Offer).options(selectinload(Offer.customer))

    if status:
        query = query.filter(Offer.status == status.value)
    if customer_id:
        query = query.filter(Offer.customer_id == customer_id)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(Offer.title.ilike(term), Offer.offer_number.ilike(term)))

    offers, total = paginate_with_total(query.order_by(Offer.created_at.desc()), pagination)
    return {
        "offers": [offer_to_dict(offer) for offer in offers],
        **page_meta(total, len(offers), pagination),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_offer(
    offer_data: OfferCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    _ensure_customer(db, offer_data.customer_id)

    data = offer_data.model_dump(exclude={"line_items"})
    data["valid_until"] = data["valid_until"] or default_valid_until()
    offer = Offer(
        **data,
        offer_number=generate_offer_number(db),
        currency=settings.DEFAULT_CURRENCY,
        created_by=current_user.id,
    )

    for position, item_data in enumerate(offer_data.line_items, start=1):
        values = item_data.model_dump()
        values["position"] = values["position"] or position
        offer.line_items.append(apply_line_total(OfferLineItem(**values)))

    recalculate_offer_totals(offer)
    db.add(offer)
    db.flush()
    log_offer_activity(db, offer, "created", "Tilbud oprettet", current_user.id)
    db.commit()

    logger.info("Offer created", offer_number=offer.offer_number)
    return offer_to_dict(get_offer_or_404(db, offer.id), detail=True)


@router.get("/{offer_id}")
async def get_offer(
    offer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """Offer with line items, DB summary and traffic light."""
    return offer_to_dict(get_offer_or_404(db, offer_id), detail=True)


@router.put("/{offer_id}")
async def update_offer(
    offer_id: UUID,
    offer_data: OfferUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    offer = get_offer_or_404(db, offer_id)
    changes = offer_data.model_dump(exclude_unset=True)
    if changes.get("customer_id"):
        _ensure_customer(db, changes["customer_id"])

    for field, value in changes.items():
        setattr(offer, field, value)
    recalculate_offer_totals(offer)

    db.commit()
    return offer_to_dict(get_offer_or_404(db, offer_id), detail=True)


@router.delete("/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_offer(
    offer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    offer = get_offer_or_404(db, offer_id)
    db.query(KalkiaCalculation).filter(KalkiaCalculation.offer_id == offer.id).update(
        {KalkiaCalculation.offer_id: None}, synchronize_session=False
    )
    db.delete(offer)
    db.commit()


@router.patch("/{offer_id}/status")
async def change_offer_status(
    offer_id: UUID,
    status_data: OfferStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    offer = get_offer_or_404(db, offer_id)
    update_offer_status(db, offer, status_data.status.value, current_user.id)
    db.commit()
    return offer_to_dict(get_offer_or_404(db, offer_id), detail=True)


@router.get("/{offer_id}/activities")
async def list_offer_activities(
    offer_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    get_offer_or_404(db, offer_id)
    activities = (
        db.query(OfferActivity)
        .filter(OfferActivity.offer_id == offer_id)
        .order_by(OfferActivity.created_at.desc())
        .all()
    )
    return [activity_to_dict(activity) for activity in activities]


# Line items

@router.post("/{offer_id}/line-items", status_code=status.HTTP_201_CREATED)
async def add_line_item(
    offer_id: UUID,
    item_data: LineItemCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    offer = get_offer_or_404(db, offer_id)
    values = item_data.model_dump()
    values["position"] = values["position"] or next_position(offer)

    item = apply_line_total(OfferLineItem(**values))
    offer.line_items.append(item)
    recalculate_offer_totals(offer)
    db.commit()
    db.refresh(item)
    return line_item_to_dict(item)


@router.put("/{offer_id}/line-items/{item_id}")
async def update_line_item(
    offer_id: UUID,
    item_id: UUID,
    item_data: LineItemUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    offer = get_offer_or_404(db, offer_id)
    item = get_line_item_or_404(offer, item_id)

    for field, value in item_data.model_dump(exclude_unset=True).items():
        setattr(item, field, value)
    apply_line_total(item)
    recalculate_offer_totals(offer)

    db.commit()
    db.refresh(item)
    return line_item_to_dict(item)


@router.delete("/{offer_id}/line-items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_line_item(
    offer_id: UUID,
    item_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    offer = get_offer_or_404(db, offer_id)
    item = get_line_item_or_404(offer, item_id)
    offer.line_items.remove(item)
    recalculate_offer_totals(offer)
    db.commit()


@router.post("/{offer_id}/line-items/from-supplier-product", status_code=status.HTTP_201_CREATED)
async def add_line_item_from_supplier_product(
    offer_id: UUID,
    line_data: SupplierLineCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    """Add a catalog product as a line priced with the customer's terms."""
    offer = get_offer_or_404(db, offer_id)
    product = (
        db.query(SupplierProduct)
        .options(selectinload(SupplierProduct.supplier))
        .filter(SupplierProduct.id == line_data.supplier_product_id)
        .first()
    )
    if not product:
        raise NotFoundError("Supplier product", line_data.supplier_product_id)

    item = build_line_from_supplier_product(
        db,
        offer,
        product,
        line_data.quantity,
        custom_margin=line_data.custom_margin_percentage,
        custom_discount=line_data.discount_percentage,
        description=line_data.description,
        fixed_markup=line_data.fixed_markup,
        round_to=line_data.round_to,
    )
    item.section = line_data.section
    offer.line_items.append(item)
    recalculate_offer_totals(offer)

    log_offer_activity(
        db,
        offer,
        "line_item_added",
        f"Tilføjet fra leverandør: {product.supplier_name} ({product.supplier_sku})",
        current_user.id,
        {"supplier_product_id": str(product.id), "margin": item.supplier_margin_applied},
    )
    db.commit()
    db.refresh(item)
    return line_item_to_dict(item)


@router.get("/{offer_id}/supplier-products")
async def search_supplier_products_for_offer(
    offer_id: UUID,
    q: str = Query(..., min_length=2),
    supplier_id: Optional[UUID] = None,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    """Catalog search priced for the offer's customer."""
    offer = get_offer_or_404(db, offer_id)
    return search_products(db, q, offer.customer_id, supplier_id, limit)


@router.post("/{offer_id}/import-calculation")
async def import_calculation(
    offer_id: UUID,
    import_data: CalculationImport,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    offer = get_offer_or_404(db, offer_id)
    calculation = (
        db.query(KalkiaCalculation)
        .options(selectinload(KalkiaCalculation.rows))
        .filter(KalkiaCalculation.id == import_data.calculation_id)
        .first()
    )
    if not calculation:
        raise NotFoundError("Calculation", import_data.calculation_id)

    added = import_calculation_to_offer(
        db,
        offer,
        calculation,
        include_hidden_rows=import_data.include_hidden_rows,
        include_cost_prices=import_data.include_cost_prices,
        user_id=current_user.id,
    )
    db.commit()
    return {"lines_added": added, "offer": offer_to_dict(get_offer_or_404(db, offer_id), detail=True)}
