"""
Offer business rules.

Numbering, totals, status transitions and the helpers that turn supplier
products and Kalkia calculations into offer lines. Functions here mutate
ORM objects on the given session; committing is left to the caller.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from .pricing import (
    calculate_line_total,
    calculate_sale_price,
    compute_offer_db,
    get_traffic_light,
    is_db_below_send_threshold,
    resolve_margin,
    round_money,
)
from .margin_rules import get_effective_margin
from .supplier_pricing import get_supplier_agreement
from ..core.errors import InvalidTransitionError, ValidationError
from ..core.logging import get_logger
from ..core.settings import settings
from ..db.kalkia_models import KalkiaCalculation
from ..db.offer_models import Offer, OfferActivity, OfferLineItem, OfferStatus, OFFER_STATUS_LABELS
from ..db.supplier_models import SupplierProduct

logger = get_logger(__name__)


OFFER_TRANSITIONS = {
    OfferStatus.DRAFT: {OfferStatus.SENT},
    OfferStatus.SENT: {OfferStatus.VIEWED, OfferStatus.ACCEPTED, OfferStatus.REJECTED, OfferStatus.EXPIRED},
    OfferStatus.VIEWED: {OfferStatus.ACCEPTED, OfferStatus.REJECTED, OfferStatus.EXPIRED},
    OfferStatus.REJECTED: {OfferStatus.DRAFT},
    OfferStatus.EXPIRED: {OfferStatus.DRAFT},
    OfferStatus.ACCEPTED: set(),
}

STATUS_TIMESTAMPS = {
    OfferStatus.SENT: "sent_at",
    OfferStatus.VIEWED: "viewed_at",
    OfferStatus.ACCEPTED: "accepted_at",
    OfferStatus.REJECTED: "rejected_at",
}


def is_valid_offer_transition(current: str, target: str) -> bool:
    return OfferStatus(target) in OFFER_TRANSITIONS[OfferStatus(current)]


def generate_offer_number(db: Session, year: Optional[int] = None) -> str:
    """Next TILBUD-{year}-NNNN number; the sequence restarts every year."""
    year = year or date.today().year
    prefix = f"TILBUD-{year}-"

    numbers = db.query(Offer.offer_number).filter(Offer.offer_number.like(f"{prefix}%")).all()
    last = 0
    for (number,) in numbers:
        suffix = number[len(prefix):]
        if suffix.isdigit():
            last = max(last, int(suffix))

    return f"{prefix}{last + 1:04d}"


def default_valid_until(today: Optional[date] = None) -> date:
    return (today or date.today()) + timedelta(days=settings.OFFER_VALIDITY_DAYS)


def apply_line_total(item: OfferLineItem) -> OfferLineItem:
    item.total = round_money(
        calculate_line_total(item.quantity or 0, item.unit_price or 0, item.discount_percentage or 0)
    )
    return item


def recalculate_offer_totals(offer: Offer) -> Offer:
    """
    Refresh the offer totals from its lines.

    total = sum of line totals, discount on the total, tax on what is left.
    """
    total = sum(item.total or 0 for item in offer.line_items)
    discount_amount = total * ((offer.discount_percentage or 0) / 100)
    tax_amount = (total - discount_amount) * ((offer.tax_percentage or 0) / 100)

    offer.total_amount = round_money(total)
    offer.discount_amount = round_money(discount_amount)
    offer.tax_amount = round_money(tax_amount)
    offer.final_amount = round_money(total - discount_amount + tax_amount)
    return offer


def next_position(offer: Offer) -> int:
    return max((item.position for item in offer.line_items), default=0) + 1


def log_offer_activity(
    db: Session,
    offer: Offer,
    activity_type: str,
    description: str,
    user_id: Optional[UUID] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> OfferActivity:
    activity = OfferActivity(
        offer_id=offer.id,
        activity_type=activity_type,
        description=description,
        performed_by=user_id,
        metadata_json=metadata or {},
    )
    db.add(activity)
    return activity


def offer_db_summary(offer: Offer) -> Dict[str, Any]:
    summary = compute_offer_db(offer.line_items)
    return {
        **summary.model_dump(),
        "traffic_light": get_traffic_light(summary.db_percentage).model_dump() if summary.has_any_cost else None,
    }


def update_offer_status(db: Session, offer: Offer, target: str, user_id: Optional[UUID] = None) -> Offer:
    """
    Move an offer to a new status.

    Sending is blocked while the offer's DB is below the red threshold; offers
    without any cost information cannot be judged and are let through.
    """
    current = offer.status
    if not is_valid_offer_transition(current, target):
        raise InvalidTransitionError(current, target)

    target_status = OfferStatus(target)
    if target_status == OfferStatus.SENT:
        summary = compute_offer_db(offer.line_items)
        if summary.has_any_cost and is_db_below_send_threshold(summary.db_percentage):
            raise ValidationError(
                f"DB of {summary.db_percentage}% is below the minimum required to send",
                {"db_percentage": summary.db_percentage},
            )

    offer.status = target_status.value
    timestamp_field = STATUS_TIMESTAMPS.get(target_status)
    if timestamp_field:
        setattr(offer, timestamp_field, datetime.utcnow())

    log_offer_activity(
        db,
        offer,
        "status_change",
        f'Status ændret til "{OFFER_STATUS_LABELS[target_status]}"',
        user_id,
        {"old_status": current, "new_status": target_status.value},
    )
    logger.info("Offer status changed", offer_number=offer.offer_number, old=current, new=target_status.value)
    return offer


def build_line_from_supplier_product(
    db: Session,
    offer: Offer,
    product: SupplierProduct,
    quantity: float,
    custom_margin: Optional[float] = None,
    custom_discount: float = 0.0,
    description: Optional[str] = None,
    position: Optional[int] = None,
    fixed_markup: float = 0.0,
    round_to: Optional[float] = None,
) -> OfferLineItem:
    """
    Offer line priced from a catalog product.

    Without an explicit margin the supplier's margin rules decide margin,
    markup and rounding; markup or rounding passed in still win. When no rule
    applies a customer agreement with the supplier may lower the cost and
    replace the margin. Otherwise the product's own margin, then the
    materials default.
    """
    if not product.cost_price:
        raise ValidationError("Product has no cost price")
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")

    margin = resolve_margin(custom_margin, product.margin_percentage, "materials")
    cost = product.cost_price

    rule = None
    if custom_margin is None:
        rule = get_effective_margin(
            db,
            product.supplier_id,
            supplier_product_id=product.id,
            category=product.category,
            customer_id=offer.customer_id,
        )

    if rule is not None:
        margin = rule.margin_percentage
        if not fixed_markup:
            fixed_markup = rule.fixed_markup or 0.0
        if not round_to:
            round_to = rule.round_to
        logger.debug("Margin rule applied", rule_id=str(rule.id), rule_type=rule.rule_type, margin=margin)
    elif custom_margin is None and offer.customer_id:
        agreement = get_supplier_agreement(db, offer.customer_id, product.supplier_id)
        if agreement is not None:
            if agreement.discount_percentage:
                cost = product.cost_price * (1 - agreement.discount_percentage / 100)
            if agreement.custom_margin_percentage is not None:
                margin = agreement.custom_margin_percentage

    unit_price = calculate_sale_price(cost, margin, fixed_markup=fixed_markup, round_to=round_to)

    item = OfferLineItem(
        offer_id=offer.id,
        position=position if position is not None else next_position(offer),
        description=description or product.supplier_name,
        quantity=quantity,
        unit=product.unit or "stk",
        unit_price=unit_price,
        discount_percentage=custom_discount,
        cost_price=round_money(cost),
        supplier_product_id=product.id,
        supplier_cost_price_at_creation=product.cost_price,
        supplier_margin_applied=margin,
        supplier_name_at_creation=product.supplier.name if product.supplier else None,
    )
    return apply_line_total(item)


def lines_from_calculation(
    calculation: KalkiaCalculation,
    start_position: int,
    include_hidden_rows: bool = False,
    include_cost_prices: bool = True,
    scale_to_total: Optional[float] = None,
) -> List[OfferLineItem]:
    """
    Offer lines for the rows of a saved calculation.

    With scale_to_total the unit prices are scaled so the lines add up to that
    amount, which lets an offer carry overhead and margin from the roll-up.
    """
    rows = [row for row in calculation.rows if include_hidden_rows or row.show_on_offer]
    if not rows:
        raise ValidationError("Calculation has no rows to import")

    factor = 1.0
    rows_total = sum(row.total_sale for row in rows)
    if scale_to_total is not None and rows_total > 0:
        factor = scale_to_total / rows_total

    items = []
    for offset, row in enumerate(rows):
        quantity = row.quantity or 1
        item = OfferLineItem(
            position=start_position + offset,
            section=row.section,
            description=row.description,
            quantity=quantity,
            unit=row.unit or "stk",
            unit_price=round_money(row.total_sale * factor / quantity),
            discount_percentage=0.0,
            cost_price=round_money(row.total_cost / quantity) if include_cost_prices else None,
        )
        items.append(apply_line_total(item))
    return items
