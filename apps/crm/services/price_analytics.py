"""
Supplier price analytics: alerts on significant changes, offers exposed to
them, per product trends and per supplier statistics.
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from .pricing import round_money
from ..core.errors import NotFoundError
from ..core.logging import get_logger
from ..core.settings import settings
from ..db.kalkia_models import KalkiaVariantMaterial
from ..db.offer_models import Offer, OfferLineItem, OfferStatus
from ..db.supplier_models import PriceHistory, Supplier, SupplierProduct, SupplierSyncLog

logger = get_logger(__name__)

OPEN_OFFER_STATUSES = (OfferStatus.DRAFT.value, OfferStatus.SENT.value, OfferStatus.VIEWED.value)


def _significant(threshold: float):
    return or_(PriceHistory.change_percentage >= threshold, PriceHistory.change_percentage <= -threshold)


def _reference_counts(db: Session, column, product_ids) -> Counter:
    if not product_ids:
        return Counter()
    rows = db.query(column).filter(column.in_(product_ids)).all()
    return Counter(row[0] for row in rows)


def get_price_change_alerts(
    db: Session,
    threshold: Optional[float] = None,
    days_back: int = 7,
    limit: int = 50,
    supplier_id: Optional[UUID] = None,
) -> List[Dict[str, Any]]:
    """Significant cost price changes, newest first."""
    threshold = settings.PRICE_CHANGE_ALERT_THRESHOLD if threshold is None else threshold
    cutoff = datetime.utcnow() - timedelta(days=days_back)

    query = (
        db.query(PriceHistory)
        .join(SupplierProduct)
        .options(joinedload(PriceHistory.supplier_product).joinedload(SupplierProduct.supplier))
        .filter(PriceHistory.created_at >= cutoff, _significant(threshold))
    )
    if supplier_id:
        query = query.filter(SupplierProduct.supplier_id == supplier_id)
    rows = query.order_by(PriceHistory.created_at.desc()).limit(limit).all()

    product_ids = {row.supplier_product_id for row in rows}
    offer_counts = _reference_counts(db, OfferLineItem.supplier_product_id, product_ids)
    calculation_counts = _reference_counts(db, KalkiaVariantMaterial.supplier_product_id, product_ids)

    alerts = []
    for row in rows:
        product = row.supplier_product
        alerts.append({
            "id": str(row.id),
            "supplier_product_id": str(row.supplier_product_id),
            "product_name": product.supplier_name,
            "supplier_name": product.supplier.name if product.supplier else "",
            "supplier_sku": product.supplier_sku,
            "old_price": row.old_cost_price or 0,
            "new_price": row.new_cost_price,
            "change_percentage": row.change_percentage,
            "change_direction": "increase" if row.change_percentage > 0 else "decrease",
            "is_critical": abs(row.change_percentage) >= settings.PRICE_CRITICAL_CHANGE_THRESHOLD,
            "changed_at": row.created_at.isoformat(),
            "affects_offers": offer_counts.get(row.supplier_product_id, 0),
            "affects_calculations": calculation_counts.get(row.supplier_product_id, 0),
        })
    return alerts


def get_affected_offers(
    db: Session, supplier_product_id: Optional[UUID] = None, days_back: int = 30
) -> List[Dict[str, Any]]:
    """
    Open offers with lines on products whose price changed recently.

    Per product the change with the highest new price is used. The potential
    loss of a line is the price increase over what the line was priced on.
    """
    cutoff = datetime.utcnow() - timedelta(days=days_back)
    query = db.query(PriceHistory).filter(PriceHistory.created_at >= cutoff)
    if supplier_product_id:
        query = query.filter(PriceHistory.supplier_product_id == supplier_product_id)

    changes = {}
    for change in query.all():
        new_price = change.new_cost_price or 0
        existing = changes.get(change.supplier_product_id)
        if existing is None or new_price > existing[1]:
            changes[change.supplier_product_id] = (change.old_cost_price or 0, new_price)
    if not changes:
        return []

    line_items = (
        db.query(OfferLineItem)
        .join(Offer)
        .options(joinedload(OfferLineItem.offer).joinedload(Offer.customer))
        .filter(
            OfferLineItem.supplier_product_id.in_(list(changes)),
            Offer.status.in_(OPEN_OFFER_STATUSES),
        )
        .all()
    )

    grouped = defaultdict(lambda: {"items": 0, "loss": 0.0})
    offers = {}
    for item in line_items:
        old_price, new_price = changes[item.supplier_product_id]
        priced_on = item.supplier_cost_price_at_creation or old_price
        entry = grouped[item.offer_id]
        entry["items"] += 1
        entry["loss"] += (new_price - priced_on) * item.quantity
        offers[item.offer_id] = item.offer

    result = []
    for offer_id, entry in grouped.items():
        offer = offers[offer_id]
        result.append({
            "offer_id": str(offer_id),
            "offer_number": offer.offer_number,
            "offer_title": offer.title,
            "customer_name": offer.customer.company_name if offer.customer else "Ukendt",
            "status": offer.status,
            "total_amount": offer.total_amount or 0,
            "affected_items": entry["items"],
            "potential_loss": round_money(entry["loss"]),
            "created_at": offer.created_at.isoformat(),
        })

    result.sort(key=lambda row: row["potential_loss"], reverse=True)
    return result


def _trend(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if not current or not previous:
        return None
    return round_money((current - previous) / previous * 100)


def get_price_trends(db: Session, supplier_id: UUID, limit: int = 100) -> List[Dict[str, Any]]:
    supplier = db.query(Supplier).filter(Supplier.id == supplier_id).first()
    if not supplier:
        raise NotFoundError("Supplier", supplier_id)

    now = datetime.utcnow()
    days_30 = now - timedelta(days=30)
    days_90 = now - timedelta(days=90)

    products = (
        db.query(SupplierProduct)
        .filter(SupplierProduct.supplier_id == supplier_id, SupplierProduct.cost_price.isnot(None))
        .limit(limit)
        .all()
    )

    history_by_product = defaultdict(list)
    if products:
        history = (
            db.query(PriceHistory)
            .filter(PriceHistory.supplier_product_id.in_([product.id for product in products]))
            .order_by(PriceHistory.created_at.asc())
            .all()
        )
        for row in history:
            history_by_product[row.supplier_product_id].append(row)

    trends = []
    for product in products:
        price_30 = None
        price_90 = None
        changes_30 = 0
        # Ascending order: the last change inside each window wins
        for row in history_by_product[product.id]:
            if days_90 < row.created_at <= days_30:
                price_30 = row.old_cost_price
            if row.created_at <= days_90:
                price_90 = row.old_cost_price
            if row.created_at >= days_30:
                changes_30 += 1

        if changes_30 >= 5:
            volatility = "high"
        elif changes_30 >= 2:
            volatility = "moderate"
        else:
            volatility = "stable"

        trends.append({
            "supplier_product_id": str(product.id),
            "product_name": product.supplier_name,
            "supplier_name": supplier.name,
            "current_price": product.cost_price,
            "price_30_days_ago": price_30,
            "price_90_days_ago": price_90,
            "trend_30_days": _trend(product.cost_price, price_30),
            "trend_90_days": _trend(product.cost_price, price_90),
            "volatility": volatility,
            "change_count_30_days": changes_30,
        })
    return trends


def _average(values: List[float]) -> float:
    return round_money(sum(values) / len(values)) if values else 0.0


def get_supplier_price_stats(db: Session) -> List[Dict[str, Any]]:
    now = datetime.utcnow()
    days_30 = now - timedelta(days=30)
    stale_before = now - timedelta(days=settings.SUPPLIER_PRICE_STALE_DAYS)

    stats = []
    for supplier in db.query(Supplier).filter(Supplier.is_active.is_(True)).order_by(Supplier.name).all():
        products = db.query(SupplierProduct).filter(SupplierProduct.supplier_id == supplier.id)
        total_products = products.count()
        stale_products = products.filter(
            or_(SupplierProduct.last_synced_at.is_(None), SupplierProduct.last_synced_at < stale_before)
        ).count()

        recent = [
            row[0] for row in (
                db.query(PriceHistory.change_percentage)
                .join(SupplierProduct)
                .filter(SupplierProduct.supplier_id == supplier.id, PriceHistory.created_at >= days_30)
                .all()
            )
        ]
        changes = [change for change in recent if change is not None]

        last_sync = (
            db.query(func.max(SupplierSyncLog.started_at))
            .filter(SupplierSyncLog.supplier_id == supplier.id, SupplierSyncLog.status == "completed")
            .scalar()
        )

        stats.append({
            "supplier_id": str(supplier.id),
            "supplier_name": supplier.name,
            "total_products": total_products,
            "products_with_price_changes": len(recent),
            "average_price_increase": _average([c for c in changes if c > 0]),
            "average_price_decrease": _average([c for c in changes if c < 0]),
            "last_sync_at": last_sync.isoformat() if last_sync else None,
            "stale_products": stale_products,
        })
    return stats


def get_price_alert_summary(db: Session) -> Dict[str, int]:
    """Dashboard counts for the last 7 days."""
    cutoff = datetime.utcnow() - timedelta(days=7)
    changes = [
        row[0] for row in (
            db.query(PriceHistory.change_percentage)
            .filter(PriceHistory.created_at >= cutoff, _significant(settings.PRICE_CHANGE_ALERT_THRESHOLD))
            .all()
        )
    ]

    return {
        "total_alerts": len(changes),
        "price_increases": sum(1 for c in changes if c > 0),
        "price_decreases": sum(1 for c in changes if c < 0),
        "critical_alerts": sum(1 for c in changes if abs(c) > settings.PRICE_SUMMARY_CRITICAL_THRESHOLD),
        "affected_offers": len(get_affected_offers(db, days_back=7)),
    }


def get_product_price_history(db: Session, supplier_product_id: UUID, limit: int = 50) -> List[Dict[str, Any]]:
    rows = (
        db.query(PriceHistory)
        .filter(PriceHistory.supplier_product_id == supplier_product_id)
        .order_by(PriceHistory.created_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": str(row.id),
            "old_price": row.old_cost_price,
            "new_price": row.new_cost_price,
            "old_list_price": row.old_list_price,
            "new_list_price": row.new_list_price,
            "change_percentage": row.change_percentage,
            "change_source": row.change_source,
            "created_at": row.created_at.isoformat(),
        }
        for row in rows
    ]
