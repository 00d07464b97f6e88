"""
Price analytics routes.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.auth import get_current_user
from ..core.database import get_db
from ..db.models import User
from ..services.price_analytics import (
    get_affected_offers,
    get_price_alert_summary,
    get_price_change_alerts,
    get_price_trends,
    get_supplier_price_stats,
)

router = APIRouter()


@router.get("/alerts")
async def price_alerts(
    threshold: Optional[float] = Query(None, ge=0),
    days_back: int = Query(7, ge=1, le=365),
    limit: int = Query(50, ge=1, le=200),
    supplier_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    return get_price_change_alerts(db, threshold, days_back, limit, supplier_id)


@router.get("/affected-offers")
async def affected_offers(
    supplier_product_id: Optional[UUID] = None,
    days_back: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    return get_affected_offers(db, supplier_product_id, days_back)


@router.get("/trends/{supplier_id}")
async def price_trends(
    supplier_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    return get_price_trends(db, supplier_id, limit)


@router.get("/supplier-stats")
async def supplier_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    return get_supplier_price_stats(db)


@router.get("/summary")
async def alert_summary(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, int]:
    return get_price_alert_summary(db)
