"""
Tests for price change alerts, exposed offers and supplier statistics.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from ..core.errors import NotFoundError
from ..db.offer_models import Offer, OfferLineItem
from ..db.supplier_models import PriceHistory, SupplierProduct
from ..services.price_analytics import (
    get_affected_offers,
    get_price_alert_summary,
    get_price_change_alerts,
    get_price_trends,
    get_supplier_price_stats,
)

ANALYTICS = "/api/v1/price-analytics"


def record_change(db: Session, product: SupplierProduct, old: float, new: float, days_ago: int = 1) -> PriceHistory:
    history = PriceHistory(
        supplier_product_id=product.id,
        old_cost_price=old,
        new_cost_price=new,
        change_percentage=round((new - old) / old * 100, 2),
        created_at=datetime.utcnow() - timedelta(days=days_ago),
    )
    db.add(history)
    db.commit()
    return history


@pytest.fixture
def second_product(test_db: Session, test_supplier) -> SupplierProduct:
    product = SupplierProduct(
        supplier_id=test_supplier.id,
        supplier_sku="AO-3003",
        supplier_name="Samledåse",
        cost_price=50.0,
    )
    test_db.add(product)
    test_db.commit()
    return product


@pytest.fixture
def open_offer(test_db: Session, test_customer, test_product) -> Offer:
    """Draft offer with two metres of cable priced at cost 100."""
    offer = Offer(offer_number="TILBUD-2024-0001", title="Carport", customer_id=test_customer.id, total_amount=250.0)
    offer.line_items.append(OfferLineItem(
        description="Kabel",
        quantity=2,
        unit_price=125.0,
        total=250.0,
        supplier_product_id=test_product.id,
        supplier_cost_price_at_creation=100.0,
    ))
    test_db.add(offer)
    test_db.commit()
    return offer


def test_alerts_respect_threshold(test_db, test_product, second_product, open_offer):
    record_change(test_db, test_product, 100.0, 130.0)
    record_change(test_db, second_product, 50.0, 53.0)
    record_change(test_db, second_product, 53.0, 51.5)

    alerts = get_price_change_alerts(test_db)

    assert len(alerts) == 2
    by_sku = {alert["supplier_sku"]: alert for alert in alerts}
    assert by_sku["AO-1001"]["is_critical"] is True
    assert by_sku["AO-1001"]["affects_offers"] == 1
    assert by_sku["AO-1001"]["change_direction"] == "increase"
    assert by_sku["AO-3003"]["is_critical"] is False
    assert by_sku["AO-3003"]["affects_offers"] == 0


def test_alerts_outside_window_are_dropped(test_db, test_product):
    record_change(test_db, test_product, 100.0, 150.0, days_ago=10)
    assert get_price_change_alerts(test_db, days_back=7) == []
    assert len(get_price_change_alerts(test_db, days_back=30)) == 1


def test_affected_offers_potential_loss(test_db, test_product, open_offer):
    record_change(test_db, test_product, 100.0, 110.0, days_ago=3)
    record_change(test_db, test_product, 110.0, 130.0, days_ago=1)

    affected = get_affected_offers(test_db)

    assert len(affected) == 1
    assert affected[0]["offer_number"] == "TILBUD-2024-0001"
    assert affected[0]["customer_name"] == "Solgården ApS"
    assert affected[0]["affected_items"] == 1
    assert affected[0]["potential_loss"] == 60.0


def test_closed_offers_are_not_affected(test_db, test_product, open_offer):
    open_offer.status = "accepted"
    test_db.commit()
    record_change(test_db, test_product, 100.0, 130.0)

    assert get_affected_offers(test_db) == []


def test_trends(test_db, test_supplier, test_product):
    record_change(test_db, test_product, 80.0, 100.0, days_ago=45)

    trends = get_price_trends(test_db, test_supplier.id)

    assert trends[0]["price_30_days_ago"] == 80.0
    assert trends[0]["trend_30_days"] == 25.0
    assert trends[0]["price_90_days_ago"] is None
    assert trends[0]["volatility"] == "stable"


def test_trend_volatility(test_db, test_supplier, test_product, second_product):
    record_change(test_db, test_product, 60.0, 70.0, days_ago=100)
    for days_ago in range(1, 6):
        record_change(test_db, test_product, 95.0, 100.0, days_ago=days_ago)
    record_change(test_db, second_product, 45.0, 48.0, days_ago=3)
    record_change(test_db, second_product, 48.0, 50.0, days_ago=2)

    trends = {trend["product_name"]: trend for trend in get_price_trends(test_db, test_supplier.id)}

    cable = trends["Installationskabel 3G1,5"]
    assert cable["volatility"] == "high"
    assert cable["change_count_30_days"] == 5
    assert cable["price_90_days_ago"] == 60.0
    assert cable["trend_90_days"] == 66.67
    assert cable["price_30_days_ago"] is None

    box = trends["Samledåse"]
    assert box["volatility"] == "moderate"
    assert box["change_count_30_days"] == 2
    assert box["price_90_days_ago"] is None


def test_trends_unknown_supplier(test_db):
    with pytest.raises(NotFoundError):
        get_price_trends(test_db, uuid.uuid4())


def test_supplier_stats(test_db, test_product, second_product):
    record_change(test_db, test_product, 100.0, 110.0)
    record_change(test_db, second_product, 50.0, 45.0)

    stats = get_supplier_price_stats(test_db)

    assert stats[0]["supplier_name"] == "AO"
    assert stats[0]["total_products"] == 2
    assert stats[0]["products_with_price_changes"] == 2
    assert stats[0]["average_price_increase"] == 10.0
    assert stats[0]["average_price_decrease"] == -10.0
    assert stats[0]["stale_products"] == 2
    assert stats[0]["last_sync_at"] is None


def test_supplier_stats_count_changes_without_percentage(test_db, test_product):
    test_db.add(PriceHistory(supplier_product_id=test_product.id, old_cost_price=None, new_cost_price=100.0))
    test_db.commit()
    record_change(test_db, test_product, 100.0, 110.0)

    stats = get_supplier_price_stats(test_db)

    assert stats[0]["products_with_price_changes"] == 2
    assert stats[0]["average_price_increase"] == 10.0


def test_summary(test_db, test_product, second_product, open_offer):
    record_change(test_db, test_product, 100.0, 130.0)
    record_change(test_db, second_product, 50.0, 47.0)

    assert get_price_alert_summary(test_db) == {
        "total_alerts": 2,
        "price_increases": 1,
        "price_decreases": 1,
        "critical_alerts": 1,
        "affected_offers": 1,
    }


def test_routes(client: TestClient, auth_headers: dict, test_db, test_product):
    record_change(test_db, test_product, 100.0, 130.0)

    alerts = client.get(f"{ANALYTICS}/alerts", params={"threshold": 40}, headers=auth_headers).json()
    assert alerts == []

    summary = client.get(f"{ANALYTICS}/summary", headers=auth_headers).json()
    assert summary["total_alerts"] == 1

    response = client.get(f"{ANALYTICS}/trends/00000000-0000-0000-0000-000000000000", headers=auth_headers)
    assert response.status_code == 404

    assert client.get(f"{ANALYTICS}/supplier-stats", headers=auth_headers).status_code == 200
    assert client.get(f"{ANALYTICS}/affected-offers", headers=auth_headers).json() == []
