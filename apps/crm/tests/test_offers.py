"""
Tests for offers: numbering, totals, status flow and catalog lines.
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from ..core.errors import InvalidTransitionError, ValidationError
from ..db.offer_models import Offer, OfferLineItem, OfferStatus
from ..db.supplier_models import CustomerSupplierPrice
from ..services.offers import (
    apply_line_total,
    build_line_from_supplier_product,
    generate_offer_number,
    is_valid_offer_transition,
    recalculate_offer_totals,
    update_offer_status,
)

OFFERS = "/api/v1/offers"


def make_offer(db: Session, number: str = "TILBUD-2024-0001", **values) -> Offer:
    offer = Offer(offer_number=number, title="Solcelleanlæg 10 kW", **values)
    db.add(offer)
    db.commit()
    db.refresh(offer)
    return offer


def add_line(db: Session, offer: Offer, unit_price: float, cost_price=None, quantity: float = 1) -> OfferLineItem:
    item = apply_line_total(OfferLineItem(
        offer_id=offer.id,
        position=len(offer.line_items) + 1,
        description="Linje",
        quantity=quantity,
        unit_price=unit_price,
        cost_price=cost_price,
    ))
    offer.line_items.append(item)
    db.commit()
    return item


class TestNumbering:
    def test_first_number_of_year(self, test_db: Session):
        assert generate_offer_number(test_db, 2024) == "TILBUD-2024-0001"

    def test_continues_from_highest(self, test_db: Session):
        make_offer(test_db, "TILBUD-2024-0007")
        make_offer(test_db, "TILBUD-2024-0003")
        assert generate_offer_number(test_db, 2024) == "TILBUD-2024-0008"

    def test_sequence_restarts_each_year(self, test_db: Session):
        make_offer(test_db, "TILBUD-2024-0007")
        assert generate_offer_number(test_db, 2025) == "TILBUD-2025-0001"


def test_totals_apply_discount_before_tax():
    offer = Offer(discount_percentage=10.0, tax_percentage=25.0)
    offer.line_items = [
        apply_line_total(OfferLineItem(quantity=2, unit_price=1000.0, discount_percentage=0.0)),
        apply_line_total(OfferLineItem(quantity=1, unit_price=200.0, discount_percentage=50.0)),
    ]

    recalculate_offer_totals(offer)

    assert offer.total_amount == 2100.0
    assert offer.discount_amount == 210.0
    assert offer.tax_amount == 472.5
    assert offer.final_amount == 2362.5


def test_transitions():
    assert is_valid_offer_transition("draft", "sent") is True
    assert is_valid_offer_transition("draft", "accepted") is False
    assert is_valid_offer_transition("viewed", "accepted") is True
    assert is_valid_offer_transition("rejected", "draft") is True
    assert is_valid_offer_transition("accepted", "draft") is False


class TestStatusChange:
    def test_send_stamps_time_and_logs(self, test_db: Session):
        offer = make_offer(test_db)
        add_line(test_db, offer, 100.0, cost_price=50.0)

        update_offer_status(test_db, offer, "sent")
        test_db.commit()

        assert offer.status == OfferStatus.SENT.value
        assert offer.sent_at is not None
        assert offer.activities[-1].description == 'Status ændret til "Sendt"'
        assert offer.activities[-1].metadata_json == {"old_status": "draft", "new_status": "sent"}

    def test_invalid_transition(self, test_db: Session):
        offer = make_offer(test_db)
        with pytest.raises(InvalidTransitionError):
            update_offer_status(test_db, offer, "accepted")

    def test_empty_offer_is_not_judged(self, test_db: Session):
        offer = make_offer(test_db)
        update_offer_status(test_db, offer, "sent")
        assert offer.status == "sent"

    def test_cannot_send_below_red_threshold(self, test_db: Session):
        offer = make_offer(test_db)
        add_line(test_db, offer, 100.0, cost_price=95.0)

        with pytest.raises(ValidationError) as exc_info:
            update_offer_status(test_db, offer, "sent")
        assert exc_info.value.details == {"db_percentage": 5}

    def test_offer_without_costs_can_be_sent(self, test_db: Session):
        offer = make_offer(test_db)
        add_line(test_db, offer, 100.0)

        update_offer_status(test_db, offer, "sent")
        assert offer.status == "sent"


class TestSupplierLines:
    def test_material_margin_default(self, test_db, test_product):
        offer = make_offer(test_db)
        item = build_line_from_supplier_product(test_db, offer, test_product, 10)

        assert item.unit_price == 125.0
        assert item.total == 1250.0
        assert item.cost_price == 100.0
        assert item.supplier_cost_price_at_creation == 100.0
        assert item.supplier_margin_applied == 25.0
        assert item.supplier_name_at_creation == "AO"
        assert item.position == 1

    def test_customer_agreement(self, test_db, test_customer, test_supplier, test_product):
        test_db.add(CustomerSupplierPrice(
            customer_id=test_customer.id,
            supplier_id=test_supplier.id,
            discount_percentage=10.0,
            custom_margin_percentage=30.0,
        ))
        test_db.commit()
        offer = make_offer(test_db, customer_id=test_customer.id)

        item = build_line_from_supplier_product(test_db, offer, test_product, 1)

        assert item.cost_price == 90.0
        assert item.unit_price == 117.0
        assert item.supplier_margin_applied == 30.0

    def test_explicit_margin_ignores_agreement(self, test_db, test_customer, test_supplier, test_product):
        test_db.add(CustomerSupplierPrice(
            customer_id=test_customer.id,
            supplier_id=test_supplier.id,
            discount_percentage=10.0,
        ))
        test_db.commit()
        offer = make_offer(test_db, customer_id=test_customer.id)

        item = build_line_from_supplier_product(test_db, offer, test_product, 1, custom_margin=50.0)
        assert item.unit_price == 150.0

    def test_product_without_cost_rejected(self, test_db, test_product):
        test_product.cost_price = None
        offer = make_offer(test_db)
        with pytest.raises(ValidationError):
            build_line_from_supplier_product(test_db, offer, test_product, 1)


# API

def create_offer(client: TestClient, auth_headers: dict, **payload) -> dict:
    body = {
        "title": "Solcelleanlæg 10 kW",
        "discount_percentage": 10,
        "tax_percentage": 25,
        "line_items": [
            {"description": "Paneler", "quantity": 2, "unit_price": 1000, "cost_price": 600},
        ],
    }
    body.update(payload)
    response = client.post(OFFERS, json=body, headers=auth_headers)
    assert response.status_code == 201
    return response.json()


def test_create_offer(client: TestClient, auth_headers: dict):
    offer = create_offer(client, auth_headers)

    assert offer["offer_number"] == f"TILBUD-{date.today().year}-0001"
    assert offer["status"] == "draft"
    assert offer["total_amount"] == 2000.0
    assert offer["discount_amount"] == 200.0
    assert offer["tax_amount"] == 450.0
    assert offer["final_amount"] == 2250.0
    assert offer["valid_until"] is not None
    assert offer["db_summary"]["db_percentage"] == 40
    assert offer["db_summary"]["traffic_light"]["level"] == "green"
    assert offer["line_items"][0]["margin_percentage"] == 67


def test_offer_requires_auth(client: TestClient):
    response = client.get(OFFERS)
    assert response.status_code in (401, 403)


def test_unknown_offer_returns_404(client: TestClient, auth_headers: dict):
    response = client.get(f"{OFFERS}/00000000-0000-0000-0000-000000000000", headers=auth_headers)

    assert response.status_code == 404
    body = response.json()
    assert body["status"] == "error"
    assert body["code"] == "not_found"


def test_status_flow_through_api(client: TestClient, auth_headers: dict):
    offer = create_offer(client, auth_headers)

    response = client.patch(f"{OFFERS}/{offer['id']}/status", json={"status": "sent"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["sent_at"] is not None

    response = client.patch(f"{OFFERS}/{offer['id']}/status", json={"status": "draft"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_transition"

    activities = client.get(f"{OFFERS}/{offer['id']}/activities", headers=auth_headers).json()
    assert {activity["activity_type"] for activity in activities} == {"created", "status_change"}


def test_line_item_changes_update_totals(client: TestClient, auth_headers: dict):
    offer = create_offer(client, auth_headers, discount_percentage=0)

    response = client.post(
        f"{OFFERS}/{offer['id']}/line-items",
        json={"description": "Inverter", "quantity": 1, "unit_price": 500},
        headers=auth_headers,
    )
    assert response.status_code == 201
    item = response.json()
    assert item["position"] == 2

    detail = client.get(f"{OFFERS}/{offer['id']}", headers=auth_headers).json()
    assert detail["total_amount"] == 2500.0

    response = client.delete(f"{OFFERS}/{offer['id']}/line-items/{item['id']}", headers=auth_headers)
    assert response.status_code == 204

    detail = client.get(f"{OFFERS}/{offer['id']}", headers=auth_headers).json()
    assert detail["total_amount"] == 2000.0
    assert len(detail["line_items"]) == 1


def test_line_from_supplier_product(client: TestClient, auth_headers: dict, test_product):
    offer = create_offer(client, auth_headers, line_items=[])

    response = client.post(
        f"{OFFERS}/{offer['id']}/line-items/from-supplier-product",
        json={"supplier_product_id": str(test_product.id), "quantity": 10},
        headers=auth_headers,
    )

    assert response.status_code == 201
    item = response.json()
    assert item["unit_price"] == 125.0
    assert item["supplier_margin_applied"] == 25.0

    activities = client.get(f"{OFFERS}/{offer['id']}/activities", headers=auth_headers).json()
    assert any(a["description"] == "Tilføjet fra leverandør: Installationskabel 3G1,5 (AO-1001)" for a in activities)


def test_list_offers_filters_by_status(client: TestClient, auth_headers: dict):
    create_offer(client, auth_headers)
    sent = create_offer(client, auth_headers)
    client.patch(f"{OFFERS}/{sent['id']}/status", json={"status": "sent"}, headers=auth_headers)

    body = client.get(OFFERS, params={"status": "sent"}, headers=auth_headers).json()

    assert body["total"] == 1
    assert body["offers"][0]["id"] == sent["id"]


def test_update_rejects_null_on_required_fields(client: TestClient, auth_headers: dict):
    offer = create_offer(client, auth_headers)

    for field in ("title", "discount_percentage", "tax_percentage"):
        response = client.put(f"{OFFERS}/{offer['id']}", json={field: None}, headers=auth_headers)
        assert response.status_code == 422

    item_id = offer["line_items"][0]["id"]
    response = client.put(f"{OFFERS}/{offer['id']}/line-items/{item_id}", json={"unit_price": None}, headers=auth_headers)
    assert response.status_code == 422

    response = client.put(f"{OFFERS}/{offer['id']}", json={"notes": None, "title": "Ny titel"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["title"] == "Ny titel"
