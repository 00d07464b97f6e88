"""
Tests for supplier margin rules and their use on offer lines.
"""

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from ..core.errors import ValidationError
from ..db.offer_models import Offer
from ..db.supplier_models import CustomerSupplierPrice, Supplier, SupplierMarginRule, SupplierProduct
from ..services.margin_rules import (
    get_effective_margin,
    margin_rule_summary,
    sale_price_with_rules,
    set_default_supplier_margin,
    validate_rule_scope,
)
from ..services.offers import build_line_from_supplier_product

SUPPLIERS = "/api/v1/suppliers"


def add_rule(db: Session, supplier: Supplier, rule_type: str, margin: float, **values) -> SupplierMarginRule:
    rule = SupplierMarginRule(supplier_id=supplier.id, rule_type=rule_type, margin_percentage=margin, **values)
    db.add(rule)
    db.commit()
    return rule


class TestEffectiveMargin:
    def test_no_rules(self, test_db, test_supplier, test_product):
        assert get_effective_margin(test_db, test_supplier.id, test_product.id) is None

    def test_supplier_rule_is_the_fallback(self, test_db, test_supplier, test_product):
        add_rule(test_db, test_supplier, "supplier", 30.0)
        add_rule(test_db, test_supplier, "category", 35.0, category="Kabler")

        rule = get_effective_margin(test_db, test_supplier.id, test_product.id)
        assert rule.rule_type == "supplier"

        rule = get_effective_margin(test_db, test_supplier.id, test_product.id, category="Kabler")
        assert rule.margin_percentage == 35.0

    def test_most_specific_scope_wins(self, test_db, test_supplier, test_customer, test_product):
        add_rule(test_db, test_supplier, "customer", 22.0, customer_id=test_customer.id)
        add_rule(test_db, test_supplier, "product", 18.0, supplier_product_id=test_product.id)
        add_rule(test_db, test_supplier, "supplier", 30.0, priority=100)

        rule = get_effective_margin(test_db, test_supplier.id, test_product.id, customer_id=test_customer.id)
        assert rule.rule_type == "product"

        rule = get_effective_margin(test_db, test_supplier.id, None, customer_id=test_customer.id)
        assert rule.rule_type == "customer"

    def test_subcategory_needs_both_names(self, test_db, test_supplier):
        add_rule(test_db, test_supplier, "subcategory", 40.0, category="Kabler", sub_category="Installation")

        assert get_effective_margin(test_db, test_supplier.id, category="Kabler") is None
        rule = get_effective_margin(test_db, test_supplier.id, category="Kabler", sub_category="Installation")
        assert rule.margin_percentage == 40.0

    def test_priority_within_scope(self, test_db, test_supplier):
        add_rule(test_db, test_supplier, "category", 30.0, category="Kabler", priority=1)
        add_rule(test_db, test_supplier, "category", 45.0, category="Kabler", priority=5)

        assert get_effective_margin(test_db, test_supplier.id, category="Kabler").margin_percentage == 45.0

    def test_inactive_and_expired_rules_are_ignored(self, test_db, test_supplier):
        add_rule(test_db, test_supplier, "supplier", 30.0, is_active=False)
        add_rule(test_db, test_supplier, "supplier", 40.0, valid_to=date.today() - timedelta(days=1))
        add_rule(test_db, test_supplier, "supplier", 50.0, valid_from=date.today() + timedelta(days=1))

        assert get_effective_margin(test_db, test_supplier.id) is None


def test_scope_validation():
    with pytest.raises(ValidationError):
        validate_rule_scope("category")
    with pytest.raises(ValidationError):
        validate_rule_scope("subcategory", category="Kabler")
    with pytest.raises(ValidationError):
        validate_rule_scope("product")
    with pytest.raises(ValidationError):
        validate_rule_scope("customer")
    validate_rule_scope("supplier")


def test_sale_price_with_rules(test_db, test_supplier):
    assert sale_price_with_rules(test_db, 100.0, test_supplier.id)["sale_price"] == 125.0

    add_rule(test_db, test_supplier, "supplier", 20.0, fixed_markup=5.0, round_to=10.0)
    result = sale_price_with_rules(test_db, 100.0, test_supplier.id)

    assert result["sale_price"] == 130.0
    assert result["rule_type"] == "supplier"


def test_default_margin_is_upserted(test_db, test_supplier):
    first = set_default_supplier_margin(test_db, test_supplier.id, 25.0)
    test_db.commit()
    second = set_default_supplier_margin(test_db, test_supplier.id, 28.0, fixed_markup=2.0)
    test_db.commit()

    assert first.id == second.id
    summary = margin_rule_summary(test_db, test_supplier.id)
    assert summary["total_rules"] == 1
    assert summary["default_margin"] == 28.0
    assert summary["rules_by_type"]["supplier"] == 1


class TestOfferLines:
    def make_offer(self, db: Session, **values) -> Offer:
        offer = Offer(offer_number="TILBUD-2024-0001", title="Carport", **values)
        db.add(offer)
        db.commit()
        return offer

    def test_rule_sets_margin_markup_and_rounding(self, test_db, test_supplier, test_product):
        add_rule(test_db, test_supplier, "supplier", 20.0, fixed_markup=5.0, round_to=10.0)
        offer = self.make_offer(test_db)

        item = build_line_from_supplier_product(test_db, offer, test_product, 2)

        assert item.unit_price == 130.0
        assert item.total == 260.0
        assert item.supplier_margin_applied == 20.0

    def test_rule_wins_over_customer_agreement(self, test_db, test_supplier, test_customer, test_product):
        add_rule(test_db, test_supplier, "customer", 40.0, customer_id=test_customer.id)
        test_db.add(CustomerSupplierPrice(
            customer_id=test_customer.id,
            supplier_id=test_supplier.id,
            discount_percentage=10.0,
        ))
        test_db.commit()
        offer = self.make_offer(test_db, customer_id=test_customer.id)

        item = build_line_from_supplier_product(test_db, offer, test_product, 1)

        assert item.cost_price == 100.0
        assert item.unit_price == 140.0

    def test_category_rule_matches_product_category(self, test_db, test_supplier, test_product: SupplierProduct):
        test_product.category = "Kabler"
        add_rule(test_db, test_supplier, "category", 50.0, category="Kabler")
        offer = self.make_offer(test_db)

        item = build_line_from_supplier_product(test_db, offer, test_product, 1)
        assert item.unit_price == 150.0

    def test_explicit_margin_skips_rules(self, test_db, test_supplier, test_product):
        add_rule(test_db, test_supplier, "supplier", 20.0, round_to=10.0)
        offer = self.make_offer(test_db)

        item = build_line_from_supplier_product(test_db, offer, test_product, 1, custom_margin=33.0)
        assert item.unit_price == 133.0


# API

def test_margin_rule_api(client: TestClient, auth_headers: dict, test_supplier, test_product):
    base = f"{SUPPLIERS}/{test_supplier.id}"

    response = client.post(
        f"{base}/margin-rules",
        json={"rule_type": "category", "margin_percentage": 30},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"

    response = client.post(
        f"{base}/margin-rules",
        json={"rule_type": "product", "supplier_product_id": str(test_product.id), "margin_percentage": 18, "round_to": 5},
        headers=auth_headers,
    )
    assert response.status_code == 201
    rule = response.json()
    assert rule["is_active"] is True

    effective = client.get(
        f"{base}/effective-margin", params={"supplier_product_id": str(test_product.id)}, headers=auth_headers
    ).json()
    assert effective["rule_id"] == rule["id"]
    assert effective["round_to"] == 5

    response = client.put(f"{SUPPLIERS}/margin-rules/{rule['id']}", json={"margin_percentage": 22}, headers=auth_headers)
    assert response.json()["margin_percentage"] == 22

    response = client.post(f"{SUPPLIERS}/margin-rules/{rule['id']}/toggle", headers=auth_headers)
    assert response.json()["is_active"] is False

    effective = client.get(
        f"{base}/effective-margin", params={"supplier_product_id": str(test_product.id)}, headers=auth_headers
    )
    assert effective.json() is None

    response = client.delete(f"{SUPPLIERS}/margin-rules/{rule['id']}", headers=auth_headers)
    assert response.status_code == 204
    assert client.get(f"{base}/margin-rules", headers=auth_headers).json() == []


def test_margin_rule_rejects_null_margin(client: TestClient, auth_headers: dict, test_db, test_supplier):
    rule = add_rule(test_db, test_supplier, "supplier", 25.0)

    response = client.put(f"{SUPPLIERS}/margin-rules/{rule.id}", json={"margin_percentage": None}, headers=auth_headers)
    assert response.status_code == 422


def test_default_margin_api(client: TestClient, auth_headers: dict, test_supplier):
    base = f"{SUPPLIERS}/{test_supplier.id}"

    first = client.put(f"{base}/default-margin", json={"margin_percentage": 25}, headers=auth_headers).json()
    second = client.put(f"{base}/default-margin", json={"margin_percentage": 30}, headers=auth_headers).json()

    assert first["id"] == second["id"]
    assert second["rule_type"] == "supplier"
    summary = client.get(f"{base}/margin-rules/summary", headers=auth_headers).json()
    assert summary["default_margin"] == 30
    assert summary["active_rules"] == 1
