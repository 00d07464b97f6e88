"""
Tests for the supplier catalog routes and customer agreements.
"""

from fastapi.testclient import TestClient

SUPPLIERS = "/api/v1/suppliers"


def test_create_supplier_normalizes_code(client: TestClient, auth_headers: dict):
    response = client.post(
        SUPPLIERS,
        json={"name": "Lemvigh-Müller", "code": " lm ", "default_margin_percentage": 30, "is_preferred": True},
        headers=auth_headers,
    )
    assert response.status_code == 201
    supplier = response.json()
    assert supplier["code"] == "LM"
    assert supplier["default_margin_percentage"] == 30
    assert supplier["is_preferred"] is True

    response = client.post(SUPPLIERS, json={"name": "LM igen", "code": "LM"}, headers=auth_headers)
    assert response.status_code == 409


def test_inactive_suppliers_hidden(client: TestClient, auth_headers: dict, test_supplier):
    client.put(f"{SUPPLIERS}/{test_supplier.id}", json={"is_active": False}, headers=auth_headers)

    assert client.get(SUPPLIERS, headers=auth_headers).json() == []
    listing = client.get(SUPPLIERS, params={"include_inactive": True}, headers=auth_headers).json()
    assert listing[0]["code"] == "AO"


def test_products(client: TestClient, auth_headers: dict, test_supplier):
    url = f"{SUPPLIERS}/{test_supplier.id}/products"
    payload = {"supplier_sku": "AO-2002", "supplier_name": "Kabelbakke 60x100", "cost_price": 45.5}

    response = client.post(url, json=payload, headers=auth_headers)
    assert response.status_code == 201
    assert response.json()["is_stale"] is False

    assert client.post(url, json=payload, headers=auth_headers).status_code == 409

    body = client.get(url, params={"search": "bakke"}, headers=auth_headers).json()
    assert body["total"] == 1
    assert body["products"][0]["supplier_sku"] == "AO-2002"


def test_price_update_and_history(client: TestClient, auth_headers: dict, test_product):
    url = f"{SUPPLIERS}/products/{test_product.id}"

    response = client.put(f"{url}/prices", json={"cost_price": 120}, headers=auth_headers)
    body = response.json()
    assert body["price_changed"] is True
    assert body["change_percentage"] == 20.0
    assert body["product"]["cost_price"] == 120.0

    response = client.put(f"{url}/prices", json={"cost_price": 120}, headers=auth_headers)
    assert response.json()["price_changed"] is False
    assert response.json()["change_percentage"] is None

    history = client.get(f"{url}/price-history", headers=auth_headers).json()
    assert len(history) == 1
    assert history[0]["old_price"] == 100.0
    assert history[0]["change_source"] == "manual"


def test_invalid_change_source(client: TestClient, auth_headers: dict, test_product):
    response = client.put(
        f"{SUPPLIERS}/products/{test_product.id}/prices",
        json={"cost_price": 10, "change_source": "guess"},
        headers=auth_headers,
    )
    assert response.status_code == 422


def test_customer_agreement_flow(client: TestClient, auth_headers: dict, test_customer, test_supplier, test_product):
    agreement = {
        "customer_id": str(test_customer.id),
        "supplier_id": str(test_supplier.id),
        "discount_percentage": 10,
    }
    response = client.put(f"{SUPPLIERS}/customer-prices/supplier", json=agreement, headers=auth_headers)
    assert response.status_code == 200
    first_id = response.json()["id"]

    agreement["discount_percentage"] = 15
    response = client.put(f"{SUPPLIERS}/customer-prices/supplier", json=agreement, headers=auth_headers)
    assert response.json()["id"] == first_id

    price = client.get(
        f"{SUPPLIERS}/products/{test_product.id}/effective-price",
        params={"customer_id": str(test_customer.id)},
        headers=auth_headers,
    ).json()
    assert price["price_source"] == "customer_supplier"
    assert price["effective_cost_price"] == 85.0

    best = client.get(
        f"{SUPPLIERS}/products/best-price",
        params={"customer_id": str(test_customer.id), "sku": "AO-1001"},
        headers=auth_headers,
    ).json()
    assert best[0]["supplier_code"] == "AO"

    listing = client.get(f"{SUPPLIERS}/customer-prices/{test_customer.id}", headers=auth_headers).json()
    assert len(listing["supplier_agreements"]) == 1
    assert listing["product_prices"] == []

    response = client.delete(f"{SUPPLIERS}/customer-prices/supplier/{first_id}", headers=auth_headers)
    assert response.status_code == 204


def test_agreement_window_must_be_ordered(client: TestClient, auth_headers: dict, test_customer, test_product):
    response = client.put(
        f"{SUPPLIERS}/customer-prices/product",
        json={
            "customer_id": str(test_customer.id),
            "supplier_product_id": str(test_product.id),
            "custom_cost_price": 80,
            "valid_from": "2024-06-01",
            "valid_to": "2024-05-01",
        },
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_agreement_for_unknown_customer(client: TestClient, auth_headers: dict, test_product):
    response = client.put(
        f"{SUPPLIERS}/customer-prices/product",
        json={
            "customer_id": "00000000-0000-0000-0000-000000000000",
            "supplier_product_id": str(test_product.id),
        },
        headers=auth_headers,
    )
    assert response.status_code == 404
