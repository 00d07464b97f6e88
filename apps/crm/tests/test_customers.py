"""
Tests for customers and their contacts.
"""

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import pytest

from ..core.errors import ConflictError
from ..db.models import Customer
from ..services.customers import create_customer, generate_customer_number

CUSTOMERS = "/api/v1/customers"


def customer_payload(**overrides):
    payload = {
        "company_name": "Nordlys Energi A/S",
        "contact_person": "Jens Nielsen",
        "email": "Jens@Nordlys.dk",
        "phone": "+45 12 34 56 78",
        "vat_number": "DK12345678",
    }
    payload.update(overrides)
    return payload


class TestCustomerService:
    def test_customer_numbers_increase(self, test_db: Session, test_customer: Customer):
        assert generate_customer_number(test_db) == "C000002"

    def test_email_is_lowercased(self, test_db: Session):
        customer = create_customer(test_db, customer_payload())
        assert customer.email == "jens@nordlys.dk"
        assert customer.customer_number == "C000001"

    def test_duplicate_email_conflicts(self, test_db: Session, test_customer: Customer):
        with pytest.raises(ConflictError):
            create_customer(test_db, customer_payload(email=test_customer.email.upper()))


class TestCustomerEndpoints:
    def test_create_and_get(self, client: TestClient, auth_headers: dict):
        response = client.post(CUSTOMERS, json=customer_payload(), headers=auth_headers)
        assert response.status_code == 201
        customer = response.json()
        assert customer["customer_number"] == "C000001"
        assert customer["billing_country"] == "Danmark"

        response = client.get(f"{CUSTOMERS}/{customer['id']}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["contacts"] == []

    def test_duplicate_email_returns_409(self, client: TestClient, auth_headers: dict, test_customer: Customer):
        response = client.post(CUSTOMERS, json=customer_payload(email=test_customer.email), headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

    def test_search(self, client: TestClient, auth_headers: dict, test_customer: Customer):
        client.post(CUSTOMERS, json=customer_payload(), headers=auth_headers)

        body = client.get(CUSTOMERS, params={"search": "nordlys"}, headers=auth_headers).json()
        assert body["total"] == 1
        assert body["customers"][0]["company_name"] == "Nordlys Energi A/S"

    def test_update_to_taken_email(self, client: TestClient, auth_headers: dict, test_customer: Customer):
        other = client.post(CUSTOMERS, json=customer_payload(), headers=auth_headers).json()
        response = client.put(
            f"{CUSTOMERS}/{other['id']}", json={"email": test_customer.email}, headers=auth_headers
        )
        assert response.status_code == 409

    def test_toggle_active(self, client: TestClient, auth_headers: dict, test_customer: Customer):
        response = client.post(f"{CUSTOMERS}/{test_customer.id}/toggle-active", headers=auth_headers)
        assert response.json()["is_active"] is False

        body = client.get(CUSTOMERS, params={"is_active": True}, headers=auth_headers).json()
        assert body["total"] == 0

    def test_delete(self, client: TestClient, auth_headers: dict, test_customer: Customer):
        response = client.delete(f"{CUSTOMERS}/{test_customer.id}", headers=auth_headers)
        assert response.status_code == 204
        assert client.get(f"{CUSTOMERS}/{test_customer.id}", headers=auth_headers).status_code == 404


class TestContacts:
    def test_single_primary_contact(self, client: TestClient, auth_headers: dict, test_customer: Customer):
        url = f"{CUSTOMERS}/{test_customer.id}/contacts"
        first = client.post(url, json={"name": "Anne", "is_primary": True}, headers=auth_headers).json()
        second = client.post(url, json={"name": "Bo", "is_primary": True}, headers=auth_headers).json()

        contacts = client.get(url, headers=auth_headers).json()
        primary = [contact["id"] for contact in contacts if contact["is_primary"]]
        assert primary == [second["id"]]

        response = client.put(f"{url}/{first['id']}", json={"is_primary": True}, headers=auth_headers)
        assert response.json()["is_primary"] is True
        contacts = client.get(url, headers=auth_headers).json()
        assert [contact["name"] for contact in contacts if contact["is_primary"]] == ["Anne"]

    def test_contact_of_other_customer_is_404(self, client: TestClient, auth_headers: dict, test_customer: Customer):
        other = client.post(CUSTOMERS, json=customer_payload(), headers=auth_headers).json()
        contact = client.post(
            f"{CUSTOMERS}/{other['id']}/contacts", json={"name": "Anne"}, headers=auth_headers
        ).json()

        response = client.delete(f"{CUSTOMERS}/{test_customer.id}/contacts/{contact['id']}", headers=auth_headers)
        assert response.status_code == 404
