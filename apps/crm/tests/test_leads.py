"""
Tests for the lead pipeline.
"""

from fastapi.testclient import TestClient

LEADS = "/api/v1/leads"


def create_lead(client: TestClient, auth_headers: dict, **overrides) -> dict:
    payload = {
        "company_name": "Bakkegården",
        "contact_person": "Karen Jensen",
        "email": "karen@bakkegaarden.dk",
        "source": "website",
        "value": 85000,
        "probability": 40,
    }
    payload.update(overrides)
    response = client.post(LEADS, json=payload, headers=auth_headers)
    assert response.status_code == 201
    return response.json()


def test_create_lead_logs_activity(client: TestClient, auth_headers: dict):
    lead = create_lead(client, auth_headers)
    assert lead["status"] == "new"

    activities = client.get(f"{LEADS}/{lead['id']}/activities", headers=auth_headers).json()
    assert [activity["description"] for activity in activities] == ["Lead oprettet"]


def test_invalid_probability(client: TestClient, auth_headers: dict):
    response = client.post(
        LEADS,
        json={"company_name": "X", "contact_person": "Y", "email": "x@y.dk", "probability": 120},
        headers=auth_headers,
    )
    assert response.status_code == 422


def test_status_change_logs_labels(client: TestClient, auth_headers: dict):
    lead = create_lead(client, auth_headers)

    response = client.patch(f"{LEADS}/{lead['id']}/status", json={"status": "qualified"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "qualified"

    activities = client.get(f"{LEADS}/{lead['id']}/activities", headers=auth_headers).json()
    descriptions = [activity["description"] for activity in activities]
    assert "Status ændret fra Ny til Kvalificeret" in descriptions


def test_same_status_is_noop(client: TestClient, auth_headers: dict):
    lead = create_lead(client, auth_headers)
    client.patch(f"{LEADS}/{lead['id']}/status", json={"status": "new"}, headers=auth_headers)

    activities = client.get(f"{LEADS}/{lead['id']}/activities", headers=auth_headers).json()
    assert len(activities) == 1


def test_list_filters_sorting_and_stats(client: TestClient, auth_headers: dict):
    create_lead(client, auth_headers, company_name="Alfa", value=1000)
    create_lead(client, auth_headers, company_name="Beta", value=5000, source="referral")
    won = create_lead(client, auth_headers, company_name="Gamma", value=3000)
    client.patch(f"{LEADS}/{won['id']}/status", json={"status": "won"}, headers=auth_headers)

    body = client.get(LEADS, params={"sort_by": "value", "sort_order": "asc"}, headers=auth_headers).json()
    assert [lead["company_name"] for lead in body["leads"]] == ["Alfa", "Gamma", "Beta"]
    assert body["stats"]["new"] == 2
    assert body["stats"]["won"] == 1
    assert body["stats"]["lost"] == 0

    body = client.get(LEADS, params={"source": "referral"}, headers=auth_headers).json()
    assert body["total"] == 1

    body = client.get(LEADS, params={"search": "gam"}, headers=auth_headers).json()
    assert body["leads"][0]["company_name"] == "Gamma"


def test_invalid_sort_order(client: TestClient, auth_headers: dict):
    response = client.get(LEADS, params={"sort_order": "sideways"}, headers=auth_headers)
    assert response.status_code == 422


def test_update_and_delete(client: TestClient, auth_headers: dict):
    lead = create_lead(client, auth_headers)

    response = client.put(f"{LEADS}/{lead['id']}", json={"probability": 80, "tags": ["solceller"]}, headers=auth_headers)
    assert response.json()["probability"] == 80
    assert response.json()["tags"] == ["solceller"]

    assert client.delete(f"{LEADS}/{lead['id']}", headers=auth_headers).status_code == 204
    assert client.get(f"{LEADS}/{lead['id']}", headers=auth_headers).status_code == 404


def test_manual_activity(client: TestClient, auth_headers: dict):
    lead = create_lead(client, auth_headers)
    response = client.post(
        f"{LEADS}/{lead['id']}/activities",
        json={"activity_type": "call", "description": "Ringet op, ønsker besøg"},
        headers=auth_headers,
    )
    assert response.status_code == 201
    assert response.json()["activity_type"] == "call"
