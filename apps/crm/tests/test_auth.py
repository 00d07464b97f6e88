"""
Tests for registration, login and token handling.
"""

from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from ..core.auth import create_access_token, verify_password
from ..db.models import User


class TestAuthEndpoints:
    """Test authentication endpoints."""

    def test_register_user(self, client: TestClient, test_db: Session):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "NewUser@Eltasolar.dk",
                "password": "securepassword123",
                "full_name": "Ny Bruger"
            }
        )

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "newuser@eltasolar.dk"
        assert data["role"] == "user"

        user = test_db.query(User).filter(User.email == "newuser@eltasolar.dk").first()
        assert verify_password("securepassword123", user.hashed_password)

    def test_register_duplicate_email(self, client: TestClient, test_user: User):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": test_user.email, "password": "anotherpassword"}
        )

        assert response.status_code == 400
        assert "already registered" in response.json()["message"]

    def test_register_short_password(self, client: TestClient):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": "kort@eltasolar.dk", "password": "kort"}
        )
        assert response.status_code == 422

    def test_login_success(self, client: TestClient, test_user: User, test_db: Session):
        response = client.post(
            "/api/v1/auth/login",
            data={"username": test_user.email, "password": "testpassword"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"]

        test_db.refresh(test_user)
        assert test_user.last_login is not None

    def test_login_wrong_password(self, client: TestClient, test_user: User):
        response = client.post(
            "/api/v1/auth/login",
            data={"username": test_user.email, "password": "wrongpassword"}
        )
        assert response.status_code == 401

    def test_login_inactive_user(self, client: TestClient, test_user: User, test_db: Session):
        test_user.is_active = False
        test_db.commit()

        response = client.post(
            "/api/v1/auth/login",
            data={"username": test_user.email, "password": "testpassword"}
        )
        assert response.status_code == 403

    def test_me(self, client: TestClient, auth_headers: dict, test_user: User):
        response = client.get("/api/v1/auth/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["email"] == test_user.email


class TestTokens:
    def test_expired_token_rejected(self, client: TestClient, test_user: User):
        token = create_access_token({"sub": test_user.email}, expires_delta=timedelta(minutes=-1))
        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_garbage_token_rejected(self, client: TestClient):
        response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_unknown_user_rejected(self, client: TestClient, test_db: Session):
        token = create_access_token({"sub": "ghost@eltasolar.dk"})
        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
