"""
Pytest configuration and fixtures for backend tests.
"""
import os
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from fastapi.testclient import TestClient
from typing import Generator

# Override database URL for tests
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

from ..main import app
from ..core.database import Base, get_db, import_models
from ..core.auth import create_access_token, get_password_hash
from ..db.models import Customer, User, UserRole
from ..db.supplier_models import Supplier, SupplierProduct

import_models()


# Create test database engine
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def test_db():
    """Create test database session."""
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        # Clean up tables after each test
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(test_db: Session) -> Generator:
    """Create test client with database override."""
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def test_user(test_db: Session) -> User:
    """Create a test user."""
    user = User(
        email="test@eltasolar.dk",
        full_name="Test User",
        hashed_password=get_password_hash("testpassword"),
        role=UserRole.USER.value,
        is_active=True,
    )
    test_db.add(user)
    test_db.commit()
    test_db.refresh(user)
    return user


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Create authentication headers for test user."""
    token = create_access_token({"sub": test_user.email, "user_id": str(test_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def test_customer(test_db: Session) -> Customer:
    customer = Customer(
        customer_number="C000001",
        company_name="Solgården ApS",
        contact_person="Mette Hansen",
        email="mette@solgaarden.dk",
    )
    test_db.add(customer)
    test_db.commit()
    test_db.refresh(customer)
    return customer


@pytest.fixture
def test_supplier(test_db: Session) -> Supplier:
    supplier = Supplier(name="AO", code="AO")
    test_db.add(supplier)
    test_db.commit()
    test_db.refresh(supplier)
    return supplier


@pytest.fixture
def test_product(test_db: Session, test_supplier: Supplier) -> SupplierProduct:
    """Catalog product: cost 100, list 150, no product margin."""
    product = SupplierProduct(
        supplier_id=test_supplier.id,
        supplier_sku="AO-1001",
        supplier_name="Installationskabel 3G1,5",
        cost_price=100.0,
        list_price=150.0,
        unit="m",
    )
    test_db.add(product)
    test_db.commit()
    test_db.refresh(product)
    return product
