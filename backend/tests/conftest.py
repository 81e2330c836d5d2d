"""Pytest configuration and fixtures."""

import pytest
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.db.session as db_session_module
from app.core.rate_limit import limiter
from app.core.rbac import UserRole
from app.core.security import get_password_hash, create_access_token
from app.db.base import Base
from app.db.session import enable_sqlite_foreign_keys, get_db
from app.main import app
# Import all models to ensure they're registered with Base.metadata
from app.models import *
from app.models.inventory import Material
from app.models.menu import Category, MenuItem, MenuItemIngredient
from app.models.user import DEFAULT_PERMISSIONS, User

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

API = "/api/v1"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session, db_engine, session_factory, monkeypatch) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    # The lifespan and the audit log open their own sessions
    monkeypatch.setattr(db_session_module, "engine", db_engine)
    monkeypatch.setattr(db_session_module, "SessionLocal", session_factory)

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiters during tests to avoid flaky failures
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


# ============== Users ==============

def make_user(db: Session, username: str, role: UserRole, password: str = "testpass123", **kwargs) -> User:
    user = User(
        username=username,
        email=kwargs.pop("email", f"{username}@example.com"),
        password_hash=get_password_hash(password),
        name=kwargs.pop("name", username.title()),
        role=role,
        permissions=kwargs.pop("permissions", dict(DEFAULT_PERMISSIONS)),
        is_active=kwargs.pop("is_active", True),
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def token_for(user: User) -> str:
    return create_access_token(
        data={
            "sub": str(user.id),
            "username": user.username,
            "role": user.role.value,
            "name": user.name,
        }
    )


def headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def admin_user(db_session: Session) -> User:
    return make_user(db_session, "admin", UserRole.ADMIN)


@pytest.fixture
def manager_user(db_session: Session) -> User:
    return make_user(db_session, "manager", UserRole.MANAGER)


@pytest.fixture
def kitchen_user(db_session: Session) -> User:
    return make_user(db_session, "chef", UserRole.KITCHEN, department="kitchen")


@pytest.fixture
def staff_user(db_session: Session) -> User:
    return make_user(db_session, "waiter", UserRole.STAFF)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return headers_for(admin_user)


@pytest.fixture
def manager_headers(manager_user: User) -> dict:
    return headers_for(manager_user)


@pytest.fixture
def kitchen_headers(kitchen_user: User) -> dict:
    return headers_for(kitchen_user)


@pytest.fixture
def staff_headers(staff_user: User) -> dict:
    return headers_for(staff_user)


# ============== Catalog and inventory ==============

def make_material(db: Session, name: str, unit: str, quantity, min_limit=0, alert_limit=0, **kwargs) -> Material:
    material = Material(
        name=name,
        unit=unit,
        current_quantity=Decimal(str(quantity)),
        min_limit=Decimal(str(min_limit)),
        alert_limit=Decimal(str(alert_limit)),
        cost_per_unit=Decimal(str(kwargs.pop("cost_per_unit", "0"))),
        **kwargs,
    )
    material.refresh_status()
    db.add(material)
    db.commit()
    db.refresh(material)
    return material


@pytest.fixture
def kitchen_category(db_session: Session) -> Category:
    category = Category(name="Mains", department="kitchen", sort_order=1, is_active=True)
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def drinks_category(db_session: Session) -> Category:
    category = Category(name="Hot Drinks", department="barista", sort_order=2, is_active=True)
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def flour(db_session: Session) -> Material:
    """2 kg of flour, alert below 0.5 kg."""
    return make_material(db_session, "Flour", "kg", "2", min_limit="0.2", alert_limit="0.5", cost_per_unit="1.20")


@pytest.fixture
def coffee_beans(db_session: Session) -> Material:
    return make_material(db_session, "Coffee Beans", "g", "1000", alert_limit="100", cost_per_unit="0.05")


@pytest.fixture
def pizza(db_session: Session, kitchen_category: Category, flour: Material) -> MenuItem:
    """Pizza using 250 g of flour per portion, priced 40.00."""
    item = MenuItem(
        name="Margherita",
        price=Decimal("40.00"),
        category_id=kitchen_category.id,
        status="active",
        is_available=True,
        preparation_time=20,
    )
    item.ingredients = [MenuItemIngredient(material_id=flour.id, portion=Decimal("250"), unit="g", required=True)]
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def espresso(db_session: Session, drinks_category: Category, coffee_beans: Material) -> MenuItem:
    """Espresso using 18 g of beans, priced 10.00."""
    item = MenuItem(
        name="Espresso",
        price=Decimal("10.00"),
        category_id=drinks_category.id,
        status="active",
        is_available=True,
        preparation_time=3,
    )
    item.ingredients = [MenuItemIngredient(material_id=coffee_beans.id, portion=Decimal("18"), unit="g", required=True)]
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def place_order(client: TestClient):
    """Place an order through the public endpoint and return the response."""
    def _place(items, **extra):
        payload = {"items": items, "customer_name": extra.pop("customer_name", "Guest"), **extra}
        return client.post(f"{API}/orders", json=payload)
    return _place


@pytest.fixture
def user_factory(db_session: Session):
    def _make(username: str, role: UserRole = UserRole.STAFF, **kwargs) -> User:
        return make_user(db_session, username, role, **kwargs)
    return _make


@pytest.fixture
def material_factory(db_session: Session):
    def _make(name: str, unit: str, quantity, **kwargs) -> Material:
        return make_material(db_session, name, unit, quantity, **kwargs)
    return _make


@pytest.fixture
def auth_headers_for():
    return headers_for
