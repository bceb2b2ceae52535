"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database. The engine uses a
``StaticPool`` so the service-level ``db`` session and the sessions the API
opens per request all see the same data. Factory fixtures commit what they
create; API tests should check results through the client, not through
``db``, so the shared connection is never inside two transactions at once.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice.core.config import settings
from backoffice.core.database import Base, enable_sqlite_savepoints, get_db, init_db
from backoffice.core.security import create_access_token, get_password_hash
from backoffice.main import app, rate_limiter
from backoffice.models import Customer, User
from backoffice.schemas import ProductCreate, SaleCreate, SaleItemCreate
from backoffice.services.inventory_service import ProductService
from backoffice.services.sales_service import SaleService

TEST_PASSWORD = "secret123"


@pytest.fixture(scope="session")
def password_hash():
    return get_password_hash(TEST_PASSWORD)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ---------- Factories ----------

@pytest.fixture()
def make_user(db, password_hash):
    counter = {"n": 0}

    def _make(username=None, is_active=True):
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            full_name=username.title(),
            hashed_password=password_hash,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture()
def user(make_user):
    return make_user("owner")


@pytest.fixture()
def other_user(make_user):
    return make_user("intruder")


@pytest.fixture()
def make_product(db):
    def _make(owner, name="Widget", quantity=10, selling_price="118.00", tax_rate="18", cost="80.00", **extra):
        product = ProductService(db).create(
            ProductCreate(
                name=name,
                selling_price=Decimal(selling_price),
                tax_rate=Decimal(tax_rate),
                cost=Decimal(cost),
                purchase_price=Decimal(cost),
                opening_stock=quantity,
                **extra
            ),
            owner.id,
            owner.id,
        )
        db.commit()
        return product

    return _make


@pytest.fixture()
def product(make_product, user):
    return make_product(user)


@pytest.fixture()
def customer(db, user):
    customer = Customer(name="Acme Traders", email="buyer@acme.example", owner_id=user.id)
    db.add(customer)
    db.commit()
    return customer


@pytest.fixture()
def make_sale(db):
    def _make(owner, lines, status="Pending", **extra):
        sale = SaleService(db).create(
            SaleCreate(
                status=status,
                items=[
                    SaleItemCreate(product_id=product.id, quantity=quantity)
                    for product, quantity in lines
                ],
                **extra
            ),
            owner.id,
            owner.id,
        )
        db.commit()
        return sale

    return _make


# ---------- API ----------

@pytest.fixture()
def client(session_factory, monkeypatch):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)
    rate_limiter.reset()
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user.username})}"}

    return _headers
