import os
from decimal import Decimal

# Keep the app module from opening ./pos.db on import
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from database.models import Customer, Product, User
from database.session import get_session
from services.auth_service import AuthService
from services.billing_service import reset_desks
from services.settings_service import ensure_default_settings


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def products(session):
    soap = Product(
        name="Dettol Soap 125g", brand="Dettol", hsn_code="34011190", barcode="8901396329015",
        mrp=Decimal("125"), cost_price=Decimal("90"), selling_price=Decimal("118"),
        gst_rate=Decimal("18"), price_includes_gst=True, stock_quantity=10,
    )
    rice = Product(
        name="Loose Rice 1kg", brand="Generic", hsn_code="10063020", barcode="8906011590032",
        mrp=Decimal("50"), cost_price=Decimal("40"), selling_price=Decimal("50"),
        gst_rate=Decimal("5"), price_includes_gst=False, stock_quantity=3,
    )
    butter = Product(
        name="Amul Butter 100g", brand="Amul", hsn_code="04051000", barcode="8901262010016",
        mrp=Decimal("58"), cost_price=Decimal("50"),
        gst_rate=Decimal("12"), price_includes_gst=True, stock_quantity=0,
    )
    for product in (soap, rice, butter):
        session.add(product)
    session.commit()
    for product in (soap, rice, butter):
        session.refresh(product)
    return {"soap": soap, "rice": rice, "butter": butter}


@pytest.fixture
def customer(session):
    customer = Customer(name="Ravi Kumar", phone="9876543210", loyalty_points=50)
    session.add(customer)
    session.commit()
    session.refresh(customer)
    return customer


@pytest.fixture
def cashier(session):
    user = User(username="cashier1", password_hash=AuthService.get_password_hash("secret"), full_name="Asha")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def client(session, products, customer, cashier):
    from main import app

    ensure_default_settings(session)
    reset_desks()
    app.dependency_overrides[get_session] = lambda: session
    # Not used as a context manager so the startup hook stays off the real engine
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
    reset_desks()


@pytest.fixture
def logged_in(client):
    response = client.post("/login", data={"username": "cashier1", "password": "secret"})
    assert response.status_code == 200
    return client
