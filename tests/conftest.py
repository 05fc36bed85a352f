import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import catalog
import models  # noqa: F401  registers the tables
from database import Base, get_db, make_engine
from errors import Unauthorized
from gateways import get_identity_provider, get_payment_gateway
from main import app

TOKEN = "test-token"
USER_ID = "user_test"


class FakeIdentityProvider:
    def __init__(self):
        self.emails = {}
        self.lookups = []

    def authenticate(self, authorization):
        if authorization != f"Bearer {TOKEN}":
            raise Unauthorized()
        return USER_ID

    def lookup_email(self, user_id):
        self.lookups.append(user_id)
        return self.emails.get(user_id, "Unknown")

    def verify_webhook(self, body, headers):
        return json.loads(body)


class FakePaymentGateway:
    def __init__(self):
        self.calls = []

    def create_checkout_session(self, items):
        self.calls.append(items)
        return "https://checkout.example.com/session/cs_test"


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'storefront.db'}", timeout=30)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def payments():
    return FakePaymentGateway()


@pytest.fixture
def client(session_factory, identity, payments):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_provider] = lambda: identity
    app.dependency_overrides[get_payment_gateway] = lambda: payments
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def category(db):
    men = catalog.create_navigation_item(db, "Men", "men", position=1)
    return catalog.create_category(db, "Shirts", parent_id=men["id"], position=0)["category"]


@pytest.fixture
def make_product(db, category):
    def _make(name="Linen Shirt", price=1000, original_price=None, image="/linen.webp", **kwargs):
        return catalog.create_product(db, name, price, image, category["id"], original_price=original_price,
                                      **kwargs)
    return _make
