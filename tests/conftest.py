"""Shared fixtures: an in-memory MongoDB, the app, users, tokens and catalog."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import CATEGORIES, PRODUCTS, USERS, create_document
from main import create_app
from schemas import ROLE_ADMIN, ROLE_USER, Category, Product, User

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


@pytest.fixture
def settings():
    return Settings(jwt_secret=TEST_SECRET, bcrypt_rounds=4, database_name="storefront_test")


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def app(settings, db):
    return create_app(settings, db=db)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def ctx(app):
    return app.state.context


@pytest.fixture
def orders(ctx):
    return ctx.orders


# =============================================================================
# Users and tokens
# =============================================================================


@pytest.fixture
def make_user(ctx):
    def _make(email, name="Test User", role=ROLE_USER, password="secret123"):
        user = User(email=email, password_hash=ctx.passwords.hash(password), name=name, role=role)
        return create_document(ctx.db, USERS, user)

    return _make


@pytest.fixture
def customer(make_user):
    return make_user("alice@example.com", name="Alice")


@pytest.fixture
def other_customer(make_user):
    return make_user("bob@example.com", name="Bob")


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", name="Admin", role=ROLE_ADMIN)


@pytest.fixture
def auth_headers(ctx):
    def _headers(user):
        token = ctx.tokens.issue(str(user["_id"]), user["role"])
        return {"Authorization": f"Bearer {token}"}

    return _headers


# =============================================================================
# Catalog
# =============================================================================


@pytest.fixture
def category(ctx):
    return create_document(ctx.db, CATEGORIES, Category(name="Books", description="Printed books"))


@pytest.fixture
def make_product(ctx, category):
    def _make(name="Widget", price=10.0, stock=5, category_id=None):
        product = Product(
            name=name,
            price=price,
            stock=stock,
            category_id=category_id or category["_id"],
        )
        return create_document(ctx.db, PRODUCTS, product)

    return _make


@pytest.fixture
def stock_of(ctx):
    def _stock(product):
        return ctx.db[PRODUCTS].find_one({"_id": product["_id"]})["stock"]

    return _stock
