"""Pytest configuration for tests."""

import uuid

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from storefront.config import settings
from storefront.database import create_document, get_db
from storefront.main import app

USER_ID = "user-1"


def make_token(sub: str = USER_ID, role: str | None = None) -> str:
    claims = {"sub": sub}
    if role:
        claims["role"] = role
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_header(sub: str = USER_ID, role: str | None = None) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, role)}"}


@pytest.fixture
def db():
    """Fresh in-memory Mongo database per test."""
    return AsyncMongoMockClient()[f"storefront_test_{uuid.uuid4().hex[:8]}"]


@pytest_asyncio.fixture
async def catalog(db):
    """One product priced 10.00 with two variants: A (5 in stock) and B (4 in stock)."""
    category = await create_document(db, "category", {"name": "Clothing"})
    product = await create_document(db, "product", {
        "category_id": category["_id"],
        "title": "Hoodie",
        "description": "A high-quality hoodie",
        "price": 10.0,
        "rating": 4.5,
        "material": "Cotton",
        "image": None,
        "total_stock": 9,
    })
    variant_a = await create_document(db, "product_variant", {
        "product_id": product["_id"], "size": "M", "color": "Black", "quantity": 5,
    })
    variant_b = await create_document(db, "product_variant", {
        "product_id": product["_id"], "size": "L", "color": "Red", "quantity": 4,
    })
    return {"category": category, "product": product, "variant_a": variant_a, "variant_b": variant_b}


@pytest_asyncio.fixture
async def client(db):
    app.dependency_overrides[get_db] = lambda: db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
