"""Tests for cart mutations and the cached cart total."""

from unittest.mock import AsyncMock, Mock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from storefront import cart
from storefront import catalog as catalog_service
from storefront.errors import InsufficientStock, NotFound, ValidationError
from storefront.schemas import ProductIn
from tests.conftest import USER_ID


@pytest.mark.asyncio
async def test_get_or_create_cart_is_lazy_and_stable(db):
    first = await cart.get_or_create_cart(db, USER_ID)
    second = await cart.get_or_create_cart(db, USER_ID)

    assert first["_id"] == second["_id"]
    assert first["items"] == []
    assert first["total_amount"] == 0.0
    assert await db["cart"].count_documents({}) == 1


@pytest.mark.asyncio
async def test_add_item_creates_line_and_total(db, catalog):
    result = await cart.add_item(db, USER_ID, str(catalog["variant_a"]["_id"]), 2)

    assert result["items"] == [{"variant_id": catalog["variant_a"]["_id"], "quantity": 2}]
    assert result["total_amount"] == 20.0


@pytest.mark.asyncio
async def test_add_item_merges_existing_line(db, catalog):
    vid = str(catalog["variant_a"]["_id"])
    await cart.add_item(db, USER_ID, vid, 2)
    result = await cart.add_item(db, USER_ID, vid, 1)

    assert len(result["items"]) == 1
    assert result["items"][0]["quantity"] == 3
    assert result["total_amount"] == 30.0


@pytest.mark.asyncio
async def test_add_item_rejects_more_than_stock_including_existing(db, catalog):
    vid = str(catalog["variant_a"]["_id"])
    await cart.add_item(db, USER_ID, vid, 4)

    with pytest.raises(InsufficientStock) as exc_info:
        await cart.add_item(db, USER_ID, vid, 2)

    assert exc_info.value.requested == 6
    assert exc_info.value.available == 5
    stored = await db["cart"].find_one({"user_id": USER_ID})
    assert stored["items"][0]["quantity"] == 4


@pytest.mark.asyncio
async def test_add_item_unknown_variant(db, catalog):
    with pytest.raises(NotFound):
        await cart.add_item(db, USER_ID, str(ObjectId()), 1)


@pytest.mark.asyncio
async def test_add_item_malformed_variant_id(db, catalog):
    with pytest.raises(ValidationError):
        await cart.add_item(db, USER_ID, "not-an-id", 1)


@pytest.mark.asyncio
async def test_total_uses_current_prices(db, catalog):
    await cart.add_item(db, USER_ID, str(catalog["variant_a"]["_id"]), 1)
    await db["product"].update_one({"_id": catalog["product"]["_id"]}, {"$set": {"price": 12.5}})

    result = await cart.add_item(db, USER_ID, str(catalog["variant_b"]["_id"]), 2)

    assert result["total_amount"] == 37.5


@pytest.mark.asyncio
async def test_update_item_overwrites_quantity(db, catalog):
    vid = str(catalog["variant_a"]["_id"])
    await cart.add_item(db, USER_ID, vid, 1)

    result = await cart.update_item(db, USER_ID, vid, 4)

    assert result["items"][0]["quantity"] == 4
    assert result["total_amount"] == 40.0


@pytest.mark.asyncio
async def test_update_item_zero_removes_line(db, catalog):
    vid_a = str(catalog["variant_a"]["_id"])
    vid_b = str(catalog["variant_b"]["_id"])
    await cart.add_item(db, USER_ID, vid_a, 1)
    await cart.add_item(db, USER_ID, vid_b, 2)

    result = await cart.update_item(db, USER_ID, vid_a, 0)

    assert result["items"] == [{"variant_id": catalog["variant_b"]["_id"], "quantity": 2}]
    assert result["total_amount"] == 20.0


@pytest.mark.asyncio
async def test_update_item_checks_stock(db, catalog):
    vid = str(catalog["variant_b"]["_id"])
    await cart.add_item(db, USER_ID, vid, 1)

    with pytest.raises(InsufficientStock):
        await cart.update_item(db, USER_ID, vid, 5)


@pytest.mark.asyncio
async def test_update_item_without_cart_or_line(db, catalog):
    vid = str(catalog["variant_a"]["_id"])
    with pytest.raises(NotFound, match="Cart not found"):
        await cart.update_item(db, USER_ID, vid, 1)

    await cart.add_item(db, USER_ID, vid, 1)
    with pytest.raises(NotFound, match="Item not found"):
        await cart.update_item(db, USER_ID, str(catalog["variant_b"]["_id"]), 1)


@pytest.mark.asyncio
async def test_cart_details(db, catalog):
    await cart.add_item(db, USER_ID, str(catalog["variant_a"]["_id"]), 2)

    details = await cart.cart_details(db, USER_ID)

    assert details["total_amount"] == 20.0
    assert details["items"] == [{
        "variant_id": str(catalog["variant_a"]["_id"]),
        "product_id": str(catalog["product"]["_id"]),
        "product_name": "Hoodie",
        "product_price": 10.0,
        "size": "M",
        "color": "Black",
        "quantity": 2,
    }]


@pytest.mark.asyncio
async def test_concurrent_first_access_rereads_existing_cart():
    existing = {"_id": ObjectId(), "user_id": USER_ID, "items": [], "total_amount": 0.0}
    carts = Mock(
        find_one_and_update=AsyncMock(side_effect=DuplicateKeyError("E11000 duplicate key")),
        find_one=AsyncMock(return_value=existing),
    )

    result = await cart.get_or_create_cart({"cart": carts}, USER_ID)

    assert result is existing
    carts.find_one.assert_awaited_once_with({"user_id": USER_ID})


@pytest.mark.asyncio
async def test_deleting_a_product_prunes_carts(db, catalog):
    await cart.add_item(db, USER_ID, str(catalog["variant_a"]["_id"]), 2)
    await catalog_service.delete_product(db, str(catalog["product"]["_id"]))

    cap = await catalog_service.create_product(
        db, ProductIn(category_id=str(catalog["category"]["_id"]), title="Cap", description="A cap", price=7.0)
    )
    variant = await catalog_service.create_variant(db, str(cap["_id"]), "M", "Blue", 3)

    pruned = await cart.cart_details(db, USER_ID)
    assert pruned["items"] == []
    assert pruned["total_amount"] == 0.0

    result = await cart.add_item(db, USER_ID, str(variant["_id"]), 1)
    assert result["items"] == [{"variant_id": variant["_id"], "quantity": 1}]
    assert result["total_amount"] == 7.0


@pytest.mark.asyncio
async def test_deleting_a_product_keeps_other_lines(db, catalog):
    other = await catalog_service.create_product(
        db, ProductIn(category_id=str(catalog["category"]["_id"]), title="Cap", description="A cap", price=7.0)
    )
    cap_variant = await catalog_service.create_variant(db, str(other["_id"]), "M", "Blue", 3)
    await cart.add_item(db, USER_ID, str(catalog["variant_a"]["_id"]), 1)
    await cart.add_item(db, USER_ID, str(cap_variant["_id"]), 2)

    await catalog_service.delete_product(db, str(catalog["product"]["_id"]))

    stored = await db["cart"].find_one({"user_id": USER_ID})
    assert stored["items"] == [{"variant_id": cap_variant["_id"], "quantity": 2}]
    assert stored["total_amount"] == 14.0
