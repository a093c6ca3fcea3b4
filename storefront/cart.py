"""Per-user carts.

The cached ``total_amount`` is rebuilt from current product prices on every
mutation, so a price change shows up the next time the cart is touched.
"""

from __future__ import annotations
import logging
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .catalog import get_variant
from .database import get_documents, oid, utcnow
from .errors import InsufficientStock, NotFound, ValidationError

logger = logging.getLogger(__name__)


async def get_or_create_cart(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    now = utcnow()
    try:
        cart = await db["cart"].find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": {"user_id": user_id, "items": [], "total_amount": 0.0,
                              "created_at": now, "updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # A concurrent first request inserted the cart between our match and insert.
        cart = await db["cart"].find_one({"user_id": user_id})
    return cart


async def get_cart(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    cart = await db["cart"].find_one({"user_id": user_id})
    if cart is None:
        raise NotFound("Cart not found")
    return cart


async def line_price(db: AsyncIOMotorDatabase, variant_id: Any) -> tuple[dict, dict]:
    """Resolve a cart line's variant and its product, the source of the price."""
    variant = await get_variant(db, variant_id)
    product = await db["product"].find_one({"_id": variant["product_id"]})
    if not product:
        raise NotFound(f"Product for variant {variant['_id']} not found")
    return variant, product


async def calculate_total(db: AsyncIOMotorDatabase, items: list[dict]) -> float:
    total = 0.0
    for item in items:
        _, product = await line_price(db, item["variant_id"])
        total += float(product["price"]) * item["quantity"]
    return round(total, 2)


async def _save(db: AsyncIOMotorDatabase, cart: dict) -> dict:
    cart["total_amount"] = await calculate_total(db, cart["items"])
    cart["updated_at"] = utcnow()
    await db["cart"].update_one(
        {"_id": cart["_id"]},
        {"$set": {"items": cart["items"], "total_amount": cart["total_amount"], "updated_at": cart["updated_at"]}},
    )
    return cart


async def add_item(db: AsyncIOMotorDatabase, user_id: str, variant_id: str, quantity: int) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    variant, _ = await line_price(db, variant_id)
    cart = await get_or_create_cart(db, user_id)

    existing = next((i for i in cart["items"] if i["variant_id"] == variant["_id"]), None)
    already = existing["quantity"] if existing else 0
    if already + quantity > variant["quantity"]:
        raise InsufficientStock(str(variant["_id"]), already + quantity, variant["quantity"])

    if existing:
        existing["quantity"] += quantity
    else:
        cart["items"].append({"variant_id": variant["_id"], "quantity": quantity})
    return await _save(db, cart)


async def update_item(db: AsyncIOMotorDatabase, user_id: str, variant_id: str, quantity: int) -> dict:
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative")
    vid = oid(variant_id, "variant id")
    cart = await get_cart(db, user_id)
    index = next((n for n, i in enumerate(cart["items"]) if i["variant_id"] == vid), None)
    if index is None:
        raise NotFound("Item not found in cart")

    if quantity == 0:
        cart["items"].pop(index)
    else:
        variant, _ = await line_price(db, vid)
        if quantity > variant["quantity"]:
            raise InsufficientStock(str(vid), quantity, variant["quantity"])
        cart["items"][index]["quantity"] = quantity
    return await _save(db, cart)


async def cart_details(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    cart = await get_cart(db, user_id)
    items = []
    for item in cart["items"]:
        variant, product = await line_price(db, item["variant_id"])
        items.append({
            "variant_id": str(variant["_id"]),
            "product_id": str(product["_id"]),
            "product_name": product["title"],
            "product_price": float(product["price"]),
            "size": variant["size"],
            "color": variant["color"],
            "quantity": item["quantity"],
        })
    return {"id": str(cart["_id"]), "items": items, "total_amount": cart["total_amount"]}


async def clear_cart(db: AsyncIOMotorDatabase, cart_id: Any) -> None:
    await db["cart"].update_one(
        {"_id": cart_id}, {"$set": {"items": [], "total_amount": 0.0, "updated_at": utcnow()}}
    )


async def drop_variants(db: AsyncIOMotorDatabase, variant_ids: list) -> int:
    """Remove lines for deleted variants from every cart and re-total those carts."""
    if not variant_ids:
        return 0
    gone = set(variant_ids)
    touched = 0
    for cart in await get_documents(db, "cart", {"items.variant_id": {"$in": list(gone)}}):
        cart["items"] = [i for i in cart["items"] if i["variant_id"] not in gone]
        await _save(db, cart)
        touched += 1
    if touched:
        logger.info("Removed %d deleted variants from %d carts", len(gone), touched)
    return touched
