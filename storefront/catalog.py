"""Categories, products, variants and the aggregate stock kept on each product."""

from __future__ import annotations
import logging
import math
import random
import re
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from .database import create_document, get_documents, oid, update_document, utcnow
from .errors import InvalidArgument, NotFound, ValidationError
from .schemas import Category, Product, ProductIn, ProductUpdate, ProductVariant

logger = logging.getLogger(__name__)

SEED_CATEGORIES: dict[str, list[str]] = {
    "Accessories": ["Backpack", "Belt", "Handbag", "Hat", "Scarf", "Sunglasses"],
    "Clothing": ["Blouse", "Dress", "Hoodie", "Jeans", "Pants", "Shirt", "Shorts",
                 "Skirt", "Socks", "Sweater", "T-shirt"],
    "Footwear": ["Boots", "Sandals", "Shoes", "Sneakers"],
    "Outerwear": ["Coat", "Gloves", "Jacket"],
}
SEED_SIZES = ["S", "M", "L", "XL"]
SEED_COLORS = ["White", "Black", "Blue", "Green", "Red"]
SEED_MATERIALS = ["Cotton", "Polyester", "Leather", "Wool", "Denim"]


# Categories

async def list_categories(db: AsyncIOMotorDatabase) -> list[dict]:
    return await get_documents(db, "category", sort=[("name", 1)])


async def create_category(db: AsyncIOMotorDatabase, name: str) -> dict:
    category = Category(name=name)
    if await db["category"].find_one({"name": category.name}):
        raise ValidationError(f"Category {category.name!r} already exists")
    return await create_document(db, "category", category.model_dump())


# Products

async def get_product(db: AsyncIOMotorDatabase, product_id: Any) -> dict:
    product = await db["product"].find_one({"_id": oid(product_id, "product id")})
    if not product:
        raise NotFound("Product not found")
    return product


async def create_product(db: AsyncIOMotorDatabase, data: ProductIn) -> dict:
    category_id = oid(data.category_id, "category id")
    if not await db["category"].find_one({"_id": category_id}):
        raise NotFound("Category not found")
    product = Product(**data.model_dump(exclude={"category_id"}))
    return await create_document(db, "product", {"category_id": category_id, **product.model_dump()})


async def list_products(db: AsyncIOMotorDatabase) -> list[dict]:
    return await get_documents(db, "product")


async def search_products(db: AsyncIOMotorDatabase, page: int = 1, limit: int = 10,
                          category_id: Optional[str] = None, search: Optional[str] = None) -> dict:
    if page < 1 or limit < 1:
        raise InvalidArgument("page and limit must be positive")
    filt: dict[str, Any] = {}
    if category_id:
        filt["category_id"] = oid(category_id, "category id")
    if search:
        pattern = re.escape(search)
        filt["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    products = await get_documents(db, "product", filt, limit=limit, skip=(page - 1) * limit,
                                   sort=[("created_at", -1)])
    count = await db["product"].count_documents(filt)
    return {
        "products": products,
        "total_pages": math.ceil(count / limit),
        "current_page": page,
    }


async def update_product(db: AsyncIOMotorDatabase, product_id: Any, patch: ProductUpdate) -> dict:
    changes = patch.model_dump(exclude_unset=True, exclude_none=True)
    if "category_id" in changes:
        changes["category_id"] = oid(changes["category_id"], "category id")
        if not await db["category"].find_one({"_id": changes["category_id"]}):
            raise NotFound("Category not found")
    updated = await update_document(db, "product", oid(product_id, "product id"), changes)
    if updated is None:
        raise NotFound("Product not found")
    return updated


async def delete_product(db: AsyncIOMotorDatabase, product_id: Any) -> None:
    pid = oid(product_id, "product id")
    result = await db["product"].delete_one({"_id": pid})
    if result.deleted_count == 0:
        raise NotFound("Product not found")
    from .cart import drop_variants

    variant_ids = [v["_id"] async for v in db["product_variant"].find({"product_id": pid})]
    await db["product_variant"].delete_many({"product_id": pid})
    await db["review"].delete_many({"product_id": pid})
    carts = await drop_variants(db, variant_ids)
    logger.info("Deleted product %s, %d variants, pruned %d carts", pid, len(variant_ids), carts)


async def product_inventory(db: AsyncIOMotorDatabase) -> list[dict]:
    categories = {c["_id"]: c["name"] for c in await get_documents(db, "category")}
    return [
        {
            "id": str(p["_id"]),
            "title": p.get("title"),
            "category": categories.get(p.get("category_id")),
            "total_stock": p.get("total_stock", 0),
        }
        for p in await get_documents(db, "product")
    ]


# Variants and stock

async def create_variant(db: AsyncIOMotorDatabase, product_id: Any, size: str, color: str,
                         quantity: int = 0) -> dict:
    product = await get_product(db, product_id)
    variant = ProductVariant(size=size, color=color, quantity=quantity)
    if await db["product_variant"].find_one(
        {"product_id": product["_id"], "size": variant.size, "color": variant.color}
    ):
        raise ValidationError(f"Variant {variant.size}/{variant.color} already exists")
    doc = await create_document(db, "product_variant", {"product_id": product["_id"], **variant.model_dump()})
    await recompute_product_stock(db, product["_id"])
    return doc


async def list_variants(db: AsyncIOMotorDatabase, product_id: Any) -> list[dict]:
    product = await get_product(db, product_id)
    return await get_documents(db, "product_variant", {"product_id": product["_id"]})


async def get_variant(db: AsyncIOMotorDatabase, variant_id: Any) -> dict:
    variant = await db["product_variant"].find_one({"_id": oid(variant_id, "variant id")})
    if not variant:
        raise NotFound("Product variant not found")
    return variant


async def recompute_product_stock(db: AsyncIOMotorDatabase, product_id: ObjectId) -> int:
    """Write the sum of the product's variant quantities to ``total_stock``."""
    total = 0
    async for variant in db["product_variant"].find({"product_id": product_id}):
        total += variant.get("quantity", 0)
    await db["product"].update_one(
        {"_id": product_id}, {"$set": {"total_stock": total, "updated_at": utcnow()}}
    )
    return total


async def restock(db: AsyncIOMotorDatabase, product_id: Any, size: str, color: str, amount: int) -> dict:
    if amount <= 0:
        raise InvalidArgument("Restock amount must be greater than 0")
    pid = oid(product_id, "product id")
    variant = await db["product_variant"].find_one_and_update(
        {"product_id": pid, "size": size, "color": color},
        {"$inc": {"quantity": amount}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not variant:
        raise NotFound("Product variant not found")
    total = await recompute_product_stock(db, pid)
    logger.info("Restocked variant %s by %d (product %s total_stock=%d)", variant["_id"], amount, pid, total)
    return variant


async def calculate_total_stock(db: AsyncIOMotorDatabase) -> int:
    updated = 0
    for product in await get_documents(db, "product"):
        await recompute_product_stock(db, product["_id"])
        updated += 1
    logger.info("Recalculated total stock for %d products", updated)
    return updated


async def seed_catalog(db: AsyncIOMotorDatabase, rng: Optional[random.Random] = None) -> dict:
    if await db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    rng = rng or random.Random()
    products_created = 0
    variants_created = 0
    for category_name, titles in SEED_CATEGORIES.items():
        category = await db["category"].find_one({"name": category_name})
        if not category:
            category = await create_document(db, "category", {"name": category_name})
        for title in titles:
            product = Product(
                title=title,
                description=f"A high-quality {title.lower()}",
                price=float(rng.randint(20, 200)),
                rating=round(rng.uniform(4, 5), 1),
                material=rng.choice(SEED_MATERIALS),
            )
            doc = await create_document(db, "product", {"category_id": category["_id"], **product.model_dump()})
            products_created += 1
            for size in SEED_SIZES:
                for color in SEED_COLORS:
                    variant = ProductVariant(size=size, color=color, quantity=rng.randint(10, 59))
                    await create_document(db, "product_variant", {"product_id": doc["_id"], **variant.model_dump()})
                    variants_created += 1
            await recompute_product_stock(db, doc["_id"])
    logger.info("Seeded %d products with %d variants", products_created, variants_created)
    return {
        "seeded": True,
        "categories": len(SEED_CATEGORIES),
        "products": products_created,
        "variants": variants_created,
    }
