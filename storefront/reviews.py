"""Product reviews. A product's ``rating`` is the mean of its review ratings."""

from __future__ import annotations
import logging
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from .catalog import get_product
from .database import create_document, get_documents, oid, utcnow
from .errors import ValidationError
from .schemas import Review

logger = logging.getLogger(__name__)


async def list_reviews(db: AsyncIOMotorDatabase, product_id: Optional[str] = None) -> list[dict]:
    filt: dict[str, Any] = {}
    if product_id:
        filt["product_id"] = oid(product_id, "product id")
    return await get_documents(db, "review", filt, sort=[("created_at", -1)])


async def refresh_rating(db: AsyncIOMotorDatabase, product_id: ObjectId) -> float:
    ratings = [r["rating"] async for r in db["review"].find({"product_id": product_id})]
    rating = round(sum(ratings) / len(ratings), 1) if ratings else 0.0
    await db["product"].update_one({"_id": product_id}, {"$set": {"rating": rating, "updated_at": utcnow()}})
    return rating


async def create_review(db: AsyncIOMotorDatabase, user_id: str, product_id: Any, rating: int, comment: str) -> dict:
    product = await get_product(db, product_id)
    review = Review(rating=rating, comment=comment.strip())
    if await db["review"].find_one({"user_id": user_id, "product_id": product["_id"]}):
        raise ValidationError("You have already reviewed this product")

    doc = await create_document(db, "review", {"user_id": user_id, "product_id": product["_id"], **review.model_dump()})
    average = await refresh_rating(db, product["_id"])
    logger.info("User %s reviewed product %s (%d stars, average now %.1f)", user_id, product["_id"], rating, average)
    return doc
