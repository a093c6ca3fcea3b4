from __future__ import annotations
import logging
import re
from typing import Any, Optional

import httpx
from motor.motor_asyncio import AsyncIOMotorDatabase

from .database import get_documents
from .errors import NotFound, ServiceUnavailable, ValidationError

logger = logging.getLogger(__name__)


class RecommendationClient:
    """Talks to the external scoring service.

    The service takes ``{"clicked_product": title}`` and answers with a JSON
    list of ``{"Item": fragment}`` entries, best match first.
    """

    def __init__(self, url: str, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def fetch(self, title: str) -> list[dict[str, Any]]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json={"clicked_product": title})
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException:
            logger.warning("Recommendation service timed out after %ss", self.timeout)
            raise ServiceUnavailable("Recommendation service timed out")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Recommendation service failed: %s", e)
            raise ServiceUnavailable("Could not fetch recommendations")

        if not isinstance(payload, list):
            raise ServiceUnavailable("Recommendation service returned an unexpected payload")
        return [rec for rec in payload if isinstance(rec, dict)]


async def recommend(db: AsyncIOMotorDatabase, client: RecommendationClient, product_name: str) -> dict:
    name = (product_name or "").strip()
    if not name:
        raise ValidationError("Product name is required")

    matched = await db["product"].find_one({"title": {"$regex": re.escape(name), "$options": "i"}})
    if not matched:
        raise NotFound("No similar product found")

    recommendations = await client.fetch(matched["title"])
    names = [str(rec["Item"]).lower() for rec in recommendations if rec.get("Item")]

    similar = [
        p for p in await get_documents(db, "product")
        if p.get("title") and any(n in p["title"].lower() for n in names)
    ]
    logger.debug("%d recommendations for %r matched %d products", len(names), matched["title"], len(similar))
    return {"recommendations": recommendations, "similar_products": similar}
