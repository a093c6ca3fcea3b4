"""Tests for the recommendation client and the similar-product lookup."""

import json

import httpx
import pytest

from storefront.errors import NotFound, ServiceUnavailable, ValidationError
from storefront.recommendation import RecommendationClient, recommend

URL = "http://recommender.test/recommend"


def client_returning(handler) -> RecommendationClient:
    return RecommendationClient(URL, timeout=1.0, transport=httpx.MockTransport(handler))


async def add_products(db, *titles):
    for title in titles:
        await db["product"].insert_one({"title": title, "description": title, "price": 10.0})


@pytest.mark.asyncio
async def test_recommend_filters_catalog_by_returned_names(db):
    await add_products(db, "Leather Boots", "Canvas Sneakers", "Wool Scarf", "Silk Scarf")
    sent = {}

    def handler(request: httpx.Request) -> httpx.Response:
        sent.update(json.loads(request.content))
        return httpx.Response(200, json=[{"Item": "scarf"}, {"Item": "SNEAKERS"}, {"Score": 1}])

    result = await recommend(db, client_returning(handler), "boots")

    assert sent == {"clicked_product": "Leather Boots"}
    assert sorted(p["title"] for p in result["similar_products"]) == ["Canvas Sneakers", "Silk Scarf", "Wool Scarf"]
    assert len(result["recommendations"]) == 3


@pytest.mark.asyncio
async def test_recommend_unknown_product(db):
    await add_products(db, "Leather Boots")

    def handler(request):
        raise AssertionError("service must not be called")

    with pytest.raises(NotFound):
        await recommend(db, client_returning(handler), "umbrella")


@pytest.mark.asyncio
async def test_recommend_requires_name(db):
    with pytest.raises(ValidationError):
        await recommend(db, client_returning(lambda r: httpx.Response(200, json=[])), "  ")


@pytest.mark.asyncio
async def test_recommend_escapes_regex_characters(db):
    await add_products(db, "T-shirt (basic)")

    result = await recommend(db, client_returning(lambda r: httpx.Response(200, json=[])), "(basic)")

    assert result["similar_products"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize("handler", [
    lambda r: httpx.Response(500, json={"error": "boom"}),
    lambda r: httpx.Response(200, json={"Item": "not a list"}),
    lambda r: httpx.Response(200, content=b"<html>"),
])
async def test_fetch_bad_responses_are_service_unavailable(handler):
    with pytest.raises(ServiceUnavailable):
        await client_returning(handler).fetch("Boots")


@pytest.mark.asyncio
async def test_fetch_timeout_is_service_unavailable():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ServiceUnavailable, match="timed out"):
        await client_returning(handler).fetch("Boots")


@pytest.mark.asyncio
async def test_fetch_connection_error_is_service_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ServiceUnavailable):
        await client_returning(handler).fetch("Boots")
