from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

from . import __version__, cart, catalog, orders, payments, reviews
from .auth import get_current_user_id, is_admin, require_admin
from .config import Settings, get_settings, settings
from .database import close_db, get_db, init_indexes, to_public_doc
from .errors import StorefrontError
from .logging_config import setup_logging
from .recommendation import RecommendationClient, recommend
from .schemas import (
    AddToCartIn,
    CategoryIn,
    OrderStatusIn,
    PaymentIn,
    PlaceOrderIn,
    ProductIn,
    ProductUpdate,
    RecommendIn,
    RestockIn,
    ReviewIn,
    UpdateCartItemIn,
    VariantIn,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    db = await get_db()
    try:
        await init_indexes(db)
    except PyMongoError:
        logger.exception("Could not create indexes; continuing without them")
    yield
    close_db()


app = FastAPI(title="Storefront API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping

def error_response(status_code: int, kind: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": kind, "message": message})


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.kind, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in errors
    ) or "Invalid request"
    return error_response(400, "validation_error", message)


@app.exception_handler(PydanticValidationError)
async def model_validation_handler(request: Request, exc: PydanticValidationError):
    return error_response(400, "validation_error", str(exc))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal", "Internal server error")


# Utils

def ok(**payload) -> dict:
    return {"success": True, **payload}


def public(docs):
    if isinstance(docs, list):
        return [to_public_doc(d) for d in docs]
    return to_public_doc(docs)


def get_recommendation_client(settings: Settings = Depends(get_settings)) -> RecommendationClient:
    return RecommendationClient(settings.RECOMMENDER_URL, timeout=settings.RECOMMENDER_TIMEOUT)


# Health

@app.get("/")
async def root():
    return {"message": "Storefront Backend Running"}


@app.get("/test")
async def test(db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        colls = await db.list_collection_names()
        return {"backend": "Running", "database": db.name, "connection_status": "Connected", "collections": colls}
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        return {"backend": "Running", "database": db.name, "connection_status": "Not Connected"}


@app.post("/seed", dependencies=[Depends(require_admin)])
async def seed(db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(**await catalog.seed_catalog(db))


# Categories

@app.get("/categories")
async def get_categories(db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(categories=public(await catalog.list_categories(db)))


@app.post("/categories", status_code=201, dependencies=[Depends(require_admin)])
async def post_category(payload: CategoryIn, db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(category=public(await catalog.create_category(db, payload.name)))


# Products

@app.get("/products")
async def get_products(db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(products=public(await catalog.list_products(db)))


@app.post("/products", status_code=201, dependencies=[Depends(require_admin)])
async def post_product(payload: ProductIn, db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(product=public(await catalog.create_product(db, payload)))


@app.get("/products/search")
async def search_products(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                          category: Optional[str] = Query(None), search: Optional[str] = Query(None),
                          db: AsyncIOMotorDatabase = Depends(get_db)):
    result = await catalog.search_products(db, page, limit, category, search)
    return ok(**{**result, "products": public(result["products"])})


@app.get("/products/inventory", dependencies=[Depends(require_admin)])
async def get_inventory(db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(inventory=await catalog.product_inventory(db))


@app.get("/products/top-selling", dependencies=[Depends(require_admin)])
async def get_top_selling(limit: int = Query(3, ge=1, le=50), db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(top_products=await orders.top_selling_products(db, limit))


@app.post("/products/recommend")
async def post_recommend(payload: RecommendIn, db: AsyncIOMotorDatabase = Depends(get_db),
                         client: RecommendationClient = Depends(get_recommendation_client)):
    result = await recommend(db, client, payload.product_name)
    return ok(recommendations=result["recommendations"], similar_products=public(result["similar_products"]))


@app.post("/products/variants/restock", dependencies=[Depends(require_admin)])
async def post_restock(payload: RestockIn, db: AsyncIOMotorDatabase = Depends(get_db)):
    variant = await catalog.restock(db, payload.product_id, payload.size, payload.color, payload.quantity)
    return ok(message="Variant restocked successfully", variant=public(variant))


@app.post("/products/calculate-stock", dependencies=[Depends(require_admin)])
async def post_calculate_stock(db: AsyncIOMotorDatabase = Depends(get_db)):
    updated = await catalog.calculate_total_stock(db)
    return ok(message="Total stock calculated and updated for all products.", products_updated=updated)


@app.get("/products/{product_id}")
async def get_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(product=public(await catalog.get_product(db, product_id)))


@app.put("/products/{product_id}", dependencies=[Depends(require_admin)])
async def put_product(product_id: str, payload: ProductUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(product=public(await catalog.update_product(db, product_id, payload)))


@app.delete("/products/{product_id}", dependencies=[Depends(require_admin)])
async def delete_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    await catalog.delete_product(db, product_id)
    return ok(message="Product deleted successfully")


@app.get("/products/{product_id}/variants")
async def get_variants(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(variants=public(await catalog.list_variants(db, product_id)))


@app.post("/products/{product_id}/variants", status_code=201, dependencies=[Depends(require_admin)])
async def post_variant(product_id: str, payload: VariantIn, db: AsyncIOMotorDatabase = Depends(get_db)):
    variant = await catalog.create_variant(db, product_id, payload.size, payload.color, payload.quantity)
    return ok(variant=public(variant))


# Cart

@app.get("/cart")
async def get_cart(user_id: str = Depends(get_current_user_id), db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(cart=public(await cart.get_or_create_cart(db, user_id)))


@app.get("/cart/details")
async def get_cart_details(user_id: str = Depends(get_current_user_id), db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(cart=await cart.cart_details(db, user_id))


@app.post("/cart")
async def post_cart(payload: AddToCartIn, user_id: str = Depends(get_current_user_id),
                    db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(cart=public(await cart.add_item(db, user_id, payload.variant_id, payload.quantity)))


@app.put("/cart/item")
async def put_cart_item(payload: UpdateCartItemIn, user_id: str = Depends(get_current_user_id),
                        db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(cart=public(await cart.update_item(db, user_id, payload.variant_id, payload.quantity)))


# Orders

@app.post("/orders", status_code=201)
async def post_order(payload: PlaceOrderIn, user_id: str = Depends(get_current_user_id),
                     idempotency_key: Optional[str] = Header(None),
                     db: AsyncIOMotorDatabase = Depends(get_db)):
    order = await orders.place_order(db, user_id, payload.shipping_address, idempotency_key)
    order["items"] = await orders.get_order_items(db, order["_id"])
    return ok(order=public(order))


@app.get("/orders/user")
async def get_user_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                          user_id: str = Depends(get_current_user_id), db: AsyncIOMotorDatabase = Depends(get_db)):
    result = await orders.list_user_orders(db, user_id, page, limit)
    return ok(**{**result, "orders": public(result["orders"])})


@app.get("/orders/pending", dependencies=[Depends(require_admin)])
async def get_pending_orders(db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(orders=public(await orders.pending_orders(db)))


@app.get("/orders/report", dependencies=[Depends(require_admin)])
async def get_order_report(db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(**await orders.order_report(db))


@app.put("/orders/status", dependencies=[Depends(require_admin)])
async def put_order_status(payload: OrderStatusIn, db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(order=public(await orders.update_order_status(db, payload.order_id, payload.status)))


@app.get("/orders/{order_id}")
async def get_order(order_id: str, user_id: str = Depends(get_current_user_id), admin: bool = Depends(is_admin),
                    db: AsyncIOMotorDatabase = Depends(get_db)):
    order = await orders.get_order(db, order_id, None if admin else user_id)
    return ok(order=public(order))


# Reviews

@app.get("/reviews")
async def get_reviews(product: Optional[str] = Query(None), db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(reviews=public(await reviews.list_reviews(db, product)))


@app.post("/reviews", status_code=201)
async def post_review(payload: ReviewIn, user_id: str = Depends(get_current_user_id),
                      db: AsyncIOMotorDatabase = Depends(get_db)):
    review = await reviews.create_review(db, user_id, payload.product_id, payload.rating, payload.comment)
    return ok(review=public(review))


# Payments

@app.get("/payments")
async def get_payments(user_id: str = Depends(get_current_user_id), admin: bool = Depends(is_admin),
                       db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(payments=public(await payments.list_payments(db, None if admin else user_id)))


@app.post("/payments", status_code=201)
async def post_payment(payload: PaymentIn, user_id: str = Depends(get_current_user_id),
                       admin: bool = Depends(is_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    payment = await payments.create_payment(db, payload.order_id, payload.method, None if admin else user_id)
    return ok(payment=public(payment))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=settings.PORT)
