"""Turning a cart into an order.

``place_order`` validates every cart line before writing anything, then
applies its writes as a saga: reserve stock, insert the order, insert the
line items, refresh aggregate stock, clear the cart. When a step fails the
completed steps are undone in reverse order and the original error is
re-raised, so callers never observe a half-placed order.

Stock is reserved with a guarded decrement (``quantity >= n`` in the filter)
so two placements racing for the last units cannot both succeed.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from .cart import clear_cart, line_price
from .catalog import recompute_product_stock
from .database import create_document, get_documents, oid, update_document, utcnow
from .errors import EmptyCart, InsufficientStock, InvalidArgument, NotFound, ValidationError
from .schemas import Order, OrderLineItem, OrderStatus

logger = logging.getLogger(__name__)


@dataclass
class PlannedLine:
    variant: dict
    product: dict
    quantity: int

    @property
    def price(self) -> float:
        return float(self.product["price"])


@dataclass
class PlacementSaga:
    db: AsyncIOMotorDatabase
    reserved: list[tuple[ObjectId, int]] = field(default_factory=list)
    product_ids: set[ObjectId] = field(default_factory=set)
    order_id: Optional[ObjectId] = None

    async def reserve(self, line: PlannedLine) -> None:
        vid = line.variant["_id"]
        result = await self.db["product_variant"].update_one(
            {"_id": vid, "quantity": {"$gte": line.quantity}},
            {"$inc": {"quantity": -line.quantity}, "$set": {"updated_at": utcnow()}},
        )
        if result.modified_count == 0:
            current = await self.db["product_variant"].find_one({"_id": vid})
            raise InsufficientStock(str(vid), line.quantity, current["quantity"] if current else 0)
        self.reserved.append((vid, line.quantity))
        self.product_ids.add(line.product["_id"])

    async def refresh_stock(self) -> None:
        for product_id in self.product_ids:
            await recompute_product_stock(self.db, product_id)

    async def compensate(self) -> None:
        if self.order_id is not None:
            await self._undo("delete line items", self.db["order_item"].delete_many({"order_id": self.order_id}))
            await self._undo("delete order", self.db["order"].delete_one({"_id": self.order_id}))
        for vid, quantity in reversed(self.reserved):
            await self._undo(
                f"release {quantity} of variant {vid}",
                self.db["product_variant"].update_one({"_id": vid}, {"$inc": {"quantity": quantity}}),
            )
        for product_id in self.product_ids:
            await self._undo(f"refresh stock of product {product_id}", recompute_product_stock(self.db, product_id))

    async def _undo(self, what: str, step: Any) -> None:
        try:
            await step
        except Exception:
            logger.exception("Compensation step failed: %s", what)


async def place_order(db: AsyncIOMotorDatabase, user_id: str, shipping_address: str,
                      idempotency_key: Optional[str] = None) -> dict:
    address = (shipping_address or "").strip()
    if not address:
        raise ValidationError("Shipping address is required")

    key = f"{user_id}:{idempotency_key}" if idempotency_key else None
    if key:
        previous = await db["order"].find_one({"idempotency_key": key})
        if previous:
            logger.info("Replaying order %s for idempotency key %s", previous["_id"], idempotency_key)
            return previous

    cart = await db["cart"].find_one({"user_id": user_id})
    if cart is None:
        raise NotFound("Cart not found")
    if not cart.get("items"):
        raise EmptyCart("Cart is empty")

    lines = []
    for item in cart["items"]:
        variant, product = await line_price(db, item["variant_id"])
        if item["quantity"] > variant["quantity"]:
            raise InsufficientStock(str(variant["_id"]), item["quantity"], variant["quantity"])
        lines.append(PlannedLine(variant=variant, product=product, quantity=item["quantity"]))

    total = round(sum(line.price * line.quantity for line in lines), 2)
    if total != cart.get("total_amount"):
        logger.debug("Cart %s cached total %s differs from current prices %s", cart["_id"],
                     cart.get("total_amount"), total)

    order = Order(total=total, shipping_address=address)
    saga = PlacementSaga(db)
    try:
        for line in lines:
            await saga.reserve(line)

        data = {"user_id": user_id, **order.model_dump(mode="json"), "order_date": utcnow()}
        if key:
            data["idempotency_key"] = key
        created = await create_document(db, "order", data)
        saga.order_id = created["_id"]

        await db["order_item"].insert_many([
            {
                "order_id": created["_id"],
                "product_id": line.product["_id"],
                "variant_id": line.variant["_id"],
                **OrderLineItem(
                    title=line.product["title"],
                    size=line.variant["size"],
                    color=line.variant["color"],
                    quantity=line.quantity,
                    price=line.price,
                ).model_dump(),
                "created_at": created["created_at"],
                "updated_at": created["created_at"],
            }
            for line in lines
        ])

        await saga.refresh_stock()
        await clear_cart(db, cart["_id"])
    except DuplicateKeyError:
        # Another request with the same idempotency key won the insert.
        await saga.compensate()
        previous = await db["order"].find_one({"idempotency_key": key}) if key else None
        if previous is None:
            raise
        return previous
    except Exception:
        logger.warning("Placing order for user %s failed, rolling back", user_id)
        await saga.compensate()
        raise

    logger.info("Placed order %s for user %s: %d lines, total %.2f", created["_id"], user_id, len(lines), total)
    return created


async def get_order_items(db: AsyncIOMotorDatabase, order_id: ObjectId) -> list[dict]:
    return await get_documents(db, "order_item", {"order_id": order_id})


async def get_order(db: AsyncIOMotorDatabase, order_id: Any, user_id: Optional[str] = None) -> dict:
    filt: dict[str, Any] = {"_id": oid(order_id, "order id")}
    if user_id is not None:
        filt["user_id"] = user_id
    order = await db["order"].find_one(filt)
    if not order:
        raise NotFound("Order not found")
    order["items"] = await get_order_items(db, order["_id"])
    return order


async def list_user_orders(db: AsyncIOMotorDatabase, user_id: str, page: int = 1, limit: int = 10) -> dict:
    if page < 1 or limit < 1:
        raise InvalidArgument("page and limit must be positive")
    filt = {"user_id": user_id}
    orders = await get_documents(db, "order", filt, limit=limit, skip=(page - 1) * limit,
                                 sort=[("created_at", -1)])
    count = await db["order"].count_documents(filt)
    return {"orders": orders, "total_pages": math.ceil(count / limit), "current_page": page}


async def update_order_status(db: AsyncIOMotorDatabase, order_id: Any, status: OrderStatus) -> dict:
    status = OrderStatus(status)
    updated = await update_document(db, "order", oid(order_id, "order id"), {"status": status.value})
    if updated is None:
        raise NotFound("Order not found")
    logger.info("Order %s is now %s", updated["_id"], status.value)
    return updated


async def pending_orders(db: AsyncIOMotorDatabase) -> list[dict]:
    return await get_documents(db, "order", {"status": OrderStatus.PENDING.value}, sort=[("created_at", 1)])


async def order_report(db: AsyncIOMotorDatabase) -> dict:
    total_orders = 0
    revenue = 0.0
    async for order in db["order"].find({}):
        total_orders += 1
        revenue += float(order.get("total", 0))
    return {
        "total_orders": total_orders,
        "total_revenue": round(revenue, 2),
        "average_order_value": round(revenue / total_orders, 2) if total_orders else 0.0,
    }


async def top_selling_products(db: AsyncIOMotorDatabase, limit: int = 3) -> list[dict]:
    sold: dict[ObjectId, dict] = {}
    async for item in db["order_item"].find({}):
        entry = sold.setdefault(item["product_id"], {"quantity_sold": 0, "revenue": 0.0})
        entry["quantity_sold"] += item["quantity"]
        entry["revenue"] += item["price"] * item["quantity"]

    ranked = sorted(sold.items(), key=lambda kv: kv[1]["quantity_sold"], reverse=True)
    result = []
    for product_id, entry in ranked:
        product = await db["product"].find_one({"_id": product_id})
        if not product:
            continue
        result.append({
            "product_id": str(product_id),
            "product_name": product["title"],
            "quantity_sold": entry["quantity_sold"],
            "revenue": round(entry["revenue"]),
        })
        if len(result) == limit:
            break
    return result
