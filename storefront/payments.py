"""Payment initiation for placed orders.

A payment record is the intent handed to the gateway; settlement and the
gateway's webhook live outside this service.
"""

from __future__ import annotations
import logging
import uuid
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from .database import create_document, get_documents, oid
from .errors import NotFound, ValidationError
from .schemas import OrderStatus, Payment, PaymentMethod

logger = logging.getLogger(__name__)


async def create_payment(db: AsyncIOMotorDatabase, order_id: Any, method: PaymentMethod,
                         user_id: Optional[str] = None) -> dict:
    """Open a pending payment for an order, or return the one already open.

    ``user_id`` restricts the lookup to the caller's own orders; admins pass None.
    """
    filt: dict[str, Any] = {"_id": oid(order_id, "order id")}
    if user_id is not None:
        filt["user_id"] = user_id
    order = await db["order"].find_one(filt)
    if not order:
        raise NotFound("Order not found")
    if order.get("status") == OrderStatus.CANCEL.value:
        raise ValidationError("Cannot pay for a cancelled order")

    existing = await db["payment"].find_one({"order_id": order["_id"], "status": "pending"})
    if existing:
        return existing

    total = float(order["total"])
    payment = Payment(
        payment_id=f"pay_{uuid.uuid4().hex}",
        method=PaymentMethod(method),
        amount=total,
        amount_minor=round(total * 100),
    )
    doc = await create_document(db, "payment", {
        "order_id": order["_id"],
        "user_id": order["user_id"],
        **payment.model_dump(mode="json"),
    })
    logger.info("Opened payment %s for order %s (%.2f)", payment.payment_id, order["_id"], total)
    return doc


async def list_payments(db: AsyncIOMotorDatabase, user_id: Optional[str] = None) -> list[dict]:
    filt = {"user_id": user_id} if user_id is not None else {}
    return await get_documents(db, "payment", filt, sort=[("created_at", -1)])
