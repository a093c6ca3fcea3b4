"""
Database Schemas

Each stored model maps to one MongoDB collection named after the class in
snake case (Product -> "product", ProductVariant -> "product_variant",
OrderLineItem -> "order_item"). References to other documents are kept out
of these models and written as ObjectId by the services.

The *In models validate request bodies before they reach the services.
"""

from __future__ import annotations
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class OrderStatus(str, Enum):
    PENDING = "Pending"
    IN_TRANSIT = "In-transit"
    CANCEL = "Cancel"


# Stored documents

class Category(BaseModel):
    name: str = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Category name is required")
        return v


class Product(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    rating: float = Field(0, ge=0, le=5)
    material: Optional[str] = None
    image: Optional[str] = None
    total_stock: int = Field(0, ge=0)


class ProductVariant(BaseModel):
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    quantity: int = Field(0, ge=0)


class PaymentMethod(str, Enum):
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    PAYPAL = "PayPal"
    BANK_TRANSFER = "Bank Transfer"
    CASH = "Cash"


class Review(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class Payment(BaseModel):
    payment_id: str
    method: PaymentMethod
    amount: float = Field(..., ge=0)
    # Smallest currency unit, as card gateways expect.
    amount_minor: int = Field(..., ge=0)
    currency: str = "usd"
    status: str = "pending"


class Order(BaseModel):
    total: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    shipping_address: str = Field(..., min_length=1)


class OrderLineItem(BaseModel):
    title: str
    size: str
    color: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


# Request bodies

class CategoryIn(Category):
    pass


class ProductIn(BaseModel):
    category_id: str
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    rating: float = Field(0, ge=0, le=5)
    material: Optional[str] = None
    image: Optional[str] = None


class ProductUpdate(BaseModel):
    category_id: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    material: Optional[str] = None
    image: Optional[str] = None


class VariantIn(ProductVariant):
    pass


class RestockIn(BaseModel):
    product_id: str
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    # Sign is checked by catalog.restock so the error kind stays invalid_argument.
    quantity: int


class AddToCartIn(BaseModel):
    variant_id: str
    quantity: int = Field(..., ge=1)


class UpdateCartItemIn(BaseModel):
    variant_id: str
    quantity: int = Field(..., ge=0)


class PlaceOrderIn(BaseModel):
    shipping_address: str

    @field_validator("shipping_address")
    @classmethod
    def require_address(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Shipping address is required")
        return v


class OrderStatusIn(BaseModel):
    order_id: str
    status: OrderStatus


class RecommendIn(BaseModel):
    product_name: str = Field(..., min_length=1)


class ReviewIn(Review):
    product_id: str


class PaymentIn(BaseModel):
    order_id: str
    method: PaymentMethod = PaymentMethod.CREDIT_CARD
