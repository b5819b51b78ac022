from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from bookstore.models.coupon import CouponType
from bookstore.models.order import OrderStatus, PaymentMethod, PaymentStatus


class ShippingAddress(BaseModel):
    name: str | None = None
    phone: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = None


class OrderCreate(BaseModel):
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.payos


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    title: str
    isbn: str | None = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event: str
    note: str | None = None
    created_at: datetime


class OrderCouponRead(BaseModel):
    id: UUID | None = None
    code: str | None = None
    type: CouponType | None = None
    value: Decimal | None = None


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    order_number: str
    shipping_address: dict
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    subtotal: Decimal
    discount_total: Decimal
    total: Decimal
    currency: str
    coupon: OrderCouponRead | None = None
    payos_order_code: int | None = None
    items: list[OrderItemRead] = []
    events: list[OrderEventRead] = []
    created_at: datetime
    updated_at: datetime
