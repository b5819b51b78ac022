from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from bookstore.models.coupon import CouponType


class CartItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(default=1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int = Field(ge=1)


class CartItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    title: str | None = None
    isbn: str | None = None
    category: str | None = None
    quantity: int
    unit_price_at_add: Decimal
    line_total: Decimal


class AppliedCouponRead(BaseModel):
    id: UUID | None = None
    code: str | None = None
    type: CouponType | None = None
    value: Decimal | None = None


class CouponResult(BaseModel):
    applied: bool
    reason: str | None = None


class CartRead(BaseModel):
    id: UUID
    user_id: UUID
    items: list[CartItemRead] = []
    subtotal: Decimal
    discount_total: Decimal
    total: Decimal
    currency: str
    coupon: AppliedCouponRead | None = None
    coupon_result: CouponResult | None = None
    expires_at: datetime
