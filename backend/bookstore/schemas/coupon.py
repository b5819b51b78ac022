from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bookstore.models.coupon import CouponType


class CouponCodeRequest(BaseModel):
    code: str | None = Field(default=None, max_length=64)


class CouponPreviewTotals(BaseModel):
    subtotal: Decimal
    discount_total: Decimal
    total: Decimal


class CouponValidateResponse(BaseModel):
    valid: bool
    reason: str | None = None
    preview: CouponPreviewTotals


class CouponPublicRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str | None = None
    description: str | None = None
    type: CouponType
    value: Decimal
    max_discount_amount: Decimal | None = None
    min_subtotal: Decimal | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _CouponWindow(BaseModel):
    @model_validator(mode="after")
    def _check_window(self):
        starts_at = _as_utc(getattr(self, "starts_at", None))
        ends_at = _as_utc(getattr(self, "ends_at", None))
        if starts_at and ends_at and ends_at < starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class CouponCreate(_CouponWindow):
    code: str = Field(min_length=1, max_length=32)
    name: str | None = Field(default=None, max_length=120)
    description: str | None = None
    type: CouponType
    value: Decimal = Field(ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    min_subtotal: Decimal | None = Field(default=None, ge=0)
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    is_active: bool = True
    usage_limit_total: int | None = Field(default=None, ge=0)
    usage_limit_per_user: int | None = Field(default=None, ge=0)
    eligible_product_ids: list[UUID] = []
    eligible_category_slugs: list[str] = []


class CouponUpdate(_CouponWindow):
    name: str | None = Field(default=None, max_length=120)
    description: str | None = None
    type: CouponType | None = None
    value: Decimal | None = Field(default=None, ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    min_subtotal: Decimal | None = Field(default=None, ge=0)
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    is_active: bool | None = None
    usage_limit_total: int | None = Field(default=None, ge=0)
    usage_limit_per_user: int | None = Field(default=None, ge=0)
    eligible_product_ids: list[UUID] | None = None
    eligible_category_slugs: list[str] | None = None


class CouponAdminRead(CouponPublicRead):
    is_active: bool
    usage_limit_total: int | None = None
    usage_limit_per_user: int | None = None
    eligible_product_ids: list[str] = []
    eligible_category_slugs: list[str] = []
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None
    created_at: datetime
    updated_at: datetime
    redemption_count: int = 0
