"""Coupon eligibility and discount rules.

The evaluator walks the checks in a fixed order and stops at the first
failure, so the reason shown to the shopper is always the earliest one.
Usage limits are read from the redemption ledger at evaluation time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.models.coupon import Coupon, CouponType
from bookstore.services import pricing, redemptions

REASON_NOT_FOUND = "Coupon not found"
REASON_INACTIVE = "Coupon is inactive"
REASON_NOT_CURRENT = "Coupon is not currently valid"
REASON_NOT_APPLICABLE = "Coupon is not applicable to items in cart"
REASON_USAGE_LIMIT = "Coupon usage limit reached"
REASON_USER_LIMIT = "You have already used this coupon the maximum number of times"


@dataclass(frozen=True)
class CouponCheck:
    valid: bool
    reason: str | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _normalize_category(value: str | None) -> str:
    return (value or "").strip().lower()


def _format_amount(value: Decimal) -> str:
    return str(pricing.quantize_money(Decimal(value)))


def is_within_window(coupon: Coupon, now: datetime | None = None) -> bool:
    now = now or _now()
    starts_at = _as_utc(coupon.starts_at)
    ends_at = _as_utc(coupon.ends_at)
    if starts_at and now < starts_at:
        return False
    if ends_at and now > ends_at:
        return False
    return True


def matches_products(coupon: Coupon, items: Sequence) -> bool:
    eligible = {str(pid) for pid in (coupon.eligible_product_ids or [])}
    if not eligible:
        return True
    return any(str(item.product_id) in eligible for item in items)


def matches_categories(coupon: Coupon, items: Sequence) -> bool:
    eligible = {_normalize_category(slug) for slug in (coupon.eligible_category_slugs or []) if _normalize_category(slug)}
    if not eligible:
        return True
    for item in items:
        product = getattr(item, "product", None)
        if product is not None and _normalize_category(product.category) in eligible:
            return True
    return False


async def evaluate(
    session: AsyncSession,
    *,
    coupon: Coupon | None,
    user_id: UUID,
    subtotal: Decimal,
    items: Sequence,
    now: datetime | None = None,
) -> CouponCheck:
    if coupon is None:
        return CouponCheck(valid=False, reason=REASON_NOT_FOUND)
    if not coupon.is_active:
        return CouponCheck(valid=False, reason=REASON_INACTIVE)
    if not is_within_window(coupon, now):
        return CouponCheck(valid=False, reason=REASON_NOT_CURRENT)
    if coupon.min_subtotal is not None and Decimal(subtotal) < Decimal(coupon.min_subtotal):
        return CouponCheck(valid=False, reason=f"Minimum subtotal is {_format_amount(coupon.min_subtotal)}")
    if not matches_products(coupon, items):
        return CouponCheck(valid=False, reason=REASON_NOT_APPLICABLE)
    if not matches_categories(coupon, items):
        return CouponCheck(valid=False, reason=REASON_NOT_APPLICABLE)

    if coupon.usage_limit_total is not None:
        used = await redemptions.count_by_coupon(session, coupon_id=coupon.id)
        if used >= int(coupon.usage_limit_total):
            return CouponCheck(valid=False, reason=REASON_USAGE_LIMIT)

    if coupon.usage_limit_per_user is not None:
        used_by_user = await redemptions.count_by_coupon_and_user(session, coupon_id=coupon.id, user_id=user_id)
        if used_by_user >= int(coupon.usage_limit_per_user):
            return CouponCheck(valid=False, reason=REASON_USER_LIMIT)

    return CouponCheck(valid=True)


def compute_discount(
    *,
    coupon_type: CouponType | str | None,
    value: Decimal | None,
    subtotal: Decimal,
    max_discount_amount: Decimal | None = None,
) -> Decimal:
    subtotal = Decimal(subtotal)
    raw_value = Decimal(value or 0)
    kind = coupon_type.value if isinstance(coupon_type, CouponType) else str(coupon_type or "")

    if kind == CouponType.percent.value:
        pct = min(max(raw_value, Decimal("0")), Decimal("100"))
        discount = subtotal * pct / Decimal("100")
        if max_discount_amount is not None:
            discount = min(discount, Decimal(max_discount_amount))
        discount = max(discount, Decimal("0"))
    elif kind == CouponType.fixed.value:
        discount = min(max(raw_value, Decimal("0")), max(subtotal, Decimal("0")))
    else:
        return pricing.ZERO
    return pricing.quantize_money(discount)
