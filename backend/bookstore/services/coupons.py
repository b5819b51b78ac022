from __future__ import annotations

import logging
from datetime import timezone
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.models.cart import Cart
from bookstore.models.coupon import Coupon
from bookstore.models.user import User
from bookstore.schemas.coupon import CouponAdminRead, CouponCreate, CouponUpdate
from bookstore.services import coupon_rules, pricing, redemptions

logger = logging.getLogger(__name__)

MAX_CODE_LENGTH = 32

_REQUIRED_FIELDS = ("type", "value", "is_active")


def validate_code_shape(code: str | None) -> str:
    cleaned = coupon_rules.normalize_code(code)
    if not cleaned:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Coupon code is required")
    if len(cleaned) > MAX_CODE_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Coupon code must be at most {MAX_CODE_LENGTH} characters",
        )
    return cleaned


async def get_coupon_by_code(session: AsyncSession, *, code: str | None) -> Coupon | None:
    cleaned = coupon_rules.normalize_code(code)
    if not cleaned:
        return None
    res = await session.execute(select(Coupon).where(Coupon.code == cleaned))
    return res.scalar_one_or_none()


async def get_coupon(session: AsyncSession, coupon_id: UUID) -> Coupon | None:
    res = await session.execute(select(Coupon).where(Coupon.id == coupon_id))
    return res.scalar_one_or_none()


async def resolve_coupon(session: AsyncSession, *, coupon_id: UUID | None, code: str | None) -> Coupon | None:
    if coupon_id is not None:
        coupon = await get_coupon(session, coupon_id)
        if coupon is not None:
            return coupon
    return await get_coupon_by_code(session, code=code)


async def list_available(session: AsyncSession, *, user_id: UUID, cart: Cart) -> list[Coupon]:
    rows = (
        (await session.execute(select(Coupon).where(Coupon.is_active.is_(True)).order_by(Coupon.created_at.desc())))
        .scalars()
        .all()
    )
    subtotal = pricing.line_subtotal(cart.items)
    available: list[Coupon] = []
    for coupon in rows:
        check = await coupon_rules.evaluate(
            session, coupon=coupon, user_id=user_id, subtotal=subtotal, items=cart.items
        )
        if check.valid:
            available.append(coupon)
    return available


async def to_admin_read(session: AsyncSession, coupon: Coupon, *, redemption_count: int | None = None) -> CouponAdminRead:
    if redemption_count is None:
        redemption_count = await redemptions.count_by_coupon(session, coupon_id=coupon.id)
    read = CouponAdminRead.model_validate(coupon, from_attributes=True)
    return read.model_copy(update={"redemption_count": redemption_count})


async def list_coupons(session: AsyncSession) -> list[CouponAdminRead]:
    rows = (await session.execute(select(Coupon).order_by(Coupon.created_at.desc()))).scalars().all()
    counts = await redemptions.counts_for_coupons(session, [c.id for c in rows])
    return [await to_admin_read(session, c, redemption_count=counts.get(c.id, 0)) for c in rows]


async def create_coupon(session: AsyncSession, payload: CouponCreate, *, actor: User) -> Coupon:
    code = validate_code_shape(payload.code)
    if await get_coupon_by_code(session, code=code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Coupon code already exists")
    data = payload.model_dump(exclude={"code", "eligible_product_ids"})
    coupon = Coupon(
        code=code,
        eligible_product_ids=[str(pid) for pid in payload.eligible_product_ids],
        created_by_id=actor.id,
        updated_by_id=actor.id,
        **data,
    )
    session.add(coupon)
    await session.commit()
    logger.info("coupon_created", extra={"coupon_id": str(coupon.id), "code": code, "actor_id": str(actor.id)})
    return coupon


def _check_window(coupon: Coupon) -> None:
    starts_at = coupon.starts_at
    ends_at = coupon.ends_at
    if starts_at and ends_at:
        if starts_at.tzinfo is None:
            starts_at = starts_at.replace(tzinfo=timezone.utc)
        if ends_at.tzinfo is None:
            ends_at = ends_at.replace(tzinfo=timezone.utc)
        if ends_at < starts_at:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="ends_at must be after starts_at")


async def update_coupon(session: AsyncSession, coupon: Coupon, payload: CouponUpdate, *, actor: User) -> Coupon:
    data = payload.model_dump(exclude_unset=True)
    if "eligible_product_ids" in data:
        data["eligible_product_ids"] = [str(pid) for pid in (payload.eligible_product_ids or [])]
    if "eligible_category_slugs" in data and data["eligible_category_slugs"] is None:
        data["eligible_category_slugs"] = []
    for field in _REQUIRED_FIELDS:
        if field in data and data[field] is None:
            data.pop(field)
    for field, value in data.items():
        setattr(coupon, field, value)
    _check_window(coupon)
    coupon.updated_by_id = actor.id
    session.add(coupon)
    await session.commit()
    logger.info("coupon_updated", extra={"coupon_id": str(coupon.id), "fields": sorted(data), "actor_id": str(actor.id)})
    return coupon


async def deactivate_coupon(session: AsyncSession, coupon: Coupon, *, actor: User) -> Coupon:
    coupon.is_active = False
    coupon.updated_by_id = actor.id
    session.add(coupon)
    await session.commit()
    logger.info("coupon_deactivated", extra={"coupon_id": str(coupon.id), "actor_id": str(actor.id)})
    return coupon
