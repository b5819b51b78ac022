from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.models.coupon import CouponRedemption
from bookstore.services import pricing

logger = logging.getLogger(__name__)


async def count_by_coupon(session: AsyncSession, *, coupon_id: UUID) -> int:
    return int(
        (
            await session.execute(
                select(func.count()).select_from(CouponRedemption).where(CouponRedemption.coupon_id == coupon_id)
            )
        ).scalar_one()
    )


async def count_by_coupon_and_user(session: AsyncSession, *, coupon_id: UUID, user_id: UUID) -> int:
    return int(
        (
            await session.execute(
                select(func.count())
                .select_from(CouponRedemption)
                .where(CouponRedemption.coupon_id == coupon_id, CouponRedemption.user_id == user_id)
            )
        ).scalar_one()
    )


async def counts_for_coupons(session: AsyncSession, coupon_ids: list[UUID]) -> dict[UUID, int]:
    if not coupon_ids:
        return {}
    rows = await session.execute(
        select(CouponRedemption.coupon_id, func.count())
        .where(CouponRedemption.coupon_id.in_(coupon_ids))
        .group_by(CouponRedemption.coupon_id)
    )
    return {coupon_id: int(count) for coupon_id, count in rows.all()}


async def get_redemption(session: AsyncSession, *, order_id: UUID, coupon_id: UUID) -> CouponRedemption | None:
    res = await session.execute(
        select(CouponRedemption).where(CouponRedemption.order_id == order_id, CouponRedemption.coupon_id == coupon_id)
    )
    return res.scalar_one_or_none()


def _insert_fn(session: AsyncSession):
    bind = session.get_bind()
    dialect = getattr(getattr(bind, "dialect", None), "name", "")
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    return None


async def _record_via_conflict_stmt(session: AsyncSession, *, values: dict, insert_fn) -> bool:
    stmt = insert_fn(CouponRedemption).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=[CouponRedemption.order_id, CouponRedemption.coupon_id])
    result = await session.execute(stmt)
    return bool(result.rowcount)


async def _record_fallback(session: AsyncSession, *, values: dict) -> bool:
    if await get_redemption(session, order_id=values["order_id"], coupon_id=values["coupon_id"]):
        return False
    try:
        async with session.begin_nested():
            session.add(CouponRedemption(**values))
    except IntegrityError:
        return False
    return True


async def record_redemption(
    session: AsyncSession,
    *,
    coupon_id: UUID,
    user_id: UUID,
    order_id: UUID,
    code: str,
    discount_amount: Decimal,
) -> bool:
    """Write the ledger row for (order, coupon) unless it already exists.

    Returns True when a new row was written. The caller owns the commit.
    """
    values = {
        "coupon_id": coupon_id,
        "user_id": user_id,
        "order_id": order_id,
        "code": code,
        "discount_amount": pricing.quantize_money(Decimal(discount_amount or 0)),
    }
    insert_fn = _insert_fn(session)
    if insert_fn is not None:
        created = await _record_via_conflict_stmt(session, values=values, insert_fn=insert_fn)
    else:
        created = await _record_fallback(session, values=values)
    if not created:
        logger.info(
            "coupon_redemption_exists",
            extra={"order_id": str(order_id), "coupon_id": str(coupon_id)},
        )
    return created
