from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.core import metrics
from bookstore.models.order import Order, OrderEvent, OrderStatus, PaymentStatus
from bookstore.models.payment import TransactionStatus
from bookstore.services import coupons, payos, redemptions

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00"


def _order_code(data: dict[str, Any]) -> int | None:
    try:
        return int(data.get("orderCode"))
    except (TypeError, ValueError):
        return None


async def _get_order_by_code(session: AsyncSession, order_code: int) -> Order | None:
    res = await session.execute(select(Order).where(Order.payos_order_code == order_code))
    return res.scalar_one_or_none()


async def _redeem_order_coupon(session: AsyncSession, order: Order) -> bool:
    coupon_id = order.coupon_id
    if coupon_id is None and order.coupon_code:
        coupon = await coupons.get_coupon_by_code(session, code=order.coupon_code)
        coupon_id = coupon.id if coupon else None
    if coupon_id is None:
        return False
    return await redemptions.record_redemption(
        session,
        coupon_id=coupon_id,
        user_id=order.user_id,
        order_id=order.id,
        code=order.coupon_code or "",
        discount_amount=order.discount_total,
    )


async def reconcile(session: AsyncSession, data: dict[str, Any]) -> str:
    """Apply a verified PayOS notification to its order.

    Safe to call repeatedly with the same payload. Returns a short outcome
    label: ``ignored``, ``completed`` or ``failed``.
    """
    order_code = _order_code(data)
    order = await _get_order_by_code(session, order_code) if order_code is not None else None
    if order is None:
        logger.warning("payos_webhook_unknown_order", extra={"order_code": data.get("orderCode")})
        return "ignored"

    metrics.record_webhook_processed()
    if str(data.get("code")) == SUCCESS_CODE:
        if order.payment_status != PaymentStatus.completed:
            order.payment_status = PaymentStatus.completed
            order.events.append(OrderEvent(event="payment_completed", note=str(data.get("reference") or "")))
        if order.order_status == OrderStatus.pending:
            order.order_status = OrderStatus.processing

        redeemed = False
        if order.has_coupon:
            redeemed = await _redeem_order_coupon(session, order)
            if redeemed:
                order.events.append(OrderEvent(event="coupon_redeemed", note=order.coupon_code))

        await payos.upsert_transaction(
            session,
            order=order,
            status_value=TransactionStatus.success,
            transaction_id=str(data.get("reference") or "") or None,
            gateway_response=data,
        )
        session.add(order)
        await session.commit()
        if redeemed:
            metrics.record_coupon_redeemed()
        logger.info(
            "payos_webhook_processed",
            extra={"order_id": str(order.id), "order_code": order_code, "outcome": "completed", "redeemed": redeemed},
        )
        return "completed"

    await payos.upsert_transaction(
        session,
        order=order,
        status_value=TransactionStatus.failed,
        gateway_response=data,
    )
    await session.commit()
    metrics.record_payment_failure()
    logger.info(
        "payos_webhook_processed",
        extra={"order_id": str(order.id), "order_code": order_code, "outcome": "failed"},
    )
    return "failed"
