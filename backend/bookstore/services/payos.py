"""PayOS payment-link creation and webhook signature checks."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any

import httpx
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.core import metrics
from bookstore.core.config import settings
from bookstore.models.order import Order, PaymentMethod, PaymentStatus
from bookstore.models.payment import PaymentTransaction, TransactionStatus
from bookstore.models.user import User
from bookstore.services import pricing

logger = logging.getLogger(__name__)

GATEWAY = "payos"
MAX_DESCRIPTION_LENGTH = 25


def _checksum_key() -> str:
    key = (settings.payos_checksum_key or "").strip()
    if not key:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="PayOS not configured")
    return key


def _hmac_sha256(key: str, message: str) -> str:
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def payment_request_signature(
    *, amount: int, cancel_url: str, description: str, order_code: int, return_url: str, checksum_key: str
) -> str:
    message = (
        f"amount={amount}&cancelUrl={cancel_url}&description={description}"
        f"&orderCode={order_code}&returnUrl={return_url}"
    )
    return _hmac_sha256(checksum_key, message)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def data_signature(data: dict[str, Any], checksum_key: str) -> str:
    message = "&".join(f"{key}={_stringify(data[key])}" for key in sorted(data))
    return _hmac_sha256(checksum_key, message)


def verify_webhook_signature(data: dict[str, Any] | None, signature: str | None) -> bool:
    if not isinstance(data, dict) or not signature:
        return False
    expected = data_signature(data, _checksum_key())
    return hmac.compare_digest(expected, str(signature).lower())


async def _generate_order_code(session: AsyncSession) -> int:
    while True:
        candidate = int(time.time() * 1000) % 1_000_000_000 * 10 + secrets.randbelow(10)
        exists = (await session.execute(select(Order.id).where(Order.payos_order_code == candidate))).first()
        if not exists:
            return candidate


async def _post_payment_request(body: dict[str, Any]) -> dict[str, Any]:
    headers = {
        "x-client-id": settings.payos_client_id or "",
        "x-api-key": settings.payos_api_key or "",
        "Content-Type": "application/json",
    }
    try:
        async with httpx.AsyncClient(base_url=settings.payos_base_url, timeout=settings.payos_timeout_seconds) as client:
            resp = await client.post("/v2/payment-requests", json=body, headers=headers)
            resp.raise_for_status()
            payload = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        metrics.record_payment_failure()
        logger.warning("payos_request_failed", extra={"order_code": body.get("orderCode"), "error": str(exc)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="PayOS payment request failed") from exc
    return payload if isinstance(payload, dict) else {}


async def upsert_transaction(
    session: AsyncSession,
    *,
    order: Order,
    status_value: TransactionStatus,
    transaction_id: str | None = None,
    gateway_response: dict | None = None,
) -> PaymentTransaction:
    res = await session.execute(
        select(PaymentTransaction).where(PaymentTransaction.order_id == order.id, PaymentTransaction.gateway == GATEWAY)
    )
    row = res.scalar_one_or_none()
    if row is None:
        row = PaymentTransaction(order_id=order.id, user_id=order.user_id, gateway=GATEWAY, amount=order.total)
        session.add(row)
    row.amount = order.total
    row.status = status_value
    if transaction_id:
        row.transaction_id = transaction_id
    if gateway_response is not None:
        row.gateway_response = gateway_response
    return row


async def create_payment_link(session: AsyncSession, *, order: Order, user: User) -> tuple[str, int]:
    if order.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    if order.payment_status == PaymentStatus.completed:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order already paid")
    if order.payment_method == PaymentMethod.cod:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot create payment link for COD orders")

    checksum_key = _checksum_key()
    if not settings.payos_client_id or not settings.payos_api_key:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="PayOS not configured")

    if order.payos_order_code is None:
        order.payos_order_code = await _generate_order_code(session)

    amount = pricing.to_minor_units(order.total)
    description = f"Order {order.order_number}"[:MAX_DESCRIPTION_LENGTH]
    base = settings.frontend_origin.rstrip("/")
    return_url = f"{base}/payment/success?orderId={order.id}"
    cancel_url = f"{base}/payment/cancel?orderId={order.id}"
    body = {
        "orderCode": order.payos_order_code,
        "amount": amount,
        "description": description,
        "returnUrl": return_url,
        "cancelUrl": cancel_url,
        "items": [
            {"name": item.title[:50], "quantity": item.quantity, "price": pricing.to_minor_units(item.unit_price)}
            for item in order.items
        ],
        "signature": payment_request_signature(
            amount=amount,
            cancel_url=cancel_url,
            description=description,
            order_code=order.payos_order_code,
            return_url=return_url,
            checksum_key=checksum_key,
        ),
    }

    payload = await _post_payment_request(body)
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    checkout_url = str(data.get("checkoutUrl") or "")
    if str(payload.get("code")) != "00" or not checkout_url:
        metrics.record_payment_failure()
        logger.warning(
            "payos_request_rejected",
            extra={"order_id": str(order.id), "code": payload.get("code"), "desc": payload.get("desc")},
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="PayOS payment request failed")

    await upsert_transaction(
        session,
        order=order,
        status_value=TransactionStatus.pending,
        transaction_id=str(data.get("paymentLinkId") or order.payos_order_code),
        gateway_response=data,
    )
    session.add(order)
    await session.commit()
    logger.info(
        "payos_link_created",
        extra={"order_id": str(order.id), "order_code": order.payos_order_code, "amount": amount},
    )
    return checkout_url, order.payos_order_code
