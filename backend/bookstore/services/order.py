from __future__ import annotations

import logging
import re
import secrets
import string
from decimal import Decimal
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.core import metrics
from bookstore.core.config import settings
from bookstore.models.cart import Cart
from bookstore.models.catalog import Product
from bookstore.models.order import Order, OrderEvent, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from bookstore.models.user import User, UserRole
from bookstore.schemas.order import OrderCouponRead, OrderCreate, OrderRead, ShippingAddress
from bookstore.services import cart as cart_service
from bookstore.services import pricing, redemptions

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ("name", "phone", "street", "city", "state", "zip", "country")
ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
MIN_PHONE_DIGITS = 8
MIN_ZIP_LENGTH = 3


def validate_shipping_address(address: ShippingAddress) -> dict[str, str]:
    data = address.model_dump()
    cleaned: dict[str, str] = {}
    for field in ADDRESS_FIELDS:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=f"Shipping address field '{field}' is required"
            )
        cleaned[field] = value.strip()
    if len(re.sub(r"\D", "", cleaned["phone"])) < MIN_PHONE_DIGITS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid phone number")
    if len(cleaned["zip"]) < MIN_ZIP_LENGTH:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid zip code")
    return cleaned


async def _generate_order_number(session: AsyncSession) -> str:
    while True:
        candidate = "ORD-" + "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(10))
        exists = (await session.execute(select(Order.id).where(Order.order_number == candidate))).first()
        if not exists:
            return candidate


async def _load_live_products(session: AsyncSession, cart: Cart) -> dict[UUID, Product]:
    ids = [item.product_id for item in cart.items]
    res = await session.execute(select(Product).where(Product.id.in_(ids)).execution_options(populate_existing=True))
    return {product.id: product for product in res.scalars()}


def _ensure_stock(cart: Cart, products: dict[UUID, Product]) -> None:
    for item in cart.items:
        product = products.get(item.product_id)
        if product is None or int(product.stock_quantity or 0) < int(item.quantity):
            title = product.title if product else (item.product.title if item.product else str(item.product_id))
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Insufficient stock for {title}")


async def _decrement_stock(session: AsyncSession, order: Order) -> None:
    for item in order.items:
        result = await session.execute(
            update(Product)
            .where(Product.id == item.product_id, Product.stock_quantity >= item.quantity)
            .values(stock_quantity=Product.stock_quantity - item.quantity)
        )
        if not result.rowcount:
            await session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Insufficient stock for {item.title}")


async def checkout(session: AsyncSession, *, user: User, cart: Cart, payload: OrderCreate) -> Order:
    """Turn the user's cart into an order.

    Address and stock are checked before anything is written. Everything
    after that is committed together: the order, the immediate ledger row
    for cash-on-delivery, the stock decrement and the emptied cart.
    """
    if not cart.items:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cart is empty")
    address = validate_shipping_address(payload.shipping_address)
    products = await _load_live_products(session, cart)
    _ensure_stock(cart, products)

    await cart_service.recalculate(session, cart, user_id=user.id)

    items: list[OrderItem] = []
    for position, line in enumerate(cart.items):
        product = products[line.product_id]
        unit_price = pricing.quantize_money(Decimal(line.unit_price_at_add))
        items.append(
            OrderItem(
                product_id=line.product_id,
                position=position,
                title=product.title,
                isbn=product.isbn,
                quantity=line.quantity,
                unit_price=unit_price,
                subtotal=pricing.quantize_money(unit_price * int(line.quantity)),
            )
        )

    order = Order(
        user_id=user.id,
        order_number=await _generate_order_number(session),
        shipping_address=address,
        payment_method=payload.payment_method,
        payment_status=PaymentStatus.pending,
        order_status=OrderStatus.pending,
        subtotal=cart.subtotal,
        discount_total=cart.discount_total,
        total=cart.total,
        currency=settings.default_currency,
        items=items,
        events=[OrderEvent(event="created", note=f"Payment method: {payload.payment_method.value}")],
    )
    if cart.has_coupon:
        order.coupon_id = cart.coupon_id
        order.coupon_code = cart.coupon_code
        order.coupon_type = cart.coupon_type
        order.coupon_value = cart.coupon_value
    session.add(order)
    await session.flush()

    redeemed = False
    if order.payment_method == PaymentMethod.cod and order.coupon_id is not None:
        redeemed = await redemptions.record_redemption(
            session,
            coupon_id=order.coupon_id,
            user_id=user.id,
            order_id=order.id,
            code=order.coupon_code or "",
            discount_amount=order.discount_total,
        )
        if redeemed:
            order.events.append(OrderEvent(event="coupon_redeemed", note=order.coupon_code))

    await _decrement_stock(session, order)

    cart_service.empty_cart(cart)
    session.add(cart)
    await session.commit()

    metrics.record_order_created()
    if redeemed:
        metrics.record_coupon_redeemed()
    logger.info(
        "order_created",
        extra={
            "order_id": str(order.id),
            "order_number": order.order_number,
            "user_id": str(user.id),
            "payment_method": order.payment_method.value,
            "total": order.total,
            "coupon_code": order.coupon_code,
        },
    )
    return order


async def get_order(session: AsyncSession, order_id: UUID) -> Order | None:
    res = await session.execute(select(Order).where(Order.id == order_id))
    return res.scalar_one_or_none()


async def get_order_for_user(session: AsyncSession, *, order_id: UUID, user: User) -> Order:
    order = await get_order(session, order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    if order.user_id != user.id and user.role != UserRole.admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this order")
    return order


async def list_orders(session: AsyncSession, *, user_id: UUID) -> list[Order]:
    res = await session.execute(select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc()))
    return list(res.scalars().all())


async def cancel_order(session: AsyncSession, *, order_id: UUID, user: User) -> Order:
    order = await get_order(session, order_id)
    if order is None or order.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    if order.order_status != OrderStatus.pending:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot cancel order in current status")

    for item in order.items:
        await session.execute(
            update(Product)
            .where(Product.id == item.product_id)
            .values(stock_quantity=Product.stock_quantity + item.quantity)
        )
    order.order_status = OrderStatus.cancelled
    order.events.append(OrderEvent(event="cancelled", note="Cancelled by customer"))
    session.add(order)
    await session.commit()

    metrics.record_order_cancelled()
    logger.info("order_cancelled", extra={"order_id": str(order.id), "order_number": order.order_number})
    return order


def serialize_order(order: Order) -> OrderRead:
    read = OrderRead.model_validate(order)
    coupon = None
    if order.has_coupon:
        coupon = OrderCouponRead(
            id=order.coupon_id,
            code=order.coupon_code,
            type=order.coupon_type,
            value=order.coupon_value,
        )
    return read.model_copy(update={"coupon": coupon})
