from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.core import metrics
from bookstore.core.config import settings
from bookstore.models.cart import Cart, CartItem
from bookstore.models.catalog import Product
from bookstore.models.coupon import Coupon
from bookstore.schemas.cart import AppliedCouponRead, CartItemRead, CartRead, CouponResult
from bookstore.schemas.coupon import CouponPreviewTotals, CouponValidateResponse
from bookstore.services import coupon_rules, coupons, pricing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricedCart:
    totals: pricing.CartTotals
    coupon: Coupon | None
    check: coupon_rules.CouponCheck | None


@dataclass(frozen=True)
class CartRecalculation:
    cart: Cart
    coupon_result: CouponResult | None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _expiry() -> datetime:
    return _now() + timedelta(days=settings.cart_ttl_days)


def _clear_coupon(cart: Cart) -> None:
    cart.coupon_id = None
    cart.coupon_code = None
    cart.coupon_type = None
    cart.coupon_value = None


def empty_cart(cart: Cart) -> None:
    cart.items.clear()
    _clear_coupon(cart)
    cart.subtotal = pricing.ZERO
    cart.discount_total = pricing.ZERO
    cart.total = pricing.ZERO


async def _load_cart(session: AsyncSession, user_id: UUID) -> Cart | None:
    res = await session.execute(select(Cart).where(Cart.user_id == user_id))
    return res.scalar_one_or_none()


async def get_cart(session: AsyncSession, user_id: UUID) -> Cart:
    """Return the user's cart, creating it on first access and replacing it once expired."""
    cart = await _load_cart(session, user_id)
    if cart is None:
        cart = Cart(user_id=user_id, expires_at=_expiry(), items=[])
        session.add(cart)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            cart = await _load_cart(session, user_id)
            if cart is None:
                raise
        return cart

    if _as_utc(cart.expires_at) < _now():
        logger.info("cart_expired", extra={"cart_id": str(cart.id), "user_id": str(user_id)})
        empty_cart(cart)
        cart.expires_at = _expiry()
        session.add(cart)
        await session.commit()
    return cart


async def price_items(
    session: AsyncSession,
    *,
    user_id: UUID,
    items: Sequence[CartItem],
    coupon_id: UUID | None,
    coupon_code: str | None,
) -> PricedCart:
    subtotal = pricing.line_subtotal(items)
    if coupon_id is None and not coupon_code:
        return PricedCart(totals=pricing.compute_totals(subtotal=subtotal, discount=pricing.ZERO), coupon=None, check=None)

    coupon = await coupons.resolve_coupon(session, coupon_id=coupon_id, code=coupon_code)
    check = await coupon_rules.evaluate(session, coupon=coupon, user_id=user_id, subtotal=subtotal, items=items)
    if not check.valid or coupon is None:
        return PricedCart(totals=pricing.compute_totals(subtotal=subtotal, discount=pricing.ZERO), coupon=None, check=check)

    discount = coupon_rules.compute_discount(
        coupon_type=coupon.type,
        value=coupon.value,
        subtotal=subtotal,
        max_discount_amount=coupon.max_discount_amount,
    )
    return PricedCart(totals=pricing.compute_totals(subtotal=subtotal, discount=discount), coupon=coupon, check=check)


async def recalculate(session: AsyncSession, cart: Cart, *, user_id: UUID) -> CartRecalculation:
    """Rewrite the cart's totals and coupon snapshot from its current items.

    Leaves persistence to the caller.
    """
    had_coupon = cart.has_coupon
    priced = await price_items(
        session,
        user_id=user_id,
        items=cart.items,
        coupon_id=cart.coupon_id,
        coupon_code=cart.coupon_code,
    )

    coupon_result: CouponResult | None = None
    if not had_coupon:
        _clear_coupon(cart)
    elif priced.coupon is not None:
        cart.coupon_id = priced.coupon.id
        cart.coupon_code = priced.coupon.code
        cart.coupon_type = priced.coupon.type
        cart.coupon_value = pricing.quantize_money(Decimal(priced.coupon.value))
        coupon_result = CouponResult(applied=True)
    else:
        reason = priced.check.reason if priced.check else coupon_rules.REASON_NOT_FOUND
        logger.info(
            "cart_coupon_dropped",
            extra={"cart_id": str(cart.id), "code": cart.coupon_code, "reason": reason},
        )
        metrics.record_coupon_dropped()
        _clear_coupon(cart)
        coupon_result = CouponResult(applied=False, reason=reason)

    cart.subtotal = priced.totals.subtotal
    cart.discount_total = priced.totals.discount_total
    cart.total = priced.totals.total
    return CartRecalculation(cart=cart, coupon_result=coupon_result)


async def _save(session: AsyncSession, cart: Cart, *, user_id: UUID) -> CartRecalculation:
    result = await recalculate(session, cart, user_id=user_id)
    cart.expires_at = _expiry()
    session.add(cart)
    await session.commit()
    return result


async def refresh_cart(session: AsyncSession, user_id: UUID) -> CartRecalculation:
    cart = await get_cart(session, user_id)
    return await _save(session, cart, user_id=user_id)


def _find_item(cart: Cart, product_id: UUID) -> CartItem | None:
    for item in cart.items:
        if item.product_id == product_id:
            return item
    return None


async def _get_product(session: AsyncSession, product_id: UUID) -> Product:
    product = await session.get(Product, product_id)
    if product is None or not product.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


def _ensure_stock(product: Product, quantity: int) -> None:
    if quantity > int(product.stock_quantity or 0):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insufficient stock")


async def add_item(
    session: AsyncSession, cart: Cart, *, user_id: UUID, product_id: UUID, quantity: int
) -> CartRecalculation:
    product = await _get_product(session, product_id)
    existing = _find_item(cart, product_id)
    if existing is not None:
        new_quantity = int(existing.quantity) + quantity
        _ensure_stock(product, new_quantity)
        existing.quantity = new_quantity
    else:
        _ensure_stock(product, quantity)
        position = max((item.position for item in cart.items), default=-1) + 1
        cart.items.append(
            CartItem(
                product=product,
                product_id=product.id,
                position=position,
                quantity=quantity,
                unit_price_at_add=pricing.quantize_money(Decimal(product.price)),
            )
        )
    return await _save(session, cart, user_id=user_id)


async def update_item(
    session: AsyncSession, cart: Cart, *, user_id: UUID, product_id: UUID, quantity: int
) -> CartRecalculation:
    item = _find_item(cart, product_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found in cart")
    product = await _get_product(session, product_id)
    _ensure_stock(product, quantity)
    item.quantity = quantity
    return await _save(session, cart, user_id=user_id)


async def remove_item(session: AsyncSession, cart: Cart, *, user_id: UUID, product_id: UUID) -> CartRecalculation:
    item = _find_item(cart, product_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found in cart")
    cart.items.remove(item)
    return await _save(session, cart, user_id=user_id)


async def clear_cart(session: AsyncSession, cart: Cart, *, user_id: UUID) -> CartRecalculation:
    cart.items.clear()
    return await _save(session, cart, user_id=user_id)


async def apply_coupon(session: AsyncSession, cart: Cart, *, user_id: UUID, code: str | None) -> CartRecalculation:
    cleaned = coupons.validate_code_shape(code)
    coupon = await coupons.get_coupon_by_code(session, code=cleaned)
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")

    cart.coupon_id = coupon.id
    cart.coupon_code = coupon.code
    cart.coupon_type = coupon.type
    cart.coupon_value = coupon.value
    result = await _save(session, cart, user_id=user_id)
    if result.coupon_result is not None and not result.coupon_result.applied:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.coupon_result.reason)

    logger.info(
        "cart_coupon_applied",
        extra={"cart_id": str(cart.id), "code": coupon.code, "discount_total": cart.discount_total},
    )
    return result


async def remove_coupon(session: AsyncSession, cart: Cart, *, user_id: UUID) -> CartRecalculation:
    _clear_coupon(cart)
    return await _save(session, cart, user_id=user_id)


async def preview_coupon(session: AsyncSession, cart: Cart, *, user_id: UUID, code: str | None) -> CouponValidateResponse:
    """Price the cart as if ``code`` were attached, without touching the stored cart."""
    cleaned = coupons.validate_code_shape(code)
    coupon = await coupons.get_coupon_by_code(session, code=cleaned)
    priced = await price_items(
        session,
        user_id=user_id,
        items=cart.items,
        coupon_id=coupon.id if coupon else None,
        coupon_code=cleaned,
    )
    check = priced.check or coupon_rules.CouponCheck(valid=False, reason=coupon_rules.REASON_NOT_FOUND)
    return CouponValidateResponse(
        valid=check.valid,
        reason=check.reason,
        preview=CouponPreviewTotals(
            subtotal=priced.totals.subtotal,
            discount_total=priced.totals.discount_total,
            total=priced.totals.total,
        ),
    )


def serialize_cart(cart: Cart, coupon_result: CouponResult | None = None) -> CartRead:
    items = []
    for item in cart.items:
        product = item.product
        unit_price = pricing.quantize_money(Decimal(item.unit_price_at_add))
        items.append(
            CartItemRead(
                id=item.id,
                product_id=item.product_id,
                title=product.title if product else None,
                isbn=product.isbn if product else None,
                category=product.category if product else None,
                quantity=item.quantity,
                unit_price_at_add=unit_price,
                line_total=pricing.quantize_money(unit_price * int(item.quantity)),
            )
        )
    coupon = None
    if cart.has_coupon:
        coupon = AppliedCouponRead(
            id=cart.coupon_id,
            code=cart.coupon_code,
            type=cart.coupon_type,
            value=cart.coupon_value,
        )
    return CartRead(
        id=cart.id,
        user_id=cart.user_id,
        items=items,
        subtotal=pricing.quantize_money(Decimal(cart.subtotal)),
        discount_total=pricing.quantize_money(Decimal(cart.discount_total)),
        total=pricing.quantize_money(Decimal(cart.total)),
        currency=settings.default_currency,
        coupon=coupon,
        coupon_result=coupon_result,
        expires_at=cart.expires_at,
    )
