import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest
from fastapi import HTTPException

from bookstore.models.catalog import Product
from bookstore.models.coupon import Coupon
from bookstore.services import cart as cart_service


def _fill_cart(session_factory, user_id: UUID, lines: list[tuple[UUID, int]]) -> None:
    async def _run() -> None:
        async with session_factory() as session:
            cart = await cart_service.get_cart(session, user_id)
            for product_id, quantity in lines:
                await cart_service.add_item(session, cart, user_id=user_id, product_id=product_id, quantity=quantity)

    asyncio.run(_run())


def _two_line_cart(session_factory, seed) -> UUID:
    user_id = seed.user()
    first = seed.product(price="15.00")
    second = seed.product(price="10.00")
    _fill_cart(session_factory, user_id, [(first, 2), (second, 1)])
    return user_id


def _apply(session_factory, user_id: UUID, code: str):
    async def _run():
        async with session_factory() as session:
            cart = await cart_service.get_cart(session, user_id)
            return await cart_service.apply_coupon(session, cart, user_id=user_id, code=code)

    return asyncio.run(_run())


def _refresh(session_factory, user_id: UUID):
    async def _run():
        async with session_factory() as session:
            return await cart_service.refresh_cart(session, user_id)

    return asyncio.run(_run())


def _assert_invariants(cart) -> None:
    assert cart.discount_total <= cart.subtotal
    assert cart.total == max(Decimal("0.00"), cart.subtotal - cart.discount_total)


def test_scenario_a_percent_coupon(session_factory, seed) -> None:
    seed.standard_coupons()
    user_id = _two_line_cart(session_factory, seed)

    result = _apply(session_factory, user_id, "welcome10")

    cart = result.cart
    assert cart.subtotal == Decimal("40.00")
    assert cart.discount_total == Decimal("4.00")
    assert cart.total == Decimal("36.00")
    assert cart.coupon_code == "WELCOME10"
    assert result.coupon_result.applied is True
    _assert_invariants(cart)


def test_scenario_b_fixed_coupon(session_factory, seed) -> None:
    seed.standard_coupons()
    user_id = _two_line_cart(session_factory, seed)

    cart = _apply(session_factory, user_id, "FIVEOFF").cart

    assert cart.discount_total == Decimal("5.00")
    assert cart.total == Decimal("35.00")


def test_scenario_c_below_minimum_detaches_and_persists(session_factory, seed) -> None:
    seed.standard_coupons()
    user_id = seed.user()
    product_id = seed.product(price="10.00")
    _fill_cart(session_factory, user_id, [(product_id, 2)])

    with pytest.raises(HTTPException) as exc:
        _apply(session_factory, user_id, "WELCOME10")
    assert exc.value.status_code == 400
    assert "Minimum subtotal" in exc.value.detail

    cart = _refresh(session_factory, user_id).cart
    assert cart.total == Decimal("20.00")
    assert cart.discount_total == Decimal("0.00")
    assert cart.coupon_id is None and cart.coupon_code is None
    assert cart.coupon_type is None and cart.coupon_value is None


def test_recalculation_is_idempotent(session_factory, seed) -> None:
    seed.standard_coupons()
    user_id = _two_line_cart(session_factory, seed)
    _apply(session_factory, user_id, "WELCOME10")

    first = _refresh(session_factory, user_id).cart
    first_totals = (str(first.subtotal), str(first.discount_total), str(first.total))
    second = _refresh(session_factory, user_id).cart
    assert (str(second.subtotal), str(second.discount_total), str(second.total)) == first_totals
    assert second.coupon_code == "WELCOME10"


def test_deactivated_coupon_is_dropped_on_next_recalculation(session_factory, seed) -> None:
    coupons = seed.standard_coupons()
    user_id = _two_line_cart(session_factory, seed)
    _apply(session_factory, user_id, "WELCOME10")

    async def _deactivate() -> None:
        async with session_factory() as session:
            coupon = await session.get(Coupon, coupons["WELCOME10"])
            coupon.is_active = False
            await session.commit()

    asyncio.run(_deactivate())

    result = _refresh(session_factory, user_id)
    assert result.coupon_result.applied is False
    assert result.coupon_result.reason == "Coupon is inactive"
    assert result.cart.coupon_code is None
    assert result.cart.total == Decimal("40.00")

    again = _refresh(session_factory, user_id)
    assert again.coupon_result is None
    _assert_invariants(again.cart)


def test_snapshot_refreshed_after_coupon_edit(session_factory, seed) -> None:
    coupons = seed.standard_coupons()
    user_id = _two_line_cart(session_factory, seed)
    _apply(session_factory, user_id, "FIVEOFF")

    async def _edit() -> None:
        async with session_factory() as session:
            coupon = await session.get(Coupon, coupons["FIVEOFF"])
            coupon.value = Decimal("7")
            await session.commit()

    asyncio.run(_edit())
    cart = _refresh(session_factory, user_id).cart
    assert cart.coupon_value == Decimal("7.00")
    assert cart.total == Decimal("33.00")


def test_removing_items_below_minimum_drops_coupon(session_factory, seed) -> None:
    seed.standard_coupons()
    user_id = seed.user()
    first = seed.product(price="15.00")
    second = seed.product(price="10.00")
    _fill_cart(session_factory, user_id, [(first, 2), (second, 1)])
    _apply(session_factory, user_id, "WELCOME10")

    async def _remove():
        async with session_factory() as session:
            cart = await cart_service.get_cart(session, user_id)
            return await cart_service.remove_item(session, cart, user_id=user_id, product_id=first)

    result = asyncio.run(_remove())
    assert result.coupon_result.applied is False
    assert result.cart.total == Decimal("10.00")
    assert result.cart.coupon_code is None


def test_add_merges_quantity_and_keeps_first_price(session_factory, seed) -> None:
    user_id = seed.user()
    product_id = seed.product(price="12.00", stock=5)
    _fill_cart(session_factory, user_id, [(product_id, 1)])

    async def _reprice() -> None:
        async with session_factory() as session:
            product = await session.get(Product, product_id)
            product.price = Decimal("20.00")
            await session.commit()

    asyncio.run(_reprice())
    _fill_cart(session_factory, user_id, [(product_id, 2)])

    cart = _refresh(session_factory, user_id).cart
    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3
    assert cart.items[0].unit_price_at_add == Decimal("12.00")
    assert cart.subtotal == Decimal("36.00")


def test_add_rejects_quantity_above_stock(session_factory, seed) -> None:
    user_id = seed.user()
    product_id = seed.product(stock=2)

    with pytest.raises(HTTPException) as exc:
        _fill_cart(session_factory, user_id, [(product_id, 3)])
    assert exc.value.status_code == 400
    assert exc.value.detail == "Insufficient stock"


def test_preview_does_not_touch_stored_cart(session_factory, seed) -> None:
    seed.standard_coupons()
    user_id = _two_line_cart(session_factory, seed)

    async def _preview():
        async with session_factory() as session:
            cart = await cart_service.get_cart(session, user_id)
            return await cart_service.preview_coupon(session, cart, user_id=user_id, code="welcome10")

    preview = asyncio.run(_preview())
    assert preview.valid is True
    assert preview.preview.total == Decimal("36.00")

    cart = _refresh(session_factory, user_id).cart
    assert cart.coupon_code is None
    assert cart.total == Decimal("40.00")


def test_preview_unknown_code_reports_not_found(session_factory, seed) -> None:
    user_id = _two_line_cart(session_factory, seed)

    async def _preview():
        async with session_factory() as session:
            cart = await cart_service.get_cart(session, user_id)
            return await cart_service.preview_coupon(session, cart, user_id=user_id, code="NOPE")

    preview = asyncio.run(_preview())
    assert preview.valid is False
    assert preview.reason == "Coupon not found"
    assert preview.preview.subtotal == Decimal("40.00")
    assert preview.preview.discount_total == Decimal("0.00")


def test_expired_cart_is_replaced_with_empty_one(session_factory, seed) -> None:
    user_id = _two_line_cart(session_factory, seed)

    async def _expire() -> None:
        async with session_factory() as session:
            cart = await cart_service.get_cart(session, user_id)
            cart.expires_at = datetime.now(timezone.utc) - timedelta(minutes=5)
            await session.commit()

    asyncio.run(_expire())
    cart = _refresh(session_factory, user_id).cart
    assert cart.items == []
    assert cart.total == Decimal("0.00")
