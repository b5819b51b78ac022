from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.core.dependencies import get_current_user
from bookstore.db.session import get_session
from bookstore.models.user import User
from bookstore.schemas.cart import CartItemCreate, CartItemUpdate, CartRead
from bookstore.schemas.coupon import CouponCodeRequest
from bookstore.services import cart as cart_service

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=CartRead)
async def get_cart(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> CartRead:
    result = await cart_service.refresh_cart(session, current_user.id)
    return cart_service.serialize_cart(result.cart, result.coupon_result)


@router.post("/items", response_model=CartRead)
async def add_item(
    payload: CartItemCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> CartRead:
    cart = await cart_service.get_cart(session, current_user.id)
    result = await cart_service.add_item(
        session, cart, user_id=current_user.id, product_id=payload.product_id, quantity=payload.quantity
    )
    return cart_service.serialize_cart(result.cart, result.coupon_result)


@router.put("/items/{product_id}", response_model=CartRead)
async def update_item(
    product_id: UUID,
    payload: CartItemUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> CartRead:
    cart = await cart_service.get_cart(session, current_user.id)
    result = await cart_service.update_item(
        session, cart, user_id=current_user.id, product_id=product_id, quantity=payload.quantity
    )
    return cart_service.serialize_cart(result.cart, result.coupon_result)


@router.delete("/items/{product_id}", response_model=CartRead)
async def remove_item(
    product_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> CartRead:
    cart = await cart_service.get_cart(session, current_user.id)
    result = await cart_service.remove_item(session, cart, user_id=current_user.id, product_id=product_id)
    return cart_service.serialize_cart(result.cart, result.coupon_result)


@router.delete("", response_model=CartRead)
async def clear_cart(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> CartRead:
    cart = await cart_service.get_cart(session, current_user.id)
    result = await cart_service.clear_cart(session, cart, user_id=current_user.id)
    return cart_service.serialize_cart(result.cart, result.coupon_result)


@router.post("/coupon", response_model=CartRead)
async def apply_coupon(
    payload: CouponCodeRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> CartRead:
    cart = await cart_service.get_cart(session, current_user.id)
    result = await cart_service.apply_coupon(session, cart, user_id=current_user.id, code=payload.code)
    return cart_service.serialize_cart(result.cart, result.coupon_result)


@router.delete("/coupon", response_model=CartRead)
async def remove_coupon(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> CartRead:
    cart = await cart_service.get_cart(session, current_user.id)
    result = await cart_service.remove_coupon(session, cart, user_id=current_user.id)
    return cart_service.serialize_cart(result.cart, result.coupon_result)
