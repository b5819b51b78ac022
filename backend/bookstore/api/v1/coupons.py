from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.core.dependencies import get_current_user
from bookstore.db.session import get_session
from bookstore.models.user import User
from bookstore.schemas.coupon import CouponCodeRequest, CouponPublicRead, CouponValidateResponse
from bookstore.services import cart as cart_service
from bookstore.services import coupons as coupons_service

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=CouponValidateResponse)
async def validate_coupon(
    payload: CouponCodeRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> CouponValidateResponse:
    cart = await cart_service.get_cart(session, current_user.id)
    return await cart_service.preview_coupon(session, cart, user_id=current_user.id, code=payload.code)


@router.get("/available", response_model=list[CouponPublicRead])
async def available_coupons(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[CouponPublicRead]:
    cart = await cart_service.get_cart(session, current_user.id)
    rows = await coupons_service.list_available(session, user_id=current_user.id, cart=cart)
    return [CouponPublicRead.model_validate(row) for row in rows]
