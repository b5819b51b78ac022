from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.core.dependencies import require_admin
from bookstore.db.session import get_session
from bookstore.models.coupon import Coupon
from bookstore.models.user import User
from bookstore.schemas.coupon import CouponAdminRead, CouponCreate, CouponUpdate
from bookstore.services import coupons as coupons_service

router = APIRouter(prefix="/admin/coupons", tags=["admin-coupons"])


async def _get_coupon_or_404(session: AsyncSession, coupon_id: UUID) -> Coupon:
    coupon = await coupons_service.get_coupon(session, coupon_id)
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")
    return coupon


@router.get("", response_model=list[CouponAdminRead])
async def list_coupons(
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_admin),
) -> list[CouponAdminRead]:
    return await coupons_service.list_coupons(session)


@router.post("", response_model=CouponAdminRead, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> CouponAdminRead:
    coupon = await coupons_service.create_coupon(session, payload, actor=admin)
    return await coupons_service.to_admin_read(session, coupon, redemption_count=0)


@router.get("/{coupon_id}", response_model=CouponAdminRead)
async def get_coupon(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_admin),
) -> CouponAdminRead:
    coupon = await _get_coupon_or_404(session, coupon_id)
    return await coupons_service.to_admin_read(session, coupon)


@router.patch("/{coupon_id}", response_model=CouponAdminRead)
async def update_coupon(
    coupon_id: UUID,
    payload: CouponUpdate,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> CouponAdminRead:
    coupon = await _get_coupon_or_404(session, coupon_id)
    coupon = await coupons_service.update_coupon(session, coupon, payload, actor=admin)
    return await coupons_service.to_admin_read(session, coupon)


@router.delete("/{coupon_id}", response_model=CouponAdminRead)
async def delete_coupon(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> CouponAdminRead:
    coupon = await _get_coupon_or_404(session, coupon_id)
    coupon = await coupons_service.deactivate_coupon(session, coupon, actor=admin)
    return await coupons_service.to_admin_read(session, coupon)
