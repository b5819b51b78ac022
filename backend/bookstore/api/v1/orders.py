from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.core.dependencies import get_current_user
from bookstore.db.session import get_session
from bookstore.models.user import User
from bookstore.schemas.order import OrderCreate, OrderRead
from bookstore.services import cart as cart_service
from bookstore.services import email as email_service
from bookstore.services import order as order_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> OrderRead:
    cart = await cart_service.get_cart(session, current_user.id)
    order = await order_service.checkout(session, user=current_user, cart=cart, payload=payload)
    background_tasks.add_task(
        email_service.send_order_confirmation, current_user.email, order, customer_name=current_user.name
    )
    return order_service.serialize_order(order)


@router.get("", response_model=list[OrderRead])
async def list_orders(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[OrderRead]:
    orders = await order_service.list_orders(session, user_id=current_user.id)
    return [order_service.serialize_order(order) for order in orders]


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(
    order_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> OrderRead:
    order = await order_service.get_order_for_user(session, order_id=order_id, user=current_user)
    return order_service.serialize_order(order)


@router.patch("/{order_id}/cancel", response_model=OrderRead)
async def cancel_order(
    order_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> OrderRead:
    order = await order_service.cancel_order(session, order_id=order_id, user=current_user)
    return order_service.serialize_order(order)
