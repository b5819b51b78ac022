from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.core.dependencies import get_current_user
from bookstore.db.session import get_session
from bookstore.models.user import User
from bookstore.schemas.payment import PaymentLinkRequest, PaymentLinkResponse, WebhookAck
from bookstore.services import order as order_service
from bookstore.services import payos
from bookstore.services import webhook_handlers

router = APIRouter(prefix="/payment", tags=["payments"])


@router.post("/create-payment-link", response_model=PaymentLinkResponse)
async def create_payment_link(
    payload: PaymentLinkRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> PaymentLinkResponse:
    order = await order_service.get_order(session, payload.order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    checkout_url, order_code = await payos.create_payment_link(session, order=order, user=current_user)
    return PaymentLinkResponse(checkout_url=checkout_url, order_code=order_code)


@router.post("/payos-webhook", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def payos_webhook(request: Request, session: AsyncSession = Depends(get_session)) -> WebhookAck:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")
    if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")

    data = body["data"]
    if not payos.verify_webhook_signature(data, body.get("signature")):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")

    outcome = await webhook_handlers.reconcile(session, data)
    return WebhookAck(success=True, message=outcome)
