from uuid import UUID

from pydantic import BaseModel


class PaymentLinkRequest(BaseModel):
    order_id: UUID


class PaymentLinkResponse(BaseModel):
    checkout_url: str
    order_code: int


class WebhookAck(BaseModel):
    success: bool = True
    message: str = "ok"
