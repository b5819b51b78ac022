from fastapi import APIRouter

from bookstore.api.v1 import admin_coupons
from bookstore.api.v1 import cart
from bookstore.api.v1 import coupons
from bookstore.api.v1 import orders
from bookstore.api.v1 import payments
from bookstore.core.metrics import snapshot as metrics_snapshot

api_router = APIRouter()

api_router.include_router(cart.router)
api_router.include_router(coupons.router)
api_router.include_router(admin_coupons.router)
api_router.include_router(orders.router)
api_router.include_router(payments.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()
