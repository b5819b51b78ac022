from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bookstore.api.v1 import api_router
from bookstore.core.config import settings
from bookstore.core.logging_config import configure_logging, request_id_ctx_var
from bookstore.middleware import RequestLoggingMiddleware
from bookstore.schemas.error import ErrorResponse, code_for_status


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or request_id_ctx_var.get()


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    tags_metadata = [
        {"name": "cart", "description": "Cart pricing and coupon application"},
        {"name": "coupons", "description": "Coupon preview and discovery"},
        {"name": "admin-coupons", "description": "Coupon administration"},
        {"name": "orders", "description": "Checkout and order history"},
        {"name": "payments", "description": "PayOS payment links and webhooks"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        swagger_ui_parameters={"displayRequestDuration": True},
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(
            detail=exc.detail, code=code_for_status(exc.status_code), request_id=_request_id(request)
        )
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload.model_dump()))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error", request_id=_request_id(request))
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()
