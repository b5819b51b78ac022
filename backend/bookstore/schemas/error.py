from typing import Any

from pydantic import BaseModel

STATUS_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    422: "validation_error",
    500: "internal_error",
    502: "payment_provider_error",
}


def code_for_status(status_code: int) -> str:
    return STATUS_CODES.get(status_code, "error")


class ErrorResponse(BaseModel):
    """Envelope for every error body; ``request_id`` matches the X-Request-ID header."""

    detail: Any
    code: str
    request_id: str | None = None
