from fastapi.testclient import TestClient

from bookstore.core import metrics
from bookstore.core.config import settings
from bookstore.db.session import engine_options


def test_health_endpoint(test_app) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    assert res.headers["X-Request-ID"]


def test_request_id_is_echoed(test_app) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
    assert res.headers["X-Request-ID"] == "req-123"


def test_metrics_snapshot(test_app) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    metrics.record_order_created()
    metrics.record_webhook_processed()
    res = client.get("/api/v1/metrics")
    assert res.json() == {"orders_created": 1, "payment_webhooks": 1}


def test_errors_use_common_envelope(test_app) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.get("/api/v1/orders", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401
    assert res.json() == {"detail": "Invalid token", "code": "unauthorized", "request_id": res.headers["X-Request-ID"]}


def test_error_envelope_carries_status_code_and_request_id(test_app, seed) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    headers = {**seed.headers(seed.user()), "X-Request-ID": "req-404"}
    res = client.delete("/api/v1/cart/items/00000000-0000-0000-0000-000000000001", headers=headers)
    assert res.status_code == 404
    assert res.json() == {"detail": "Item not found in cart", "code": "not_found", "request_id": "req-404"}

    res = client.post("/api/v1/cart/items", json={"product_id": "not-a-uuid"}, headers=headers)
    assert res.status_code == 422
    assert res.json()["code"] == "validation_error"
    assert res.json()["request_id"] == "req-404"


def test_engine_options_per_dialect() -> None:
    assert engine_options("sqlite+aiosqlite:///:memory:") == {"connect_args": {"check_same_thread": False}}
    options = engine_options("postgresql+asyncpg://u:p@db/bookstore")
    assert options["pool_pre_ping"] is True
    assert options["pool_size"] == settings.db_pool_size
    assert "connect_args" not in options
