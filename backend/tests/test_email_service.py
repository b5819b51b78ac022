import asyncio
import smtplib
from decimal import Decimal
from types import SimpleNamespace

from bookstore.core.config import settings
from bookstore.models.order import PaymentMethod
from bookstore.services import email as email_service


def _order(**overrides):
    data = {
        "order_number": "ORD-ABCDEF1234",
        "items": [SimpleNamespace(title="Dune", quantity=2, subtotal=Decimal("30.00"))],
        "subtotal": Decimal("40.00"),
        "discount_total": Decimal("4.00"),
        "coupon_code": "WELCOME10",
        "total": Decimal("36.00"),
        "currency": "VND",
        "payment_method": PaymentMethod.cod,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def test_render_order_confirmation_lists_discount() -> None:
    text = email_service.render_order_confirmation(_order(), customer_name="Ada")
    assert "Hi Ada," in text
    assert "ORD-ABCDEF1234" in text
    assert "- Dune x 2: 30.00 VND" in text
    assert "Discount (WELCOME10): -4.00 VND" in text
    assert "Total: 36.00 VND" in text


def test_render_without_discount_omits_line() -> None:
    text = email_service.render_order_confirmation(_order(discount_total=Decimal("0.00"), coupon_code=None))
    assert "Discount" not in text
    assert "Hi there," in text


def test_send_is_skipped_when_smtp_disabled(monkeypatch) -> None:
    monkeypatch.setattr(settings, "smtp_enabled", False)
    assert asyncio.run(email_service.send_order_confirmation("reader@example.com", _order())) is False


def test_smtp_failure_is_logged_not_raised(monkeypatch, caplog) -> None:
    monkeypatch.setattr(settings, "smtp_enabled", True)

    class BrokenSMTP:
        def __init__(self, *args, **kwargs):
            raise smtplib.SMTPConnectError(421, b"unavailable")

    monkeypatch.setattr(email_service.smtplib, "SMTP", BrokenSMTP)
    with caplog.at_level("WARNING"):
        assert asyncio.run(email_service.send_order_confirmation("reader@example.com", _order())) is False
    assert "Email send failed" in caplog.text


def test_smtp_success(monkeypatch) -> None:
    monkeypatch.setattr(settings, "smtp_enabled", True)
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout):
            self.host = host

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def send_message(self, msg):
            sent.append(msg)

    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)
    assert asyncio.run(email_service.send_order_confirmation("reader@example.com", _order())) is True
    assert sent[0]["Subject"] == "Order confirmation ORD-ABCDEF1234"
    assert sent[0]["To"] == "reader@example.com"
