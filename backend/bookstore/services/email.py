import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from bookstore.core.config import settings
from bookstore.models.order import Order

logger = logging.getLogger(__name__)

TEMPLATE_PATH = Path(__file__).parent.parent / "templates" / "emails"
env = Environment(loader=FileSystemLoader(TEMPLATE_PATH), autoescape=select_autoescape(["html", "xml"]))


def _build_message(to_email: str, subject: str, text_body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from_email or "no-reply@bookstore.local"
    msg["To"] = to_email
    msg.set_content(text_body)
    return msg


async def send_email(to_email: str, subject: str, text_body: str) -> bool:
    if not settings.smtp_enabled:
        return False
    msg = _build_message(to_email, subject, text_body)
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if settings.smtp_username and settings.smtp_password:
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(msg)
        return True
    except Exception as exc:
        logger.warning("Email send failed: %s", exc)
        return False


def render_order_confirmation(order: Order, *, customer_name: str | None = None) -> str:
    return env.get_template("order_confirmation.txt.j2").render(
        customer_name=customer_name or "there",
        order_number=order.order_number,
        items=order.items,
        subtotal=order.subtotal,
        discount_total=order.discount_total,
        coupon_code=order.coupon_code,
        total=order.total,
        currency=order.currency,
        payment_method=order.payment_method.value,
    )


async def send_order_confirmation(to_email: str, order: Order, *, customer_name: str | None = None) -> bool:
    """Best effort; a failure is logged and never reaches the checkout caller."""
    try:
        text_body = render_order_confirmation(order, customer_name=customer_name)
    except Exception as exc:
        logger.warning("Order confirmation render failed for %s: %s", order.order_number, exc)
        return False
    return await send_email(to_email, f"Order confirmation {order.order_number}", text_body)
