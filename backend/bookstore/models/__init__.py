from bookstore.db.base import Base  # noqa: F401
from bookstore.models.user import User, UserRole  # noqa: F401
from bookstore.models.catalog import Product  # noqa: F401
from bookstore.models.coupon import Coupon, CouponRedemption, CouponType  # noqa: F401
from bookstore.models.cart import Cart, CartItem  # noqa: F401
from bookstore.models.order import Order, OrderEvent, OrderItem, OrderStatus, PaymentMethod, PaymentStatus  # noqa: F401
from bookstore.models.payment import PaymentTransaction, TransactionStatus  # noqa: F401

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Product",
    "Coupon",
    "CouponRedemption",
    "CouponType",
    "Cart",
    "CartItem",
    "Order",
    "OrderEvent",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentTransaction",
    "TransactionStatus",
]
