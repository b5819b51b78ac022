import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from bookstore.models.coupon import Coupon, CouponType
from bookstore.services import coupon_rules


def _coupon(**overrides) -> Coupon:
    data = {
        "id": uuid4(),
        "code": "TEST",
        "type": CouponType.percent,
        "value": Decimal("10"),
        "is_active": True,
        "eligible_product_ids": [],
        "eligible_category_slugs": [],
    }
    data.update(overrides)
    return Coupon(**data)


def _item(category: str = "Fiction", product_id=None, price: str = "10.00", quantity: int = 1):
    return SimpleNamespace(
        product_id=product_id or uuid4(),
        product=SimpleNamespace(category=category),
        unit_price_at_add=Decimal(price),
        quantity=quantity,
    )


def _evaluate(coupon, *, subtotal: str = "40.00", items=None):
    return asyncio.run(
        coupon_rules.evaluate(
            None,
            coupon=coupon,
            user_id=uuid4(),
            subtotal=Decimal(subtotal),
            items=items if items is not None else [_item()],
        )
    )


def test_percent_discount_clamps_value_above_hundred() -> None:
    discount = coupon_rules.compute_discount(coupon_type=CouponType.percent, value=Decimal("150"), subtotal=Decimal("40.00"))
    assert discount == Decimal("40.00")


def test_percent_discount_respects_max_discount() -> None:
    discount = coupon_rules.compute_discount(
        coupon_type=CouponType.percent,
        value=Decimal("50"),
        subtotal=Decimal("100.00"),
        max_discount_amount=Decimal("20"),
    )
    assert discount == Decimal("20.00")


def test_percent_discount_rounds_half_up() -> None:
    discount = coupon_rules.compute_discount(coupon_type="percent", value=Decimal("15"), subtotal=Decimal("10.10"))
    assert discount == Decimal("1.52")


def test_fixed_discount_never_exceeds_subtotal() -> None:
    discount = coupon_rules.compute_discount(coupon_type=CouponType.fixed, value=Decimal("50"), subtotal=Decimal("12.50"))
    assert discount == Decimal("12.50")


def test_negative_values_never_produce_negative_discount() -> None:
    assert coupon_rules.compute_discount(coupon_type=CouponType.fixed, value=Decimal("-5"), subtotal=Decimal("20")) == Decimal("0.00")
    assert coupon_rules.compute_discount(coupon_type=CouponType.percent, value=Decimal("-5"), subtotal=Decimal("20")) == Decimal("0.00")


def test_unknown_type_yields_zero_discount() -> None:
    assert coupon_rules.compute_discount(coupon_type="bogo", value=Decimal("5"), subtotal=Decimal("20")) == Decimal("0.00")


def test_normalize_code_trims_and_uppercases() -> None:
    assert coupon_rules.normalize_code("  welcome10 ") == "WELCOME10"
    assert coupon_rules.normalize_code(None) == ""


def test_missing_coupon_is_not_found() -> None:
    check = _evaluate(None)
    assert check == coupon_rules.CouponCheck(valid=False, reason="Coupon not found")


def test_inactive_reported_before_window() -> None:
    past = datetime.now(timezone.utc) - timedelta(days=1)
    check = _evaluate(_coupon(is_active=False, ends_at=past))
    assert check.reason == "Coupon is inactive"


def test_expired_coupon_is_not_currently_valid_even_if_active() -> None:
    check = _evaluate(_coupon(ends_at=datetime.now(timezone.utc) - timedelta(minutes=1)))
    assert not check.valid
    assert check.reason == "Coupon is not currently valid"


def test_future_coupon_is_not_currently_valid() -> None:
    check = _evaluate(_coupon(starts_at=datetime.now(timezone.utc) + timedelta(days=2)))
    assert check.reason == "Coupon is not currently valid"


def test_naive_bounds_are_treated_as_utc() -> None:
    naive_past = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=1)
    naive_future = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
    assert _evaluate(_coupon(starts_at=naive_past, ends_at=naive_future)).valid


def test_min_subtotal_reason_names_amount() -> None:
    check = _evaluate(_coupon(min_subtotal=Decimal("30")), subtotal="20.00")
    assert check.reason == "Minimum subtotal is 30.00"


def test_product_eligibility_requires_intersection() -> None:
    eligible = uuid4()
    coupon = _coupon(eligible_product_ids=[str(eligible)])
    assert _evaluate(coupon, items=[_item()]).reason == "Coupon is not applicable to items in cart"
    assert _evaluate(coupon, items=[_item(), _item(product_id=eligible)]).valid


def test_category_eligibility_is_case_insensitive_and_trimmed() -> None:
    coupon = _coupon(eligible_category_slugs=["  science fiction "])
    assert _evaluate(coupon, items=[_item(category="Science Fiction")]).valid
    assert _evaluate(coupon, items=[_item(category="Poetry")]).reason == "Coupon is not applicable to items in cart"


def test_valid_coupon_without_limits_skips_ledger() -> None:
    assert _evaluate(_coupon()).valid
