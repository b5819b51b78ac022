from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_order_created() -> None:
    _inc("orders_created")


def record_order_cancelled() -> None:
    _inc("orders_cancelled")


def record_coupon_redeemed() -> None:
    _inc("coupons_redeemed")


def record_coupon_dropped() -> None:
    _inc("coupons_dropped")


def record_webhook_processed() -> None:
    _inc("payment_webhooks")


def record_payment_failure() -> None:
    _inc("payment_failures")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
