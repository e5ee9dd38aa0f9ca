"""Prometheus metrics for checkout attempts."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Gauge

CHECKOUT_ATTEMPTS_TOTAL: Final = Counter(
    "checkout_attempts_total",
    "Checkout submissions by outcome.",
    labelnames=("outcome",),
)

CHECKOUT_ERRORS_TOTAL: Final = Counter(
    "checkout_errors_total",
    "Classified checkout failures shown to shoppers.",
    labelnames=("severity",),
)

CHECKOUT_PAYMENTS_IN_FLIGHT: Final = Gauge(
    "checkout_payments_in_flight",
    "Payment confirmations that have started but not settled.",
)
