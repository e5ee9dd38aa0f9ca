"""Prometheus metrics for the cart engine."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Gauge

# Sync layer -------------------------------------------------------------------------------
CART_SYNC_ATTEMPTS_TOTAL: Final = Counter(
    "cart_sync_attempts_total",
    "Server cart writes attempted by the sync layer.",
    labelnames=("outcome",),
)

CART_SYNC_REJECTIONS_TOTAL: Final = Counter(
    "cart_sync_rejections_total",
    "Cart writes definitively refused by the server.",
    labelnames=("code",),
)

CART_SYNC_QUEUE_DEPTH: Final = Gauge(
    "cart_sync_queue_depth",
    "Cart mutations waiting to be written to the server.",
)

CART_SYNC_REPLAYS_TOTAL: Final = Counter(
    "cart_sync_replays_total",
    "Queue replays triggered by connectivity being restored.",
)

# Guest persistence ------------------------------------------------------------------------
GUEST_CART_STORAGE_ERRORS_TOTAL: Final = Counter(
    "guest_cart_storage_errors_total",
    "Redis errors handled while persisting guest carts.",
    labelnames=("operation",),
)
