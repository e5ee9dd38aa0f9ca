"""Guest cart persistence across browsing sessions."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import string
import time
from typing import Any, Callable

from storefront.common.cache import resolve_redis
from storefront.common.config import StorefrontSettings

from .metrics import GUEST_CART_STORAGE_ERRORS_TOTAL
from .models import Cart
from .store import CartStore

_LOGGER = logging.getLogger(__name__)
_SESSION_ALPHABET = string.digits + string.ascii_lowercase


def new_session_id() -> str:
    """Return an opaque guest session id such as ``session_1700000000000_k3j9x0a1b``."""

    suffix = "".join(secrets.choice(_SESSION_ALPHABET) for _ in range(9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


class GuestCartStorage:
    """Stores guest cart snapshots in Redis with a sliding expiry.

    Redis failures are logged and counted, never raised.
    """

    def __init__(self, redis_client: Any | None, *, key_prefix: str = "guest_cart", ttl_seconds: int = 30 * 86400) -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._ttl = max(ttl_seconds, 1)
        self._pending: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(cls, settings: StorefrontSettings) -> GuestCartStorage:
        return cls(resolve_redis(settings), ttl_seconds=settings.guest_cart_ttl_seconds)

    def _key(self, cart_id: str) -> str:
        return f"{self._key_prefix}:{cart_id}"

    async def save(self, cart: Cart) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(self._key(cart.id), json.dumps(cart.to_payload()), ex=self._ttl)
        except Exception:
            _LOGGER.warning("Failed to persist guest cart %s", cart.id, exc_info=True)
            GUEST_CART_STORAGE_ERRORS_TOTAL.labels(operation="set").inc()

    async def load(self, cart_id: str) -> Cart | None:
        if self._redis is None:
            return None
        try:
            raw = await self._redis.get(self._key(cart_id))
        except Exception:
            _LOGGER.warning("Failed to load guest cart %s", cart_id, exc_info=True)
            GUEST_CART_STORAGE_ERRORS_TOTAL.labels(operation="get").inc()
            return None
        if not raw:
            return None
        try:
            return Cart.from_payload(json.loads(raw))
        except (ValueError, KeyError, TypeError, ArithmeticError):
            _LOGGER.warning("Discarding unreadable guest cart %s", cart_id)
            GUEST_CART_STORAGE_ERRORS_TOTAL.labels(operation="decode").inc()
            await self.delete(cart_id)
            return None

    async def delete(self, cart_id: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(self._key(cart_id))
        except Exception:
            _LOGGER.warning("Failed to delete guest cart %s", cart_id, exc_info=True)
            GUEST_CART_STORAGE_ERRORS_TOTAL.labels(operation="delete").inc()

    def track(self, store: CartStore) -> Callable[[], None]:
        """Save the store's snapshot after every change; returns an unsubscribe callable."""

        def _on_change(cart: Cart) -> None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            task = loop.create_task(self.save(cart))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return store.subscribe(_on_change)

    async def drain(self) -> None:
        """Wait for saves scheduled by ``track`` to finish."""

        if self._pending:
            await asyncio.gather(*list(self._pending))
