"""Bridges local cart mutations to the server cart, tolerating lost connectivity."""

from __future__ import annotations

import asyncio
import logging
from collections import deque

import httpx

from storefront.common.config import StorefrontSettings
from storefront.common.tracing import cart_span

from .client import CartPersistence, ServerCartClient
from .errors import CartRejectedError, SyncError
from .metrics import (
    CART_SYNC_ATTEMPTS_TOTAL,
    CART_SYNC_QUEUE_DEPTH,
    CART_SYNC_REJECTIONS_TOTAL,
    CART_SYNC_REPLAYS_TOTAL,
)
from .models import Cart, CartMutation
from .store import CartStore

_LOGGER = logging.getLogger(__name__)


class CartSyncLayer:
    """FIFO queue of cart mutations replayed against the server cart endpoint.

    Each mutation carries the intended absolute quantity of its line, so the
    server applies it last-write-wins and a replay after a lost response is
    harmless. There is no backoff loop: a transient failure leaves the write
    at the head of the queue until the next mutation or the next
    offline-to-online transition. A write the server refuses outright is
    dropped, recorded on ``rejections`` and followed by a cart re-fetch.
    """

    def __init__(
        self,
        store: CartStore,
        persistence: CartPersistence,
        *,
        debounce_seconds: float = 0.3,
        online: bool = True,
    ) -> None:
        self._store = store
        self._persistence = persistence
        self._debounce = max(debounce_seconds, 0.0)
        self._online = online
        self._queue: deque[CartMutation] = deque()
        self._lock = asyncio.Lock()
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[bool] | None = None
        self.rejections: list[SyncError] = []
        self.last_error: SyncError | None = None
        self._unsubscribe = store.mutations.subscribe(self._enqueue)

    @classmethod
    def from_settings(
        cls,
        store: CartStore,
        settings: StorefrontSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> CartSyncLayer:
        http_client = client or httpx.AsyncClient(timeout=settings.sync_timeout_seconds)
        return cls(
            store,
            ServerCartClient(http_client, settings.cart_service_url),
            debounce_seconds=settings.sync_debounce_seconds,
        )

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def pending(self) -> tuple[CartMutation, ...]:
        return tuple(self._queue)

    async def set_online(self, online: bool) -> bool:
        """Record a connectivity signal; coming back online replays the queue."""

        was_online = self._online
        self._online = online
        if online and not was_online:
            _LOGGER.info("Connectivity restored; replaying %d cart mutations", len(self._queue))
            CART_SYNC_REPLAYS_TOTAL.inc()
            return await self.flush()
        if not online and was_online:
            _LOGGER.info("Connectivity lost; queueing cart mutations")
            self._cancel_timer()
        return not self._queue

    async def check_connectivity(self) -> bool:
        online = await self._persistence.ping()
        await self.set_online(online)
        return online

    async def flush(self) -> bool:
        """Write queued mutations in call order. Returns True once the queue is empty."""

        self._cancel_timer()
        if not self._online:
            return False

        async with self._lock:
            latest: Cart | None = None
            refresh_cart_id: str | None = None
            rejected = False
            while self._queue:
                if not self._online:
                    return False
                mutation = self._queue[0]
                try:
                    latest = await self._apply(mutation)
                except SyncError as exc:
                    if exc.retryable:
                        self._record_failure(mutation, exc)
                        return False
                    self._queue.popleft()
                    CART_SYNC_QUEUE_DEPTH.set(len(self._queue))
                    self._record_rejection(mutation, exc)
                    rejected = True
                    refresh_cart_id = mutation.cart_id
                    continue
                self._queue.popleft()
                CART_SYNC_QUEUE_DEPTH.set(len(self._queue))
                CART_SYNC_ATTEMPTS_TOTAL.labels(outcome="success").inc()
                if mutation.cart_id == refresh_cart_id:
                    refresh_cart_id = None

            if refresh_cart_id is not None:
                try:
                    latest = await self._persistence.fetch(refresh_cart_id)
                except SyncError as exc:
                    _LOGGER.warning("Could not refresh cart %s after rejection: %s", refresh_cart_id, exc)
                    self.last_error = exc
                    self._store.sync_error = True
                    return False

            if latest is not None:
                self._reconcile(latest)
            if not rejected:
                self.last_error = None
                self._store.sync_error = False
            return True

    async def close(self) -> None:
        self._unsubscribe()
        self._cancel_timer()
        if self._task is not None and not self._task.done():
            await self._task

    # Internals ------------------------------------------------------------------------------

    def _enqueue(self, mutation: CartMutation) -> None:
        self._queue.append(mutation)
        CART_SYNC_QUEUE_DEPTH.set(len(self._queue))
        if self._online:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (synchronous caller); the next explicit flush picks it up.
            return
        self._cancel_timer()
        self._timer = loop.call_later(self._debounce, self._start_flush)

    def _start_flush(self) -> None:
        self._timer = None
        self._task = asyncio.ensure_future(self.flush())
        self._task.add_done_callback(self._log_task_failure)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @staticmethod
    def _log_task_failure(task: asyncio.Task[bool]) -> None:
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.error("Debounced cart flush crashed", exc_info=task.exception())

    async def _apply(self, mutation: CartMutation) -> Cart:
        with cart_span(
            "cart.sync.apply",
            id=mutation.cart_id,
            mutation=mutation.kind,
            product_id=mutation.product_id,
            variant_id=mutation.variant_id,
        ):
            return await self._persistence.apply(mutation)

    def _reconcile(self, latest: Cart) -> None:
        # Writes queued while the last request was in flight are newer than `latest`.
        if any(queued.kind == "clear" for queued in self._queue):
            return
        pending = {queued.key for queued in self._queue if queued.key is not None}
        self._store.reconcile(latest, pending)

    def _record_rejection(self, mutation: CartMutation, exc: SyncError) -> None:
        code = exc.code if isinstance(exc, CartRejectedError) else f"HTTP_{exc.status_code}"
        _LOGGER.warning(
            "Server refused %s of %s in cart %s (%s), dropping it: %s",
            mutation.kind,
            mutation.key,
            mutation.cart_id,
            code,
            exc,
        )
        CART_SYNC_ATTEMPTS_TOTAL.labels(outcome="rejected").inc()
        CART_SYNC_REJECTIONS_TOTAL.labels(code=code).inc()
        self.rejections.append(exc)
        self.last_error = exc
        self._store.sync_error = True

    def _record_failure(self, mutation: CartMutation, exc: SyncError) -> None:
        _LOGGER.warning(
            "Cart sync failed for %s of %s in cart %s (status=%s); %d mutations queued",
            mutation.kind,
            mutation.key,
            mutation.cart_id,
            exc.status_code,
            len(self._queue),
        )
        CART_SYNC_ATTEMPTS_TOTAL.labels(outcome="failure").inc()
        self.last_error = exc
        self._store.sync_error = True
