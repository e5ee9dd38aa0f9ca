"""Local-first cart store: the single source of truth for one browsing session."""

from __future__ import annotations

import itertools
import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Union

from storefront.common.config import StorefrontSettings

from .catalog import Catalog, ProductInfo
from .channel import Channel
from .errors import InvalidQuantityError, OutOfStockError, ProductUnavailableError
from .models import Cart, CartItem, CartMutation, LineKey, MutationKind, line_key
from .pricing import clamp_quantity, parse_quantity, to_decimal

_LOGGER = logging.getLogger(__name__)

LineRef = Union[LineKey, tuple, str]


def _coerce_key(line: LineRef) -> LineKey:
    if isinstance(line, LineKey):
        return line
    if isinstance(line, str):
        return line_key(line)
    return line_key(*line)


class CartStore:
    """Owns cart lines, derives totals and broadcasts every change.

    Mutations apply synchronously to the in-memory lines and are published on
    two channels: ``changes`` carries the new ``Cart`` snapshot for the UI and
    ``mutations`` carries the server writes for the sync layer.
    """

    def __init__(
        self,
        cart_id: str,
        *,
        catalog: Catalog | None = None,
        currency: str = "USD",
        min_quantity: int = 1,
        max_quantity: int = 99,
        items: Iterable[CartItem] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if min_quantity < 1 or min_quantity > max_quantity:
            msg = "quantity bounds must satisfy 1 <= min_quantity <= max_quantity"
            raise ValueError(msg)
        self._cart_id = cart_id
        self._catalog = catalog
        self._currency = currency.upper()
        self.min_quantity = min_quantity
        self.max_quantity = max_quantity
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._items: dict[LineKey, CartItem] = {item.key: item for item in items}
        self._updated_at = self._clock()
        self._sequence = itertools.count(1)
        self.changes: Channel[Cart] = Channel("cart-changed")
        self.mutations: Channel[CartMutation] = Channel("cart-mutations")
        self.sync_error = False

    @classmethod
    def from_settings(
        cls,
        cart_id: str,
        settings: StorefrontSettings,
        *,
        catalog: Catalog | None = None,
    ) -> CartStore:
        return cls(
            cart_id,
            catalog=catalog,
            currency=settings.default_currency,
            min_quantity=settings.min_quantity,
            max_quantity=settings.max_quantity,
        )

    @classmethod
    def from_cart(cls, cart: Cart, **kwargs) -> CartStore:
        """Restore a store from a persisted snapshot without emitting mutations."""

        store = cls(cart.id, currency=cart.currency, items=cart.items, **kwargs)
        store._updated_at = cart.updated_at
        return store

    @property
    def cart_id(self) -> str:
        return self._cart_id

    @property
    def currency(self) -> str:
        return self._currency

    def subscribe(self, listener: Callable[[Cart], None]) -> Callable[[], None]:
        return self.changes.subscribe(listener)

    def get_snapshot(self) -> Cart:
        return Cart(
            id=self._cart_id,
            items=tuple(self._items.values()),
            currency=self._currency,
            updated_at=self._updated_at,
        )

    # Mutations ------------------------------------------------------------------------------

    def add_item(
        self,
        product_id: str,
        variant_id: str | None = None,
        quantity: int = 1,
        *,
        unit_price: Decimal | int | float | str | None = None,
    ) -> Cart:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantityError(quantity, minimum=1, maximum=self.max_quantity)
        if quantity < 1 or quantity > self.max_quantity:
            raise InvalidQuantityError(quantity, minimum=1, maximum=self.max_quantity)

        key = line_key(product_id, variant_id)
        product = self._lookup(key)
        existing = self._items.get(key)
        new_quantity = quantity + (existing.quantity if existing else 0)
        if not self.min_quantity <= new_quantity <= self.max_quantity:
            raise InvalidQuantityError(new_quantity, minimum=self.min_quantity, maximum=self.max_quantity)

        stock = product.stock_for(key.variant_id) if product else None
        if stock is not None and new_quantity > stock:
            raise OutOfStockError(
                key.product_id, variant_id=key.variant_id, requested=new_quantity, available=stock
            )

        if existing is not None:
            item = replace(existing, quantity=new_quantity)
        else:
            if product is not None:
                price = product.price_for(key.variant_id)
            elif unit_price is not None:
                price = to_decimal(unit_price)
            else:
                raise ProductUnavailableError(key.product_id, variant_id=key.variant_id)
            item = CartItem(
                product_id=key.product_id,
                variant_id=key.variant_id,
                quantity=new_quantity,
                unit_price=price,
                added_at=self._clock(),
            )
        self._items[key] = item
        self._commit([self._mutation("set", item)])
        return self.get_snapshot()

    def update_quantity(self, line: LineRef, quantity: int) -> Cart:
        """Set a line's quantity, clamped to the configured bounds and known stock."""

        requested = parse_quantity(quantity)
        if requested is None or requested < 0:
            raise InvalidQuantityError(quantity, minimum=0, maximum=self.max_quantity)
        key = _coerce_key(line)
        if requested == 0:
            return self.remove_item(key)

        existing = self._items.get(key)
        if existing is None:
            _LOGGER.debug("Ignoring quantity update for unknown line %s", key)
            return self.get_snapshot()

        upper = self._upper_bound(key)
        if upper < self.min_quantity:
            raise OutOfStockError(
                key.product_id, variant_id=key.variant_id, requested=requested, available=max(upper, 0)
            )
        new_quantity = clamp_quantity(requested, self.min_quantity, upper)
        if new_quantity == existing.quantity:
            return self.get_snapshot()

        item = replace(existing, quantity=new_quantity)
        self._items[key] = item
        self._commit([self._mutation("set", item)])
        return self.get_snapshot()

    def remove_item(self, line: LineRef) -> Cart:
        key = _coerce_key(line)
        removed = self._items.pop(key, None)
        if removed is not None:
            self._commit([self._mutation("remove", removed)])
        return self.get_snapshot()

    def clear(self) -> Cart:
        if self._items:
            self._items.clear()
            self._commit([CartMutation(kind="clear", cart_id=self._cart_id, sequence=next(self._sequence))])
        return self.get_snapshot()

    def merge_server_cart(self, server_cart: Cart) -> Cart:
        """Merge the authenticated customer's server cart into this guest cart.

        Server lines win on conflicting keys, guest-only lines are appended in
        their original order and every quantity is clamped to catalog stock.
        The store adopts the server cart id.
        """

        self._cart_id = server_cart.id
        self._currency = server_cart.currency.upper()
        merged: dict[LineKey, CartItem] = {}
        mutations: list[CartMutation] = []

        for item in server_cart.items:
            quantity = self._clamp_to_stock(item)
            if quantity == 0:
                mutations.append(self._mutation("remove", item))
                continue
            if quantity != item.quantity:
                item = replace(item, quantity=quantity)
                mutations.append(self._mutation("set", item))
            merged[item.key] = item

        server_keys = {item.key for item in server_cart.items}
        for item in self._items.values():
            if item.key in server_keys:
                continue
            quantity = self._clamp_to_stock(item)
            if quantity == 0:
                continue
            item = replace(item, quantity=quantity)
            merged[item.key] = item
            mutations.append(self._mutation("set", item))

        _LOGGER.info(
            "Merged guest cart into %s: %d server lines, %d lines after merge",
            server_cart.id,
            len(server_cart.items),
            len(merged),
        )
        self._items = merged
        self._commit(mutations)
        return self.get_snapshot()

    def reconcile(self, server_cart: Cart, pending: Iterable[LineKey] = ()) -> Cart:
        """Overwrite local optimistic values with the server's authoritative cart.

        Lines listed in ``pending`` still have unsent writes and keep their
        local values. Nothing is queued for the server.
        """

        if server_cart.id != self._cart_id:
            _LOGGER.warning("Skipping reconcile of cart %s into store for %s", server_cart.id, self._cart_id)
            return self.get_snapshot()

        pending_keys = set(pending)
        server_items = {item.key: item for item in server_cart.items}
        result: dict[LineKey, CartItem] = {}
        for key, local in self._items.items():
            if key in pending_keys:
                result[key] = local
                continue
            remote = server_items.get(key)
            if remote is not None:
                result[key] = replace(local, quantity=remote.quantity, unit_price=remote.unit_price)
        for key, remote in server_items.items():
            if key not in result and key not in pending_keys:
                result[key] = remote

        if list(result.items()) != list(self._items.items()):
            self._items = result
            self._commit([])
        return self.get_snapshot()

    # Internals ------------------------------------------------------------------------------

    def _lookup(self, key: LineKey) -> ProductInfo | None:
        if self._catalog is None:
            return None
        product = self._catalog.get_product(key.product_id)
        if product is None:
            return None
        if key.variant_id is not None and product.variants and product.variant(key.variant_id) is None:
            raise ProductUnavailableError(key.product_id, variant_id=key.variant_id)
        return product

    def _upper_bound(self, key: LineKey) -> int:
        product = self._catalog.get_product(key.product_id) if self._catalog else None
        stock = product.stock_for(key.variant_id) if product else None
        if stock is None:
            return self.max_quantity
        return min(self.max_quantity, stock)

    def _clamp_to_stock(self, item: CartItem) -> int:
        upper = self._upper_bound(item.key)
        if upper < self.min_quantity:
            return 0
        return clamp_quantity(item.quantity, self.min_quantity, upper) or 0

    def _mutation(self, kind: MutationKind, item: CartItem) -> CartMutation:
        return CartMutation(
            kind=kind,
            cart_id=self._cart_id,
            sequence=next(self._sequence),
            product_id=item.product_id,
            variant_id=item.variant_id,
            quantity=item.quantity if kind == "set" else 0,
            unit_price=item.unit_price,
        )

    def _commit(self, mutations: list[CartMutation]) -> None:
        self._updated_at = self._clock()
        for mutation in mutations:
            self.mutations.publish(mutation)
        self.changes.publish(self.get_snapshot())
