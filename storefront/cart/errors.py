"""Exceptions raised by the cart engine."""

from __future__ import annotations

from typing import Any


class CartError(Exception):
    """Base class for cart engine failures."""


class InvalidQuantityError(CartError, ValueError):
    def __init__(self, quantity: Any, *, minimum: int, maximum: int) -> None:
        super().__init__(f"quantity {quantity!r} must be an integer between {minimum} and {maximum}")
        self.quantity = quantity
        self.minimum = minimum
        self.maximum = maximum


class OutOfStockError(CartError):
    def __init__(
        self,
        product_id: str,
        *,
        variant_id: str | None = None,
        requested: int,
        available: int,
    ) -> None:
        label = product_id if variant_id is None else f"{product_id}/{variant_id}"
        super().__init__(f"insufficient stock for {label}: requested {requested}, only {available} available")
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available


class ProductUnavailableError(CartError):
    def __init__(self, product_id: str, *, variant_id: str | None = None) -> None:
        label = product_id if variant_id is None else f"{product_id}/{variant_id}"
        super().__init__(f"product {label} is not available")
        self.product_id = product_id
        self.variant_id = variant_id


class UnsupportedCurrencyError(CartError, ValueError):
    def __init__(self, currency: str) -> None:
        super().__init__(f"unsupported currency code: {currency!r}")
        self.currency = currency


class SyncError(CartError):
    """Persistence call to the server cart failed; the mutation stays queued."""

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class CartRejectedError(SyncError):
    """The server definitively refused a mutation (e.g. insufficient inventory)."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        status_code: int,
        available: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, retryable=False)
        self.code = code
        self.available = available
