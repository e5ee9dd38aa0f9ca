"""httpx client for the server cart persistence endpoint."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import CartRejectedError, SyncError
from .models import Cart, CartItem, CartMutation

# Status codes that carry a definitive business refusal instead of a transient fault.
_REJECTION_STATUSES = frozenset({httpx.codes.CONFLICT, httpx.codes.UNPROCESSABLE_ENTITY})
_RETRYABLE_CLIENT_STATUSES = frozenset({httpx.codes.REQUEST_TIMEOUT, httpx.codes.TOO_MANY_REQUESTS})


class RemoteCartLine(BaseModel):
    product_id: str = Field(alias="productId")
    variant_id: str | None = Field(default=None, alias="variantId")
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(alias="unitPrice")
    added_at: datetime = Field(alias="addedAt")

    model_config = ConfigDict(populate_by_name=True)


class RemoteCart(BaseModel):
    id: str
    currency: str
    items: list[RemoteCartLine]
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    def to_cart(self) -> Cart:
        return Cart(
            id=self.id,
            currency=self.currency,
            updated_at=self.updated_at,
            items=tuple(
                CartItem(
                    product_id=line.product_id,
                    variant_id=line.variant_id or None,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    added_at=line.added_at,
                )
                for line in self.items
            ),
        )


class CartPersistence(Protocol):
    async def apply(self, mutation: CartMutation) -> Cart:
        ...

    async def fetch(self, cart_id: str) -> Cart:
        ...

    async def ping(self) -> bool:
        ...


def _segment(value: str) -> str:
    return quote(value, safe="")


def _variant_params(variant_id: str | None) -> dict[str, str]:
    return {"variantId": variant_id} if variant_id else {}


def _rejection_from(response: httpx.Response) -> CartRejectedError:
    code = "REJECTED"
    message = f"server rejected cart write with status {response.status_code}"
    available: int | None = None
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        code = str(detail.get("code") or code)
        message = str(detail.get("message") or message)
        if detail.get("available") is not None:
            available = int(detail["available"])
    elif isinstance(detail, str):
        message = detail
    return CartRejectedError(message, code=code, status_code=response.status_code, available=available)


class ServerCartClient:
    """Sends one request per mutation and returns the authoritative cart."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def close(self) -> None:
        await self._client.aclose()

    async def apply(self, mutation: CartMutation) -> Cart:
        cart_url = self._cart_url(mutation.cart_id)
        if mutation.kind == "clear":
            return await self._send("DELETE", f"{cart_url}/items")
        if mutation.product_id is None:
            msg = f"{mutation.kind} mutation requires a product id"
            raise ValueError(msg)

        item_url = f"{cart_url}/items/{_segment(mutation.product_id)}"
        params = _variant_params(mutation.variant_id)
        if mutation.kind == "remove":
            return await self._send("DELETE", item_url, params=params)

        payload: dict[str, Any] = {"quantity": mutation.quantity}
        if mutation.unit_price is not None:
            payload["unitPrice"] = str(mutation.unit_price)
        return await self._send("PUT", item_url, params=params, json=payload)

    async def fetch(self, cart_id: str) -> Cart:
        return await self._send("GET", self._cart_url(cart_id))

    def _cart_url(self, cart_id: str) -> str:
        return f"{self._base_url}/carts/{_segment(cart_id)}"

    async def ping(self) -> bool:
        try:
            response = await self._client.get(f"{self._base_url}/health")
        except httpx.HTTPError:
            return False
        return response.status_code == httpx.codes.OK

    async def _send(self, method: str, url: str, **kwargs: Any) -> Cart:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise SyncError(f"cart request timed out: {method} {url}") from exc
        except httpx.HTTPError as exc:
            raise SyncError(f"cart request failed: {exc}") from exc

        if response.status_code in _REJECTION_STATUSES:
            raise _rejection_from(response)
        if response.status_code >= 400:
            raise SyncError(
                f"cart request returned {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code >= 500 or response.status_code in _RETRYABLE_CLIENT_STATUSES,
            )
        try:
            return RemoteCart.model_validate(response.json()).to_cart()
        except (ValueError, ValidationError) as exc:
            raise SyncError("malformed cart response", status_code=response.status_code) from exc
