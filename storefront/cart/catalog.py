"""Catalog view consulted by the cart store for prices and stock."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping, Protocol
from urllib.parse import quote

import httpx

from .errors import ProductUnavailableError, SyncError

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VariantInfo:
    variant_id: str
    price: Decimal | None = None
    stock: int | None = None


@dataclass(frozen=True, slots=True)
class ProductInfo:
    """Catalog facts for one product. ``stock`` of ``None`` means untracked."""

    product_id: str
    price: Decimal
    stock: int | None = None
    variants: Mapping[str, VariantInfo] = field(default_factory=dict)
    name: str | None = None

    def price_for(self, variant_id: str | None) -> Decimal:
        variant = self.variant(variant_id)
        if variant is not None and variant.price is not None:
            return variant.price
        return self.price

    def stock_for(self, variant_id: str | None) -> int | None:
        variant = self.variant(variant_id)
        if variant is not None and variant.stock is not None:
            return variant.stock
        return self.stock

    def variant(self, variant_id: str | None) -> VariantInfo | None:
        if variant_id is None:
            return None
        return self.variants.get(variant_id)


class Catalog(Protocol):
    def get_product(self, product_id: str) -> ProductInfo | None:
        ...


class InMemoryCatalog:
    """Dictionary backed catalog view; also the cache primed by ``HttpCatalog``."""

    def __init__(self, products: Iterable[ProductInfo] = ()) -> None:
        self._products: dict[str, ProductInfo] = {product.product_id: product for product in products}

    def get_product(self, product_id: str) -> ProductInfo | None:
        return self._products.get(product_id)

    def put(self, product: ProductInfo) -> None:
        self._products[product.product_id] = product

    def discard(self, product_id: str) -> None:
        self._products.pop(product_id, None)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._products


def _parse_stock(value: Any) -> int | None:
    if value is None:
        return None
    return max(int(value), 0)


def parse_product(product_id: str, payload: Mapping[str, Any]) -> ProductInfo:
    """Build a ``ProductInfo`` from a catalog JSON document."""

    variants: dict[str, VariantInfo] = {}
    for entry in payload.get("variants") or []:
        variant_id = str(entry["id"])
        price = entry.get("price")
        variants[variant_id] = VariantInfo(
            variant_id=variant_id,
            price=Decimal(str(price)) if price is not None else None,
            stock=_parse_stock(entry.get("stock")),
        )
    return ProductInfo(
        product_id=product_id,
        price=Decimal(str(payload["price"])),
        stock=_parse_stock(payload.get("stock")),
        variants=variants,
        name=payload.get("name") or payload.get("title"),
    )


class HttpCatalog:
    """Fetches ``{price, stock, variants}`` documents and primes a local view."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, cache: InMemoryCatalog | None = None) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self.cache = cache or InMemoryCatalog()

    def get_product(self, product_id: str) -> ProductInfo | None:
        return self.cache.get_product(product_id)

    async def fetch(self, product_id: str) -> ProductInfo:
        try:
            response = await self._client.get(f"{self._base_url}/products/{quote(product_id, safe='')}")
        except httpx.HTTPError as exc:
            raise SyncError(f"catalog request failed: {exc}") from exc
        if response.status_code == httpx.codes.NOT_FOUND:
            self.cache.discard(product_id)
            raise ProductUnavailableError(product_id)
        if response.status_code >= 400:
            raise SyncError("catalog request failed", status_code=response.status_code)
        try:
            product = parse_product(product_id, response.json())
        except (ValueError, KeyError, TypeError, ArithmeticError) as exc:
            raise SyncError("malformed catalog response", status_code=response.status_code) from exc
        self.cache.put(product)
        _LOGGER.debug("Primed catalog entry for %s (stock=%s)", product_id, product.stock)
        return product

    async def refresh(self, product_ids: Iterable[str]) -> list[ProductInfo]:
        return [await self.fetch(product_id) for product_id in product_ids]
