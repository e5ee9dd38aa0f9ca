"""Stock lookups consulted before the service accepts a line quantity."""

from __future__ import annotations

import logging
from typing import Protocol

from storefront.cart.catalog import Catalog, HttpCatalog, ProductInfo
from storefront.cart.errors import ProductUnavailableError, SyncError

_LOGGER = logging.getLogger(__name__)


class InventoryUnavailableError(Exception):
    """Stock could not be read, so the write can neither be accepted nor refused."""

    def __init__(self, product_id: str) -> None:
        super().__init__(f"stock for {product_id} is temporarily unavailable")
        self.product_id = product_id


class InventoryLookup(Protocol):
    async def available(self, product_id: str, variant_id: str | None) -> int | None:
        """Return units in stock, or ``None`` when stock is not tracked."""
        ...


class CatalogInventory:
    """Reads stock from a catalog; an ``HttpCatalog`` is re-read on every lookup."""

    def __init__(self, catalog: Catalog) -> None:
        self._catalog = catalog

    async def available(self, product_id: str, variant_id: str | None) -> int | None:
        try:
            product = await self._current(product_id)
        except ProductUnavailableError:
            return 0
        if product is None:
            return None
        if product.variants and variant_id is not None and product.variant(variant_id) is None:
            return 0
        return product.stock_for(variant_id)

    async def _current(self, product_id: str) -> ProductInfo | None:
        if not isinstance(self._catalog, HttpCatalog):
            return self._catalog.get_product(product_id)
        try:
            return await self._catalog.fetch(product_id)
        except SyncError as exc:
            _LOGGER.warning("Catalog lookup for %s failed: %s", product_id, exc)
            raise InventoryUnavailableError(product_id) from exc
