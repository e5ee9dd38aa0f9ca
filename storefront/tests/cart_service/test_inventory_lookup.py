from decimal import Decimal

import pytest
from httpx import AsyncClient, MockTransport, Request, Response

from storefront.cart.catalog import HttpCatalog, InMemoryCatalog, ProductInfo, VariantInfo
from storefront.cart_service.app.inventory import CatalogInventory, InventoryUnavailableError


class _Catalog:
    """Catalog endpoint whose stock can change between requests."""

    def __init__(self) -> None:
        self.stock = 3
        self.status_code = 200
        self.calls: list[str] = []

    def __call__(self, request: Request) -> Response:
        self.calls.append(request.url.path)
        if self.status_code != 200:
            return Response(self.status_code, json={"detail": "catalog overloaded"})
        if not request.url.path.endswith("/products/MUG"):
            return Response(404, json={"detail": "Product not found"})
        return Response(
            200,
            json={"price": "8.00", "stock": self.stock, "variants": [{"id": "blue", "stock": 1}]},
        )


def _inventory(endpoint: _Catalog) -> CatalogInventory:
    return CatalogInventory(HttpCatalog(AsyncClient(transport=MockTransport(endpoint)), "http://catalog.test"))


@pytest.mark.asyncio
async def test_catalog_inventory_reads_variant_stock() -> None:
    inventory = _inventory(_Catalog())

    assert await inventory.available("MUG", None) == 3
    assert await inventory.available("MUG", "blue") == 1
    assert await inventory.available("MUG", "green") == 0


@pytest.mark.asyncio
async def test_catalog_inventory_sees_stock_changes() -> None:
    endpoint = _Catalog()
    inventory = _inventory(endpoint)

    assert await inventory.available("MUG", None) == 3
    endpoint.stock = 0
    assert await inventory.available("MUG", None) == 0
    assert endpoint.calls == ["/products/MUG", "/products/MUG"]


@pytest.mark.asyncio
async def test_catalog_inventory_reports_missing_products_as_sold_out() -> None:
    assert await _inventory(_Catalog()).available("GONE", None) == 0


@pytest.mark.asyncio
async def test_catalog_outage_is_reported_not_guessed() -> None:
    endpoint = _Catalog()
    endpoint.status_code = 503

    with pytest.raises(InventoryUnavailableError):
        await _inventory(endpoint).available("MUG", None)


@pytest.mark.asyncio
async def test_in_memory_catalog_leaves_untracked_stock_unchecked() -> None:
    catalog = InMemoryCatalog(
        [
            ProductInfo("PRINT", Decimal("20.00")),
            ProductInfo("TEE", Decimal("15.00"), variants={"m": VariantInfo("m", stock=2)}),
        ]
    )
    inventory = CatalogInventory(catalog)

    assert await inventory.available("PRINT", None) is None
    assert await inventory.available("UNKNOWN", None) is None
    assert await inventory.available("TEE", "m") == 2
