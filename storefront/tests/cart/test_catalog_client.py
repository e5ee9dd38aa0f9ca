from decimal import Decimal

import pytest
from httpx import AsyncClient, MockTransport, Request, Response

from storefront.cart.catalog import HttpCatalog, InMemoryCatalog, ProductInfo
from storefront.cart.errors import ProductUnavailableError, SyncError
from storefront.cart.store import CartStore

_PRODUCTS = {
    "A": {"price": "12.50", "stock": 4, "name": "Kente Tote"},
    "SHOE": {
        "price": 60,
        "stock": None,
        "variants": [
            {"id": "42", "stock": 1},
            {"id": "43", "price": "65.00", "stock": -3},
        ],
    },
    "BROKEN": {"stock": 2},
}


def _handler(request: Request) -> Response:
    product_id = request.url.path.rsplit("/", 1)[-1]
    if product_id == "FLAKY":
        return Response(503, json={"detail": "catalog overloaded"})
    payload = _PRODUCTS.get(product_id)
    if payload is None:
        return Response(404, json={"detail": "Product not found"})
    return Response(200, json=payload)


def _catalog(cache: InMemoryCatalog | None = None) -> HttpCatalog:
    client = AsyncClient(transport=MockTransport(_handler))
    return HttpCatalog(client, "http://catalog.test/", cache=cache)


@pytest.mark.asyncio
async def test_fetch_primes_cache_with_variants() -> None:
    catalog = _catalog()

    product = await catalog.fetch("SHOE")

    assert catalog.get_product("SHOE") is product
    assert product.price == Decimal("60")
    assert product.stock_for("42") == 1
    assert product.stock_for("43") == 0
    assert product.price_for("43") == Decimal("65.00")
    assert product.stock_for(None) is None


@pytest.mark.asyncio
async def test_missing_product_is_unavailable_and_evicted() -> None:
    cache = InMemoryCatalog([ProductInfo("GONE", Decimal("1.00"), stock=3)])
    catalog = _catalog(cache)

    with pytest.raises(ProductUnavailableError):
        await catalog.fetch("GONE")

    assert "GONE" not in cache


@pytest.mark.asyncio
async def test_server_errors_and_malformed_documents_raise_sync_errors() -> None:
    catalog = _catalog()

    with pytest.raises(SyncError) as server_error:
        await catalog.fetch("FLAKY")
    assert server_error.value.status_code == 503

    with pytest.raises(SyncError) as malformed:
        await catalog.fetch("BROKEN")
    assert malformed.value.status_code == 200


@pytest.mark.asyncio
async def test_store_uses_primed_catalog_for_price_and_stock() -> None:
    catalog = _catalog()
    await catalog.refresh(["A"])
    store = CartStore("cart-1", catalog=catalog)

    cart = store.add_item("A", quantity=4)

    assert cart.subtotal == Decimal("50.00")
    assert store.update_quantity("A", 9).items[0].quantity == 4
