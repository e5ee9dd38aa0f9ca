import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from storefront.cart.client import ServerCartClient
from storefront.cart.store import CartStore
from storefront.cart.sync import CartSyncLayer
from storefront.cart_service.app.inventory import InventoryUnavailableError
from storefront.cart_service.app.main import create_app
from storefront.cart_service.app.models import Base
from storefront.cart_service.app.repository import CartRepository
from storefront.common import StorefrontSettings, create_engine, dispose_engines, get_session_factory, session_scope


class _StubInventory:
    def __init__(self, stock: dict[tuple[str, str | None], int]) -> None:
        self.stock = stock

    async def available(self, product_id: str, variant_id: str | None) -> int | None:
        return self.stock.get((product_id, variant_id))


class _OfflineInventory:
    async def available(self, product_id: str, variant_id: str | None) -> int | None:
        raise InventoryUnavailableError(product_id)


def _run(coro):
    return asyncio.run(coro)


async def _prepare_app(tmp_path, inventory=None) -> tuple[FastAPI, str]:
    db_file = tmp_path / "cart.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    settings = StorefrontSettings(
        app_name="Cart Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
        max_quantity=20,
    )
    return create_app(settings, inventory=inventory), database_url


def test_get_creates_empty_active_cart(tmp_path) -> None:
    app, _ = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/carts/guest-1", params={"sessionId": "session_1_abc"})
                assert response.status_code == 200
                payload = response.json()
                assert payload["id"] == "guest-1"
                assert payload["status"] == "active"
                assert payload["sessionId"] == "session_1_abc"
                assert payload["items"] == []
                assert payload["subtotal"] == "0.00"
                assert payload["expiresAt"] is not None

    _run(body())
    _run(dispose_engines())


def test_put_sets_absolute_quantity_idempotently(tmp_path) -> None:
    app, _ = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                line = {"quantity": 2, "unitPrice": "9.99"}
                first = await client.put("/carts/c1/items/A", params={"variantId": "red"}, json=line)
                second = await client.put("/carts/c1/items/A", params={"variantId": "red"}, json=line)
                assert first.status_code == 200
                assert second.status_code == 200
                assert first.json()["items"] == second.json()["items"]

                cart = second.json()
                assert len(cart["items"]) == 1
                assert cart["items"][0]["variantId"] == "red"
                assert cart["items"][0]["lineTotal"] == "19.98"
                assert cart["itemCount"] == 2

                plain = await client.put("/carts/c1/items/A", json={"quantity": 1, "unitPrice": "8.00"})
                assert len(plain.json()["items"]) == 2

                repriced = await client.put("/carts/c1/items/A", params={"variantId": "red"}, json={"quantity": 5})
                red = next(item for item in repriced.json()["items"] if item["variantId"] == "red")
                assert red["quantity"] == 5
                assert red["unitPrice"] == "9.99"

    _run(body())
    _run(dispose_engines())


def test_put_rejects_quantities_and_missing_prices(tmp_path) -> None:
    app, _ = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                too_many = await client.put("/carts/c2/items/A", json={"quantity": 21, "unitPrice": "1.00"})
                assert too_many.status_code == 422
                assert too_many.json()["detail"]["code"] == "QUANTITY_OUT_OF_RANGE"

                no_price = await client.put("/carts/c2/items/A", json={"quantity": 1})
                assert no_price.status_code == 422
                assert no_price.json()["detail"]["code"] == "PRICE_REQUIRED"

                zero = await client.put("/carts/c2/items/A", json={"quantity": 0, "unitPrice": "1.00"})
                assert zero.status_code == 422

    _run(body())
    _run(dispose_engines())


def test_put_beyond_inventory_returns_conflict(tmp_path) -> None:
    inventory = _StubInventory({("A", None): 2, ("SHOE", "43"): 0})
    app, _ = _run(_prepare_app(tmp_path, inventory=inventory))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                accepted = await client.put("/carts/c3/items/A", json={"quantity": 2, "unitPrice": "3.00"})
                assert accepted.status_code == 200

                conflict = await client.put("/carts/c3/items/A", json={"quantity": 3})
                assert conflict.status_code == 409
                detail = conflict.json()["detail"]
                assert detail["code"] == "INSUFFICIENT_INVENTORY"
                assert detail["available"] == 2

                sold_out = await client.put(
                    "/carts/c3/items/SHOE", params={"variantId": "43"}, json={"quantity": 1, "unitPrice": "65.00"}
                )
                assert sold_out.json()["detail"]["available"] == 0

                cart = await client.get("/carts/c3")
                assert [(item["productId"], item["quantity"]) for item in cart.json()["items"]] == [("A", 2)]

    _run(body())
    _run(dispose_engines())


def test_remove_clear_delete_and_totals(tmp_path) -> None:
    app, _ = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await client.put("/carts/c4/items/A", json={"quantity": 2, "unitPrice": "5.00"})
                await client.put("/carts/c4/items/B", json={"quantity": 1, "unitPrice": "3.25"})

                totals = await client.get("/carts/c4/totals")
                assert totals.status_code == 200
                assert totals.json() == {
                    "itemCount": 3,
                    "subtotal": "13.25",
                    "currency": "USD",
                    "formattedSubtotal": "$13.25",
                }

                removed = await client.delete("/carts/c4/items/A")
                removed_again = await client.delete("/carts/c4/items/A")
                assert removed.status_code == 200
                assert removed_again.json()["items"] == removed.json()["items"]
                assert removed.json()["subtotal"] == "3.25"

                cleared = await client.delete("/carts/c4/items")
                assert cleared.status_code == 200
                assert cleared.json()["items"] == []

                deleted = await client.delete("/carts/c4")
                assert deleted.status_code == 204
                assert (await client.delete("/carts/c4")).status_code == 204

                empty_totals = await client.get("/carts/missing/totals")
                assert empty_totals.json()["itemCount"] == 0

    _run(body())
    _run(dispose_engines())


def test_checkout_form_validation_endpoint(tmp_path) -> None:
    app, _ = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                valid = await client.post(
                    "/checkout/validate",
                    json={"formType": "contactInfo", "data": {"email": "Ada@Example.com", "phone": "+2348035550100"}},
                )
                assert valid.status_code == 200
                assert valid.json()["isValid"] is True
                assert valid.json()["data"]["email"] == "ada@example.com"

                invalid = await client.post(
                    "/checkout/validate",
                    json={"formType": "payment", "data": {"acceptTerms": False}},
                )
                assert invalid.json()["isValid"] is False
                assert invalid.json()["errors"][0]["field"] == "acceptTerms"

                unknown = await client.post("/checkout/validate", json={"formType": "loyalty", "data": {}})
                assert unknown.status_code == 422

    _run(body())
    _run(dispose_engines())


def test_sync_layer_replays_against_service(tmp_path) -> None:
    app, _ = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as http_client:
                store = CartStore("c5")
                layer = CartSyncLayer(store, ServerCartClient(http_client, "http://test"), debounce_seconds=60, online=False)
                store.add_item("A", quantity=2, unit_price="5.00")
                store.remove_item("A")
                store.add_item("B", quantity=1, unit_price="7.25")

                assert await layer.check_connectivity() is True
                await layer.close()

                cart = await http_client.get("/carts/c5")
                assert [item["productId"] for item in cart.json()["items"]] == ["B"]
                assert [item.product_id for item in store.get_snapshot().items] == ["B"]
                assert store.get_snapshot().subtotal == Decimal("7.25")

    _run(body())
    _run(dispose_engines())


def test_expire_stale_abandons_only_overdue_active_carts(tmp_path) -> None:
    _, database_url = _run(_prepare_app(tmp_path))
    created_at = datetime(2025, 1, 1, tzinfo=timezone.utc)

    async def body() -> list[str]:
        session_factory = get_session_factory(database_url)
        async with session_scope(session_factory) as session:
            repository = CartRepository(session, clock=lambda: created_at)
            await repository.get_or_create("old", currency="USD", ttl=timedelta(days=30))
            await repository.get_or_create("fresh", currency="USD", ttl=timedelta(days=90))
            converted = await repository.get_or_create("paid", currency="USD", ttl=timedelta(days=1))
            await repository.mark_converted(converted)

        now = created_at + timedelta(days=45)
        async with session_scope(session_factory) as session:
            expired = await CartRepository(session).expire_stale(now)
        async with session_scope(session_factory) as session:
            repository = CartRepository(session)
            assert (await repository.get("old")).status == "abandoned"
            assert (await repository.get("fresh")).status == "active"
            assert (await repository.get("paid")).status == "converted"
            assert await repository.expire_stale(now) == []
        return expired

    assert _run(body()) == ["old"]
    _run(dispose_engines())


def test_converted_cart_refuses_line_writes(tmp_path) -> None:
    app, database_url = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            async with session_scope(get_session_factory(database_url)) as session:
                repository = CartRepository(session)
                cart = await repository.get_or_create("ordered", currency="USD", ttl=timedelta(days=30))
                await repository.set_line(cart, product_id="A", variant_id=None, quantity=1, unit_price_cents=500)
                await repository.mark_converted(cart)

            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                write = await client.put("/carts/ordered/items/A", json={"quantity": 2})
                assert write.status_code == 409
                assert write.json()["detail"]["code"] == "CART_CLOSED"

                cleared = await client.delete("/carts/ordered/items")
                assert cleared.status_code == 409

                cart = await client.get("/carts/ordered")
                assert cart.json()["status"] == "converted"
                assert cart.json()["items"][0]["quantity"] == 1

    _run(body())
    _run(dispose_engines())


def test_sync_layer_handles_slashes_and_variants_in_line_keys(tmp_path) -> None:
    app, _ = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as http_client:
                store = CartStore("c6")
                layer = CartSyncLayer(store, ServerCartClient(http_client, "http://test"), debounce_seconds=60)
                store.add_item("shirt/xl", "navy blue", quantity=2, unit_price="20.00")
                store.add_item("B", quantity=1, unit_price="3.00")

                assert await layer.flush() is True
                assert layer.rejections == []

                cart = (await http_client.get("/carts/c6")).json()
                assert [(item["productId"], item["variantId"], item["quantity"]) for item in cart["items"]] == [
                    ("shirt/xl", "navy blue", 2),
                    ("B", None, 1),
                ]

                store.remove_item(("shirt/xl", "navy blue"))
                assert await layer.flush() is True
                await layer.close()

                cart = (await http_client.get("/carts/c6")).json()
                assert [item["productId"] for item in cart["items"]] == ["B"]

    _run(body())
    _run(dispose_engines())


def test_put_when_stock_cannot_be_read_is_retryable(tmp_path) -> None:
    app, _ = _run(_prepare_app(tmp_path, inventory=_OfflineInventory()))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.put("/carts/c7/items/A", json={"quantity": 1, "unitPrice": "2.00"})
                assert response.status_code == 503
                assert response.json()["detail"]["code"] == "INVENTORY_UNAVAILABLE"

                cart = await client.get("/carts/c7")
                assert cart.json()["items"] == []

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
