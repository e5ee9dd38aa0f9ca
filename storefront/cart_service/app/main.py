import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from storefront.cart.catalog import HttpCatalog
from storefront.common import (
    DEFAULT_APP_NAME,
    StorefrontSettings,
    build_app,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    get_settings,
    instrument_httpx,
    resolve_database_url,
)

from .api.carts import router as carts_router
from .api.checkout import router as checkout_router
from .api.health import router as health_router
from .inventory import CatalogInventory, InventoryLookup
from .models import Base

SERVICE_NAME = "Cart Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./cart_service.db"

_LOGGER = logging.getLogger(__name__)


def create_app(settings: StorefrontSettings | None = None, inventory: InventoryLookup | None = None) -> FastAPI:
    """Create the Cart Service FastAPI application.

    ``inventory`` is consulted before a line quantity is accepted. Without one,
    a catalog service configured in settings is used, and otherwise stock is
    not checked.
    """

    resolved_settings = settings or get_settings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await create_schema(database_url, Base.metadata)
        app.state.session_factory = session_factory
        catalog_client: httpx.AsyncClient | None = None
        app.state.inventory = inventory
        if inventory is None and resolved_settings.catalog_service_url:
            instrument_httpx(resolved_settings)
            catalog_client = httpx.AsyncClient(timeout=resolved_settings.sync_timeout_seconds)
            app.state.inventory = CatalogInventory(
                HttpCatalog(catalog_client, resolved_settings.catalog_service_url)
            )
            _LOGGER.info("Checking stock against %s", resolved_settings.catalog_service_url)
        try:
            yield
        finally:
            if catalog_client is not None:
                await catalog_client.aclose()
            await dispose_engines()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(carts_router)
    app.include_router(checkout_router)
    return app


app = create_app()
