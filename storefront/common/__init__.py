"""Shared infrastructure for the storefront cart engine and cart service."""

from .config import DEFAULT_APP_NAME, StorefrontSettings, get_settings
from .instrumentation import build_app, instrument_app
from .logging import configure_logging
from .database import (
    Database,
    create_engine,
    create_schema,
    dispose_engines,
    get_database,
    get_session_factory,
    session_scope,
    resolve_database_url,
)
from .cache import close_redis_connections, get_redis_client, resolve_redis
from .tracing import cart_span, get_tracer, instrument_httpx

__all__ = [
    "StorefrontSettings",
    "get_settings",
    "build_app",
    "instrument_app",
    "configure_logging",
    "DEFAULT_APP_NAME",
    "Database",
    "create_engine",
    "create_schema",
    "dispose_engines",
    "get_database",
    "get_session_factory",
    "session_scope",
    "resolve_database_url",
    "get_redis_client",
    "resolve_redis",
    "close_redis_connections",
    "cart_span",
    "get_tracer",
    "instrument_httpx",
]
