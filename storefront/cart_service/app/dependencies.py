"""Dependency helpers for the cart service."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.common import StorefrontSettings, session_scope

from .inventory import InventoryLookup
from .repository import CartRepository


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an AsyncSession for the current request."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with session_scope(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> CartRepository:
    """Return a repository bound to the current session."""

    return CartRepository(session)


def get_settings_from_app(request: Request) -> StorefrontSettings:
    return request.app.state.settings


def get_inventory(request: Request) -> InventoryLookup | None:
    return getattr(request.app.state, "inventory", None)
