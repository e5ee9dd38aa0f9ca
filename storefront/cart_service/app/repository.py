"""Data access helpers for the cart service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.cart.pricing import from_minor_units

from .models import CartLine, CartRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CartClosedError(Exception):
    """Raised when writing to a cart that has already been converted into an order."""

    def __init__(self, cart_id: str) -> None:
        super().__init__(f"cart {cart_id} is closed")
        self.cart_id = cart_id


class CartRepository:
    """Persistence helpers for server carts.

    Line writes carry absolute quantities, so repeating a call leaves the
    cart unchanged.
    """

    def __init__(self, session: AsyncSession, *, clock: Callable[[], datetime] | None = None) -> None:
        self.session = session
        self._clock = clock or _utcnow

    async def get(self, cart_id: str) -> CartRecord | None:
        result = await self.session.execute(
            select(CartRecord).options(selectinload(CartRecord.lines)).where(CartRecord.id == cart_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        cart_id: str,
        *,
        currency: str,
        ttl: timedelta,
        customer_id: str | None = None,
        session_id: str | None = None,
    ) -> CartRecord:
        """Return the cart, creating an empty active one or reviving an abandoned one."""

        now = self._clock()
        cart = await self.get(cart_id)
        if cart is None:
            cart = CartRecord(
                id=cart_id,
                customer_id=customer_id,
                session_id=session_id,
                currency=currency.upper(),
                status="active",
                expires_at=now + ttl,
                created_at=now,
                updated_at=now,
                lines=[],
            )
            self.session.add(cart)
            await self.session.flush()
            return cart

        if customer_id and cart.customer_id is None:
            cart.customer_id = customer_id
        if cart.status == "abandoned":
            cart.status = "active"
        if cart.status == "active":
            cart.expires_at = now + ttl
        cart.updated_at = now
        await self.session.flush()
        return cart

    def find_line(self, cart: CartRecord, *, product_id: str, variant_id: str | None) -> CartLine | None:
        wanted = variant_id or ""
        return next(
            (line for line in cart.lines if line.product_id == product_id and line.variant_id == wanted),
            None,
        )

    async def set_line(
        self,
        cart: CartRecord,
        *,
        product_id: str,
        variant_id: str | None,
        quantity: int,
        unit_price_cents: int | None,
    ) -> CartRecord:
        """Set a line to an absolute quantity; a missing price keeps the stored one."""

        self._ensure_open(cart)
        now = self._clock()
        line = self.find_line(cart, product_id=product_id, variant_id=variant_id)
        if line is None:
            if unit_price_cents is None:
                msg = f"unit price is required for new line {product_id}"
                raise ValueError(msg)
            cart.lines.append(
                CartLine(
                    product_id=product_id,
                    variant_id=variant_id or "",
                    quantity=quantity,
                    unit_price_cents=unit_price_cents,
                    added_at=now,
                    updated_at=now,
                )
            )
        elif line.quantity != quantity or (unit_price_cents is not None and line.unit_price_cents != unit_price_cents):
            line.quantity = quantity
            if unit_price_cents is not None:
                line.unit_price_cents = unit_price_cents
            line.updated_at = now
        cart.updated_at = now
        await self.session.flush()
        return cart

    async def remove_line(self, cart: CartRecord, *, product_id: str, variant_id: str | None) -> CartRecord:
        self._ensure_open(cart)
        line = self.find_line(cart, product_id=product_id, variant_id=variant_id)
        if line is not None:
            cart.lines.remove(line)
            cart.updated_at = self._clock()
            await self.session.flush()
        return cart

    async def clear(self, cart: CartRecord) -> CartRecord:
        self._ensure_open(cart)
        if cart.lines:
            cart.lines.clear()
            cart.updated_at = self._clock()
            await self.session.flush()
        return cart

    async def delete(self, cart: CartRecord) -> None:
        await self.session.delete(cart)
        await self.session.flush()

    async def mark_converted(self, cart: CartRecord) -> CartRecord:
        cart.status = "converted"
        cart.expires_at = None
        cart.updated_at = self._clock()
        await self.session.flush()
        return cart

    def totals(self, cart: CartRecord) -> tuple[int, Decimal]:
        item_count = sum(line.quantity for line in cart.lines)
        subtotal_minor = sum(line.unit_price_cents * line.quantity for line in cart.lines)
        return item_count, from_minor_units(subtotal_minor, cart.currency)

    async def stale_cart_ids(self, now: datetime) -> list[str]:
        cutoff = now.astimezone(timezone.utc)
        result = await self.session.execute(
            select(CartRecord.id)
            .where(CartRecord.status == "active")
            .where(CartRecord.expires_at.is_not(None))
            .where(CartRecord.expires_at < cutoff)
            .order_by(CartRecord.id)
        )
        return list(result.scalars())

    async def expire_stale(self, now: datetime) -> list[str]:
        """Mark active carts whose expiry has passed as abandoned; returns their ids."""

        cart_ids = await self.stale_cart_ids(now)
        if cart_ids:
            await self.session.execute(
                update(CartRecord)
                .where(CartRecord.id.in_(cart_ids))
                .values(status="abandoned", updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.session.flush()
        return cart_ids

    @staticmethod
    def _ensure_open(cart: CartRecord) -> None:
        if cart.status == "converted":
            raise CartClosedError(cart.id)
