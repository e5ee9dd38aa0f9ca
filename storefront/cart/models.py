"""Immutable cart values shared by the store, the sync layer and checkout."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, NamedTuple

_CENTS = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return _utcnow()


class LineKey(NamedTuple):
    product_id: str
    variant_id: str | None = None

    def __str__(self) -> str:
        if self.variant_id is None:
            return self.product_id
        return f"{self.product_id}/{self.variant_id}"


def line_key(product_id: str, variant_id: str | None = None) -> LineKey:
    """Build a line key, treating an empty variant id as no variant."""

    return LineKey(product_id, variant_id or None)


@dataclass(frozen=True, slots=True)
class CartItem:
    product_id: str
    quantity: int
    unit_price: Decimal
    variant_id: str | None = None
    added_at: datetime = field(default_factory=_utcnow)

    @property
    def key(self) -> LineKey:
        return LineKey(self.product_id, self.variant_id)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_payload(self) -> dict[str, Any]:
        return {
            "productId": self.product_id,
            "variantId": self.variant_id,
            "quantity": self.quantity,
            "unitPrice": str(self.unit_price.quantize(_CENTS)),
            "lineTotal": str(self.line_total.quantize(_CENTS)),
            "addedAt": _iso(self.added_at),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CartItem:
        return cls(
            product_id=str(payload["productId"]),
            variant_id=payload.get("variantId") or None,
            quantity=int(payload["quantity"]),
            unit_price=Decimal(str(payload["unitPrice"])),
            added_at=_parse_datetime(payload.get("addedAt")),
        )


@dataclass(frozen=True, slots=True)
class Cart:
    """Read-only snapshot of a cart; totals are always derived from ``items``."""

    id: str
    items: tuple[CartItem, ...] = ()
    currency: str = "USD"
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    @property
    def is_empty(self) -> bool:
        return not self.items

    def get(self, key: LineKey) -> CartItem | None:
        return next((item for item in self.items if item.key == key), None)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "currency": self.currency,
            "items": [item.to_payload() for item in self.items],
            "itemCount": self.item_count,
            "subtotal": str(self.subtotal.quantize(_CENTS)),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Cart:
        return cls(
            id=str(payload["id"]),
            items=tuple(CartItem.from_payload(entry) for entry in payload.get("items") or []),
            currency=str(payload.get("currency") or "USD"),
            updated_at=_parse_datetime(payload.get("updatedAt")),
        )


MutationKind = Literal["set", "remove", "clear"]


@dataclass(frozen=True, slots=True)
class CartMutation:
    """A queued server write carrying the intended absolute line quantity."""

    kind: MutationKind
    cart_id: str
    sequence: int
    product_id: str | None = None
    variant_id: str | None = None
    quantity: int | None = None
    unit_price: Decimal | None = None

    @property
    def key(self) -> LineKey | None:
        if self.product_id is None:
            return None
        return LineKey(self.product_id, self.variant_id)
