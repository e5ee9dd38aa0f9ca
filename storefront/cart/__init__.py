"""Cart engine: local-first cart store, server sync and pricing helpers."""

from .catalog import Catalog, HttpCatalog, InMemoryCatalog, ProductInfo, VariantInfo
from .channel import Channel
from .client import ServerCartClient
from .errors import (
    CartError,
    CartRejectedError,
    InvalidQuantityError,
    OutOfStockError,
    ProductUnavailableError,
    SyncError,
    UnsupportedCurrencyError,
)
from .models import Cart, CartItem, CartMutation, LineKey, line_key
from .order_numbers import generate_order_number
from .pricing import (
    clamp_quantity,
    format_price,
    format_price_range,
    from_minor_units,
    to_minor_units,
)
from .session import GuestCartStorage, new_session_id
from .store import CartStore
from .sync import CartSyncLayer

__all__ = [
    "Cart",
    "CartError",
    "CartItem",
    "CartMutation",
    "CartRejectedError",
    "CartStore",
    "CartSyncLayer",
    "Catalog",
    "Channel",
    "GuestCartStorage",
    "HttpCatalog",
    "InMemoryCatalog",
    "InvalidQuantityError",
    "LineKey",
    "OutOfStockError",
    "ProductInfo",
    "ProductUnavailableError",
    "ServerCartClient",
    "SyncError",
    "UnsupportedCurrencyError",
    "VariantInfo",
    "clamp_quantity",
    "format_price",
    "format_price_range",
    "from_minor_units",
    "generate_order_number",
    "line_key",
    "new_session_id",
    "to_minor_units",
]
