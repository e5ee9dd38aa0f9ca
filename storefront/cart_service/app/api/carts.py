"""API routes for server cart persistence."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status

from storefront.cart.errors import UnsupportedCurrencyError
from storefront.cart.pricing import format_price, from_minor_units, to_minor_units
from storefront.common import StorefrontSettings

from ..dependencies import get_inventory, get_repository, get_settings_from_app
from ..inventory import InventoryLookup, InventoryUnavailableError
from ..models import CartRecord
from ..repository import CartClosedError, CartRepository
from ..schemas import CartLineWrite, CartResponse, CartTotalsResponse

_LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/carts", tags=["carts"])


def _aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _serialize_cart(cart: CartRecord, totals: tuple[int, Decimal]) -> dict[str, object]:
    item_count, subtotal = totals
    return {
        "id": cart.id,
        "customerId": cart.customer_id,
        "sessionId": cart.session_id,
        "currency": cart.currency,
        "status": cart.status,
        "items": [
            {
                "productId": line.product_id,
                "variantId": line.variant_id or None,
                "quantity": line.quantity,
                "unitPrice": from_minor_units(line.unit_price_cents, cart.currency),
                "lineTotal": from_minor_units(line.unit_price_cents * line.quantity, cart.currency),
                "addedAt": _aware(line.added_at),
                "updatedAt": _aware(line.updated_at),
            }
            for line in cart.lines
        ],
        "itemCount": item_count,
        "subtotal": subtotal,
        "expiresAt": _aware(cart.expires_at),
        "createdAt": _aware(cart.created_at),
        "updatedAt": _aware(cart.updated_at),
    }


def _rejection(status_code: int, code: str, message: str, **extra: object) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message, **extra})


async def _load_cart(
    repository: CartRepository,
    settings: StorefrontSettings,
    cart_id: str,
    *,
    customer_id: str | None = None,
    session_id: str | None = None,
) -> CartRecord:
    return await repository.get_or_create(
        cart_id,
        currency=settings.default_currency,
        ttl=settings.guest_cart_ttl,
        customer_id=customer_id,
        session_id=session_id,
    )


@router.get("/{cart_id}", response_model=CartResponse)
async def get_cart(
    cart_id: str = Path(..., min_length=1, max_length=64),
    customer_id: str | None = Query(default=None, alias="customerId", max_length=64),
    session_id: str | None = Query(default=None, alias="sessionId", max_length=64),
    repository: CartRepository = Depends(get_repository),
    settings: StorefrontSettings = Depends(get_settings_from_app),
) -> CartResponse:
    cart = await _load_cart(repository, settings, cart_id, customer_id=customer_id, session_id=session_id)
    return CartResponse.model_validate(_serialize_cart(cart, repository.totals(cart)))


@router.put("/{cart_id}/items/{product_id:path}", response_model=CartResponse)
async def set_line(
    payload: CartLineWrite,
    cart_id: str = Path(..., min_length=1, max_length=64),
    product_id: str = Path(..., min_length=1, max_length=64),
    variant_id: str | None = Query(default=None, alias="variantId", max_length=64),
    repository: CartRepository = Depends(get_repository),
    settings: StorefrontSettings = Depends(get_settings_from_app),
    inventory: InventoryLookup | None = Depends(get_inventory),
) -> CartResponse:
    if not settings.min_quantity <= payload.quantity <= settings.max_quantity:
        raise _rejection(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "QUANTITY_OUT_OF_RANGE",
            f"quantity must be between {settings.min_quantity} and {settings.max_quantity}",
        )
    if payload.unit_price is not None and payload.unit_price > settings.max_line_price:
        raise _rejection(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "PRICE_OUT_OF_RANGE",
            f"unit price must not exceed {settings.max_line_price}",
        )
    if inventory is not None:
        try:
            available = await inventory.available(product_id, variant_id)
        except InventoryUnavailableError as exc:
            raise _rejection(status.HTTP_503_SERVICE_UNAVAILABLE, "INVENTORY_UNAVAILABLE", str(exc)) from exc
        if available is not None and available < payload.quantity:
            _LOGGER.info(
                "Rejected %s x%s for cart %s: %s in stock",
                product_id,
                payload.quantity,
                cart_id,
                available,
            )
            raise _rejection(
                status.HTTP_409_CONFLICT,
                "INSUFFICIENT_INVENTORY",
                f"only {max(available, 0)} units of {product_id} are available",
                available=max(available, 0),
            )

    cart = await _load_cart(repository, settings, cart_id)
    try:
        unit_price_cents = (
            to_minor_units(payload.unit_price, cart.currency) if payload.unit_price is not None else None
        )
        cart = await repository.set_line(
            cart,
            product_id=product_id,
            variant_id=variant_id,
            quantity=payload.quantity,
            unit_price_cents=unit_price_cents,
        )
    except CartClosedError as exc:
        raise _rejection(status.HTTP_409_CONFLICT, "CART_CLOSED", str(exc)) from exc
    except UnsupportedCurrencyError as exc:
        raise _rejection(status.HTTP_422_UNPROCESSABLE_ENTITY, "UNSUPPORTED_CURRENCY", str(exc)) from exc
    except ValueError as exc:
        raise _rejection(status.HTTP_422_UNPROCESSABLE_ENTITY, "PRICE_REQUIRED", str(exc)) from exc
    return CartResponse.model_validate(_serialize_cart(cart, repository.totals(cart)))


@router.delete("/{cart_id}/items/{product_id:path}", response_model=CartResponse)
async def remove_line(
    cart_id: str = Path(..., min_length=1, max_length=64),
    product_id: str = Path(..., min_length=1, max_length=64),
    variant_id: str | None = Query(default=None, alias="variantId", max_length=64),
    repository: CartRepository = Depends(get_repository),
    settings: StorefrontSettings = Depends(get_settings_from_app),
) -> CartResponse:
    cart = await _load_cart(repository, settings, cart_id)
    try:
        cart = await repository.remove_line(cart, product_id=product_id, variant_id=variant_id)
    except CartClosedError as exc:
        raise _rejection(status.HTTP_409_CONFLICT, "CART_CLOSED", str(exc)) from exc
    return CartResponse.model_validate(_serialize_cart(cart, repository.totals(cart)))


@router.delete("/{cart_id}/items", response_model=CartResponse)
async def clear_cart(
    cart_id: str = Path(..., min_length=1, max_length=64),
    repository: CartRepository = Depends(get_repository),
    settings: StorefrontSettings = Depends(get_settings_from_app),
) -> CartResponse:
    cart = await _load_cart(repository, settings, cart_id)
    try:
        cart = await repository.clear(cart)
    except CartClosedError as exc:
        raise _rejection(status.HTTP_409_CONFLICT, "CART_CLOSED", str(exc)) from exc
    return CartResponse.model_validate(_serialize_cart(cart, repository.totals(cart)))


@router.delete("/{cart_id}")
async def delete_cart(
    cart_id: str = Path(..., min_length=1, max_length=64),
    repository: CartRepository = Depends(get_repository),
) -> Response:
    cart = await repository.get(cart_id)
    if cart is not None:
        await repository.delete(cart)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{cart_id}/totals", response_model=CartTotalsResponse)
async def get_cart_totals(
    cart_id: str = Path(..., min_length=1, max_length=64),
    repository: CartRepository = Depends(get_repository),
    settings: StorefrontSettings = Depends(get_settings_from_app),
) -> CartTotalsResponse:
    cart = await repository.get(cart_id)
    currency = cart.currency if cart is not None else settings.default_currency
    item_count, subtotal = repository.totals(cart) if cart is not None else (0, from_minor_units(0, currency))
    return CartTotalsResponse.model_validate(
        {
            "itemCount": item_count,
            "subtotal": subtotal,
            "currency": currency,
            "formattedSubtotal": format_price(subtotal, currency, settings.default_locale),
        }
    )
