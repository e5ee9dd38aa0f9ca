"""Drives one checkout attempt from cart snapshot to order number."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import partial
from typing import Any, Mapping, Protocol

from pydantic import BaseModel, ValidationError

from storefront.cart.catalog import Catalog, HttpCatalog
from storefront.cart.models import Cart
from storefront.cart.order_numbers import generate_order_number
from storefront.cart.pricing import to_minor_units
from storefront.cart.store import CartStore
from storefront.common.config import StorefrontSettings
from storefront.common.tracing import cart_span

from .classifier import classify_checkout_error
from .errors import (
    CheckoutError,
    CheckoutValidationError,
    EmptyCartError,
    FieldError,
    PaymentInProgressError,
    StockConflict,
    StockConflictError,
)
from .metrics import CHECKOUT_ATTEMPTS_TOTAL, CHECKOUT_ERRORS_TOTAL, CHECKOUT_PAYMENTS_IN_FLIGHT
from .validation import BillingInfo, ContactInfo, ShippingInfo, field_errors_from

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PaymentHandle:
    reference: str
    client_secret: str | None = None


@dataclass(frozen=True, slots=True)
class PaymentConfirmation:
    reference: str
    status: str = "succeeded"


class PaymentGateway(Protocol):
    async def create_payment(self, *, amount: int, currency: str, metadata: Mapping[str, str]) -> PaymentHandle:
        ...

    async def confirm_payment(self, handle: PaymentHandle) -> PaymentConfirmation:
        ...


@dataclass(frozen=True, slots=True)
class CheckoutOutcome:
    cart_id: str
    order_number: str | None = None
    amount: int | None = None
    currency: str | None = None
    payment_reference: str | None = None
    error: CheckoutError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.order_number is not None


FormInput = BaseModel | Mapping[str, Any]


def _validate_forms(contact: FormInput, shipping: FormInput, billing: FormInput | None) -> None:
    forms: list[tuple[str, type[BaseModel], FormInput]] = [
        ("contactInfo", ContactInfo, contact),
        ("shippingInfo", ShippingInfo, shipping),
    ]
    if billing is not None:
        forms.append(("billingInfo", BillingInfo, billing))

    errors: list[FieldError] = []
    for form_type, schema, data in forms:
        if isinstance(data, schema):
            continue
        try:
            schema.model_validate(data)
        except ValidationError as exc:
            errors.extend(
                FieldError(field=f"{form_type}.{entry.field}", message=entry.message, code=entry.code)
                for entry in field_errors_from(exc)
            )
    if errors:
        raise CheckoutValidationError(errors)


class CheckoutFlow:
    """Places an order for the cart held by ``store``.

    At most one payment confirmation runs per flow. A confirmation keeps
    running if the caller is cancelled; its outcome is recorded on
    ``last_outcome`` and the cart is only cleared once payment succeeds.
    Every failure path leaves the cart exactly as it was.
    """

    def __init__(
        self,
        store: CartStore,
        gateway: PaymentGateway,
        *,
        catalog: Catalog | None = None,
        order_prefix: str = "AFM",
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._catalog = catalog
        self._order_prefix = order_prefix
        self._rng = rng
        self._in_flight = False
        self._confirmation: asyncio.Future[PaymentConfirmation] | None = None
        self.last_outcome: CheckoutOutcome | None = None

    @classmethod
    def from_settings(
        cls,
        store: CartStore,
        gateway: PaymentGateway,
        settings: StorefrontSettings,
        *,
        catalog: Catalog | None = None,
    ) -> CheckoutFlow:
        return cls(store, gateway, catalog=catalog, order_prefix=settings.order_number_prefix)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def place_order(
        self,
        contact: FormInput,
        shipping: FormInput,
        billing: FormInput | None = None,
    ) -> CheckoutOutcome:
        cart_id = self._store.cart_id
        if self._in_flight:
            return self._fail(cart_id, PaymentInProgressError())

        self._in_flight = True
        try:
            with cart_span("checkout.place_order", id=cart_id):
                outcome = await self._run(contact, shipping, billing)
        except Exception as exc:
            outcome = self._fail(cart_id, exc)
        finally:
            if self._confirmation is None or self._confirmation.done():
                self._settle()
        self.last_outcome = outcome
        return outcome

    def abandon(self) -> bool:
        """Leave checkout without touching the cart; refused while payment is confirming."""

        if self._in_flight:
            _LOGGER.info("Refusing to abandon checkout for cart %s while payment is in flight", self._store.cart_id)
            return False
        return True

    async def wait_for_confirmation(self) -> CheckoutOutcome | None:
        """Wait for a confirmation that outlived its caller and return the recorded outcome."""

        confirmation = self._confirmation
        if confirmation is not None and not confirmation.done():
            await asyncio.wait({confirmation})
            # Let the completion callback record the outcome.
            await asyncio.sleep(0)
        return self.last_outcome

    async def _run(self, contact: FormInput, shipping: FormInput, billing: FormInput | None) -> CheckoutOutcome:
        cart = self._store.get_snapshot()
        if cart.is_empty:
            raise EmptyCartError()
        _validate_forms(contact, shipping, billing)
        await self._check_stock(cart)

        amount = to_minor_units(cart.subtotal, cart.currency)
        handle = await self._gateway.create_payment(
            amount=amount,
            currency=cart.currency,
            metadata={"cartId": cart.id, "itemCount": str(cart.item_count)},
        )

        confirmation = asyncio.ensure_future(self._gateway.confirm_payment(handle))
        self._confirmation = confirmation
        CHECKOUT_PAYMENTS_IN_FLIGHT.inc()
        try:
            confirmed = await asyncio.shield(confirmation)
        except asyncio.CancelledError:
            if not confirmation.done():
                _LOGGER.warning("Checkout for cart %s cancelled while payment %s confirms", cart.id, handle.reference)
                confirmation.add_done_callback(partial(self._on_detached_confirmation, cart, amount))
            else:
                CHECKOUT_PAYMENTS_IN_FLIGHT.dec()
            raise
        except BaseException:
            CHECKOUT_PAYMENTS_IN_FLIGHT.dec()
            raise
        CHECKOUT_PAYMENTS_IN_FLIGHT.dec()
        return self._complete(cart, amount, confirmed)

    async def _check_stock(self, cart: Cart) -> None:
        if self._catalog is None:
            return
        if isinstance(self._catalog, HttpCatalog):
            await self._catalog.refresh({item.product_id for item in cart.items})

        conflicts: list[StockConflict] = []
        for item in cart.items:
            product = self._catalog.get_product(item.product_id)
            if product is None:
                continue
            available = product.stock_for(item.variant_id)
            if product.variants and item.variant_id is not None and product.variant(item.variant_id) is None:
                available = 0
            if available is not None and available < item.quantity:
                conflicts.append(
                    StockConflict(
                        product_id=item.product_id,
                        variant_id=item.variant_id,
                        requested=item.quantity,
                        available=max(available, 0),
                        name=product.name,
                    )
                )
        if conflicts:
            raise StockConflictError(conflicts)

    def _complete(self, cart: Cart, amount: int, confirmed: PaymentConfirmation) -> CheckoutOutcome:
        order_number = generate_order_number(rng=self._rng, prefix=self._order_prefix)
        self._store.clear()
        CHECKOUT_ATTEMPTS_TOTAL.labels(outcome="succeeded").inc()
        _LOGGER.info(
            "Placed order %s for cart %s (%s %s, payment %s)",
            order_number,
            cart.id,
            amount,
            cart.currency,
            confirmed.reference,
        )
        return CheckoutOutcome(
            cart_id=cart.id,
            order_number=order_number,
            amount=amount,
            currency=cart.currency,
            payment_reference=confirmed.reference,
        )

    def _fail(self, cart_id: str, exc: BaseException) -> CheckoutOutcome:
        error = classify_checkout_error(exc)
        CHECKOUT_ATTEMPTS_TOTAL.labels(outcome="failed").inc()
        CHECKOUT_ERRORS_TOTAL.labels(severity=error.severity.value).inc()
        _LOGGER.warning(
            "Checkout for cart %s failed: %s (%s)",
            cart_id,
            error.title,
            type(exc).__name__,
        )
        return CheckoutOutcome(cart_id=cart_id, error=error)

    def _settle(self) -> None:
        self._in_flight = False
        self._confirmation = None

    def _on_detached_confirmation(self, cart: Cart, amount: int, future: asyncio.Future[PaymentConfirmation]) -> None:
        CHECKOUT_PAYMENTS_IN_FLIGHT.dec()
        try:
            if future.cancelled():
                self.last_outcome = self._fail(cart.id, asyncio.CancelledError())
            elif future.exception() is not None:
                self.last_outcome = self._fail(cart.id, future.exception())
            else:
                self.last_outcome = self._complete(cart, amount, future.result())
        finally:
            self._settle()
