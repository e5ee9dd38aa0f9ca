"""Maps raw checkout failures onto a single ``CheckoutError``.

The classifier is pure: it inspects the exception and returns a value, with
no logging, metrics or I/O. Rules are evaluated in priority order and the
first match wins; anything unrecognised is reported like a network failure
so the shopper can still retry or contact support.
"""

from __future__ import annotations

import asyncio
import json
from typing import Callable, cast

import httpx
from pydantic import ValidationError

from storefront.cart.errors import CartRejectedError, OutOfStockError, ProductUnavailableError, SyncError

from .errors import (
    CheckoutError,
    CheckoutValidationError,
    EmptyCartError,
    ErrorAction,
    FieldError,
    MalformedResponseError,
    PaymentDeclinedError,
    PaymentInProgressError,
    RecoveryAction,
    ServerFaultError,
    Severity,
    StockConflict,
    StockConflictError,
)

_RETRY_PAYMENT = ErrorAction(label="Try Again", action=RecoveryAction.RETRY_PAYMENT, variant="primary")
_DIFFERENT_METHOD = ErrorAction(
    label="Use a Different Payment Method", action=RecoveryAction.USE_DIFFERENT_METHOD, variant="secondary"
)
_EDIT_CART = ErrorAction(label="Review Cart", action=RecoveryAction.EDIT_CART, variant="primary")
_REMOVE_UNAVAILABLE = ErrorAction(
    label="Remove Unavailable Items", action=RecoveryAction.REMOVE_UNAVAILABLE_ITEMS, variant="secondary"
)
_EDIT_FORM = ErrorAction(label="Review Your Details", action=RecoveryAction.EDIT_FORM, variant="primary")
_RETRY = ErrorAction(label="Try Again", action=RecoveryAction.RETRY, variant="primary")
_CONTACT_SUPPORT = ErrorAction(label="Contact Support", action=RecoveryAction.CONTACT_SUPPORT, variant="secondary")
_CHECK_ORDER = ErrorAction(label="Check Order Status", action=RecoveryAction.CHECK_ORDER, variant="primary")

_INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"

# title, message, reasons
_DECLINE_COPY: dict[str, tuple[str, str, tuple[str, ...] | None]] = {
    "card_declined": (
        "Card Declined",
        "Your card was declined by your bank. This could be due to:",
        (
            "Insufficient funds in your account",
            "Card expired or invalid",
            "Bank security restrictions",
            "Daily spending limit reached",
            "Card not activated for online purchases",
        ),
    ),
    "generic_decline": (
        "Card Declined",
        "Your card was declined. This could be due to various reasons:",
        (
            "Insufficient funds",
            "Card restrictions",
            "Bank security measures",
            "Invalid card details",
        ),
    ),
    "insufficient_funds": (
        "Card Declined",
        "Your card has insufficient funds for this purchase.",
        None,
    ),
    "expired_card": (
        "Card Expired",
        "The card you entered has expired. Please use a different card.",
        None,
    ),
    "incorrect_cvc": (
        "Invalid Security Code",
        "The security code (CVC) you entered is incorrect. Please check the 3-digit code on the back of your card.",
        None,
    ),
    "incorrect_number": (
        "Invalid Card Number",
        "The card number you entered is invalid. Please check and try again.",
        None,
    ),
    "processing_error": (
        "Payment Processing Error",
        "We encountered a temporary issue processing your payment. This is usually resolved quickly.",
        None,
    ),
    "authentication_required": (
        "Additional Authentication Required",
        "Your bank requires additional verification. Please complete the authentication and try again.",
        None,
    ),
}


def _payment_declined(error: BaseException) -> CheckoutError:
    decline = cast(PaymentDeclinedError, error)
    code = decline.decline_code if decline.decline_code in _DECLINE_COPY else decline.code
    title, message, reasons = _DECLINE_COPY.get(
        code,
        (
            "Payment Failed",
            decline.gateway_message or "An unexpected error occurred while processing your payment.",
            None,
        ),
    )
    return CheckoutError(
        severity=Severity.ERROR,
        title=title,
        message=message,
        reasons=reasons,
        actions=(_RETRY_PAYMENT, _DIFFERENT_METHOD),
    )


def _conflicts_of(error: BaseException) -> tuple[StockConflict, ...]:
    if isinstance(error, StockConflictError):
        return error.conflicts
    if isinstance(error, OutOfStockError):
        return (
            StockConflict(
                product_id=error.product_id,
                variant_id=error.variant_id,
                requested=error.requested,
                available=error.available,
            ),
        )
    if isinstance(error, ProductUnavailableError):
        return (StockConflict(product_id=error.product_id, variant_id=error.variant_id, requested=0, available=0),)
    return ()


def _describe_conflict(conflict: StockConflict) -> str:
    if conflict.available <= 0:
        return f"{conflict.label} is out of stock"
    return f"{conflict.label}: only {conflict.available} available, {conflict.requested} in cart"


def _stock_conflict(error: BaseException) -> CheckoutError:
    conflicts = _conflicts_of(error)
    reasons = tuple(_describe_conflict(conflict) for conflict in conflicts)
    if not reasons:
        reasons = (str(error),)
    return CheckoutError(
        severity=Severity.WARNING,
        title="Some Items Are No Longer Available",
        message="Stock changed since you added these items. Please review your cart before paying.",
        reasons=reasons,
        actions=(_EDIT_CART, _REMOVE_UNAVAILABLE),
    )


def _field_errors_of(error: BaseException) -> tuple[FieldError, ...]:
    if isinstance(error, CheckoutValidationError):
        return error.field_errors
    if isinstance(error, ValidationError):
        return tuple(
            FieldError(
                field=".".join(str(part) for part in entry["loc"]) or "form",
                message=entry["msg"],
                code=entry["type"],
            )
            for entry in error.errors()
        )
    return ()


def _validation_failure(error: BaseException) -> CheckoutError:
    reasons = tuple(f"{field_error.field}: {field_error.message}" for field_error in _field_errors_of(error))
    return CheckoutError(
        severity=Severity.WARNING,
        title="Please Check Your Details",
        message="Some of the information you entered needs attention.",
        reasons=reasons or None,
        actions=(_EDIT_FORM,),
    )


def _network_failure(error: BaseException) -> CheckoutError:
    return CheckoutError(
        severity=Severity.ERROR,
        title="Connection Problem",
        message="We couldn't reach our servers. Your cart is safe; please try again.",
        actions=(_RETRY, _CONTACT_SUPPORT),
    )


def _server_fault(error: BaseException) -> CheckoutError:
    return CheckoutError(
        severity=Severity.FATAL,
        title="Something Went Wrong",
        message="We hit an unexpected problem on our side and could not complete your order.",
        actions=(_CONTACT_SUPPORT,),
    )


def _empty_cart(error: BaseException) -> CheckoutError:
    return CheckoutError(
        severity=Severity.WARNING,
        title="Your Cart Is Empty",
        message="Add at least one item to your cart before checking out.",
        actions=(_EDIT_CART,),
    )


def _payment_in_progress(error: BaseException) -> CheckoutError:
    return CheckoutError(
        severity=Severity.INFO,
        title="Payment In Progress",
        message="We are still confirming your payment. Please wait for it to finish before trying again.",
        actions=(_CHECK_ORDER,),
    )


def _is_payment_decline(error: BaseException) -> bool:
    return isinstance(error, PaymentDeclinedError)


def _is_stock_conflict(error: BaseException) -> bool:
    if isinstance(error, (StockConflictError, OutOfStockError, ProductUnavailableError)):
        return True
    return isinstance(error, CartRejectedError) and error.code == _INSUFFICIENT_INVENTORY


def _is_validation_failure(error: BaseException) -> bool:
    return isinstance(error, (CheckoutValidationError, ValidationError))


def _is_network_failure(error: BaseException) -> bool:
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    return isinstance(error, SyncError) and error.status_code is None


def _status_of(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, (ServerFaultError, SyncError)):
        return error.status_code
    return None


def _is_server_fault(error: BaseException) -> bool:
    if isinstance(error, (MalformedResponseError, json.JSONDecodeError)):
        return True
    status = _status_of(error)
    if status is not None and status >= 500:
        return True
    # A sync error carrying a success status means the body could not be parsed.
    return isinstance(error, SyncError) and error.status_code is not None and error.status_code < 400


_RULES: tuple[tuple[Callable[[BaseException], bool], Callable[[BaseException], CheckoutError]], ...] = (
    (lambda error: isinstance(error, PaymentInProgressError), _payment_in_progress),
    (lambda error: isinstance(error, EmptyCartError), _empty_cart),
    (_is_payment_decline, _payment_declined),
    (_is_stock_conflict, _stock_conflict),
    (_is_validation_failure, _validation_failure),
    (_is_network_failure, _network_failure),
    (_is_server_fault, _server_fault),
)


def classify_checkout_error(error: BaseException) -> CheckoutError:
    """Return the one ``CheckoutError`` describing ``error``."""

    for matches, build in _RULES:
        if matches(error):
            return build(error)
    return _network_failure(error)
