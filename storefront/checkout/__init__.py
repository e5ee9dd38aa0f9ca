"""Checkout flow, form validation and shopper-facing error classification."""

from .classifier import classify_checkout_error
from .errors import (
    CheckoutError,
    CheckoutFailure,
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
from .flow import CheckoutFlow, CheckoutOutcome, PaymentConfirmation, PaymentGateway, PaymentHandle
from .validation import (
    Address,
    BillingInfo,
    ContactInfo,
    FormValidationResult,
    PaymentConsent,
    ShippingInfo,
    validate_form,
)

__all__ = [
    "Address",
    "BillingInfo",
    "CheckoutError",
    "CheckoutFailure",
    "CheckoutFlow",
    "CheckoutOutcome",
    "CheckoutValidationError",
    "ContactInfo",
    "EmptyCartError",
    "ErrorAction",
    "FieldError",
    "FormValidationResult",
    "MalformedResponseError",
    "PaymentConfirmation",
    "PaymentConsent",
    "PaymentDeclinedError",
    "PaymentGateway",
    "PaymentHandle",
    "PaymentInProgressError",
    "RecoveryAction",
    "ServerFaultError",
    "Severity",
    "ShippingInfo",
    "StockConflict",
    "StockConflictError",
    "classify_checkout_error",
    "validate_form",
]
