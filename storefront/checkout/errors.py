"""Checkout error model shown to shoppers and the raw failures it is built from."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class RecoveryAction(str, Enum):
    RETRY_PAYMENT = "retry-payment"
    USE_DIFFERENT_METHOD = "use-different-method"
    EDIT_CART = "edit-cart"
    REMOVE_UNAVAILABLE_ITEMS = "remove-unavailable-items"
    EDIT_FORM = "edit-form"
    RETRY = "retry"
    CONTACT_SUPPORT = "contact-support"
    CHECK_ORDER = "check-order"


class ErrorAction(BaseModel):
    label: str
    action: RecoveryAction
    variant: Literal["primary", "secondary", "danger"] = "primary"

    model_config = ConfigDict(frozen=True)


class CheckoutError(BaseModel):
    """Structured, user-actionable checkout failure."""

    severity: Severity
    title: str
    message: str
    reasons: tuple[str, ...] | None = None
    actions: tuple[ErrorAction, ...] = Field(min_length=1)

    model_config = ConfigDict(frozen=True)

    def has_action(self, action: RecoveryAction | str) -> bool:
        wanted = action.value if isinstance(action, RecoveryAction) else action
        return any(entry.action.value == wanted for entry in self.actions)


class CheckoutFailure(Exception):
    """Base class for raw failures raised while a checkout is running."""


class PaymentDeclinedError(CheckoutFailure):
    """The payment gateway declined or failed to authorise the payment."""

    def __init__(self, code: str = "generic_decline", message: str | None = None, *, decline_code: str | None = None) -> None:
        super().__init__(message or f"payment declined: {code}")
        self.code = code
        self.decline_code = decline_code
        self.gateway_message = message


@dataclass(frozen=True, slots=True)
class StockConflict:
    product_id: str
    requested: int
    available: int
    variant_id: str | None = None
    name: str | None = None

    @property
    def label(self) -> str:
        line = self.product_id if self.variant_id is None else f"{self.product_id}/{self.variant_id}"
        return line if self.name is None else f"{self.name} ({line})"


class StockConflictError(CheckoutFailure):
    def __init__(self, conflicts: Sequence[StockConflict]) -> None:
        super().__init__(f"{len(conflicts)} cart lines exceed current stock")
        self.conflicts = tuple(conflicts)


@dataclass(frozen=True, slots=True)
class FieldError:
    field: str
    message: str
    code: str = "invalid"


class CheckoutValidationError(CheckoutFailure):
    def __init__(self, field_errors: Sequence[FieldError], *, form_type: str | None = None) -> None:
        super().__init__(f"{len(field_errors)} checkout fields are invalid")
        self.field_errors = tuple(field_errors)
        self.form_type = form_type


class EmptyCartError(CheckoutFailure):
    def __init__(self) -> None:
        super().__init__("cart is empty")


class PaymentInProgressError(CheckoutFailure):
    def __init__(self) -> None:
        super().__init__("a payment confirmation is already in flight for this cart")


class ServerFaultError(CheckoutFailure):
    def __init__(self, status_code: int, message: str | None = None) -> None:
        super().__init__(message or f"server returned {status_code}")
        self.status_code = status_code


class MalformedResponseError(CheckoutFailure):
    """A collaborator answered with a payload that could not be understood."""
