"""Pydantic schemas for the checkout forms and a form-level validator."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import FieldError

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_PATTERN = re.compile(r"^(\+?1)?[-.\s]?\(?([0-9]{3})\)?[-.\s]?([0-9]{3})[-.\s]?([0-9]{4})$")
_INTERNATIONAL_PHONE_PATTERN = re.compile(r"^\+[0-9][0-9\s\-]{6,18}$")
_POSTAL_CODE_PATTERN = re.compile(r"^[A-Za-z0-9\s\-]{3,10}$")
_NAME_PATTERN = re.compile(r"^[^\W\d_]+(?:[\s\-'][^\W\d_]+)*$")

Country = Literal["NG", "KE", "ZA", "GH", "UG", "TZ", "ET", "MA", "EG", "DZ", "US", "OTHER"]
FormType = Literal["contactInfo", "shippingAddress", "billingAddress", "shippingInfo", "billingInfo", "payment"]


def _clean(value: str) -> str:
    return " ".join(value.split())


class ContactInfo(BaseModel):
    email: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=1, max_length=20)
    subscribe_to_newsletter: bool = Field(default=False, alias="subscribeToNewsletter")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if not _EMAIL_PATTERN.match(cleaned):
            msg = "Please enter a valid email address"
            raise ValueError(msg)
        return cleaned

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        cleaned = value.strip()
        if not (_PHONE_PATTERN.match(cleaned) or _INTERNATIONAL_PHONE_PATTERN.match(cleaned)):
            msg = "Please enter a valid phone number (e.g., +1234567890)"
            raise ValueError(msg)
        return cleaned


class Address(BaseModel):
    first_name: str = Field(min_length=2, max_length=50, alias="firstName")
    last_name: str = Field(min_length=2, max_length=50, alias="lastName")
    company: str | None = Field(default=None, max_length=100)
    address1: str = Field(min_length=5, max_length=200)
    address2: str | None = Field(default=None, max_length=200)
    city: str = Field(min_length=2, max_length=100)
    state: str = Field(min_length=2, max_length=100)
    postal_code: str = Field(alias="postalCode")
    country: Country

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    @field_validator("first_name", "last_name", "city")
    @classmethod
    def _letters_only(cls, value: str) -> str:
        cleaned = _clean(value)
        if not _NAME_PATTERN.match(cleaned):
            msg = "can only contain letters, spaces, hyphens, and apostrophes"
            raise ValueError(msg)
        return cleaned

    @field_validator("postal_code")
    @classmethod
    def _check_postal_code(cls, value: str) -> str:
        if not _POSTAL_CODE_PATTERN.match(value):
            msg = "Please enter a valid postal code"
            raise ValueError(msg)
        return value.upper()


class ShippingInfo(Address):
    shipping_method: Literal["standard", "express", "overnight", "pickup"] = Field(
        default="standard", alias="shippingMethod"
    )
    special_instructions: str | None = Field(default=None, max_length=500, alias="specialInstructions")


class BillingInfo(BaseModel):
    same_as_shipping: bool = Field(default=True, alias="sameAsShipping")
    billing_address: Address | None = Field(default=None, alias="billingAddress")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _require_address(self) -> "BillingInfo":
        if not self.same_as_shipping and self.billing_address is None:
            msg = "billing address is required when it differs from shipping"
            raise ValueError(msg)
        return self


class PaymentConsent(BaseModel):
    save_card: bool = Field(default=False, alias="saveCard")
    accept_terms: bool = Field(alias="acceptTerms")
    accept_marketing: bool = Field(default=False, alias="acceptMarketing")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("accept_terms")
    @classmethod
    def _terms_accepted(cls, value: bool) -> bool:
        if not value:
            msg = "You must accept the terms and conditions to continue"
            raise ValueError(msg)
        return value


_FORMS: dict[str, type[BaseModel]] = {
    "contactInfo": ContactInfo,
    "shippingAddress": Address,
    "billingAddress": Address,
    "shippingInfo": ShippingInfo,
    "billingInfo": BillingInfo,
    "payment": PaymentConsent,
}


@dataclass(slots=True)
class FormValidationResult:
    form_type: str
    is_valid: bool
    data: dict[str, Any] | None = None
    errors: list[FieldError] = field(default_factory=list)


def field_errors_from(exc: ValidationError) -> list[FieldError]:
    errors: list[FieldError] = []
    for entry in exc.errors():
        location = ".".join(str(part) for part in entry["loc"]) or "form"
        message = entry["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        errors.append(FieldError(field=location, message=message, code=entry["type"]))
    return errors


def validate_form(form_type: str, data: dict[str, Any]) -> FormValidationResult:
    """Validate one checkout form, returning field errors keyed by input name."""

    schema = _FORMS.get(form_type)
    if schema is None:
        msg = f"unknown form type: {form_type}"
        raise ValueError(msg)
    try:
        model = schema.model_validate(data)
    except ValidationError as exc:
        return FormValidationResult(form_type=form_type, is_valid=False, errors=field_errors_from(exc))
    return FormValidationResult(form_type=form_type, is_valid=True, data=model.model_dump(by_alias=True))
