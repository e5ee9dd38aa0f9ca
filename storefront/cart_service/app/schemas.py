"""Pydantic schemas for the cart service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


class CartLineWrite(BaseModel):
    quantity: PositiveInt
    unit_price: Decimal | None = Field(default=None, ge=Decimal("0"), max_digits=12, decimal_places=2, alias="unitPrice")

    model_config = ConfigDict(populate_by_name=True)


class CartLineResponse(BaseModel):
    product_id: str = Field(alias="productId")
    variant_id: str | None = Field(default=None, alias="variantId")
    quantity: PositiveInt
    unit_price: Decimal = Field(alias="unitPrice")
    line_total: Decimal = Field(alias="lineTotal")
    added_at: datetime = Field(alias="addedAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class CartResponse(BaseModel):
    id: str
    customer_id: str | None = Field(default=None, alias="customerId")
    session_id: str | None = Field(default=None, alias="sessionId")
    currency: str
    status: Literal["active", "abandoned", "converted"]
    items: list[CartLineResponse]
    item_count: int = Field(alias="itemCount")
    subtotal: Decimal
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class CartTotalsResponse(BaseModel):
    item_count: int = Field(alias="itemCount")
    subtotal: Decimal
    currency: str
    formatted_subtotal: str = Field(alias="formattedSubtotal")

    model_config = ConfigDict(populate_by_name=True)


class FormValidationRequest(BaseModel):
    form_type: Literal[
        "contactInfo", "shippingAddress", "billingAddress", "shippingInfo", "billingInfo", "payment"
    ] = Field(alias="formType")
    data: dict[str, Any]

    model_config = ConfigDict(populate_by_name=True)


class FieldErrorResponse(BaseModel):
    field: str
    message: str
    code: str


class FormValidationResponse(BaseModel):
    form_type: str = Field(alias="formType")
    is_valid: bool = Field(alias="isValid")
    data: dict[str, Any] | None = None
    errors: list[FieldErrorResponse]

    model_config = ConfigDict(populate_by_name=True)
