"""Server-side validation of checkout forms."""

from __future__ import annotations

from fastapi import APIRouter

from storefront.checkout.validation import validate_form

from ..schemas import FormValidationRequest, FormValidationResponse

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/validate", response_model=FormValidationResponse)
async def validate_checkout_form(payload: FormValidationRequest) -> FormValidationResponse:
    result = validate_form(payload.form_type, payload.data)
    return FormValidationResponse.model_validate(
        {
            "formType": result.form_type,
            "isValid": result.is_valid,
            "data": result.data,
            "errors": [
                {"field": error.field, "message": error.message, "code": error.code} for error in result.errors
            ],
        }
    )
