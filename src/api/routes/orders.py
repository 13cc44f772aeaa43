"""Admin endpoints for manual order sync and draft confirmation.

Failures are returned with the registry's error code and remediation so
the admin UI can show them verbatim.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.api.dependencies import get_fulfillment_service
from src.errors.registry import get_error
from src.fulfillment.models import ConfirmOrderResult, SyncOrderResult
from src.fulfillment.service import FulfillmentService
from src.utils.redaction import sanitize_error_message

router = APIRouter(prefix="/admin/orders", tags=["orders"])

# Error code -> HTTP status; anything not listed is a provider failure (502).
_STATUS_BY_CODE = {
    "E-1001": 404,
    "E-1002": 409,
    "E-2001": 409,
    "E-4001": 409,
    "E-4002": 500,
    "E-4003": 500,
    "E-5001": 503,
}


# === Request Schemas ===


class SyncStatusRequest(BaseModel):
    """Request body for a manual status sync."""

    order_id: str = Field(..., min_length=1, description="Local order ID")


class ConfirmOrderRequest(BaseModel):
    """Request body for confirming a provider draft."""

    external_order_id: str = Field(..., min_length=1, description="Provider order ID")


def _raise_for_result(error_code: str | None, error: str | None) -> None:
    code = error_code or "E-3003"
    definition = get_error(code)
    raise HTTPException(
        status_code=_STATUS_BY_CODE.get(code, 502),
        detail={
            "error_code": code,
            "message": sanitize_error_message(error),
            "remediation": definition.remediation if definition else None,
        },
    )


@router.post("/sync-status", response_model=SyncOrderResult)
async def sync_order_status(
    body: SyncStatusRequest,
    service: FulfillmentService = Depends(get_fulfillment_service),
) -> SyncOrderResult:
    """Pull the provider's view of an order and reconcile the local copy.

    Raises:
        HTTPException: 404 unknown order, 409 order not yet submitted,
            502 provider failure.
    """
    result = await service.sync_order_status(body.order_id)
    if not result.ok:
        _raise_for_result(result.error_code, result.error)
    return result


@router.post("/confirm", response_model=ConfirmOrderResult)
async def confirm_order(
    body: ConfirmOrderRequest,
    service: FulfillmentService = Depends(get_fulfillment_service),
) -> ConfirmOrderResult:
    """Confirm a provider draft order.

    Raises:
        HTTPException: 409 when the provider order is not a draft,
            502 provider failure.
    """
    result = await service.confirm_fulfillment_order(body.external_order_id)
    if not result.ok:
        _raise_for_result(result.error_code, result.error)
    return result
