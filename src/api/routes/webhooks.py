"""Inbound webhook receiver for the fulfillment provider.

The provider delivers at least once and retries on non-2xx, so any
well-formed event is acknowledged with 200 even when it is ignored or
cannot be matched to an order. Only bodies that are not JSON objects (400)
and events for another store (403) are rejected.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from src.api.dependencies import get_fulfillment_service
from src.fulfillment.service import FulfillmentService
from src.fulfillment.webhooks import is_event_for_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider."""

    received: bool = True


@router.post("/printful", response_model=WebhookAck)
async def receive_printful_webhook(
    request: Request,
    service: FulfillmentService = Depends(get_fulfillment_service),
) -> WebhookAck:
    """Receive one provider webhook delivery.

    Raises:
        HTTPException: 400 for a body that is not a JSON object, 403 when
            the event belongs to a different store.
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("webhook rejected: body is not valid JSON")
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        logger.warning("webhook rejected: body is not a JSON object")
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    if not is_event_for_store(payload, service.config.store_id):
        logger.warning(
            "webhook rejected: store=%s does not match configured store",
            payload.get("store"),
        )
        raise HTTPException(status_code=403, detail="Event is for a different store")

    logger.info("webhook received type=%s created=%s", payload.get("type"), payload.get("created"))
    await service.handle_webhook_event(payload)
    return WebhookAck()
