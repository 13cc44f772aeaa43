"""Dispatcher for provider webhook events.

Webhooks are push notifications; the provider retries deliveries, so every
handler diffs against the current row and a re-delivery writes nothing.
``handle`` never raises for bad input: unknown event types, malformed
payloads, orders we cannot resolve and store failures are logged and the
event is dropped.

Handled events:
- package_shipped: status -> shipped with tracking. This bypasses the
  terminal-status guard that polling honours, because the shipment
  notification is authoritative.
- order_failed: status -> fulfillment_failed.
- order_canceled: status -> fulfillment_canceled.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from src.fulfillment.errors import LocalStoreError, StaleOrderError
from src.fulfillment.models import (
    LocalOrder,
    LocalOrderStatus,
    OrderProblemData,
    PackageShippedData,
    WebhookEvent,
    WebhookEventType,
    WebhookOrderRef,
    WebhookOutcome,
)
from src.fulfillment.reconciliation import ReconciliationEngine, can_transition, diff_order

logger = logging.getLogger(__name__)

_PROBLEM_STATUS = {
    WebhookEventType.order_failed: LocalOrderStatus.fulfillment_failed,
    WebhookEventType.order_canceled: LocalOrderStatus.fulfillment_canceled,
}


def is_event_for_store(event: WebhookEvent | dict[str, Any], expected_store_id: str | int | None) -> bool:
    """Check that an event was sent for our provider store.

    Args:
        event: Parsed event or raw payload.
        expected_store_id: Configured store id; None accepts every event.

    Returns:
        True when no store id is configured or the event's ``store`` matches.
    """
    if expected_store_id is None or str(expected_store_id).strip() == "":
        return True
    store = event.store if isinstance(event, WebhookEvent) else event.get("store")
    return store is not None and str(store) == str(expected_store_id).strip()


def local_id_from_external_id(external_id: str | None) -> str | None:
    """Interpret a provider external_id as a local order id, if UUID-shaped.

    Orders are submitted with the UUID in hex form; the local id is the
    canonical hyphenated form.
    """
    if not external_id:
        return None
    try:
        return str(uuid.UUID(external_id))
    except ValueError:
        return None


class WebhookDispatcher:
    """Routes webhook events to order updates.

    Uses the reconciliation engine's store and per-order lock, so webhook
    writes and pull-based syncs on the same order are serialized.

    Example:
        dispatcher = WebhookDispatcher(engine)
        outcome = await dispatcher.handle(payload)
    """

    def __init__(self, engine: ReconciliationEngine) -> None:
        self.engine = engine
        self.store = engine.store
        self._handlers: dict[
            WebhookEventType, Callable[[WebhookEvent], Awaitable[WebhookOutcome]]
        ] = {
            WebhookEventType.package_shipped: self._on_package_shipped,
            WebhookEventType.order_failed: self._on_order_problem,
            WebhookEventType.order_canceled: self._on_order_problem,
        }

    async def handle(self, raw: WebhookEvent | dict[str, Any]) -> WebhookOutcome:
        """Process one delivery.

        Args:
            raw: Decoded JSON body or an already parsed event.

        Returns:
            What was done; ``handled`` is False when the event was ignored
            or dropped, with ``reason`` saying why.
        """
        if not isinstance(raw, (WebhookEvent, dict)):
            logger.warning("webhook dropped, body is %s not an object", type(raw).__name__)
            return WebhookOutcome(event_type="unknown", reason="malformed event")
        raw_type = raw.type.value if isinstance(raw, WebhookEvent) else str(raw.get("type", "unknown"))
        try:
            event = raw if isinstance(raw, WebhookEvent) else WebhookEvent.model_validate(raw)
        except ValidationError as e:
            logger.warning("webhook type=%s malformed envelope: %s", raw_type, e.errors()[:1])
            return WebhookOutcome(event_type=raw_type, reason="malformed event")

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("webhook type=%s ignored", raw_type)
            return WebhookOutcome(event_type=raw_type, reason="event type not handled")

        try:
            return await handler(event)
        except ValidationError as e:
            logger.warning("webhook type=%s malformed data: %s", raw_type, e.errors()[:1])
            return WebhookOutcome(event_type=raw_type, reason="malformed event data")
        except (StaleOrderError, LocalStoreError) as e:
            logger.error("webhook type=%s dropped, store failure: %s", raw_type, e)
            return WebhookOutcome(event_type=raw_type, reason=f"store failure: {e.code}")

    async def _resolve_order(self, ref: WebhookOrderRef) -> LocalOrder | None:
        """Find the local order by provider id, then by UUID-shaped external_id."""
        local = await self.store.find_by_external_order_id(str(ref.id))
        if local is not None:
            return local
        local_id = local_id_from_external_id(ref.external_id)
        if local_id is not None:
            return await self.store.get_order(local_id)
        return None

    def _unresolved(self, event: WebhookEvent, ref: WebhookOrderRef) -> WebhookOutcome:
        logger.warning(
            "webhook type=%s provider_order=%s external_id=%s no matching local order, dropped",
            event.type.value, ref.id, ref.external_id,
        )
        return WebhookOutcome(event_type=event.type.value, reason="order not found")

    async def _apply(
        self,
        event: WebhookEvent,
        local: LocalOrder,
        planner: Callable[[LocalOrder], dict[str, Any]],
    ) -> WebhookOutcome:
        updated, changes = await self.engine.apply_changes(local.id, planner)
        if updated is None:
            return WebhookOutcome(event_type=event.type.value, reason="order not found")
        if not changes:
            logger.debug("webhook type=%s order=%s already applied", event.type.value, local.id)
            return WebhookOutcome(
                event_type=event.type.value,
                handled=True,
                order_id=local.id,
                reason="no changes",
            )
        updates = {key: getattr(value, "value", value) for key, value in changes.items()}
        logger.info("webhook type=%s order=%s updates=%s", event.type.value, local.id, updates)
        return WebhookOutcome(
            event_type=event.type.value,
            handled=True,
            order_id=local.id,
            updates=updates,
        )

    async def _on_package_shipped(self, event: WebhookEvent) -> WebhookOutcome:
        data = PackageShippedData.model_validate(event.data)
        local = await self._resolve_order(data.order)
        if local is None:
            return self._unresolved(event, data.order)

        shipment = data.shipment
        provider_order_id = str(data.order.id)

        def planner(current: LocalOrder) -> dict[str, Any]:
            proposed: dict[str, Any] = {"status": LocalOrderStatus.shipped}
            if shipment.has_tracking:
                proposed["tracking_number"] = shipment.tracking_number
                proposed["tracking_url"] = shipment.tracking_url
                proposed["carrier"] = shipment.carrier
            if not current.external_order_id:
                proposed["external_order_id"] = provider_order_id
            return diff_order(current, proposed)

        return await self._apply(event, local, planner)

    async def _on_order_problem(self, event: WebhookEvent) -> WebhookOutcome:
        data = OrderProblemData.model_validate(event.data)
        local = await self._resolve_order(data.order)
        if local is None:
            return self._unresolved(event, data.order)

        target = _PROBLEM_STATUS[event.type]
        logger.warning(
            "webhook type=%s order=%s provider_order=%s reason=%s",
            event.type.value, local.id, data.order.id, data.reason or "none given",
        )

        def planner(current: LocalOrder) -> dict[str, Any]:
            if not can_transition(current.status, target):
                return {}
            return {"status": target}

        return await self._apply(event, local, planner)
