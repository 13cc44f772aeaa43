"""Inbound operations of the fulfillment sync.

FulfillmentService is what the API routes, the CLI and the storefront's
checkout call. Every operation returns a result model; provider failures
and lookups that miss come back as ``ok=False`` with an E-XXXX code
instead of raising.

Example:
    async with open_service(load_config()) as service:
        result = await service.sync_order_status(order_id)
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from pydantic import ValidationError

from src.db.connection import (
    async_init_db,
    close_db,
    create_db_engine,
    create_session_factory,
)
from src.db.order_store import OrderStore, SqlOrderStore
from src.errors.registry import get_error
from src.fulfillment.client import FulfillmentClient, external_id_for
from src.fulfillment.config import FulfillmentConfig
from src.fulfillment.errors import FulfillmentError, LocalStoreError, OrderNotFoundError
from src.fulfillment.locks import KeyedLock
from src.fulfillment.mockups import MockupGenerator
from src.fulfillment.models import (
    ConfirmOrderResult,
    CreateOrderPayload,
    CreateOrderResult,
    LocalOrderItem,
    MockupGenerationResult,
    OrderItem,
    Recipient,
    SyncOrderResult,
    WebhookEvent,
    WebhookOutcome,
)
from src.fulfillment.reconciliation import ReconciliationEngine
from src.fulfillment.task_poller import TaskPoller
from src.fulfillment.webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)


def to_provider_item(item: LocalOrderItem) -> OrderItem | None:
    """Map a local line item to a provider item, sync variant first.

    Returns:
        None when the variant is linked to neither a sync nor a catalog variant.
    """
    if item.external_sync_variant_id is None and item.external_variant_id is None:
        return None
    retail_price = None
    if item.unit_price_cents is not None:
        retail_price = f"{item.unit_price_cents / 100:.2f}"
    return OrderItem(
        sync_variant_id=item.external_sync_variant_id,
        variant_id=None if item.external_sync_variant_id is not None else item.external_variant_id,
        quantity=item.quantity,
        retail_price=retail_price,
    )


class FulfillmentService:
    """Façade over the client, the reconciliation engine, the webhook
    dispatcher and the mockup generator.

    Attributes:
        client: Provider API client.
        store: Local order store.
        engine: Pull-based reconciliation and draft confirmation.
        webhooks: Push-based event dispatcher (shares the engine's locks).
        mockups: Mockup generator.
    """

    def __init__(
        self,
        client: FulfillmentClient,
        store: OrderStore,
        *,
        locks: KeyedLock | None = None,
        poller: TaskPoller | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.engine = ReconciliationEngine(client, store, locks)
        self.webhooks = WebhookDispatcher(self.engine)
        self.mockups = MockupGenerator(client, store, poller)

    @property
    def config(self) -> FulfillmentConfig:
        return self.client.config

    async def create_fulfillment_order(
        self,
        recipient: Recipient | dict[str, Any],
        items: list[OrderItem | dict[str, Any]],
        external_id: str,
        confirm_immediately: bool = False,
    ) -> CreateOrderResult:
        """Create a provider order.

        Args:
            recipient: Shipping recipient.
            items: Provider line items (sync or catalog variant ids).
            external_id: Deterministic id; resubmitting it does not duplicate.
            confirm_immediately: Skip the draft stage.

        Returns:
            CreateOrderResult with the provider order id on success.
        """
        try:
            payload = CreateOrderPayload(external_id=external_id, recipient=recipient, items=items)
        except ValidationError as e:
            reason = "; ".join(err["msg"] for err in e.errors()[:3])
            logger.warning("create_order external_id=%s invalid: %s", external_id, reason)
            return CreateOrderResult(
                ok=False,
                error=get_error("E-2002").format(reason=reason),
                error_code="E-2002",
            )

        try:
            order = await self.client.create_order(payload, confirm=confirm_immediately)
        except FulfillmentError as e:
            logger.error("create_order external_id=%s failed: %s", external_id, e)
            return CreateOrderResult(ok=False, error=str(e), error_code=e.code)
        return CreateOrderResult(ok=True, external_order_id=str(order.id))

    async def submit_local_order(
        self,
        local_order_id: str,
        recipient: Recipient | dict[str, Any],
        confirm_immediately: bool = False,
    ) -> CreateOrderResult:
        """Send a stored order to the provider and link the two.

        An order that already has a provider id is not sent again.
        """
        try:
            order = await self.store.get_order(local_order_id)
        except LocalStoreError as e:
            logger.error("submit_order order=%s read failed: %s", local_order_id, e)
            return CreateOrderResult(ok=False, error=str(e), error_code=e.code)
        if order is None:
            return CreateOrderResult(
                ok=False,
                error=get_error("E-1001").format(order_id=local_order_id),
                error_code="E-1001",
            )
        if order.external_order_id:
            logger.info(
                "submit_order order=%s already submitted as %s",
                local_order_id, order.external_order_id,
            )
            return CreateOrderResult(ok=True, external_order_id=order.external_order_id)

        try:
            local_items = await self.store.get_order_items(local_order_id)
        except LocalStoreError as e:
            logger.error("submit_order order=%s items read failed: %s", local_order_id, e)
            return CreateOrderResult(ok=False, error=str(e), error_code=e.code)

        items: list[OrderItem] = []
        for local_item in local_items:
            item = to_provider_item(local_item)
            if item is None:
                logger.warning(
                    "submit_order order=%s variant=%s not linked to the provider, skipped",
                    local_order_id, local_item.variant_id,
                )
                continue
            items.append(item)
        if not items:
            return CreateOrderResult(
                ok=False,
                error=get_error("E-1004").format(order_id=local_order_id),
                error_code="E-1004",
            )

        result = await self.create_fulfillment_order(
            recipient, items, external_id_for(local_order_id), confirm_immediately
        )
        if not result.ok or result.external_order_id is None:
            return result

        try:
            await self.store.set_external_order_id(local_order_id, result.external_order_id)
        except (LocalStoreError, OrderNotFoundError) as e:
            logger.error("submit_order order=%s could not store provider id: %s", local_order_id, e)
            reason = str(e.original) if isinstance(e, LocalStoreError) else e.message
            result.warning = get_error("E-4002").format(order_id=local_order_id, reason=reason)
        return result

    async def confirm_fulfillment_order(self, external_order_id: str) -> ConfirmOrderResult:
        return await self.engine.confirm_order(external_order_id)

    async def sync_order_status(self, local_order_id: str) -> SyncOrderResult:
        return await self.engine.sync_order_status(local_order_id)

    async def generate_mockups(self, external_product_id: str | int) -> MockupGenerationResult:
        return await self.mockups.generate(external_product_id)

    async def handle_webhook_event(self, raw_event: WebhookEvent | dict[str, Any]) -> WebhookOutcome:
        return await self.webhooks.handle(raw_event)


@asynccontextmanager
async def open_service(config: FulfillmentConfig) -> AsyncIterator[FulfillmentService]:
    """Build a service over the configured database and provider.

    Creates missing tables, and closes the HTTP client and the engine on
    exit.
    """
    engine = create_db_engine(config.database_url)
    await async_init_db(engine)
    store = SqlOrderStore(create_session_factory(engine))
    client = FulfillmentClient(config)
    try:
        yield FulfillmentService(client, store)
    finally:
        await client.aclose()
        await close_db(engine)
