"""Tests for the webhook dispatcher."""

import uuid

import pytest

from src.fulfillment.errors import LocalWriteError
from src.fulfillment.models import WebhookEvent
from src.fulfillment.reconciliation import ReconciliationEngine
from src.fulfillment.webhooks import (
    WebhookDispatcher,
    is_event_for_store,
    local_id_from_external_id,
)
from tests.helpers import ORDER_ID, FakePrintful, create_test_database, make_client


def _shipped(order_id: int = 555, external_id: str | None = None, tracking: str | None = "1Z999AA10123456784") -> dict:
    return {
        "type": "package_shipped",
        "created": 1700000000,
        "retries": 0,
        "store": 17644007,
        "data": {
            "order": {"id": order_id, "external_id": external_id, "status": "fulfilled"},
            "shipment": {
                "id": 9,
                "carrier": "UPS",
                "service": "UPS Ground",
                "tracking_number": tracking,
                "tracking_url": "https://www.ups.com/track?tracknum=1Z999AA10123456784" if tracking else None,
            },
        },
    }


def _problem(event_type: str, order_id: int = 555, reason: str | None = "Print file missing") -> dict:
    return {
        "type": event_type,
        "store": 17644007,
        "data": {"order": {"id": order_id, "status": "failed"}, "reason": reason},
    }


def _dispatcher(store) -> WebhookDispatcher:
    return WebhookDispatcher(ReconciliationEngine(make_client(FakePrintful()), store))


class TestHelpers:
    """Tests for store matching and external_id parsing."""

    def test_store_match(self):
        assert is_event_for_store({"store": 17644007}, "17644007")
        assert is_event_for_store(WebhookEvent(type="order_failed", store=17644007), 17644007)

    def test_store_mismatch_or_missing(self):
        assert not is_event_for_store({"store": 1}, "17644007")
        assert not is_event_for_store({}, "17644007")

    def test_no_store_configured_accepts_all(self):
        assert is_event_for_store({"store": 1}, None)
        assert is_event_for_store({"store": 1}, "  ")

    def test_local_id_from_hex_external_id(self):
        assert local_id_from_external_id(uuid.UUID(ORDER_ID).hex) == ORDER_ID

    def test_non_uuid_external_id(self):
        assert local_id_from_external_id("order_42") is None
        assert local_id_from_external_id(None) is None


class TestPackageShipped:
    """Tests for package_shipped handling."""

    @pytest.mark.asyncio
    async def test_sets_shipped_and_tracking(self):
        db = await create_test_database()
        try:
            await db.add_order(status="processing", external_order_id="555")
            dispatcher = _dispatcher(db.store)

            outcome = await dispatcher.handle(_shipped())

            assert outcome.handled
            assert outcome.order_id == ORDER_ID
            assert outcome.updates == {
                "status": "shipped",
                "tracking_number": "1Z999AA10123456784",
                "tracking_url": "https://www.ups.com/track?tracknum=1Z999AA10123456784",
                "carrier": "UPS",
            }
            row = await db.get_order_row()
            assert row.status == "shipped"
            assert row.carrier == "UPS"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(self):
        db = await create_test_database()
        try:
            await db.add_order(status="processing", external_order_id="555")
            dispatcher = _dispatcher(db.store)

            await dispatcher.handle(_shipped())
            version_after_first = (await db.get_order_row()).version
            outcome = await dispatcher.handle(_shipped())

            assert outcome.handled
            assert outcome.reason == "no changes"
            assert outcome.updates is None
            assert (await db.get_order_row()).version == version_after_first
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_resolves_by_external_id_and_links_order(self):
        """An order not yet linked is found through its UUID external_id."""
        db = await create_test_database()
        try:
            await db.add_order(status="processing")
            dispatcher = _dispatcher(db.store)

            outcome = await dispatcher.handle(_shipped(external_id=uuid.UUID(ORDER_ID).hex))

            assert outcome.handled
            row = await db.get_order_row()
            assert row.external_order_id == "555"
            assert row.status == "shipped"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_without_tracking_sets_status_only(self):
        db = await create_test_database()
        try:
            await db.add_order(status="processing", external_order_id="555")
            dispatcher = _dispatcher(db.store)

            outcome = await dispatcher.handle(_shipped(tracking=None))

            assert outcome.updates == {"status": "shipped"}
            assert (await db.get_order_row()).tracking_number is None
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_overrides_terminal_status(self):
        db = await create_test_database()
        try:
            await db.add_order(status="cancelled", external_order_id="555")
            dispatcher = _dispatcher(db.store)

            outcome = await dispatcher.handle(_shipped())

            assert outcome.handled
            assert (await db.get_order_row()).status == "shipped"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_unknown_order_dropped(self):
        db = await create_test_database()
        try:
            dispatcher = _dispatcher(db.store)
            outcome = await dispatcher.handle(_shipped(order_id=999))
            assert not outcome.handled
            assert outcome.reason == "order not found"
        finally:
            await db.close()


class TestOrderProblems:
    """Tests for order_failed and order_canceled handling."""

    @pytest.mark.asyncio
    async def test_order_failed(self):
        db = await create_test_database()
        try:
            await db.add_order(status="processing", external_order_id="555")
            dispatcher = _dispatcher(db.store)

            outcome = await dispatcher.handle(_problem("order_failed"))

            assert outcome.updates == {"status": "fulfillment_failed"}
            assert (await db.get_order_row()).status == "fulfillment_failed"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_order_canceled(self):
        db = await create_test_database()
        try:
            await db.add_order(status="paid", external_order_id="555")
            dispatcher = _dispatcher(db.store)

            outcome = await dispatcher.handle(_problem("order_canceled", reason=None))

            assert outcome.updates == {"status": "fulfillment_canceled"}
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_terminal_order_not_changed(self):
        db = await create_test_database()
        try:
            await db.add_order(status="delivered", external_order_id="555")
            dispatcher = _dispatcher(db.store)

            outcome = await dispatcher.handle(_problem("order_failed"))

            assert outcome.handled
            assert outcome.reason == "no changes"
            assert (await db.get_order_row()).status == "delivered"
        finally:
            await db.close()


class TestDropped:
    """Events that are ignored or malformed never raise."""

    @pytest.mark.asyncio
    async def test_unhandled_type(self):
        db = await create_test_database()
        try:
            dispatcher = _dispatcher(db.store)
            for event_type in ("product_synced", "stock_updated", "brand_new_event"):
                outcome = await dispatcher.handle({"type": event_type, "data": {}})
                assert not outcome.handled
                assert outcome.reason == "event type not handled"
            assert (await dispatcher.handle({"type": "brand_new_event"})).event_type == "brand_new_event"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_malformed_envelope(self):
        db = await create_test_database()
        try:
            dispatcher = _dispatcher(db.store)
            assert (await dispatcher.handle({"data": {}})).reason == "malformed event"
            assert (await dispatcher.handle(["not", "an", "object"])).reason == "malformed event"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_malformed_data(self):
        db = await create_test_database()
        try:
            dispatcher = _dispatcher(db.store)
            outcome = await dispatcher.handle({"type": "package_shipped", "data": {"order": {}}})
            assert not outcome.handled
            assert outcome.reason == "malformed event data"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_store_failure(self):
        db = await create_test_database()
        try:
            await db.add_order(status="processing", external_order_id="555")

            class BrokenStore:
                def __getattr__(self, name):
                    return getattr(db.store, name)

                async def update_order(self, order_id, changes, expected_version):
                    raise LocalWriteError(order_id, RuntimeError("locked"))

            dispatcher = _dispatcher(BrokenStore())
            outcome = await dispatcher.handle(_shipped())
            assert not outcome.handled
            assert outcome.reason == "store failure: E-4002"
        finally:
            await db.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event", [_problem("order_failed"), _shipped()])
    async def test_database_read_failure(self, event):
        """A lookup that fails in the driver drops the event instead of raising."""
        db = await create_test_database()
        try:
            await db.add_order(status="processing", external_order_id="555")
            await db.drop_tables()

            outcome = await _dispatcher(db.store).handle(event)

            assert not outcome.handled
            assert outcome.event_type == event["type"]
            assert outcome.reason == "store failure: E-4003"
        finally:
            await db.close()
