"""Tests for SqlOrderStore against an in-memory SQLite database."""

import pytest

from src.db.connection import get_database_url, to_async_url
from src.fulfillment.errors import (
    LocalReadError,
    LocalWriteError,
    OrderNotFoundError,
    StaleOrderError,
)
from src.fulfillment.models import LocalOrderStatus, NewProductImage
from tests.helpers import ORDER_ID, create_test_database


class TestDatabaseUrl:
    """Tests for URL resolution."""

    def test_configured_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///./env.db")
        assert get_database_url("sqlite:///./cfg.db") == "sqlite:///./cfg.db"

    def test_env_then_default(self, monkeypatch):
        assert get_database_url(None) == "sqlite:///./printsync.db"
        monkeypatch.setenv("DATABASE_URL", "sqlite:///./env.db")
        assert get_database_url("  ") == "sqlite:///./env.db"

    def test_async_driver(self):
        assert to_async_url("sqlite:///./a.db") == "sqlite+aiosqlite:///./a.db"
        assert to_async_url("postgresql+asyncpg://x/y") == "postgresql+asyncpg://x/y"


class TestReads:
    """Tests for order lookups."""

    @pytest.mark.asyncio
    async def test_get_order(self):
        db = await create_test_database()
        try:
            await db.add_order(status="paid", external_order_id="555")
            order = await db.store.get_order(ORDER_ID)
            assert order.status is LocalOrderStatus.paid
            assert order.version == 1
            assert await db.store.get_order("missing") is None
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_find_by_external_order_id(self):
        db = await create_test_database()
        try:
            await db.add_order(external_order_id="555")
            assert (await db.store.find_by_external_order_id("555")).id == ORDER_ID
            assert await db.store.find_by_external_order_id("556") is None
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_order_items_joined_with_variants(self):
        db = await create_test_database()
        try:
            await db.add_order()
            _, (v1, v2) = await db.add_product(variants=[
                {"name": "Tee / Black / M", "external_variant_id": 4012, "external_sync_variant_id": 77},
                {"name": "Tee / White / M"},
            ])
            await db.add_item(ORDER_ID, v1, quantity=2, unit_price_cents=2500)
            await db.add_item(ORDER_ID, v2)

            items = {i.variant_id: i for i in await db.store.get_order_items(ORDER_ID)}

            assert items[v1].external_sync_variant_id == 77
            assert items[v1].quantity == 2
            assert items[v2].external_variant_id is None
        finally:
            await db.close()


class TestUpdateOrder:
    """Tests for the optimistic compare-and-swap update."""

    @pytest.mark.asyncio
    async def test_update_bumps_version(self):
        db = await create_test_database()
        try:
            await db.add_order(status="processing")
            updated = await db.store.update_order(
                ORDER_ID, {"status": LocalOrderStatus.shipped, "carrier": "UPS"}, expected_version=1
            )
            assert updated.version == 2
            assert updated.status is LocalOrderStatus.shipped
            row = await db.get_order_row()
            assert row.status == "shipped"
            assert row.carrier == "UPS"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self):
        db = await create_test_database()
        try:
            await db.add_order(status="processing")
            await db.store.update_order(ORDER_ID, {"carrier": "UPS"}, expected_version=1)
            with pytest.raises(StaleOrderError) as exc_info:
                await db.store.update_order(ORDER_ID, {"carrier": "DHL"}, expected_version=1)
            assert exc_info.value.code == "E-4001"
            assert (await db.get_order_row()).carrier == "UPS"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_missing_order(self):
        db = await create_test_database()
        try:
            with pytest.raises(OrderNotFoundError):
                await db.store.update_order("missing", {"carrier": "UPS"}, expected_version=1)
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self):
        db = await create_test_database()
        try:
            await db.add_order()
            with pytest.raises(ValueError):
                await db.store.update_order(ORDER_ID, {"total_cents": 0}, expected_version=1)
        finally:
            await db.close()


class TestSetExternalOrderId:
    """Tests for write-once linking."""

    @pytest.mark.asyncio
    async def test_written_once(self):
        db = await create_test_database()
        try:
            await db.add_order()
            assert await db.store.set_external_order_id(ORDER_ID, "555") is True
            assert await db.store.set_external_order_id(ORDER_ID, "556") is False
            row = await db.get_order_row()
            assert row.external_order_id == "555"
            assert row.version == 2
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_missing_order(self):
        db = await create_test_database()
        try:
            with pytest.raises(OrderNotFoundError):
                await db.store.set_external_order_id("missing", "555")
        finally:
            await db.close()


class TestProducts:
    """Tests for product lookup and image inserts."""

    @pytest.mark.asyncio
    async def test_get_product_by_external_id(self):
        db = await create_test_database()
        try:
            product_id, _ = await db.add_product(external_product_id="9001", name="Classic Tee")
            product = await db.store.get_product_by_external_id("9001")
            assert product.id == product_id
            assert product.name == "Classic Tee"
            assert await db.store.get_product_by_external_id("9002") is None
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_add_product_images(self):
        db = await create_test_database()
        try:
            product_id, _ = await db.add_product()
            count = await db.store.add_product_images(product_id, [
                NewProductImage(url="https://mockups.test/1.jpg", alt="Tee - Black (front)", color="Black", sort_order=10),
                NewProductImage(url="https://mockups.test/2.jpg"),
            ])
            assert count == 2
            assert await db.store.add_product_images(product_id, []) == 0
        finally:
            await db.close()


class TestDatabaseFailures:
    """Driver errors surface as typed store errors on every path."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,key",
        [
            ("get_order", ORDER_ID),
            ("find_by_external_order_id", "555"),
            ("get_order_items", ORDER_ID),
            ("get_product_by_external_id", "9001"),
        ],
    )
    async def test_read_failure(self, method, key):
        db = await create_test_database()
        try:
            await db.drop_tables()

            with pytest.raises(LocalReadError) as exc_info:
                await getattr(db.store, method)(key)

            assert exc_info.value.code == "E-4003"
            assert exc_info.value.order_id == key
            assert "no such table" in str(exc_info.value.original)
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_write_failure(self):
        db = await create_test_database()
        try:
            await db.drop_tables()

            with pytest.raises(LocalWriteError) as exc_info:
                await db.store.update_order(ORDER_ID, {"status": "shipped"}, 1)

            assert exc_info.value.code == "E-4002"
        finally:
            await db.close()
