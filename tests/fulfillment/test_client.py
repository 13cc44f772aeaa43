"""Tests for FulfillmentClient against the fake provider transport."""

import uuid

import httpx
import pytest

from src.fulfillment.client import FulfillmentClient, external_id_for
from src.fulfillment.config import RetryConfig
from src.fulfillment.errors import (
    ApiError,
    AuthError,
    NotConfiguredError,
    RateLimitedError,
)
from src.fulfillment.models import (
    CreateOrderPayload,
    MockupTaskStatus,
    OrderItem,
    ProviderOrderStatus,
    Recipient,
)
from tests.helpers import (
    FakePrintful,
    SleepRecorder,
    error,
    make_client,
    make_config,
    ok,
    provider_order,
)
from tests.helpers.fake_printful import STORE_ID

RECIPIENT = Recipient(
    name="Ada Lovelace",
    address1="12 Analytical St",
    city="London",
    country_code="GB",
    zip="N1 9GU",
)


def _payload(external_id: str = "abc123") -> CreateOrderPayload:
    return CreateOrderPayload(
        external_id=external_id,
        recipient=RECIPIENT,
        items=[OrderItem(sync_variant_id=4001, quantity=2, retail_price="19.99")],
    )


class TestExternalIdFor:
    """Tests for deterministic external_id derivation."""

    def test_uuid_becomes_hex(self):
        order_id = "3f2b8c1e-9a4d-4e6f-8b2a-1c5d7e9f0a12"
        assert external_id_for(order_id) == uuid.UUID(order_id).hex
        assert len(external_id_for(order_id)) == 32

    def test_stable_across_calls(self):
        assert external_id_for("order-42") == external_id_for("order-42")

    def test_short_safe_id_passes_through(self):
        assert external_id_for("order_42") == "order_42"

    def test_long_or_unsafe_id_hashed(self):
        long_id = "x" * 40
        result = external_id_for(long_id)
        assert len(result) == 32
        assert result != long_id[:32]
        assert external_id_for("has spaces") != "has spaces"


class TestNotConfigured:
    """A client without a token must not touch the network."""

    @pytest.mark.asyncio
    async def test_raises_before_any_request(self):
        fake = FakePrintful()
        client = make_client(fake, make_config(api_token=None))
        with pytest.raises(NotConfiguredError) as exc_info:
            await client.get_order(1)
        assert exc_info.value.code == "E-5001"
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_cached_lookup_still_refused(self):
        fake = FakePrintful()
        client = make_client(fake, make_config(api_token="  "))
        with pytest.raises(NotConfiguredError):
            await client.get_catalog_variant(1)
        assert fake.requests == []


class TestRequestShape:
    """Tests for headers, URLs and bodies sent to the provider."""

    @pytest.mark.asyncio
    async def test_auth_and_store_headers(self):
        fake = FakePrintful().add("GET", "/orders/555", ok(provider_order()))
        client = make_client(fake)
        await client.get_order(555)

        sent = fake.requests[0]
        assert sent.headers["authorization"] == "Bearer test-token"
        assert sent.headers["x-pf-store-id"] == STORE_ID

    @pytest.mark.asyncio
    async def test_store_header_omitted_without_store_id(self):
        fake = FakePrintful().add("GET", "/orders/555", ok(provider_order()))
        client = make_client(fake, make_config(store_id=None))
        await client.get_order(555)
        assert "x-pf-store-id" not in fake.requests[0].headers

    @pytest.mark.asyncio
    async def test_create_order_sends_draft_by_default(self):
        fake = FakePrintful().add("POST", "/orders", ok(provider_order(order_id=777)))
        client = make_client(fake)

        order = await client.create_order(_payload())

        sent = fake.requests[0]
        assert sent.params == {"confirm": "false"}
        assert sent.body["external_id"] == "abc123"
        assert sent.body["items"] == [
            {"quantity": 2, "sync_variant_id": 4001, "retail_price": "19.99"}
        ]
        assert "address2" not in sent.body["recipient"]
        assert order.id == 777
        assert order.status is ProviderOrderStatus.draft

    @pytest.mark.asyncio
    async def test_create_order_confirm_flag(self):
        fake = FakePrintful().add("POST", "/orders", ok(provider_order(status="pending")))
        client = make_client(fake)
        await client.create_order(_payload(), confirm=True)
        assert fake.requests[0].params == {"confirm": "true"}

    @pytest.mark.asyncio
    async def test_confirm_order_path(self):
        fake = FakePrintful().add("POST", "/orders/555/confirm", ok(provider_order(status="pending")))
        client = make_client(fake)
        order = await client.confirm_order("555")
        assert order.status is ProviderOrderStatus.pending


class TestErrorShapes:
    """Both provider error shapes become typed exceptions."""

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        fake = FakePrintful().add("GET", "/orders/9", error(404, "NotFound", "Order not found"))
        client = make_client(fake)
        with pytest.raises(ApiError) as exc_info:
            await client.get_order(9)
        assert exc_info.value.status_code == 404
        assert exc_info.value.reason == "NotFound"
        assert exc_info.value.message == "Order not found"
        assert exc_info.value.is_client_error

    @pytest.mark.asyncio
    async def test_http_200_with_error_code_in_body(self):
        fake = FakePrintful().add(
            "POST", "/orders",
            (200, {"code": 400, "result": "Invalid recipient", "error": {"reason": "BadRequest", "message": "Invalid recipient"}}),
        )
        client = make_client(fake)
        with pytest.raises(ApiError) as exc_info:
            await client.create_order(_payload())
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Invalid recipient"

    @pytest.mark.asyncio
    async def test_unauthorized_becomes_auth_error(self):
        fake = FakePrintful().add("GET", "/orders/1", error(401, "Unauthorized", "Bad token"))
        client = make_client(fake)
        with pytest.raises(AuthError) as exc_info:
            await client.get_order(1)
        assert exc_info.value.code == "E-5002"

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        def html(request):
            return httpx.Response(200, text="<html>maintenance</html>", request=request)

        fake = FakePrintful().add("GET", "/orders/1", html)
        client = make_client(fake)
        with pytest.raises(ApiError) as exc_info:
            await client.get_order(1)
        assert exc_info.value.reason == "InvalidResponse"

    @pytest.mark.asyncio
    async def test_null_result_is_invalid_response(self):
        fake = FakePrintful().add("GET", "/orders/555", (200, {"code": 200, "result": None}))
        client = make_client(fake)
        with pytest.raises(ApiError) as exc_info:
            await client.get_order(555)
        assert exc_info.value.reason == "InvalidResponse"
        assert exc_info.value.status_code == 502
        assert exc_info.value.code == "E-3003"

    @pytest.mark.asyncio
    async def test_non_numeric_body_code_keeps_http_status(self):
        fake = FakePrintful().add(
            "GET", "/orders/555",
            (200, {"code": "ERR", "error": {"reason": "BadRequest", "message": "Malformed"}}),
        )
        client = make_client(fake)
        with pytest.raises(ApiError) as exc_info:
            await client.get_order(555)
        assert exc_info.value.status_code == 200
        assert exc_info.value.message == "Malformed"

    @pytest.mark.asyncio
    async def test_store_products_not_a_list(self):
        fake = FakePrintful().add("GET", "/store/products", ok({"id": 1}))
        client = make_client(fake)
        with pytest.raises(ApiError) as exc_info:
            await client.list_store_products()
        assert exc_info.value.reason == "InvalidResponse"

    @pytest.mark.asyncio
    async def test_rate_limit_after_retries(self):
        fake = FakePrintful().add("GET", "/orders/1", (429, {"code": 429}, {"Retry-After": "3"}))
        sleep = SleepRecorder()
        client = make_client(fake, make_config(retry=RetryConfig(max_retries=1)), sleep=sleep)
        with pytest.raises(RateLimitedError) as exc_info:
            await client.get_order(1)
        assert exc_info.value.retry_after == 3.0
        assert len(fake.requests) == 2
        assert 3.0 in sleep.delays


class TestRateLimiting:
    """Every request takes a limiter slot."""

    @pytest.mark.asyncio
    async def test_each_request_counted(self):
        fake = FakePrintful().add("GET", "/orders/1", ok(provider_order(order_id=1)))
        client = make_client(fake)
        await client.get_order(1)
        await client.get_order(1)
        assert client.rate_limiter.request_count == 2

    @pytest.mark.asyncio
    async def test_retries_share_one_slot(self):
        fake = FakePrintful().add(
            "GET", "/orders/1", error(503, "ServiceUnavailable", "down"), ok(provider_order(order_id=1))
        )
        client = make_client(fake)
        await client.get_order(1)
        assert len(fake.requests) == 2
        assert client.rate_limiter.request_count == 1


class TestCatalogCache:
    """Catalog lookups are cached; order calls are not."""

    @pytest.mark.asyncio
    async def test_variant_cached(self):
        fake = FakePrintful().add(
            "GET", "/products/variant/4012",
            ok({"variant": {"id": 4012, "product_id": 71, "name": "Tee / Black / M", "color": "Black"}}),
        )
        client = make_client(fake)
        first = await client.get_catalog_variant(4012)
        second = await client.get_catalog_variant(4012)
        assert first is second
        assert first.color == "Black"
        assert len(fake.requests) == 1

    @pytest.mark.asyncio
    async def test_product_cached(self):
        fake = FakePrintful().add(
            "GET", "/products/71",
            ok({"product": {"id": 71, "title": "Unisex Staple T-Shirt"}, "variants": []}),
        )
        client = make_client(fake)
        await client.get_catalog_product(71)
        product = await client.get_catalog_product(71)
        assert product.title == "Unisex Staple T-Shirt"
        assert len(fake.requests) == 1

    @pytest.mark.asyncio
    async def test_orders_not_cached(self):
        fake = FakePrintful().add("GET", "/orders/1", ok(provider_order(order_id=1)))
        client = make_client(fake)
        await client.get_order(1)
        await client.get_order(1)
        assert len(fake.requests) == 2

    @pytest.mark.asyncio
    async def test_search_filters_cached_list(self):
        fake = FakePrintful().add(
            "GET", "/products",
            ok([
                {"id": 71, "title": "Unisex Staple T-Shirt", "type_name": "T-Shirt", "brand": "Bella + Canvas"},
                {"id": 19, "title": "White Glossy Mug", "type_name": "Mug"},
            ]),
        )
        client = make_client(fake)
        tees = await client.search_catalog("t-shirt")
        mugs = await client.search_catalog("MUG")
        everything = await client.search_catalog("  ")

        assert [p.id for p in tees] == [71]
        assert [p.id for p in mugs] == [19]
        assert len(everything) == 2
        assert len(fake.requests) == 1

    @pytest.mark.asyncio
    async def test_search_by_category_uses_own_cache_key(self):
        fake = FakePrintful().add("GET", "/products", ok([{"id": 19, "title": "Mug"}]))
        client = make_client(fake)
        await client.search_catalog("mug", category_id=112)
        await client.search_catalog("mug")
        assert [r.params for r in fake.requests] == [{"category_id": "112"}, {}]


class TestStoreProducts:
    """Tests for sync product listing and detail."""

    @pytest.mark.asyncio
    async def test_list_store_products_with_paging(self):
        fake = FakePrintful().add(
            "GET", "/store/products",
            (200, {"code": 200, "result": [{"id": 9001, "name": "Classic Tee"}], "paging": {"total": 41, "offset": 0, "limit": 20}}),
        )
        client = make_client(fake)
        products, total = await client.list_store_products(status="synced")
        assert [p.id for p in products] == [9001]
        assert total == 41
        assert fake.requests[0].params == {"offset": "0", "limit": "20", "status": "synced"}

    @pytest.mark.asyncio
    async def test_get_sync_product(self):
        fake = FakePrintful().add(
            "GET", "/store/products/9001",
            ok({
                "sync_product": {"id": 9001, "name": "Classic Tee"},
                "sync_variants": [
                    {"id": 1, "name": "Classic Tee / Black / M", "product": {"variant_id": 4012, "product_id": 71, "name": "Tee / Black / M"}},
                ],
            }),
        )
        client = make_client(fake)
        detail = await client.get_sync_product(9001)
        assert detail.sync_product.name == "Classic Tee"
        assert detail.sync_variants[0].product.variant_id == 4012


class TestMockupTasks:
    """Tests for the v2 mockup task endpoints."""

    @pytest.mark.asyncio
    async def test_create_returns_task_ids(self):
        fake = FakePrintful().add(
            "POST", "/v2/mockup-tasks", (200, {"data": [{"id": 101, "status": "pending"}, {"id": 102}]})
        )
        client = make_client(fake)
        ids = await client.create_mockup_tasks([{"source": "catalog"}])
        assert ids == [101, 102]
        assert fake.requests[0].body == {"products": [{"source": "catalog"}]}

    @pytest.mark.asyncio
    async def test_get_task_not_retried(self):
        fake = FakePrintful().add("GET", "/v2/mockup-tasks", error(503, "ServiceUnavailable", "down"))
        client = make_client(fake)
        with pytest.raises(ApiError):
            await client.get_mockup_task(101)
        assert len(fake.requests) == 1
        assert fake.requests[0].params == {"id": "101"}

    @pytest.mark.asyncio
    async def test_get_task_missing_is_404(self):
        fake = FakePrintful().add("GET", "/v2/mockup-tasks", (200, {"data": []}))
        client = make_client(fake)
        with pytest.raises(ApiError) as exc_info:
            await client.get_mockup_task(101)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_task_status_is_lenient(self):
        fake = FakePrintful().add("GET", "/v2/mockup-tasks", (200, {"data": [{"id": 101, "status": "queued"}]}))
        client = make_client(fake)
        task = await client.get_mockup_task(101)
        assert task.status is MockupTaskStatus.unknown


class TestLifecycle:
    """Tests for owning and closing the httpx client."""

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        client = FulfillmentClient(make_config())
        async with client:
            pass
        assert client._http.is_closed

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self):
        fake = FakePrintful()
        client = make_client(fake)
        await client.aclose()
        assert not client._http.is_closed
