"""Async client for the print-on-demand fulfillment provider (Printful).

Typed operations over the provider's REST API, built from three owned
collaborators:
- RateLimiter: every request takes one slot in the provider's quota.
- fetch_with_retry: transient failures are retried with backoff.
- ResponseCache: read-only catalog lookups are memoized.

The provider reports errors either with a non-2xx status or with HTTP 200
and ``code != 200`` in the body; both become ApiError. A missing API token
raises NotConfiguredError before the cache, the limiter or the network is
touched.

Example:
    async with FulfillmentClient(load_config()) as client:
        order = await client.get_order("12345")
"""

import asyncio
import hashlib
import logging
import re
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from src.fulfillment.cache import ResponseCache
from src.fulfillment.config import FulfillmentConfig, RetryConfig
from src.fulfillment.errors import (
    ApiError,
    AuthError,
    NotConfiguredError,
    RateLimitedError,
)
from src.fulfillment.models import (
    CatalogProduct,
    CatalogVariant,
    CreateOrderPayload,
    MockupTask,
    ProviderOrder,
    SyncProduct,
    SyncProductDetail,
)
from src.fulfillment.rate_limiter import RateLimiter
from src.fulfillment.retry import fetch_with_retry, parse_retry_after
from src.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)

# Provider limit on order external_id length.
MAX_EXTERNAL_ID_LENGTH = 32

_SAFE_EXTERNAL_ID = re.compile(r"^[A-Za-z0-9_-]+$")

ModelT = TypeVar("ModelT", bound=BaseModel)

# Polls are retried by the task poller's own schedule, not here.
_NO_RETRY = RetryConfig(max_retries=0)


def external_id_for(local_order_id: str) -> str:
    """Derive the provider external_id for a local order.

    Always returns the same value for the same order, so a resubmitted
    order is deduplicated by the provider instead of created twice.

    Args:
        local_order_id: Local order primary key.

    Returns:
        32-char UUID hex for UUID ids; the id itself when it is short and
        URL-safe; otherwise a truncated SHA-256 of the id.
    """
    try:
        return uuid.UUID(local_order_id).hex
    except ValueError:
        pass
    if len(local_order_id) <= MAX_EXTERNAL_ID_LENGTH and _SAFE_EXTERNAL_ID.match(local_order_id):
        return local_order_id
    return hashlib.sha256(local_order_id.encode()).hexdigest()[:MAX_EXTERNAL_ID_LENGTH]


def _error_message(error: Any, fallback: str) -> tuple[str, str | None]:
    """Pull (message, reason) out of the provider's ``error`` field."""
    if isinstance(error, dict):
        message = error.get("message") or error.get("reason") or fallback
        return str(message), error.get("reason")
    if isinstance(error, str) and error:
        return error, None
    return fallback, None


def _body_code(code: Any) -> int | None:
    """Numeric value of the body ``code``, or None when it is not a number."""
    if isinstance(code, bool):
        return None
    try:
        return int(code)
    except (TypeError, ValueError):
        return None


def _invalid_response(what: str, data: Any) -> ApiError:
    return ApiError(
        f"Provider returned an unreadable {what}",
        status_code=502,
        reason="InvalidResponse",
        details=data,
    )


def _parse(model: type[ModelT], data: Any, what: str) -> ModelT:
    """Validate one provider object, raising ApiError instead of ValidationError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error("provider_response %s invalid: %s", what, e.errors()[:1])
        raise _invalid_response(what, data) from e


def _parse_list(model: type[ModelT], data: Any, what: str) -> list[ModelT]:
    if data is None:
        return []
    if not isinstance(data, list):
        logger.error("provider_response %s list is %s", what, type(data).__name__)
        raise _invalid_response(f"{what} list", data)
    return [_parse(model, item, what) for item in data]


def _unwrap_key(result: Any, key: str) -> Any:
    """Catalog lookups nest the object under ``key``; accept it bare too."""
    if isinstance(result, dict) and key in result:
        return result[key]
    return result


def _api_error(status_code: int, message: str, reason: str | None, body: Any) -> ApiError:
    if status_code in (401, 403):
        return AuthError(message, status_code=status_code)
    return ApiError(message, status_code=status_code, reason=reason, details=body)


class FulfillmentClient:
    """Printful API client with rate limiting, retries and catalog caching.

    Attributes:
        config: Resolved fulfillment configuration.
        rate_limiter: Limiter shared by every request this client makes.
        cache: Catalog lookup cache.
    """

    def __init__(
        self,
        config: FulfillmentConfig,
        *,
        rate_limiter: RateLimiter | None = None,
        cache: ResponseCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            config: Fulfillment configuration (token, base URL, policies).
            rate_limiter: Limiter to use; a fresh one is created from config if None.
            cache: Catalog cache; a fresh one is created from config if None.
            http_client: httpx client to use. When omitted the client creates
                and owns one, closed by ``aclose``.
            sleep: Async sleep used for retry backoff.
        """
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limit)
        self.cache = cache or ResponseCache(config.cache)
        self._sleep = sleep
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=config.api_base,
            timeout=config.api_timeout,
        )

    async def __aenter__(self) -> "FulfillmentClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_token}",
            "Content-Type": "application/json",
        }
        if self.config.store_id:
            headers["X-PF-Store-Id"] = self.config.store_id
        return headers

    def _url(self, path: str) -> str:
        return f"{self.config.api_base}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        retry: RetryConfig | None = None,
    ) -> Any:
        """Send one request through the limiter and the retry executor.

        Args:
            method: HTTP method.
            path: Path relative to the API base (leading slash).
            params: Query parameters.
            json: JSON body.
            retry: Retry policy override; defaults to config.retry.

        Returns:
            Decoded JSON body.

        Raises:
            NotConfiguredError: No API token.
            ApiError: HTTP or application-level error.
            NetworkError: Transport failure after retries.
        """
        if not self.is_configured:
            raise NotConfiguredError()

        request = self._http.build_request(
            method,
            self._url(path),
            params=params,
            json=json,
            headers=self._headers(),
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "provider_request %s",
                redact_for_logging({
                    "method": method,
                    "path": path,
                    "params": params,
                    "headers": dict(request.headers),
                }),
            )
        retry_config = retry or self.config.retry
        response = await self.rate_limiter.execute(
            lambda: fetch_with_retry(self._http, request, retry_config, sleep=self._sleep)
        )
        return self._unwrap(response)

    def _unwrap(self, response: httpx.Response) -> Any:
        """Decode a response, raising for both error shapes."""
        try:
            body = response.json()
        except ValueError:
            body = None

        error = body.get("error") if isinstance(body, dict) else None
        if not response.is_success:
            message, reason = _error_message(error, f"HTTP {response.status_code}")
            if response.status_code == 429:
                raise RateLimitedError(
                    message,
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                )
            raise _api_error(response.status_code, message, reason or response.reason_phrase, body)

        if body is None:
            raise ApiError(
                "Provider returned a non-JSON body",
                status_code=response.status_code,
                reason="InvalidResponse",
            )

        if isinstance(body, dict):
            code = body.get("code")
            numeric_code = _body_code(code)
            if code is not None and numeric_code != 200:
                message, reason = _error_message(error or body.get("result"), f"Provider code {code}")
                # A non-numeric code keeps the HTTP status.
                status = numeric_code if numeric_code is not None else response.status_code
                raise _api_error(status, message, reason, body)
            if code is None and error:
                message, reason = _error_message(error, "Provider returned an error")
                raise _api_error(response.status_code, message, reason, body)
        return body

    @staticmethod
    def _result(body: Any) -> Any:
        return body.get("result") if isinstance(body, dict) else None

    # === Orders ===

    async def create_order(self, payload: CreateOrderPayload, confirm: bool = False) -> ProviderOrder:
        """Create a provider order (draft unless ``confirm``).

        Args:
            payload: Recipient, items and the deterministic external_id.
            confirm: Submit straight to fulfillment instead of leaving a draft.

        Returns:
            The created provider order.
        """
        body = await self._request(
            "POST",
            "/orders",
            params={"confirm": "true" if confirm else "false"},
            json=payload.to_payload(),
        )
        order = _parse(ProviderOrder, self._result(body), "order")
        logger.info(
            "create_order external_id=%s provider_order=%s status=%s",
            payload.external_id, order.id, order.status.value,
        )
        return order

    async def confirm_order(self, order_id: str | int) -> ProviderOrder:
        """Confirm a draft order, committing it to production."""
        body = await self._request("POST", f"/orders/{order_id}/confirm")
        return _parse(ProviderOrder, self._result(body), "order")

    async def get_order(self, order_id: str | int) -> ProviderOrder:
        """Fetch an order with its shipments. ``@<external_id>`` is accepted too."""
        body = await self._request("GET", f"/orders/{order_id}")
        return _parse(ProviderOrder, self._result(body), "order")

    # === Store products ===

    async def list_store_products(
        self,
        offset: int = 0,
        limit: int = 20,
        status: str | None = None,
    ) -> tuple[list[SyncProduct], int]:
        """List store (sync) products.

        Returns:
            (products, total) where total comes from paging when present.
        """
        params: dict[str, Any] = {"offset": offset, "limit": limit}
        if status:
            params["status"] = status
        body = await self._request("GET", "/store/products", params=params)
        products = _parse_list(SyncProduct, self._result(body), "store product")
        paging = body.get("paging") if isinstance(body, dict) else None
        total = _body_code(paging.get("total")) if isinstance(paging, dict) else None
        return products, total if total is not None else len(products)

    async def get_sync_product(self, product_id: str | int) -> SyncProductDetail:
        body = await self._request("GET", f"/store/products/{product_id}")
        return _parse(SyncProductDetail, self._result(body), "store product")

    # === Catalog (cached) ===

    async def get_catalog_product(self, product_id: int) -> CatalogProduct:
        key = f"catalog:product:{product_id}"
        self._require_configured()
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        body = await self._request("GET", f"/products/{product_id}")
        product = _parse(CatalogProduct, _unwrap_key(self._result(body), "product"), "catalog product")
        self.cache.set(key, product)
        return product

    async def get_catalog_variant(self, variant_id: int) -> CatalogVariant:
        key = f"catalog:variant:{variant_id}"
        self._require_configured()
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        body = await self._request("GET", f"/products/variant/{variant_id}")
        variant = _parse(CatalogVariant, _unwrap_key(self._result(body), "variant"), "catalog variant")
        self.cache.set(key, variant)
        return variant

    async def search_catalog(self, query: str, category_id: int | None = None) -> list[CatalogProduct]:
        """Case-insensitive search over catalog titles, types and models.

        The provider has no search endpoint; the (cached) product list is
        filtered locally.
        """
        self._require_configured()
        key = f"catalog:products:{category_id or 'all'}"
        products = self.cache.get(key)
        if products is None:
            params = {"category_id": category_id} if category_id else None
            body = await self._request("GET", "/products", params=params)
            products = _parse_list(CatalogProduct, self._result(body), "catalog product")
            self.cache.set(key, products)

        needle = query.strip().lower()
        if not needle:
            return list(products)
        return [
            p for p in products
            if needle in " ".join(filter(None, [p.title, p.type_name, p.model, p.brand])).lower()
        ]

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise NotConfiguredError()

    # === Mockup tasks (v2) ===

    async def create_mockup_tasks(self, products: list[dict[str, Any]]) -> list[int]:
        """Start one mockup task per product entry.

        Returns:
            Task ids, in the order the provider returned them.
        """
        body = await self._request("POST", "/v2/mockup-tasks", json={"products": products})
        tasks = body.get("data") if isinstance(body, dict) else None
        ids = [
            _body_code(t.get("id"))
            for t in tasks or []
            if isinstance(t, dict) and t.get("id")
        ]
        if None in ids:
            raise _invalid_response("mockup task id", tasks)
        return ids

    async def get_mockup_task(self, task_id: int) -> MockupTask:
        """Fetch one mockup task's status. Not retried here.

        Raises:
            ApiError: 404 when the provider does not return the task.
        """
        body = await self._request(
            "GET", "/v2/mockup-tasks", params={"id": task_id}, retry=_NO_RETRY,
        )
        items = body.get("data") if isinstance(body, dict) else None
        if not items:
            raise ApiError(f"Mockup task {task_id} not found", status_code=404, reason="NotFound")
        if not isinstance(items, list):
            raise _invalid_response("mockup task", items)
        return _parse(MockupTask, items[0], "mockup task")
