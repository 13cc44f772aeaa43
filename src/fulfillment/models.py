"""Models for the fulfillment provider integration.

Provider payloads are validated at the boundary into these models. Status
fields use enums with an explicit ``unknown`` member so a status the
provider adds later deserializes instead of failing, and reconciliation can
ignore it.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _LenientEnum(str, Enum):
    """String enum that maps unrecognized values to ``unknown``."""

    @classmethod
    def _missing_(cls, value: object) -> "_LenientEnum":
        return cls("unknown")


def _coerce_enum(enum_cls: type[_LenientEnum], value: Any) -> Any:
    """Map raw strings through the enum so unknown values become ``unknown``."""
    if isinstance(value, str):
        return enum_cls(value)
    return value


# === Local order ===


class LocalOrderStatus(str, Enum):
    """Status of the store's own order record.

    Canonical progression: pending -> paid -> processing -> shipped -> delivered.
    cancelled, refunded, fulfillment_failed and fulfillment_canceled are side
    branches reachable from any non-terminal status.
    """

    pending = "pending"
    paid = "paid"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    refunded = "refunded"
    fulfillment_failed = "fulfillment_failed"
    fulfillment_canceled = "fulfillment_canceled"


class LocalOrder(BaseModel):
    """Snapshot of a local order as the reconciliation logic sees it."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Local order UUID")
    status: LocalOrderStatus = Field(..., description="Current local status")
    external_order_id: str | None = Field(None, description="Provider order ID, set once")
    tracking_number: str | None = Field(None, description="Carrier tracking number")
    tracking_url: str | None = Field(None, description="Carrier tracking URL")
    carrier: str | None = Field(None, description="Carrier name")
    version: int = Field(default=1, description="Optimistic concurrency version")


class LocalProduct(BaseModel):
    """Store product linked to a provider sync product."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    external_product_id: str | None = None


class NewProductImage(BaseModel):
    """Image row to insert for a product."""

    url: str
    alt: str | None = None
    color: str | None = None
    sort_order: int = 0


class LocalOrderItem(BaseModel):
    """Line item joined with the provider identifiers of its variant."""

    model_config = ConfigDict(from_attributes=True)

    variant_id: str
    quantity: int = Field(..., ge=1)
    unit_price_cents: int | None = None
    external_variant_id: int | None = Field(None, description="Provider catalog variant ID")
    external_sync_variant_id: int | None = Field(None, description="Provider store sync variant ID")


# === Provider orders ===


class ProviderOrderStatus(_LenientEnum):
    """Order status in the provider's vocabulary."""

    draft = "draft"
    pending = "pending"
    onhold = "onhold"
    inprocess = "inprocess"
    partial = "partial"
    fulfilled = "fulfilled"
    canceled = "canceled"
    failed = "failed"
    unknown = "unknown"


class Recipient(BaseModel):
    """Shipping recipient sent with a new provider order."""

    name: str
    address1: str
    address2: str | None = None
    city: str
    state_code: str | None = None
    country_code: str
    zip: str
    phone: str | None = None
    email: str | None = None


class PrintFile(BaseModel):
    """Print file reference on an order item."""

    url: str
    type: str | None = None
    filename: str | None = None


class OrderItem(BaseModel):
    """Provider order line. Exactly one of the variant ids is sent."""

    sync_variant_id: int | None = Field(None, description="Store sync variant ID (preferred)")
    variant_id: int | None = Field(None, description="Catalog variant ID")
    external_id: str | None = None
    quantity: int = Field(..., ge=1)
    retail_price: str | None = None
    files: list[PrintFile] | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize with only one variant reference, sync variant first."""
        body: dict[str, Any] = {"quantity": self.quantity}
        if self.sync_variant_id is not None:
            body["sync_variant_id"] = self.sync_variant_id
        elif self.variant_id is not None:
            body["variant_id"] = self.variant_id
        if self.external_id is not None:
            body["external_id"] = self.external_id
        if self.retail_price is not None:
            body["retail_price"] = self.retail_price
        if self.files:
            body["files"] = [f.model_dump(exclude_none=True) for f in self.files]
        return body


class CreateOrderPayload(BaseModel):
    """Body for POST /orders."""

    external_id: str = Field(..., max_length=32, description="Idempotency key derived from the local order")
    recipient: Recipient
    items: list[OrderItem] = Field(..., min_length=1)

    def to_payload(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "recipient": self.recipient.model_dump(exclude_none=True),
            "items": [item.to_payload() for item in self.items],
        }


class Shipment(BaseModel):
    """A shipment attached to a provider order.

    A shipment without a tracking number is not evidence of dispatch.
    """

    id: int | None = None
    carrier: str | None = None
    service: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    shipped_at: str | None = None

    @field_validator("tracking_number", mode="before")
    @classmethod
    def _stringify_tracking(cls, value: Any) -> Any:
        # Some carriers return numeric tracking numbers.
        if isinstance(value, int):
            return str(value)
        return value

    @property
    def has_tracking(self) -> bool:
        return bool(self.tracking_number and self.tracking_number.strip())


class ProviderOrder(BaseModel):
    """The provider's current view of an order."""

    id: int
    external_id: str | None = None
    status: ProviderOrderStatus = ProviderOrderStatus.unknown
    shipments: list[Shipment] = Field(default_factory=list)
    recipient: dict[str, Any] | None = None
    costs: dict[str, Any] | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _lenient_status(cls, value: Any) -> Any:
        return _coerce_enum(ProviderOrderStatus, value)

    @property
    def latest_shipment(self) -> Shipment | None:
        return self.shipments[-1] if self.shipments else None


# === Store / catalog products ===


class SyncProduct(BaseModel):
    id: int
    external_id: str | None = None
    name: str = ""
    variants: int = 0
    synced: int = 0
    thumbnail_url: str | None = None
    is_ignored: bool = False


class SyncVariantFile(BaseModel):
    type: str | None = None
    url: str | None = None
    preview_url: str | None = None
    thumbnail_url: str | None = None


class SyncVariantProduct(BaseModel):
    variant_id: int
    product_id: int | None = None
    name: str = ""
    image: str | None = None


class SyncVariant(BaseModel):
    id: int
    external_id: str | None = None
    variant_id: int | None = None
    name: str = ""
    retail_price: str | None = None
    sku: str | None = None
    size: str | None = None
    color: str | None = None
    product: SyncVariantProduct
    files: list[SyncVariantFile] = Field(default_factory=list)


class SyncProductDetail(BaseModel):
    sync_product: SyncProduct
    sync_variants: list[SyncVariant] = Field(default_factory=list)


class CatalogProduct(BaseModel):
    id: int
    type: str | None = None
    type_name: str | None = None
    title: str = ""
    brand: str | None = None
    model: str | None = None
    image: str | None = None
    variant_count: int = 0
    description: str | None = None
    is_discontinued: bool = False


class CatalogVariant(BaseModel):
    id: int
    product_id: int
    name: str = ""
    size: str | None = None
    color: str | None = None
    color_code: str | None = None
    price: str | None = None
    in_stock: bool = True


# === Mockup tasks ===


class MockupTaskStatus(_LenientEnum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    unknown = "unknown"


class Mockup(BaseModel):
    placement: str | None = None
    mockup_url: str | None = None


class VariantMockups(BaseModel):
    catalog_variant_id: int
    mockups: list[Mockup] = Field(default_factory=list)


class MockupTask(BaseModel):
    """A provider-side mockup generation job."""

    id: int
    status: MockupTaskStatus = MockupTaskStatus.unknown
    catalog_variant_mockups: list[VariantMockups] = Field(default_factory=list)
    failure_reasons: list[Any] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _lenient_status(cls, value: Any) -> Any:
        return _coerce_enum(MockupTaskStatus, value)


# === Webhooks ===


class WebhookEventType(_LenientEnum):
    package_shipped = "package_shipped"
    package_returned = "package_returned"
    order_created = "order_created"
    order_updated = "order_updated"
    order_failed = "order_failed"
    order_canceled = "order_canceled"
    product_synced = "product_synced"
    product_updated = "product_updated"
    stock_updated = "stock_updated"
    unknown = "unknown"


class WebhookOrderRef(BaseModel):
    id: int
    external_id: str | None = None
    status: ProviderOrderStatus = ProviderOrderStatus.unknown

    @field_validator("status", mode="before")
    @classmethod
    def _lenient_status(cls, value: Any) -> Any:
        return _coerce_enum(ProviderOrderStatus, value)

    @field_validator("external_id", mode="before")
    @classmethod
    def _stringify_external_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class WebhookEvent(BaseModel):
    """Envelope of a provider webhook delivery."""

    type: WebhookEventType
    created: int | None = None
    retries: int = 0
    store: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _lenient_type(cls, value: Any) -> Any:
        return _coerce_enum(WebhookEventType, value)


class PackageShippedData(BaseModel):
    order: WebhookOrderRef
    shipment: Shipment


class OrderProblemData(BaseModel):
    """Payload of order_failed and order_canceled."""

    order: WebhookOrderRef
    reason: str | None = None


# === Operation results ===


class CreateOrderResult(BaseModel):
    ok: bool
    external_order_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    warning: str | None = Field(None, description="Local write failed after provider success")


class ConfirmOrderResult(BaseModel):
    ok: bool
    provider_status: str | None = None
    error: str | None = None
    error_code: str | None = None
    warning: str | None = Field(None, description="Local write failed after provider success")


class SyncOrderResult(BaseModel):
    ok: bool
    updated: bool = False
    updates: dict[str, Any] | None = None
    provider_status: str | None = None
    error: str | None = None
    error_code: str | None = None


class MockupGenerationResult(BaseModel):
    success: bool
    count: int | None = None
    error: str | None = None
    error_code: str | None = None


class WebhookOutcome(BaseModel):
    """What the dispatcher did with one event (for logs and HTTP responses)."""

    event_type: str
    handled: bool = False
    order_id: str | None = None
    updates: dict[str, Any] | None = None
    reason: str | None = Field(None, description="Why the event was ignored or dropped")
