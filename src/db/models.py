"""SQLAlchemy ORM models for the printsync state database.

This module defines the store-side records the fulfillment sync reads and
writes: orders and their line items, products, variants and product images.
Uses SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

from src.fulfillment.models import LocalOrderStatus


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Order(Base):
    """A customer order placed in the store.

    Status is advanced by checkout, by provider polling and by provider
    webhooks. Orders are never deleted.

    Attributes:
        id: UUID primary key
        status: Current local status (LocalOrderStatus value)
        external_order_id: Provider order id, set once and never cleared
        tracking_number: Carrier tracking number from a verified shipment
        tracking_url: Carrier tracking URL
        carrier: Carrier name
        total_cents: Order total in cents
        version: Incremented on every update; used for compare-and-swap
        created_at: ISO8601 timestamp of order creation
        updated_at: ISO8601 timestamp of last update
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=LocalOrderStatus.pending.value
    )
    external_order_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )

    # Tracking
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    carrier: Mapped[str | None] = mapped_column(String(100), nullable=True)

    total_cents: Mapped[int | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default="1"
    )

    # Timestamps
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    # Relationships
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_external_order_id", "external_order_id"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id!r}, status={self.status!r}, version={self.version})>"


class OrderItem(Base):
    """A line item of an order.

    Attributes:
        id: UUID primary key
        order_id: Foreign key to parent order
        variant_id: Foreign key to the purchased product variant
        quantity: Units ordered
        unit_price_cents: Price per unit in cents
    """

    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    variant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("product_variants.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(nullable=False, default=1)
    unit_price_cents: Mapped[int | None] = mapped_column(nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    variant: Mapped["ProductVariant"] = relationship("ProductVariant")

    __table_args__ = (Index("idx_order_items_order_id", "order_id"),)

    def __repr__(self) -> str:
        return f"<OrderItem(id={self.id!r}, order_id={self.order_id!r}, qty={self.quantity})>"


class Product(Base):
    """A product listed in the store and backed by a provider sync product.

    Attributes:
        id: UUID primary key
        name: Display name
        external_product_id: Provider sync product id
        created_at: ISO8601 timestamp of creation
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    external_product_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )
    images: Mapped[list["ProductImage"]] = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.sort_order",
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id!r}, external_product_id={self.external_product_id!r})>"


class ProductVariant(Base):
    """A purchasable size/color combination of a product.

    Attributes:
        id: UUID primary key
        product_id: Foreign key to parent product
        name: Variant name, usually "Product / Color / Size"
        color: Color name
        size: Size label
        external_variant_id: Provider catalog variant id
        external_sync_variant_id: Provider store sync variant id
    """

    __tablename__ = "product_variants"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    color: Mapped[str | None] = mapped_column(String(100), nullable=True)
    size: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_variant_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_sync_variant_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )

    product: Mapped["Product"] = relationship("Product", back_populates="variants")

    __table_args__ = (Index("idx_product_variants_product_id", "product_id"),)

    def __repr__(self) -> str:
        return f"<ProductVariant(id={self.id!r}, product_id={self.product_id!r})>"


class ProductImage(Base):
    """An image shown on a product page.

    Attributes:
        id: UUID primary key
        product_id: Foreign key to parent product
        url: Image URL
        alt: Alt text
        color: Color the image depicts, if any
        sort_order: Display order (lower first)
        created_at: ISO8601 timestamp of creation
    """

    __tablename__ = "product_images"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    alt: Mapped[str | None] = mapped_column(String(500), nullable=True)
    color: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    product: Mapped["Product"] = relationship("Product", back_populates="images")

    __table_args__ = (Index("idx_product_images_product_id", "product_id"),)

    def __repr__(self) -> str:
        return f"<ProductImage(id={self.id!r}, product_id={self.product_id!r}, color={self.color!r})>"
