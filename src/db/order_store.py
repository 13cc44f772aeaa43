"""Order persistence used by reconciliation, webhooks and mockup generation.

The sync logic never talks to SQLAlchemy directly; it goes through the
``OrderStore`` protocol so tests can substitute an in-memory fake.

Database failures surface as LocalReadError or LocalWriteError, never as
raw SQLAlchemy exceptions.

Writes use optimistic concurrency: ``update_order`` applies the changes
only if the row still has the version the caller read, and bumps the
version in the same statement. A miss raises StaleOrderError and the
caller re-reads.
"""

import logging
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.connection import session_scope
from src.db.models import (
    Order,
    OrderItem,
    Product,
    ProductImage,
    ProductVariant,
    utc_now_iso,
)
from src.fulfillment.errors import (
    LocalReadError,
    LocalWriteError,
    OrderNotFoundError,
    StaleOrderError,
)
from src.fulfillment.models import (
    LocalOrder,
    LocalOrderItem,
    LocalProduct,
    NewProductImage,
)

logger = logging.getLogger(__name__)

# Columns the sync may change. Everything else on an order belongs to checkout.
MUTABLE_ORDER_FIELDS = frozenset({
    "status",
    "external_order_id",
    "tracking_number",
    "tracking_url",
    "carrier",
})


class OrderStore(Protocol):
    """Store operations the fulfillment sync depends on."""

    async def get_order(self, order_id: str) -> LocalOrder | None: ...

    async def find_by_external_order_id(self, external_order_id: str) -> LocalOrder | None: ...

    async def update_order(
        self, order_id: str, changes: dict[str, Any], expected_version: int
    ) -> LocalOrder: ...

    async def set_external_order_id(self, order_id: str, external_order_id: str) -> bool: ...

    async def get_order_items(self, order_id: str) -> list[LocalOrderItem]: ...

    async def get_product_by_external_id(self, external_product_id: str) -> LocalProduct | None: ...

    async def add_product_images(self, product_id: str, images: list[NewProductImage]) -> int: ...


def _column_value(value: Any) -> Any:
    # Enum members are stored by value.
    return getattr(value, "value", value)


class SqlOrderStore:
    """OrderStore backed by an async SQLAlchemy session factory.

    Each call runs in its own session and transaction.

    Example:
        store = SqlOrderStore(create_session_factory(engine))
        order = await store.get_order(order_id)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_order(self, order_id: str) -> LocalOrder | None:
        try:
            async with session_scope(self._session_factory) as session:
                row = await session.get(Order, order_id)
                return LocalOrder.model_validate(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.error("get_order order=%s failed: %s", order_id, e)
            raise LocalReadError(order_id, e) from e

    async def find_by_external_order_id(self, external_order_id: str) -> LocalOrder | None:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(Order).where(Order.external_order_id == str(external_order_id))
                )
                row = result.scalars().first()
                return LocalOrder.model_validate(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.error("find_by_external_order_id external=%s failed: %s", external_order_id, e)
            raise LocalReadError(str(external_order_id), e) from e

    async def update_order(
        self,
        order_id: str,
        changes: dict[str, Any],
        expected_version: int,
    ) -> LocalOrder:
        """Apply ``changes`` if the order is still at ``expected_version``.

        Args:
            order_id: Local order id.
            changes: Column -> new value; keys must be in MUTABLE_ORDER_FIELDS.
            expected_version: Version the caller based the changes on.

        Returns:
            The order after the update, with its new version.

        Raises:
            ValueError: A key is not a mutable order field.
            OrderNotFoundError: No such order.
            StaleOrderError: The order changed since ``expected_version``.
            LocalWriteError: The database rejected the write.
        """
        unknown = set(changes) - MUTABLE_ORDER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update order fields: {sorted(unknown)}")

        values = {key: _column_value(value) for key, value in changes.items()}
        values["version"] = Order.version + 1
        values["updated_at"] = utc_now_iso()

        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.version == expected_version)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    if await session.get(Order, order_id) is None:
                        raise OrderNotFoundError(order_id)
                    raise StaleOrderError(order_id, expected_version)

                row = await session.get(Order, order_id, populate_existing=True)
                updated = LocalOrder.model_validate(row)
        except SQLAlchemyError as e:
            logger.error("update_order order=%s failed: %s", order_id, e)
            raise LocalWriteError(order_id, e) from e

        logger.debug(
            "update_order order=%s version=%d->%d changes=%s",
            order_id, expected_version, updated.version, sorted(changes),
        )
        return updated

    async def set_external_order_id(self, order_id: str, external_order_id: str) -> bool:
        """Record the provider order id unless one is already stored.

        Returns:
            True if the id was written, False if the order already had one.

        Raises:
            OrderNotFoundError: No such order.
            LocalWriteError: The database rejected the write.
        """
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.external_order_id.is_(None))
                    .values(
                        external_order_id=str(external_order_id),
                        version=Order.version + 1,
                        updated_at=utc_now_iso(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    if await session.get(Order, order_id) is None:
                        raise OrderNotFoundError(order_id)
                    return False
        except SQLAlchemyError as e:
            logger.error("set_external_order_id order=%s failed: %s", order_id, e)
            raise LocalWriteError(order_id, e) from e
        logger.info("set_external_order_id order=%s external=%s", order_id, external_order_id)
        return True

    async def get_order_items(self, order_id: str) -> list[LocalOrderItem]:
        """Line items joined with their variants' provider ids."""
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(OrderItem, ProductVariant)
                    .join(ProductVariant, OrderItem.variant_id == ProductVariant.id)
                    .where(OrderItem.order_id == order_id)
                )
                return [
                    LocalOrderItem(
                        variant_id=item.variant_id,
                        quantity=item.quantity,
                        unit_price_cents=item.unit_price_cents,
                        external_variant_id=variant.external_variant_id,
                        external_sync_variant_id=variant.external_sync_variant_id,
                    )
                    for item, variant in result.all()
                ]
        except SQLAlchemyError as e:
            logger.error("get_order_items order=%s failed: %s", order_id, e)
            raise LocalReadError(order_id, e) from e

    async def get_product_by_external_id(self, external_product_id: str) -> LocalProduct | None:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(Product).where(Product.external_product_id == str(external_product_id))
                )
                row = result.scalars().first()
                return LocalProduct.model_validate(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.error("get_product_by_external_id product=%s failed: %s", external_product_id, e)
            raise LocalReadError(str(external_product_id), e) from e

    async def add_product_images(self, product_id: str, images: list[NewProductImage]) -> int:
        """Insert image rows for a product in one transaction.

        Returns:
            Number of rows inserted.
        """
        if not images:
            return 0
        try:
            async with session_scope(self._session_factory) as session:
                session.add_all(
                    ProductImage(
                        product_id=product_id,
                        url=image.url,
                        alt=image.alt,
                        color=image.color,
                        sort_order=image.sort_order,
                    )
                    for image in images
                )
        except SQLAlchemyError as e:
            logger.error("add_product_images product=%s failed: %s", product_id, e)
            raise LocalWriteError(product_id, e) from e
        logger.info("add_product_images product=%s count=%d", product_id, len(images))
        return len(images)
