"""Database module for printsync state management and persistence."""

from src.db.connection import (
    async_init_db,
    close_db,
    create_db_engine,
    create_session_factory,
    get_database_url,
    session_scope,
)
from src.db.models import (
    Base,
    Order,
    OrderItem,
    Product,
    ProductImage,
    ProductVariant,
)
from src.db.order_store import OrderStore, SqlOrderStore

__all__ = [
    # Models
    "Base",
    "Order",
    "OrderItem",
    "Product",
    "ProductVariant",
    "ProductImage",
    # Connection
    "create_db_engine",
    "create_session_factory",
    "get_database_url",
    "session_scope",
    "async_init_db",
    "close_db",
    # Store
    "OrderStore",
    "SqlOrderStore",
]
