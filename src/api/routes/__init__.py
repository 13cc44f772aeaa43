"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from src.api.routes import orders, webhooks

__all__ = [
    "orders",
    "webhooks",
]
