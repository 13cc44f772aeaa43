"""Pytest fixtures for API tests.

Routes are exercised through a TestClient over ``create_app`` with a mocked
FulfillmentService, so no database or provider is involved.
"""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.api.main import create_app
from src.fulfillment.models import WebhookOutcome
from tests.helpers import make_config


@pytest.fixture
def mock_service() -> MagicMock:
    """FulfillmentService double with async operations."""
    service = MagicMock()
    service.config = make_config()
    service.handle_webhook_event = AsyncMock(
        return_value=WebhookOutcome(event_type="package_shipped", handled=True)
    )
    service.sync_order_status = AsyncMock()
    service.confirm_fulfillment_order = AsyncMock()
    return service


@pytest.fixture
def client(mock_service: MagicMock) -> Generator[TestClient, None, None]:
    """TestClient whose lifespan installs ``mock_service``.

    Yields:
        TestClient configured for testing.
    """
    with TestClient(create_app(service=mock_service)) as test_client:
        yield test_client
