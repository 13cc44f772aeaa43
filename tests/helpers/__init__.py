"""Test helper utilities for provider and database doubles."""

from tests.helpers.database import ORDER_ID, TestDatabase, create_test_database
from tests.helpers.fake_printful import (
    FakePrintful,
    SleepRecorder,
    error,
    make_client,
    make_config,
    ok,
    provider_order,
)

__all__ = [
    "ORDER_ID",
    "FakePrintful",
    "SleepRecorder",
    "TestDatabase",
    "create_test_database",
    "error",
    "make_client",
    "make_config",
    "ok",
    "provider_order",
]
