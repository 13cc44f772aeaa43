"""Root-level pytest configuration for all tests.

Provider calls go through the fake transport in ``tests.helpers``; the
environment is cleared of provider variables so a developer's shell never
leaks a real token into a test.
"""

import pytest

_PROVIDER_ENV = (
    "PRINTFUL_API_TOKEN",
    "PRINTFUL_STORE_ID",
    "PRINTFUL_API_BASE",
    "DATABASE_URL",
    "PRINTSYNC_CONFIG_PATH",
)


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring the live provider API"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )


# ============================================================================
# Environment
# ============================================================================


@pytest.fixture(autouse=True)
def clean_provider_env(monkeypatch):
    """Remove provider and database env vars for every test."""
    for name in _PROVIDER_ENV:
        monkeypatch.delenv(name, raising=False)
