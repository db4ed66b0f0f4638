"""Shared pytest fixtures and live-service gating."""

from collections.abc import Iterator

import pytest
import structlog

from civic_portal.config import get_settings

# marker -> (command line flag, help text)
LIVE_SERVICE_MARKERS = {
    "requires_db": ("--run-db", "Run tests that require a live PostgreSQL instance"),
    "requires_redis": ("--run-redis", "Run tests that require a live Redis instance"),
}


def pytest_addoption(parser: pytest.Parser) -> None:
    for flag, help_text in LIVE_SERVICE_MARKERS.values():
        parser.addoption(flag, action="store_true", default=False, help=help_text)


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    disabled = {
        marker: pytest.mark.skip(reason=f"needs {flag} flag")
        for marker, (flag, _) in LIVE_SERVICE_MARKERS.items()
        if not config.getoption(flag)
    }
    for item in items:
        for marker, skip in disabled.items():
            if marker in item.keywords:
                item.add_marker(skip)


@pytest.fixture(autouse=True)
def _clean_log_context() -> Iterator[None]:
    """Tenant fields bound by one test must not leak into the next."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
