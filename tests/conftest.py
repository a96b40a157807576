"""Shared pytest configuration."""

import pytest


@pytest.fixture
def anyio_backend():
    """Run async tests on asyncio only; the core schedules asyncio tasks."""
    return "asyncio"


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests against a live identity server",
    )
