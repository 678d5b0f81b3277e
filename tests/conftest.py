"""Root pytest configuration for test discovery and auto-skip behavior.

All tests stay visible to the test explorer; tests needing real services
are auto-skipped unless explicitly enabled.

Test Structure:
    tests/
    ├── authstore/
    │   ├── unit/          # Fast, isolated tests (fakes and in-memory backends)
    │   ├── contract/      # Adapter contract run against every backend
    │   └── integration/   # Tests with Testcontainers PostgreSQL
    └── shared/            # Shared fixtures and factories

Environment Variables:
    RUN_INTEGRATION=1    Run @pytest.mark.integration tests
    RUN_ALL_TESTS=1      Run all tests (overrides other settings)

Pytest Options:
    --run-integration    Run integration tests
    --run-all            Run all tests
"""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

from authstore_config import clear_settings_cache
from tests.shared.fixtures.backends import (  # noqa: F401
    adapter,
    mongo_adapter,
    redis_adapter,
    redis_server,
    sqlite_adapter,
)

PROJECT_ROOT = Path(__file__).resolve().parents[1]

CONFIG_DIR = PROJECT_ROOT / "config"
if (CONFIG_DIR / ".env.test").exists():
    load_dotenv(CONFIG_DIR / ".env.test")


def _enabled(flag: str) -> bool:
    return os.environ.get(flag, "").lower() in ("1", "true", "yes")


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked with @pytest.mark.integration",
    )
    parser.addoption(
        "--run-all",
        action="store_true",
        default=False,
        help="Run all tests regardless of markers",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: Tests that need a real database server (auto-skipped)",
    )


def pytest_collection_modifyitems(config, items):
    """Auto-skip integration tests unless explicitly enabled."""
    if config.getoption("--run-all") or _enabled("RUN_ALL_TESTS"):
        return

    if config.getoption("--run-integration") or _enabled("RUN_INTEGRATION"):
        return

    skip_integration = pytest.mark.skip(
        reason="Integration test - run with --run-integration or RUN_INTEGRATION=1",
    )
    for item in items:
        item_markers = {mark.name for mark in item.iter_markers()}
        if "integration" in item_markers:
            item.add_marker(skip_integration)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Every test reads settings from its own environment."""
    clear_settings_cache()
    yield
    clear_settings_cache()
