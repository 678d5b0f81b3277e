"""Shared pytest fixtures for all test modules."""

from tests.shared.fixtures.backends import (
    BACKENDS,
    open_adapter,
)
from tests.shared.fixtures.database import (
    postgres_adapter,
    postgres_container,
    postgres_url,
)
from tests.shared.fixtures.factories import TestEntityFactory

__all__ = [
    "BACKENDS",
    "TestEntityFactory",
    "open_adapter",
    "postgres_adapter",
    "postgres_container",
    "postgres_url",
]
