"""Pytest configuration and shared fixtures."""

from collections.abc import Iterator

import pytest

from src.core import date_provider


@pytest.fixture(autouse=True)
def reset_debug_date() -> Iterator[None]:
    """Drop any debug date advance a test made."""
    yield
    date_provider.reset()
