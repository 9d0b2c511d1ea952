"""Shared fixtures for whispr tests."""

import gc

import pytest

from whispr import Registry, set_registry


@pytest.fixture(autouse=True)
def registry():
    """Give each test its own default registry, closed afterwards."""
    fresh = Registry()
    previous = set_registry(fresh)
    try:
        yield fresh
    finally:
        set_registry(previous)
        fresh.close()
        gc.collect()
