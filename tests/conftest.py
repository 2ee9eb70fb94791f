"""Test configuration and fixtures."""

import pytest

from registry_scraper.provenance import ProvenanceIndexer
from registry_scraper.registry import Repository
from registry_scraper.scraper import Scraper
from registry_scraper.store import Store
from tests.helpers import FakeClock, FakeRegistry


@pytest.fixture
def store():
    """Store on a private in-memory SQLite database."""
    store = Store("sqlite://")
    yield store
    store.close()


@pytest.fixture
def registry():
    """Empty in-memory registry."""
    return FakeRegistry()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scraper(store, clock):
    return Scraper(store, indexer=ProvenanceIndexer(store), clock=clock)


@pytest.fixture
def repository(registry):
    """The ``dev.local/unit`` repository of the fake registry."""
    return Repository(registry.client("dev.local"), "dev.local/unit")


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")
    config.addinivalue_line(
        "markers", "integration: mark test as running against a local HTTP registry"
    )
