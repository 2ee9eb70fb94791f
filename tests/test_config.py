"""Tests for environment driven settings."""

import logging

import pytest

from registry_scraper.config import Settings
from registry_scraper.core.registry_client import RegistryClient
from registry_scraper.reference import DOCKER_HUB_REGISTRY_URL
from registry_scraper.store import Store


def test_defaults():
    settings = Settings.from_env({})

    assert settings.registry_url == DOCKER_HUB_REGISTRY_URL
    assert settings.registry_timeout == 30
    assert settings.registry_insecure is False
    assert settings.workers == 1
    assert settings.log_level_number == logging.WARNING


def test_from_env():
    """REGISTRY_SCRAPER_* variables override the defaults."""
    settings = Settings.from_env(
        {
            "REGISTRY_SCRAPER_REGISTRY_URL": "http://localhost:5000",
            "REGISTRY_SCRAPER_REGISTRY_TIMEOUT": "5",
            "REGISTRY_SCRAPER_REGISTRY_INSECURE": "yes",
            "REGISTRY_SCRAPER_REGISTRY_USERNAME": "bot",
            "REGISTRY_SCRAPER_REGISTRY_PASSWORD": "hunter2",
            "REGISTRY_SCRAPER_DATABASE_URL": "sqlite://",
            "REGISTRY_SCRAPER_WORKERS": "4",
            "REGISTRY_SCRAPER_LOG_LEVEL": "debug",
        }
    )

    assert settings.registry_url == "http://localhost:5000"
    assert settings.registry_timeout == 5
    assert settings.registry_insecure is True
    assert settings.workers == 4
    assert settings.log_level_number == logging.DEBUG
    assert "hunter2" not in repr(settings)


def test_invalid_integer():
    with pytest.raises(ValueError, match="REGISTRY_SCRAPER_WORKERS"):
        Settings.from_env({"REGISTRY_SCRAPER_WORKERS": "many"})


def test_unknown_log_level():
    with pytest.raises(ValueError):
        Settings(log_level="CHATTY").log_level_number


def test_credentials_only_for_configured_registry():
    settings = Settings(
        registry_url="http://localhost:5000",
        registry_username="bot",
        registry_password="hunter2",
    )

    own = settings.registry_config("localhost:5000")
    assert (own.base_url, own.username, own.password) == ("http://localhost:5000", "bot", "hunter2")

    other = settings.registry_config("registry.io")
    assert other.base_url == "https://registry.io"
    assert other.username is None
    assert other.password is None

    assert settings.registry_config().username == "bot"


def test_docker_hub_aliases():
    settings = Settings(registry_username="bot", registry_password="hunter2")

    config = settings.registry_config("docker.io")
    assert config.base_url == DOCKER_HUB_REGISTRY_URL
    assert config.username == "bot"


def test_factories():
    settings = Settings(database_url="sqlite://")

    client = settings.client_factory("registry.io")
    assert isinstance(client, RegistryClient)
    assert client.registry_url == "https://registry.io"

    store = settings.create_store()
    assert isinstance(store, Store)
    store.close()


def test_configure_logging(monkeypatch):
    """Root logging is set up at the configured level."""
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    Settings(log_level="INFO").configure_logging()

    [kwargs] = calls
    assert kwargs["level"] == logging.INFO
    assert "%(name)s" in kwargs["format"]


def test_configure_logging_unknown_level():
    with pytest.raises(ValueError):
        Settings(log_level="CHATTY").configure_logging()
