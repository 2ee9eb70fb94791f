"""Environment driven settings."""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlparse

from .core.registry_client import RegistryClient
from .core.types import RegistryConfig
from .reference import DOCKER_HUB_DOMAIN, DOCKER_HUB_REGISTRY_URL, registry_url_for_domain
from .store import Store

ENV_PREFIX = "REGISTRY_SCRAPER_"

TRUE_VALUES = ("1", "true", "yes", "on")


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


def _get_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in TRUE_VALUES


@dataclass
class Settings:
    """Runtime settings of the scraper and updaters."""

    registry_url: str = DOCKER_HUB_REGISTRY_URL
    registry_timeout: int = 30
    registry_insecure: bool = False
    registry_username: Optional[str] = None
    registry_password: Optional[str] = field(default=None, repr=False)
    database_url: str = "sqlite:///registry_scraper.db"
    workers: int = 1
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """환경 변수에서 설정을 읽습니다.

        Args:
            environ: 환경 변수 매핑 (기본값: os.environ)

        Returns:
            Settings: REGISTRY_SCRAPER_* 변수로 채워진 설정

        Raises:
            ValueError: 정수 값이 잘못된 경우

        Examples:
            settings = Settings.from_env()
            store = settings.create_store()
        """
        env = os.environ if environ is None else environ
        return cls(
            registry_url=env.get(ENV_PREFIX + "REGISTRY_URL") or DOCKER_HUB_REGISTRY_URL,
            registry_timeout=_get_int(env, "REGISTRY_TIMEOUT", 30),
            registry_insecure=_get_bool(env, "REGISTRY_INSECURE", False),
            registry_username=env.get(ENV_PREFIX + "REGISTRY_USERNAME") or None,
            registry_password=env.get(ENV_PREFIX + "REGISTRY_PASSWORD") or None,
            database_url=env.get(ENV_PREFIX + "DATABASE_URL") or "sqlite:///registry_scraper.db",
            workers=_get_int(env, "WORKERS", 1),
            log_level=(env.get(ENV_PREFIX + "LOG_LEVEL") or "WARNING").upper(),
        )

    @property
    def log_level_number(self) -> int:
        level = logging.getLevelName(self.log_level)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level {self.log_level!r}")
        return level

    def configure_logging(self) -> None:
        """Set up root logging for a standalone process."""
        logging.basicConfig(
            level=self.log_level_number,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    def registry_config(self, domain: Optional[str] = None) -> RegistryConfig:
        """Connection settings for ``domain``, the configured registry by default.

        Credentials are only sent to the configured registry.
        """
        if domain is None or self._is_configured_registry(domain):
            return RegistryConfig(
                url=self.registry_url,
                timeout=self.registry_timeout,
                insecure=self.registry_insecure,
                username=self.registry_username,
                password=self.registry_password,
            )
        return RegistryConfig(
            url=registry_url_for_domain(domain),
            timeout=self.registry_timeout,
            insecure=self.registry_insecure,
        )

    def client_factory(self, domain: str) -> RegistryClient:
        return RegistryClient(self.registry_config(domain))

    def create_store(self) -> Store:
        return Store(self.database_url)

    def _is_configured_registry(self, domain: str) -> bool:
        configured = self._registry_host()
        if domain == DOCKER_HUB_DOMAIN:
            return configured in ("registry-1.docker.io", "index.docker.io", DOCKER_HUB_DOMAIN)
        return configured == domain

    def _registry_host(self) -> str:
        url = self.registry_url if "://" in self.registry_url else f"https://{self.registry_url}"
        return urlparse(url).netloc
