"""Registry client core."""

from .registry_client import RegistryClient
from .types import RawManifest, RegistryConfig

__all__ = ["RawManifest", "RegistryClient", "RegistryConfig"]
