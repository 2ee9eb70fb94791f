"""Uniform value model for normalized manifests."""

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence

from ..exceptions import ManifestError, UnsupportedBySchemaError


class SchemaKind(enum.Enum):
    """Top-level manifest encodings understood by the normalizer."""

    LEGACY = "legacy"  # schema 1, single platform
    MODERN = "modern"  # schema 2 / OCI image manifest, single platform
    LIST = "list"  # manifest list / OCI image index


@dataclass(frozen=True)
class HistoryEntry:
    """One build step of an image."""

    created: Optional[datetime] = None
    created_by: str = ""
    author: str = ""
    comment: str = ""
    empty_layer: bool = False


@dataclass(frozen=True)
class Layer:
    """A filesystem layer referenced by a manifest."""

    digest: str
    schema_version: int = 2
    raw_media_type: str = ""
    raw_size: int = 0

    @property
    def media_type(self) -> str:
        if self.schema_version == 1:
            raise UnsupportedBySchemaError("Schema 1 layers do not carry a media type")
        return self.raw_media_type

    @property
    def size(self) -> int:
        if self.schema_version == 1:
            raise UnsupportedBySchemaError("Schema 1 layers do not carry a size")
        return self.raw_size


@dataclass(frozen=True)
class Config:
    """Image configuration: digest plus build history (oldest first)."""

    digest: str
    history: Sequence[HistoryEntry] = field(default_factory=tuple)
    schema_version: int = 2
    raw_media_type: str = ""
    raw_size: int = 0

    @property
    def media_type(self) -> str:
        if self.schema_version == 1:
            raise UnsupportedBySchemaError("Schema 1 configs do not carry a media type")
        return self.raw_media_type

    @property
    def size(self) -> int:
        if self.schema_version == 1:
            raise UnsupportedBySchemaError("Schema 1 configs do not carry a size")
        return self.raw_size

    @property
    def created(self) -> Optional[datetime]:
        """Creation time of the newest history entry that has one."""
        for entry in reversed(self.history):
            if entry.created is not None:
                return entry.created
        return None


class Manifest:
    """Layers of one platform plus its (possibly not yet resolved) config."""

    def __init__(
        self,
        schema_version: int,
        media_type: str,
        layers: List[Layer],
        config: Optional[Config] = None,
        config_loader: Optional[Callable[[], Awaitable[Config]]] = None,
    ) -> None:
        if config is None and config_loader is None:
            raise ValueError("Manifest needs a config or a config loader")

        self.schema_version = schema_version
        self.media_type = media_type
        self.layers = layers
        self._config = config
        self._config_loader = config_loader
        self._lock = asyncio.Lock()

    @property
    def config(self) -> Config:
        if self._config is None:
            raise ManifestError("Config has not been resolved yet")
        return self._config

    @property
    def is_config_resolved(self) -> bool:
        return self._config is not None

    async def resolve_config(self) -> Config:
        """Resolve the config once and cache it."""
        if self._config is not None:
            return self._config

        async with self._lock:
            if self._config is None:
                self._config = await self._config_loader()
        return self._config


class Platform:
    """One architecture/OS specific manifest of an image.

    A platform starts as a reference (metadata and digest). ``resolve`` loads
    its manifest once; afterwards ``manifest`` is available.
    """

    def __init__(
        self,
        architecture: str,
        os: str,
        digest: str = "",
        os_version: str = "",
        variant: str = "",
        features: Sequence[str] = (),
        os_features: Sequence[str] = (),
        manifest: Optional[Manifest] = None,
        manifest_loader: Optional[Callable[[], Awaitable[Manifest]]] = None,
    ) -> None:
        if manifest is None and manifest_loader is None:
            raise ValueError("Platform needs a manifest or a manifest loader")

        self.architecture = architecture
        self.os = os
        self.digest = digest
        self.os_version = os_version
        self.variant = variant
        self.features = list(features)
        self.os_features = list(os_features)
        self._manifest = manifest
        self._manifest_loader = manifest_loader
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return (
            f"Platform({self.os}/{self.architecture}"
            f"{'/' + self.variant if self.variant else ''}, digest={self.digest!r})"
        )

    @property
    def is_resolved(self) -> bool:
        return self._manifest is not None

    @property
    def manifest(self) -> Manifest:
        if self._manifest is None:
            raise ManifestError(f"Manifest of {self!r} has not been resolved yet")
        return self._manifest

    async def resolve(self) -> Manifest:
        """Resolve the manifest and its config once and cache them."""
        if self._manifest is None:
            async with self._lock:
                if self._manifest is None:
                    self._manifest = await self._manifest_loader()

        await self._manifest.resolve_config()
        return self._manifest
