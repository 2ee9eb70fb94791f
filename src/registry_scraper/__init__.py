"""Registry Scraper - crawls container registries and tracks latest tags and layer provenance."""

__version__ = "0.1.0"

from .config import Settings
from .core.registry_client import RegistryClient
from .core.types import RegistryConfig
from .exceptions import (
    DoesNotExist,
    IncomparableError,
    ManifestError,
    NotFoundError,
    ReferenceNotFoundError,
    RegistryConnectionError,
    RegistryError,
    RegistryScraperError,
    ScrapeError,
    StoreError,
    UnsupportedBySchemaError,
    UnsupportedEncodingError,
)
from .manifest import detect_schema, normalize
from .provenance import ProvenanceIndexer, SourceImageIDs
from .reference import ImageReference, parse_reference
from .registry import RegistryImage, Repository
from .scraper import Scraper
from .store import Store
from .updater import AllImagesUpdater, LatestImageUpdater, RunMetrics, WorkerPool
from .versions import VersionResolver, classify, find_latest

__all__ = [
    "AllImagesUpdater",
    "DoesNotExist",
    "ImageReference",
    "IncomparableError",
    "LatestImageUpdater",
    "ManifestError",
    "NotFoundError",
    "ProvenanceIndexer",
    "ReferenceNotFoundError",
    "RegistryClient",
    "RegistryConfig",
    "RegistryConnectionError",
    "RegistryError",
    "RegistryImage",
    "RegistryScraperError",
    "Repository",
    "RunMetrics",
    "ScrapeError",
    "Scraper",
    "Settings",
    "SourceImageIDs",
    "Store",
    "StoreError",
    "UnsupportedBySchemaError",
    "UnsupportedEncodingError",
    "VersionResolver",
    "WorkerPool",
    "classify",
    "detect_schema",
    "find_latest",
    "normalize",
    "parse_reference",
]
