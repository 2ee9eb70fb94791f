"""Test helpers: an in-memory registry and manifest builders."""

import json
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from registry_scraper.core.types import (
    MEDIA_TYPE_OCI_INDEX,
    MEDIA_TYPE_V1_SIGNED_MANIFEST,
    MEDIA_TYPE_V2_MANIFEST,
    MEDIA_TYPE_V2_MANIFEST_LIST,
    RawManifest,
)
from registry_scraper.exceptions import ReferenceNotFoundError, RegistryConnectionError
from registry_scraper.utils.digest import calculate_digest, validate_digest


def digest_of(name: str) -> str:
    """Deterministic sha256 digest for a short name ("ABC" -> sha256 of b"ABC")."""
    return calculate_digest(name.encode("utf-8"))


def modern_manifest(layers: list[str], config: str = "config") -> dict:
    """Schema 2 image manifest with the given layer digests."""
    return {
        "schemaVersion": 2,
        "mediaType": MEDIA_TYPE_V2_MANIFEST,
        "config": {
            "mediaType": "application/vnd.docker.container.image.v1+json",
            "size": 1469,
            "digest": digest_of(config),
        },
        "layers": [
            {
                "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
                "size": 100 + i,
                "digest": digest,
            }
            for i, digest in enumerate(layers)
        ],
    }


def history_entry(created: str, cmd: Optional[list[str]] = None, throwaway: bool = False) -> dict:
    compat = {"created": created, "container_config": {"Cmd": cmd or []}}
    if throwaway:
        compat["throwaway"] = True
    return {"v1Compatibility": json.dumps(compat)}


def legacy_manifest(layers: list[str], history: Optional[list[dict]] = None) -> dict:
    """Schema 1 manifest. ``layers`` are given base first and stored newest first."""
    return {
        "schemaVersion": 1,
        "name": "unit",
        "tag": "latest",
        "architecture": "amd64",
        "fsLayers": [{"blobSum": digest} for digest in reversed(layers)],
        "history": history
        if history is not None
        else [history_entry("2018-09-13T10:00:00.123456789Z", ["/bin/sh"])],
    }


def manifest_list(members: list[dict], oci: bool = False) -> dict:
    """Manifest list. ``members`` are dicts with digest and platform keys."""
    return {
        "schemaVersion": 2,
        "mediaType": MEDIA_TYPE_OCI_INDEX if oci else MEDIA_TYPE_V2_MANIFEST_LIST,
        "manifests": [
            {
                "mediaType": MEDIA_TYPE_V2_MANIFEST,
                "size": 528,
                "digest": member["digest"],
                "platform": member["platform"],
            }
            for member in members
        ],
    }


class FakeManifestLoader:
    """ManifestLoader over dicts, counting fetches."""

    def __init__(self, manifests: Optional[dict] = None, legacy: Optional[dict] = None):
        self.manifests = manifests or {}
        self.legacy = legacy if legacy is not None else legacy_manifest([])
        self.calls = Counter()

    async def fetch_manifest(self, digest: str) -> dict:
        self.calls["fetch_manifest"] += 1
        return self.manifests[digest]

    async def fetch_legacy_manifest(self) -> dict:
        self.calls["fetch_legacy_manifest"] += 1
        return self.legacy


class FakeRegistry:
    """In-memory registry shared by FakeRegistryClient instances."""

    def __init__(self):
        self.tags: dict[str, dict[str, str]] = {}  # repository path -> tag -> digest
        self.manifests: dict[str, RawManifest] = {}
        self.legacy: dict[tuple[str, str], dict] = {}
        self.unreachable: set[str] = set()
        self.calls = Counter()
        self.clients: list["FakeRegistryClient"] = []

    def push(
        self,
        repository: str,
        tag: str,
        document: dict,
        media_type: Optional[str] = None,
        digest: Optional[str] = None,
        history: Optional[list[dict]] = None,
    ) -> str:
        """Store a manifest under ``repository:tag`` and return its digest."""
        content = json.dumps(document, sort_keys=True).encode("utf-8")
        digest = digest or calculate_digest(content)
        media_type = media_type or document.get("mediaType") or MEDIA_TYPE_V1_SIGNED_MANIFEST
        self.manifests[digest] = RawManifest(content=content, media_type=media_type, digest=digest)
        self.tags.setdefault(repository, {})[tag] = digest
        self.legacy[(repository, tag)] = legacy_manifest([], history)
        return digest

    def add_manifest(self, document: dict) -> str:
        """Store an untagged manifest (e.g. a manifest list member)."""
        content = json.dumps(document, sort_keys=True).encode("utf-8")
        digest = calculate_digest(content)
        self.manifests[digest] = RawManifest(
            content=content, media_type=document.get("mediaType", ""), digest=digest
        )
        return digest

    def client(self, domain: str = "dev.local") -> "FakeRegistryClient":
        client = FakeRegistryClient(self, domain)
        self.clients.append(client)
        return client


class FakeRegistryClient:
    """Stands in for RegistryClient in scraper and updater tests."""

    def __init__(self, registry: FakeRegistry, domain: str):
        self.registry = registry
        self.domain = domain
        self.is_open = False

    async def __aenter__(self):
        self.is_open = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.is_open = False

    def _check(self, repository: str) -> None:
        if repository in self.registry.unreachable:
            raise RegistryConnectionError(f"{repository} is unreachable")

    async def list_tags(self, repository: str) -> list[str]:
        self.registry.calls["list_tags"] += 1
        self._check(repository)
        if repository not in self.registry.tags:
            raise ReferenceNotFoundError(f"Repository {repository} not found")
        return sorted(self.registry.tags[repository])

    async def fetch_digest(self, repository: str, reference: str, accept: str = "") -> str:
        self.registry.calls["fetch_digest"] += 1
        self._check(repository)
        if validate_digest(reference):
            return reference
        try:
            return self.registry.tags[repository][reference]
        except KeyError:
            raise ReferenceNotFoundError(f"{repository}:{reference} not found") from None

    async def get_manifest(self, repository: str, reference: str, accept: str = "") -> RawManifest:
        self.registry.calls["get_manifest"] += 1
        digest = await self.fetch_digest(repository, reference)
        try:
            return self.registry.manifests[digest]
        except KeyError:
            raise ReferenceNotFoundError(f"{repository}@{digest} not found") from None

    async def get_legacy_manifest(self, repository: str, tag: str) -> RawManifest:
        self.registry.calls["get_legacy_manifest"] += 1
        self._check(repository)
        document = self.registry.legacy.get((repository, tag))
        if document is None:
            raise ReferenceNotFoundError(f"{repository}:{tag} not found")
        content = json.dumps(document).encode("utf-8")
        return RawManifest(
            content=content,
            media_type=MEDIA_TYPE_V1_SIGNED_MANIFEST,
            digest=calculate_digest(content),
        )


class FakeClock:
    """Returns strictly increasing naive UTC datetimes."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now
