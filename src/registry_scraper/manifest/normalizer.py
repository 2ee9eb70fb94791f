"""Normalization of registry manifests into Platform/Manifest/Layer values."""

import json
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol

from ..core.types import (
    LEGACY_MEDIA_TYPES,
    LIST_MEDIA_TYPES,
    MEDIA_TYPE_V1_SIGNED_MANIFEST,
    MEDIA_TYPE_V2_MANIFEST,
    MODERN_MEDIA_TYPES,
)
from ..exceptions import ManifestError, UnsupportedEncodingError
from ..utils.digest import EMPTY_GZIP_TAR_DIGEST
from .models import Config, HistoryEntry, Layer, Manifest, Platform, SchemaKind

DEFAULT_ARCHITECTURE = "amd64"
DEFAULT_OS = "linux"

# Fractional seconds beyond microseconds (Go writes nanoseconds)
FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")

# Field errors raised while reading a manifest of the wrong shape
MALFORMED_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


class ManifestLoader(Protocol):
    """Fetches the manifests a normalized image resolves lazily."""

    async def fetch_manifest(self, digest: str) -> Dict[str, Any]:
        """Return the decoded manifest stored under ``digest``."""
        ...

    async def fetch_legacy_manifest(self) -> Dict[str, Any]:
        """Return the decoded schema 1 manifest of the image's tag."""
        ...


@contextmanager
def _reading(what: str) -> Iterator[None]:
    try:
        yield
    except MALFORMED_ERRORS as e:
        raise ManifestError(f"Malformed {what}: {e!r}") from e


def detect_schema(document: Dict[str, Any], media_type: Optional[str] = None) -> SchemaKind:
    """Classify a decoded manifest.

    Args:
        document: Decoded manifest JSON
        media_type: Content-Type reported by the registry, if any

    Returns:
        The manifest encoding

    Raises:
        UnsupportedEncodingError: If the encoding is not recognized
    """
    declared = document.get("mediaType") or media_type or ""
    schema_version = document.get("schemaVersion")

    if declared in LIST_MEDIA_TYPES or (
        schema_version == 2 and "manifests" in document and "layers" not in document
    ):
        return SchemaKind.LIST

    if declared in MODERN_MEDIA_TYPES or (
        schema_version == 2 and "layers" in document
    ):
        return SchemaKind.MODERN

    if declared in LEGACY_MEDIA_TYPES or schema_version == 1:
        return SchemaKind.LEGACY

    raise UnsupportedEncodingError(
        f"Unknown manifest encoding (mediaType={declared!r}, schemaVersion={schema_version!r})"
    )


def normalize(
    document: Dict[str, Any],
    kind: SchemaKind,
    *,
    digest: Optional[str] = None,
    loader: Optional[ManifestLoader] = None,
) -> List[Platform]:
    """매니페스트를 플랫폼 목록으로 정규화합니다.

    Args:
        document: 디코딩된 매니페스트 JSON
        kind: detect_schema()로 판별한 매니페스트 인코딩
        digest: 이미지 digest (LEGACY, MODERN에 필요)
        loader: 지연 조회에 사용할 ManifestLoader (MODERN, LIST에 필요)

    Returns:
        list[Platform]: 플랫폼 목록. LEGACY/MODERN은 amd64/linux 하나.

    Raises:
        UnsupportedEncodingError: 알 수 없는 인코딩인 경우
        ManifestError: 매니페스트 내용이 잘못된 경우
        ValueError: 필요한 digest 또는 loader가 없는 경우

    Examples:
        # 레지스트리에서 받은 매니페스트 정규화
        document = raw.json()
        platforms = normalize(document, detect_schema(document, raw.media_type),
                              digest=raw.digest, loader=loader)
        for platform in platforms:
            manifest = await platform.resolve()
            print(platform.architecture, [l.digest for l in manifest.layers])
    """
    if kind is SchemaKind.LEGACY:
        if not digest:
            raise ValueError("Schema 1 manifests need the pre-fetched image digest")
        with _reading("schema 1 manifest"):
            return [_legacy_platform(document, digest)]

    if loader is None:
        raise ValueError(f"{kind.value} manifests need a loader")

    if kind is SchemaKind.MODERN:
        with _reading("schema 2 manifest"):
            manifest = _modern_manifest(document, loader)
        return [
            Platform(
                architecture=DEFAULT_ARCHITECTURE,
                os=DEFAULT_OS,
                digest=digest or "",
                manifest=manifest,
            )
        ]

    if kind is SchemaKind.LIST:
        with _reading("manifest list"):
            return _list_platforms(document, loader)

    raise UnsupportedEncodingError(f"Unknown manifest encoding {kind!r}")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp; None if missing or malformed."""
    if not isinstance(value, str) or not value:
        return None

    text = FRACTION_PATTERN.sub(r"\1", value.replace("Z", "+00:00"))
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_history(entries: Iterable[Dict[str, Any]]) -> List[HistoryEntry]:
    """Parse schema 1 history (newest first) into oldest-first entries.

    Raises:
        ManifestError: If a v1Compatibility blob is not valid JSON
    """
    history: List[HistoryEntry] = []
    for entry in entries:
        raw = entry.get("v1Compatibility", "{}")
        try:
            compat = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise ManifestError(f"Invalid v1Compatibility entry: {e}") from e

        container_config = compat.get("container_config") or {}
        history.append(
            HistoryEntry(
                created=parse_timestamp(compat.get("created")),
                created_by=" ".join(container_config.get("Cmd") or []),
                author=compat.get("author", ""),
                comment=compat.get("comment", ""),
                empty_layer=bool(compat.get("throwaway", False)),
            )
        )

    history.reverse()
    return history


def collapse_layers(descriptors: Iterable[Dict[str, Any]]) -> List[Layer]:
    """Build schema 2 layers, dropping the empty layer and repeated digests."""
    layers: List[Layer] = []
    seen = set()
    for descriptor in descriptors:
        digest = descriptor.get("digest", "")
        if not digest or digest == EMPTY_GZIP_TAR_DIGEST or digest in seen:
            continue

        seen.add(digest)
        layers.append(
            Layer(
                digest=digest,
                schema_version=2,
                raw_media_type=descriptor.get("mediaType", ""),
                raw_size=int(descriptor.get("size", 0)),
            )
        )

    return layers


def _legacy_platform(document: Dict[str, Any], digest: str) -> Platform:
    fs_layers = document.get("fsLayers")
    if not isinstance(fs_layers, list):
        raise ManifestError("Schema 1 manifest has no fsLayers")

    layers = [
        Layer(digest=fs_layer["blobSum"], schema_version=1)
        for fs_layer in reversed(fs_layers)
        if fs_layer.get("blobSum") and fs_layer["blobSum"] != EMPTY_GZIP_TAR_DIGEST
    ]
    config = Config(
        digest=digest,
        history=tuple(parse_history(document.get("history") or [])),
        schema_version=1,
    )
    manifest = Manifest(
        schema_version=1,
        media_type=document.get("mediaType", MEDIA_TYPE_V1_SIGNED_MANIFEST),
        layers=layers,
        config=config,
    )
    return Platform(
        architecture=DEFAULT_ARCHITECTURE,
        os=DEFAULT_OS,
        digest=digest,
        manifest=manifest,
    )


def _modern_manifest(document: Dict[str, Any], loader: ManifestLoader) -> Manifest:
    raw_config = document.get("config")
    if not isinstance(raw_config, dict) or "digest" not in raw_config:
        raise ManifestError("Schema 2 manifest has no config descriptor")

    async def load_config() -> Config:
        legacy = await loader.fetch_legacy_manifest()
        with _reading("image config"):
            return Config(
                digest=raw_config["digest"],
                history=tuple(parse_history(legacy.get("history") or [])),
                schema_version=2,
                raw_media_type=raw_config.get("mediaType", ""),
                raw_size=int(raw_config.get("size", 0)),
            )

    return Manifest(
        schema_version=int(document.get("schemaVersion", 2)),
        media_type=document.get("mediaType", MEDIA_TYPE_V2_MANIFEST),
        layers=collapse_layers(document.get("layers") or []),
        config_loader=load_config,
    )


def _list_platforms(document: Dict[str, Any], loader: ManifestLoader) -> List[Platform]:
    members = document.get("manifests")
    if not isinstance(members, list):
        raise ManifestError("Manifest list has no manifests")

    platforms: List[Platform] = []
    for member in members:
        member_digest = member.get("digest", "")
        spec = member.get("platform") or {}

        async def load_manifest(member_digest: str = member_digest) -> Manifest:
            member_document = await loader.fetch_manifest(member_digest)
            if detect_schema(member_document) is not SchemaKind.MODERN:
                raise UnsupportedEncodingError(
                    f"Manifest list member {member_digest} is not an image manifest"
                )
            with _reading(f"manifest {member_digest}"):
                return _modern_manifest(member_document, loader)

        platforms.append(
            Platform(
                architecture=spec.get("architecture", ""),
                os=spec.get("os", ""),
                digest=member_digest,
                os_version=spec.get("os.version", ""),
                variant=spec.get("variant", ""),
                features=spec.get("features") or [],
                os_features=spec.get("os.features") or [],
                manifest_loader=load_manifest,
            )
        )

    return platforms
