"""Repository and image handles binding a registry client to the normalizer."""

import logging
from typing import Any, Optional, Union

from .core.registry_client import RegistryClient
from .core.types import LEGACY_MEDIA_TYPES, RawManifest
from .exceptions import ManifestError
from .manifest import Platform, SchemaKind, detect_schema, normalize
from .reference import ImageReference, parse_reference

logger = logging.getLogger(__name__)


class Repository:
    """A repository on one registry."""

    def __init__(self, client: RegistryClient, name: Union[str, ImageReference]) -> None:
        self.client = client
        self.reference = parse_reference(name) if isinstance(name, str) else name

    @property
    def name(self) -> str:
        """Full repository name, ``<domain>/<path>``."""
        return self.reference.full_name

    @property
    def path(self) -> str:
        return self.reference.path

    def __repr__(self) -> str:
        return f"Repository({self.name!r})"

    async def tags(self) -> list[str]:
        return await self.client.list_tags(self.path)

    def image(self, tag: Optional[str] = None, digest: Optional[str] = None) -> "RegistryImage":
        if tag is None and digest is None:
            raise ValueError("An image needs a tag or a digest")
        reference = ImageReference(
            domain=self.reference.domain, path=self.reference.path, tag=tag, digest=digest
        )
        return RegistryImage(self, reference)


class RegistryImage:
    """An image of a repository, addressed by tag and/or digest.

    Registry lookups are cached per instance. The image also serves as the
    ManifestLoader of its own platforms.
    """

    def __init__(self, repository: Repository, reference: ImageReference) -> None:
        self.repository = repository
        self.reference = reference
        self._digest = reference.digest
        self._raw: Optional[RawManifest] = None
        self._document: Optional[dict[str, Any]] = None
        self._kind: Optional[SchemaKind] = None

    @property
    def client(self) -> RegistryClient:
        return self.repository.client

    @property
    def name(self) -> str:
        return self.repository.name

    @property
    def tag(self) -> Optional[str]:
        return self.reference.tag

    def __str__(self) -> str:
        return str(self.reference)

    def __repr__(self) -> str:
        return f"RegistryImage({str(self.reference)!r})"

    async def digest(self) -> str:
        """Manifest digest, fetched once."""
        if self._digest is None:
            self._digest = await self.client.fetch_digest(
                self.repository.path, self.reference.reference
            )
        return self._digest

    async def raw_manifest(self) -> RawManifest:
        # By tag when possible: signed schema 1 bodies do not hash to their digest
        if self._raw is None:
            digest = await self.digest()
            raw = await self.client.get_manifest(self.repository.path, self.tag or digest)
            if raw.media_type not in LEGACY_MEDIA_TYPES and raw.digest != digest:
                # The tag moved between the digest lookup and the fetch
                raise ManifestError(f"{self} now points to {raw.digest}, expected {digest}")
            self._raw = raw
        return self._raw

    async def schema(self) -> SchemaKind:
        if self._kind is None:
            raw = await self.raw_manifest()
            self._document = raw.json()
            self._kind = detect_schema(self._document, raw.media_type)
        return self._kind

    async def schema_version(self) -> int:
        return 1 if await self.schema() is SchemaKind.LEGACY else 2

    async def platforms(self) -> list[Platform]:
        """이미지의 플랫폼 목록을 조회합니다.

        Returns:
            list[Platform]: 아직 resolve되지 않았을 수 있는 플랫폼 목록

        Raises:
            ReferenceNotFoundError: 이미지가 레지스트리에 없는 경우
            UnsupportedEncodingError: 알 수 없는 매니페스트 형식인 경우

        Examples:
            image = Repository(client, "nginx").image(tag="1.25")
            for platform in await image.platforms():
                manifest = await platform.resolve()
                print(platform, len(manifest.layers))
        """
        kind = await self.schema()
        return normalize(self._document, kind, digest=await self.digest(), loader=self)

    async def fetch_manifest(self, digest: str) -> dict[str, Any]:
        raw = await self.client.get_manifest(self.repository.path, digest)
        return raw.json()

    async def fetch_legacy_manifest(self) -> dict[str, Any]:
        if not self.tag:
            raise ManifestError(f"{self} has no tag to fetch build history with")
        logger.debug("Fetching schema 1 manifest of %s for history", self)
        raw = await self.client.get_legacy_manifest(self.repository.path, self.tag)
        return raw.json()
