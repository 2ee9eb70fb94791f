"""Core data types shared by the registry client and the normalizer."""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from ..exceptions import ManifestError

MEDIA_TYPE_V1_MANIFEST = "application/vnd.docker.distribution.manifest.v1+json"
MEDIA_TYPE_V1_SIGNED_MANIFEST = (
    "application/vnd.docker.distribution.manifest.v1+prettyjws"
)
MEDIA_TYPE_V2_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_V2_MANIFEST_LIST = (
    "application/vnd.docker.distribution.manifest.list.v2+json"
)
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"

LEGACY_MEDIA_TYPES = (MEDIA_TYPE_V1_MANIFEST, MEDIA_TYPE_V1_SIGNED_MANIFEST)
MODERN_MEDIA_TYPES = (MEDIA_TYPE_V2_MANIFEST, MEDIA_TYPE_OCI_MANIFEST)
LIST_MEDIA_TYPES = (MEDIA_TYPE_V2_MANIFEST_LIST, MEDIA_TYPE_OCI_INDEX)

# Accept header for "whatever the tag points at"
DEFAULT_MANIFEST_ACCEPT = ", ".join(
    LIST_MEDIA_TYPES + MODERN_MEDIA_TYPES + LEGACY_MEDIA_TYPES
)
LEGACY_MANIFEST_ACCEPT = ", ".join(LEGACY_MEDIA_TYPES)


@dataclass
class RegistryConfig:
    """Connection settings for one registry."""

    url: str
    timeout: int = 30
    insecure: bool = False
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    @property
    def base_url(self) -> str:
        """Registry URL without trailing slash, scheme defaulted to https."""
        url = self.url.rstrip("/")
        if "://" not in url:
            url = f"https://{url}"
        return url


@dataclass
class RawManifest:
    """Manifest bytes as served by the registry."""

    content: bytes
    media_type: str
    digest: str

    def json(self) -> dict[str, Any]:
        """Decode the manifest body.

        Raises:
            ManifestError: If the body is not a JSON object
        """
        try:
            document = json.loads(self.content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ManifestError(f"Manifest {self.digest} is not valid JSON: {e}") from e

        if not isinstance(document, dict):
            raise ManifestError(f"Manifest {self.digest} is not a JSON object")

        return document
