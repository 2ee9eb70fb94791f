"""Docker Registry API v2 async client implementation."""

import asyncio
import json
import logging
import re
import time
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import urljoin

import aiohttp

from ..exceptions import (
    ManifestError,
    ReferenceNotFoundError,
    RegistryConnectionError,
    RegistryError,
)
from ..utils.digest import calculate_digest, validate_digest, verify_digest
from .types import (
    DEFAULT_MANIFEST_ACCEPT,
    LEGACY_MANIFEST_ACCEPT,
    RawManifest,
    RegistryConfig,
)

logger = logging.getLogger(__name__)

# Matches key="value" pairs of a WWW-Authenticate challenge
CHALLENGE_PARAM_PATTERN = re.compile(r'(\w+)="([^"]*)"')
# Matches the next page of a paginated listing: <url>; rel="next"
LINK_NEXT_PATTERN = re.compile(r'<([^>]+)>\s*;\s*rel="?next"?')

TOKEN_TTL_SECONDS = 240


def parse_www_authenticate(header: Optional[str]) -> Optional[Dict[str, str]]:
    """Parse a Bearer WWW-Authenticate challenge.

    Args:
        header: WWW-Authenticate header value, e.g.
            'Bearer realm="https://auth.example.com/token",service="registry.example.com"'

    Returns:
        Dict with realm and optional service/scope, or None when the header
        is not a Bearer challenge with a realm
    """
    if not header or not header.lower().startswith("bearer "):
        return None

    params = dict(CHALLENGE_PARAM_PATTERN.findall(header[len("bearer ") :]))
    if "realm" not in params:
        return None

    return params


class RegistryClient:
    """Docker Registry API v2 async client for reading manifests and tags."""

    def __init__(
        self,
        config: RegistryConfig,
        connector: Optional[aiohttp.TCPConnector] = None,
    ) -> None:
        """Initialize the registry client.

        Args:
            config: Registry connection settings
            connector: aiohttp connector for connection pooling
        """
        self.config = config
        self.registry_url = config.base_url
        self.timeout = config.timeout
        self.connector = connector
        self.session: Optional[aiohttp.ClientSession] = None
        self._tokens: Dict[str, Tuple[str, float]] = {}

    async def __aenter__(self) -> "RegistryClient":
        """Enter async context manager."""
        if not self.session:
            self.session = aiohttp.ClientSession(
                connector=self.connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def check_registry_v2(self) -> bool:
        """Check if the registry supports v2 API.

        Returns:
            True if v2 API is supported
        """
        try:
            status, _, _ = await self._request("GET", "/v2/")
        except RegistryConnectionError:
            return False

        return status == 200

    async def list_tags(self, repository: str) -> List[str]:
        """List tags for a repository, following pagination links.

        Args:
            repository: Repository path (e.g., library/nginx)

        Returns:
            List of tag names

        Raises:
            ReferenceNotFoundError: If the repository does not exist
            RegistryConnectionError: If listing fails
        """
        tags: List[str] = []
        path: Optional[str] = f"/v2/{repository}/tags/list"
        scope = self._pull_scope(repository)

        while path:
            status, headers, body = await self._request("GET", path, scope=scope)
            self._check_status(status, f"listing tags of {repository}")
            data = self._decode_json(body, f"tag list of {repository}")
            tags.extend(data.get("tags") or [])

            path = None
            match = LINK_NEXT_PATTERN.search(headers.get("Link", ""))
            if match:
                path = match.group(1)

        return tags

    async def fetch_digest(
        self,
        repository: str,
        reference: str,
        accept: str = DEFAULT_MANIFEST_ACCEPT,
    ) -> str:
        """Resolve the content digest of a manifest.

        Args:
            repository: Repository path
            reference: Tag or digest reference
            accept: Accepted media types

        Returns:
            Manifest digest ("sha256:...")

        Raises:
            ReferenceNotFoundError: If the tag or repository does not exist
            RegistryConnectionError: If the request fails
        """
        if validate_digest(reference):
            return reference

        status, headers, _ = await self._request(
            "HEAD",
            f"/v2/{repository}/manifests/{reference}",
            headers={"Accept": accept},
            scope=self._pull_scope(repository),
        )
        self._check_status(status, f"resolving digest of {repository}:{reference}")

        digest = headers.get("Docker-Content-Digest", "")
        if validate_digest(digest):
            return digest

        # Some registries omit the header on HEAD; hash the body instead
        manifest = await self.get_manifest(repository, reference, accept=accept)
        return manifest.digest

    async def get_manifest(
        self,
        repository: str,
        reference: str,
        accept: str = DEFAULT_MANIFEST_ACCEPT,
    ) -> RawManifest:
        """Retrieve a manifest from the registry.

        Args:
            repository: Repository path
            reference: Tag or digest reference
            accept: Accepted media types

        Returns:
            Raw manifest with media type and digest

        Raises:
            ReferenceNotFoundError: If the manifest does not exist
            RegistryConnectionError: If retrieval fails
            ManifestError: If the content does not match a digest reference
        """
        status, headers, body = await self._request(
            "GET",
            f"/v2/{repository}/manifests/{reference}",
            headers={"Accept": accept},
            scope=self._pull_scope(repository),
        )
        self._check_status(status, f"fetching manifest {repository}:{reference}")

        media_type = headers.get("Content-Type", "").split(";", 1)[0].strip()
        if validate_digest(reference):
            if not verify_digest(body, reference):
                raise ManifestError(
                    f"Manifest {repository}@{reference} does not match its digest"
                )
            digest = reference
        else:
            digest = headers.get("Docker-Content-Digest", "")
            if not validate_digest(digest):
                digest = calculate_digest(body)

        return RawManifest(content=body, media_type=media_type, digest=digest)

    async def get_legacy_manifest(self, repository: str, tag: str) -> RawManifest:
        """Retrieve the schema 1 manifest of a tag.

        Registries convert schema 2 manifests on the fly, which is the only
        way to obtain the build history without downloading the config blob.
        """
        return await self.get_manifest(repository, tag, accept=LEGACY_MANIFEST_ACCEPT)

    def _pull_scope(self, repository: str) -> str:
        return f"repository:{repository}:pull"

    def _check_status(self, status: int, action: str) -> None:
        if status == 404:
            raise ReferenceNotFoundError(f"Not found while {action}")
        if status >= 400:
            raise RegistryConnectionError(f"Registry answered {status} while {action}")

    def _decode_json(self, body: bytes, what: str) -> Dict:
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise RegistryError(f"Invalid JSON in {what}: {e}") from e

        if not isinstance(data, dict):
            raise RegistryError(f"Unexpected response for {what}")

        return data

    async def _request(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        scope: Optional[str] = None,
    ) -> Tuple[int, Mapping[str, str], bytes]:
        """Send a request, negotiating a bearer token once on 401."""
        if self.session is None:
            raise RegistryConnectionError("Client session is not open")

        url = path if path.startswith("http") else urljoin(self.registry_url, path)
        request_headers = dict(headers or {})
        token = self._cached_token(scope)
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        for attempt in range(2):
            try:
                async with self.session.request(
                    method,
                    url,
                    headers=request_headers,
                    auth=self._basic_auth() if "Authorization" not in request_headers else None,
                    ssl=not self.config.insecure,
                ) as resp:
                    body = await resp.read()
                    status = resp.status
                    resp_headers = resp.headers
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise RegistryConnectionError(f"{method} {url} failed: {e}") from e

            if status != 401 or attempt == 1:
                return status, resp_headers, body

            challenge = parse_www_authenticate(resp_headers.get("WWW-Authenticate"))
            if challenge is None:
                return status, resp_headers, body

            token = await self._fetch_token(challenge, scope)
            request_headers["Authorization"] = f"Bearer {token}"

        return status, resp_headers, body

    def _basic_auth(self) -> Optional[aiohttp.BasicAuth]:
        if self.config.username is None:
            return None
        return aiohttp.BasicAuth(self.config.username, self.config.password or "")

    def _cached_token(self, scope: Optional[str]) -> Optional[str]:
        cached = self._tokens.get(scope or "")
        if cached and cached[1] > time.monotonic():
            return cached[0]
        return None

    async def _fetch_token(self, challenge: Dict[str, str], scope: Optional[str]) -> str:
        params = {}
        if challenge.get("service"):
            params["service"] = challenge["service"]
        if scope or challenge.get("scope"):
            params["scope"] = scope or challenge["scope"]

        logger.debug("Requesting token from %s for %s", challenge["realm"], params)
        try:
            async with self.session.get(
                challenge["realm"],
                params=params,
                auth=self._basic_auth(),
                ssl=not self.config.insecure,
            ) as resp:
                body = await resp.read()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RegistryConnectionError(f"Token request failed: {e}") from e

        if status >= 400:
            raise RegistryConnectionError(f"Token endpoint answered {status}")

        data = self._decode_json(body, "token response")
        token = data.get("token") or data.get("access_token")
        if not token:
            raise RegistryConnectionError("Token endpoint returned no token")

        self._tokens[scope or ""] = (token, time.monotonic() + TOKEN_TTL_SECONDS)
        return token
