"""Image reference parsing."""

from dataclasses import dataclass
from typing import Optional

from .utils.digest import validate_digest

DOCKER_HUB_DOMAIN = "docker.io"
DOCKER_HUB_REGISTRY_URL = "https://registry-1.docker.io"
DEFAULT_TAG = "latest"


@dataclass(frozen=True)
class ImageReference:
    """A parsed image reference: ``domain/path[:tag][@digest]``."""

    domain: str
    path: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def full_name(self) -> str:
        """Repository name including the registry domain."""
        return f"{self.domain}/{self.path}"

    @property
    def reference(self) -> str:
        """Digest if known, the tag otherwise."""
        return self.digest or self.tag or DEFAULT_TAG

    def __str__(self) -> str:
        result = self.full_name
        if self.tag:
            result += f":{self.tag}"
        if self.digest:
            result += f"@{self.digest}"
        return result


def _is_domain(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def parse_reference(image: str) -> ImageReference:
    """이미지 참조 문자열을 구성요소로 파싱합니다.

    Args:
        image: 이미지 참조
            - 예: "nginx:alpine", "localhost:5000/myapp:latest"
            - digest 포함: "registry.io/company/app@sha256:..."

    Returns:
        ImageReference: 도메인, 경로, 태그, digest

    Raises:
        ValueError: 참조가 비어 있거나 digest가 잘못된 경우

    Examples:
        # Docker Hub 이미지
        parse_reference("nginx:1.25")
        # 결과: ImageReference("docker.io", "library/nginx", "1.25")

        # 포트가 포함된 레지스트리, 태그 없음
        parse_reference("localhost:5000/myapp")
        # 결과: ImageReference("localhost:5000", "myapp", "latest")
    """
    if not image or not image.strip():
        raise ValueError("Image reference must not be empty")

    remainder = image.strip()
    digest: Optional[str] = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not validate_digest(digest):
            raise ValueError(f"Invalid digest in reference {image}: {digest}")

    # Split only on a ':' after the last '/' so registry ports survive
    tag: Optional[str] = None
    last_slash = remainder.rfind("/")
    last_colon = remainder.rfind(":")
    if last_colon > last_slash:
        remainder, tag = remainder[:last_colon], remainder[last_colon + 1 :]
        if not tag:
            tag = None

    components = remainder.split("/")
    if len(components) > 1 and _is_domain(components[0]):
        domain = components[0]
        path = "/".join(components[1:])
    else:
        domain = DOCKER_HUB_DOMAIN
        path = remainder

    if domain in ("index.docker.io", "registry-1.docker.io"):
        domain = DOCKER_HUB_DOMAIN
    if domain == DOCKER_HUB_DOMAIN and "/" not in path:
        path = f"library/{path}"

    if not path:
        raise ValueError(f"Image reference {image} has no repository path")

    if tag is None and digest is None:
        tag = DEFAULT_TAG

    return ImageReference(domain=domain, path=path, tag=tag, digest=digest)


def registry_url_for_domain(domain: str) -> str:
    """Map a reference domain to the URL of its registry API."""
    if domain == DOCKER_HUB_DOMAIN:
        return DOCKER_HUB_REGISTRY_URL
    return f"https://{domain}"
