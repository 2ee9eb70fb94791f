"""Digest calculation and validation utilities."""

import hashlib
import re
from typing import Union

# Regex pattern for valid digest format (algorithm:encoded), OCI grammar
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")

SUPPORTED_ALGORITHMS = {"sha256": 64, "sha384": 96, "sha512": 128}

# Placeholder layer written by legacy build tooling; it carries no content
EMPTY_GZIP_TAR_DIGEST = (
    "sha256:a3ed95caeb02ffe68cdd9fd84406680ae93d633cb16422d00e8a7c22955b46d4"
)


def calculate_digest(data: Union[bytes, bytearray], algorithm: str = "sha256") -> str:
    """Calculate digest of data.

    Args:
        data: Data to hash
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Digest string in format "algorithm:hex"

    Raises:
        ValueError: If algorithm is not supported
        ValueError: If data is not bytes-like
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("Data must be bytes or bytearray")

    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    hasher.update(data)
    return f"{algorithm}:{hasher.hexdigest()}"


def validate_digest(digest: str) -> bool:
    """Validate digest format.

    Args:
        digest: Digest string to validate

    Returns:
        True if the algorithm is supported and the hex part has its length
    """
    if not isinstance(digest, str):
        return False

    if not DIGEST_PATTERN.match(digest):
        return False

    algorithm, encoded = digest.split(":", 1)
    expected_length = SUPPORTED_ALGORITHMS.get(algorithm)
    if expected_length is None:
        return False

    return len(encoded) == expected_length and all(
        c in "0123456789abcdef" for c in encoded
    )


def verify_digest(data: Union[bytes, bytearray], expected_digest: str) -> bool:
    """Verify data matches expected digest.

    Args:
        data: Data to verify
        expected_digest: Expected digest string

    Returns:
        True if data matches digest

    Raises:
        ValueError: If digest format is invalid
    """
    if not validate_digest(expected_digest):
        raise ValueError(f"Invalid digest format: {expected_digest}")

    algorithm, _ = expected_digest.split(":", 1)
    actual_digest = calculate_digest(data, algorithm)
    return actual_digest == expected_digest


def short_digest(digest: str, length: int = 12) -> str:
    """Shorten a digest for log output ("sha256:0123456789ab")."""
    if ":" not in digest:
        return digest[:length]

    algorithm, encoded = digest.split(":", 1)
    return f"{algorithm}:{encoded[:length]}"
