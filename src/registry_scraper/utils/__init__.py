"""Utility functions for the registry scraper."""

from .digest import (
    EMPTY_GZIP_TAR_DIGEST,
    calculate_digest,
    short_digest,
    validate_digest,
    verify_digest,
)

__all__ = [
    "EMPTY_GZIP_TAR_DIGEST",
    "calculate_digest",
    "short_digest",
    "validate_digest",
    "verify_digest",
]
