"""Custom exceptions for the registry scraper."""


class RegistryScraperError(Exception):
    """Base exception for all scraper-related errors."""

    pass


class NotFoundError(RegistryScraperError):
    """Raised when a requested object does not exist.

    This is an expected condition that drives create-vs-update decisions.
    """

    pass


class DoesNotExist(NotFoundError):
    """Raised when the store has no row matching the query."""

    pass


class RegistryError(RegistryScraperError):
    """Base exception for registry-related errors."""

    pass


class ReferenceNotFoundError(RegistryError, NotFoundError):
    """Raised when the registry does not know a repository, tag or digest."""

    pass


class RegistryConnectionError(RegistryError):
    """Raised when the registry is unreachable or answers with an error."""

    pass


class ManifestError(RegistryError):
    """Raised when a manifest cannot be read or resolved."""

    pass


class UnsupportedEncodingError(ManifestError):
    """Raised when the top-level manifest encoding is not recognized."""

    pass


class UnsupportedBySchemaError(ManifestError):
    """Raised when a field is queried that the manifest schema does not carry."""

    pass


class IncomparableError(RegistryScraperError):
    """Raised when two version parsers cannot be ordered."""

    pass


class StoreError(RegistryScraperError):
    """Raised when a persistence operation fails."""

    pass


class ScrapeError(RegistryScraperError):
    """Raised when a scrape step fails. The cause is chained."""

    pass
