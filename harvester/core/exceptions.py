"""Custom exception classes for the harvester."""

from typing import Optional


class HarvesterError(Exception):
    """Base exception for all harvester errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(HarvesterError):
    """Raised when a run cannot be set up (bad targets file, unknown strategy...)."""


class NavigationError(HarvesterError):
    """Raised when a target URL cannot be reached."""

    error_kind = "navigation"

    def __init__(self, target: str, message: str, url: Optional[str] = None):
        self.target = target
        self.url = url
        where = f" at {url}" if url else ""
        super().__init__(f"Navigation failed for {target}{where}: {message}")


class NavigationTimeoutError(NavigationError):
    """Raised when a navigation does not complete within its timeout."""

    error_kind = "timeout"


class BlockedError(HarvesterError):
    """Raised when a target answers with an anti-automation or rate-limit response."""

    error_kind = "blocked"

    def __init__(self, target: str, reason: str, url: Optional[str] = None):
        self.target = target
        self.reason = reason
        self.url = url
        where = f" at {url}" if url else ""
        super().__init__(f"Blocked by {target}{where}: {reason}")


class ExtractionError(HarvesterError):
    """Raised when a page loads but no plausible item can be extracted."""

    error_kind = "extraction"

    def __init__(self, target: str, strategy: str, message: str = "no plausible items found"):
        self.target = target
        self.strategy = strategy
        super().__init__(f"Extraction failed for {target} with {strategy}: {message}")


class BreakerOpenError(HarvesterError):
    """Raised when a target's circuit breaker refuses to run an operation."""

    def __init__(self, target: str, retry_in_seconds: Optional[float] = None):
        self.target = target
        self.retry_in_seconds = retry_in_seconds
        detail = f", retry in {retry_in_seconds:.0f}s" if retry_in_seconds is not None else ""
        super().__init__(f"Circuit breaker open for {target}{detail}")


class ItemRejected(HarvesterError):
    """Raised inside the pipeline when a raw item fails validation or scoring."""

    def __init__(self, reason: str, name: Optional[str] = None):
        self.reason = reason
        self.name = name
        super().__init__(f"Item rejected ({reason}): {name!r}")


class PersistenceError(HarvesterError):
    """Raised when session, report or catalog output cannot be written."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Could not persist {path}: {message}")


class CatalogError(HarvesterError):
    """Raised when the catalog collaborator rejects an upsert."""

    def __init__(self, item_id: str, message: str):
        self.item_id = item_id
        super().__init__(f"Catalog upsert failed for {item_id}: {message}")
