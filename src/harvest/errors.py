"""
Error taxonomy for the harvest pipeline.

- InputError: request rejected before any browser resource is acquired
- BrowserSetupError / CookieError: session could not be acquired
- NavigationError / ContentTimeoutError: fatal to the invocation
- PerEntityError: recovered inside the enricher and encoded into the record
- ExtractionServiceError / ExtractionParseError: recovered by degrading records
"""

from typing import Optional


class HarvestError(Exception):
    """Base class for all harvest failures."""


class InputError(HarvestError):
    """Missing or malformed caller input."""


class BrowserSetupError(HarvestError):
    """Browser process, context or page could not be created."""


class CookieError(BrowserSetupError):
    """Auth cookie set is malformed or was rejected by the browser context."""


class NavigationError(HarvestError):
    """Listing page did not load within the navigation timeout."""


class ContentTimeoutError(HarvestError):
    """No listing entry appeared within the content timeout."""


class PerEntityError(HarvestError):
    """Enrichment of a single entity failed."""

    def __init__(self, message: str, link: Optional[str] = None):
        super().__init__(message)
        self.link = link


class ExtractionServiceError(HarvestError):
    """Structured-extraction request failed at the service level."""


class ExtractionParseError(ExtractionServiceError):
    """Service answered, but the response is not a usable record array."""
