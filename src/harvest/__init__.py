"""
Profile harvesting pipeline.

This package drives an authenticated browser session through a paginated
listing page, reports progress to one observer, and turns the captured profile
cards into structured records (with a degrade-to-raw fallback).
"""

from .config import BatchFailurePolicy, HarvestConfig
from .errors import (
    BrowserSetupError,
    ContentTimeoutError,
    CookieError,
    ExtractionParseError,
    ExtractionServiceError,
    HarvestError,
    InputError,
    NavigationError,
    PerEntityError,
)
from .events import ProgressEmitter, SSEEvent
from .models import (
    AuthCookie,
    DegradedRecord,
    EnrichedRecord,
    HarvestMode,
    HarvestRequest,
    HarvestResult,
    PageBatch,
    Phase,
    ProfileRecord,
    ProgressEvent,
)
from .orchestrator import HarvestOrchestrator

__all__ = [
    # Config
    "BatchFailurePolicy",
    "HarvestConfig",
    # Errors
    "HarvestError",
    "InputError",
    "BrowserSetupError",
    "CookieError",
    "NavigationError",
    "ContentTimeoutError",
    "PerEntityError",
    "ExtractionServiceError",
    "ExtractionParseError",
    # Events
    "ProgressEmitter",
    "SSEEvent",
    # Models
    "AuthCookie",
    "DegradedRecord",
    "EnrichedRecord",
    "HarvestMode",
    "HarvestRequest",
    "HarvestResult",
    "PageBatch",
    "Phase",
    "ProfileRecord",
    "ProgressEvent",
    # Orchestrator
    "HarvestOrchestrator",
]
