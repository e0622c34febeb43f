"""
Pydantic models for harvest inputs, progress events and results.

- AuthCookie: caller-supplied cookie injected into the browser context
- ProgressEvent: one phase-tagged status message
- ProfileRecord / EnrichedRecord / DegradedRecord: the structured records
- HarvestResult: the payload returned by one invocation
- PageBatch: fragments captured on one pagination iteration
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class Phase(str, Enum):
    """Pipeline phase a progress event belongs to."""
    BROWSER_SETUP = "browser-setup"
    SCRAPING = "scraping"
    EXTRACTING = "extracting"
    FINISHING = "finishing"
    ERROR = "error"


class HarvestMode(str, Enum):
    """Which pipeline variant an invocation runs."""
    EXTRACT = "extract"
    ENRICH = "enrich"


class AuthCookie(BaseModel):
    """Cookie in the shape accepted by ``BrowserContext.add_cookies``."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(..., min_length=1, description="Cookie name")
    value: str = Field(..., description="Cookie value")
    url: Optional[str] = Field(None, description="URL the cookie applies to")
    domain: Optional[str] = Field(None, description="Cookie domain")
    path: Optional[str] = Field(None, description="Cookie path")
    expires: Optional[float] = Field(None, description="Unix time in seconds")
    http_only: Optional[bool] = Field(None, alias="httpOnly")
    secure: Optional[bool] = None
    same_site: Optional[Literal["Strict", "Lax", "None"]] = Field(None, alias="sameSite")

    @model_validator(mode="after")
    def _check_scope(self) -> "AuthCookie":
        if self.url:
            return self
        if not (self.domain and self.path):
            raise ValueError(f"cookie '{self.name}' needs either url or domain and path")
        return self

    def to_playwright(self) -> Dict[str, Any]:
        """Serialize exactly the fields the caller supplied."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ProgressEvent(BaseModel):
    """A single status message pushed to the observer."""
    phase: Phase = Field(..., description="Pipeline phase")
    message: str = Field(..., description="Human-readable status message")
    error: Optional[str] = Field(None, description="Error detail for error-phase events")

    def payload(self) -> Dict[str, Any]:
        """Wire payload without the phase (the phase is the SSE event name)."""
        return self.model_dump(mode="json", exclude={"phase"}, exclude_none=True)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ProfileRecord(_CamelModel):
    """Profile fields extracted from one listing card."""
    name: Optional[str] = None
    headline: Optional[str] = None
    location: Optional[str] = None
    current_company: Optional[str] = None
    profile_photo_url: Optional[str] = None
    profile_url: Optional[str] = None


class EnrichedRecord(_CamelModel):
    """Record produced by the per-entity detail enricher."""
    profile: Optional[str] = Field(None, description="Detail page URL")
    current_company: Optional[str] = None
    error: Optional[str] = None


class DegradedRecord(_CamelModel):
    """Stand-in for a record when structured extraction failed."""
    error: str = "processing failed"
    raw_fragment: str


StructuredRecord = Union[ProfileRecord, EnrichedRecord, DegradedRecord]


class HarvestResult(BaseModel):
    """Return value of one harvest invocation."""
    results: List[StructuredRecord] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {"results": [record.model_dump(by_alias=True) for record in self.results]}


class HarvestRequest(BaseModel):
    """Body of the synchronous scrape call."""
    url: Optional[str] = Field(None, description="Listing page URL")
    fields: List[str] = Field(default_factory=list, description="Requested fields (currently unused)")
    cookies: List[Dict[str, Any]] = Field(default_factory=list, description="Auth cookies")
    mode: HarvestMode = Field(HarvestMode.EXTRACT, description="Pipeline variant")


@dataclass(frozen=True)
class PageBatch:
    """Fragments captured on one pagination iteration, in DOM order."""
    iteration: int
    fragments: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.fragments)
