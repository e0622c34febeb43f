"""
Harvest configuration.

Selectors, the fixed browser identity and the timeouts used by every stage of
the pipeline. Runtime values come from the environment (``.env`` supported).
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import dotenv

dotenv.load_dotenv()

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

# Listing page selectors
CARD_SELECTOR = 'div[data-view-name="search-entity-result-universal-template"]'
NEXT_BUTTON_SELECTOR = 'button[aria-label="Next"]'
PROFILE_LINK_SELECTOR = "a[data-test-app-aware-link]"

DEFAULT_LABEL_MARKER = "Current company"
DEFAULT_ALLOWED_ORIGINS = ["http://localhost:3000", "http://localhost:3001"]

# Timeout configuration (in milliseconds)
NAVIGATION_TIMEOUT = 120000
CONTENT_TIMEOUT = 30000
SETTLE_DELAY = 5000
NEXT_PAGE_TIMEOUT = 30000
DETAIL_NAVIGATION_TIMEOUT = 60000
DETAIL_LABEL_TIMEOUT = 10000


class BatchFailurePolicy(str, Enum):
    """How far a failed extraction batch degrades the result set."""
    ALL_OR_NOTHING = "all_or_nothing"
    PER_BATCH = "per_batch"


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class HarvestConfig:
    """Settings for one harvest invocation."""
    max_pages: int = 2
    max_entities: Optional[int] = None
    headless: bool = True
    user_agent: str = USER_AGENT
    navigation_timeout: int = NAVIGATION_TIMEOUT
    content_timeout: int = CONTENT_TIMEOUT
    settle_delay: int = SETTLE_DELAY
    next_page_timeout: int = NEXT_PAGE_TIMEOUT
    detail_navigation_timeout: int = DETAIL_NAVIGATION_TIMEOUT
    detail_label_timeout: int = DETAIL_LABEL_TIMEOUT
    label_marker: str = DEFAULT_LABEL_MARKER
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    extraction_timeout_s: float = 120.0
    batch_failure_policy: BatchFailurePolicy = BatchFailurePolicy.ALL_OR_NOTHING

    def __post_init__(self):
        if self.max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        if self.max_entities is not None and self.max_entities < 1:
            raise ValueError("max_entities must be at least 1 when set")
        self.batch_failure_policy = BatchFailurePolicy(self.batch_failure_policy)

    @classmethod
    def from_env(cls) -> "HarvestConfig":
        """
        Build a config from environment variables.

        Unset variables fall back to the dataclass defaults.
        """
        return cls(
            max_pages=_env_int("HARVEST_MAX_PAGES", 2),
            max_entities=_env_int("HARVEST_MAX_ENTITIES", None),
            headless=_env_bool("HARVEST_HEADLESS", True),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            extraction_timeout_s=float(os.getenv("OPENAI_TIMEOUT", "120")),
            batch_failure_policy=BatchFailurePolicy(
                os.getenv("HARVEST_BATCH_FAILURE_POLICY", BatchFailurePolicy.ALL_OR_NOTHING.value)
            ),
        )


def get_allowed_origins() -> List[str]:
    """Origins allowed to call the HTTP API (comma separated in CORS_ALLOWED_ORIGINS)."""
    raw = os.getenv("CORS_ALLOWED_ORIGINS")
    if not raw:
        return list(DEFAULT_ALLOWED_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
