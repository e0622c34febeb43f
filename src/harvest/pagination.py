"""
Pagination controller for the listing page.

Drives one page through bounded iterations:

    LOADING -> WAITING_FOR_CONTENT -> EXTRACTING -> ADVANCING -> LOADING ...

and stops in DONE (bound reached, no next control, or advancing failed) or
FAILED (page did not load, or no listing entry appeared).
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from playwright.async_api import Page
from playwright.async_api import Error as PlaywrightError

from .config import CARD_SELECTOR, NEXT_BUTTON_SELECTOR, HarvestConfig
from .errors import ContentTimeoutError, NavigationError
from .events import ProgressEmitter
from .models import PageBatch, Phase

logger = logging.getLogger(__name__)

BatchHook = Callable[[Page, PageBatch], Awaitable[None]]

OUTER_HTML_JS = "(cards) => cards.map((card) => card.outerHTML)"
SCROLL_TO_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"


class PaginationState(str, Enum):
    """State of the pagination state machine."""
    LOADING = "loading"
    WAITING_FOR_CONTENT = "waiting_for_content"
    EXTRACTING = "extracting"
    ADVANCING = "advancing"
    DONE = "done"
    FAILED = "failed"


class PaginationController:
    """Collects one PageBatch per listing page, up to ``config.max_pages``."""

    def __init__(self, config: HarvestConfig, emitter: ProgressEmitter):
        self.config = config
        self.emitter = emitter
        self.state = PaginationState.LOADING
        self.iteration = 0

    async def run(self, page: Page, url: str, on_batch: Optional[BatchHook] = None) -> List[PageBatch]:
        """
        Run the state machine to exhaustion.

        Args:
            page: Listing page of the session
            url: First listing URL
            on_batch: Awaited with the live page after each batch is captured

        Returns:
            Batches in iteration order

        Raises:
            NavigationError: Page load failed or timed out
            ContentTimeoutError: No listing entry appeared
        """
        batches: List[PageBatch] = []
        current_url = url
        self.iteration = 1
        self.state = PaginationState.LOADING

        while self.state not in (PaginationState.DONE, PaginationState.FAILED):
            logger.debug(f"Pagination iteration {self.iteration}: {self.state.value}")

            if self.state == PaginationState.LOADING:
                await self._load(page, current_url)
                self.state = PaginationState.WAITING_FOR_CONTENT

            elif self.state == PaginationState.WAITING_FOR_CONTENT:
                await self._wait_for_content(page)
                self.state = PaginationState.EXTRACTING

            elif self.state == PaginationState.EXTRACTING:
                batch = await self._extract(page)
                batches.append(batch)
                if on_batch is not None:
                    await on_batch(page, batch)

                if self.iteration < self.config.max_pages:
                    self.state = PaginationState.ADVANCING
                else:
                    self.emitter.emit(Phase.SCRAPING, "Pagination limit reached.")
                    self.state = PaginationState.DONE

            elif self.state == PaginationState.ADVANCING:
                if await self._advance(page):
                    current_url = page.url
                    self.iteration += 1
                    self.state = PaginationState.LOADING
                else:
                    self.state = PaginationState.DONE

        logger.info(f"Pagination finished: {len(batches)} page(s), "
                    f"{sum(len(b) for b in batches)} fragment(s)")
        return batches

    async def _load(self, page: Page, url: str) -> None:
        self.emitter.emit(Phase.SCRAPING, "Loading listing page")
        try:
            await page.goto(url, wait_until="load", timeout=self.config.navigation_timeout)
        except PlaywrightError as e:
            self.state = PaginationState.FAILED
            raise NavigationError(f"Failed to load {url}: {e}") from e
        self.emitter.emit(Phase.SCRAPING, "Listing page loaded")

    async def _wait_for_content(self, page: Page) -> None:
        self.emitter.emit(Phase.SCRAPING, "Waiting for search result cards")
        try:
            await page.wait_for_selector(CARD_SELECTOR, timeout=self.config.content_timeout)
        except PlaywrightError as e:
            self.state = PaginationState.FAILED
            raise ContentTimeoutError(f"No search result cards on page {self.iteration}: {e}") from e
        self.emitter.emit(Phase.SCRAPING, "Search result cards found")

    async def _extract(self, page: Page) -> PageBatch:
        self.emitter.emit(Phase.SCRAPING, f"Extracting profile cards on page {self.iteration}")
        fragments = await page.eval_on_selector_all(CARD_SELECTOR, OUTER_HTML_JS)
        batch = PageBatch(iteration=self.iteration, fragments=tuple(fragments))
        self.emitter.emit(Phase.SCRAPING, f"Extracted {len(batch)} profile cards on page {self.iteration}")
        return batch

    async def _advance(self, page: Page) -> bool:
        """Click the last next control. False ends pagination without failing it."""
        self.emitter.emit(Phase.SCRAPING, "Attempting to navigate to next page")
        try:
            await page.evaluate(SCROLL_TO_BOTTOM_JS)
            await page.wait_for_timeout(self.config.settle_delay)

            # Earlier matches can be decorative; the last one paginates.
            next_buttons = await page.query_selector_all(NEXT_BUTTON_SELECTOR)
            if not next_buttons:
                self.emitter.emit(Phase.SCRAPING, "No next button found. Ending pagination.")
                return False

            async with page.expect_navigation(wait_until="load", timeout=self.config.next_page_timeout):
                await next_buttons[-1].click()
                self.emitter.emit(Phase.SCRAPING, "Clicked next button. Waiting for navigation")
        except PlaywrightError as e:
            self.emitter.emit(Phase.ERROR, "Error navigating to next page", error=str(e))
            return False

        self.emitter.emit(Phase.SCRAPING, "Browser navigated to next page")
        return True
