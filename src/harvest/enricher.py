"""
Per-entity detail enricher.

For each listing entity: read the detail link, open the detail view in a fresh
page, and pull one attribute out of an accessible label of the form
``"<marker>: <value>. <suffix>"``. Every selected entity yields exactly one
EnrichedRecord; failures are encoded into the record instead of raised.
"""

import logging
import re
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.async_api import Page
from playwright.async_api import Error as PlaywrightError

from .config import CARD_SELECTOR, PROFILE_LINK_SELECTOR, HarvestConfig
from .errors import PerEntityError
from .events import ProgressEmitter
from .models import EnrichedRecord, PageBatch, Phase
from .session import Session

logger = logging.getLogger(__name__)

LINK_NOT_FOUND = "link not found"


def label_pattern(marker: str) -> re.Pattern:
    """Regex capturing ``value`` from ``"<marker>: <value>. <suffix>"``, up to the last ``". "``."""
    return re.compile(rf"^{re.escape(marker)}:\s*(?P<value>.+)\.\s")


def link_from_fragment(fragment: str, base_url: str) -> Optional[str]:
    """Read the detail link from captured card markup."""
    soup = BeautifulSoup(fragment, "lxml")
    anchor = soup.select_one(PROFILE_LINK_SELECTOR)
    if anchor is None or not anchor.get("href"):
        return None
    return urljoin(base_url, anchor["href"])


class DetailEnricher:
    """Visits each entity's detail page and extracts one labelled attribute."""

    def __init__(self, config: HarvestConfig, emitter: ProgressEmitter):
        self.config = config
        self.emitter = emitter
        self.marker = config.label_marker
        self._pattern = label_pattern(config.label_marker)

    def select_indices(self, count: int) -> List[int]:
        """Entity positions to process: all, or the last ``max_entities``."""
        if self.config.max_entities is None:
            return list(range(count))
        return list(range(max(0, count - self.config.max_entities), count))

    async def enrich(self, session: Session, page: Page, batch: PageBatch) -> List[EnrichedRecord]:
        """
        Enrich the selected entities of one batch, one at a time.

        Args:
            session: Owning session (detail pages are opened in its context)
            page: Live listing page the batch was captured from
            batch: Captured fragments of that page

        Returns:
            One record per selected entity, in listing order
        """
        indices = self.select_indices(len(batch))
        self.emitter.emit(
            Phase.SCRAPING,
            f"Enriching {len(indices)} of {len(batch)} profiles on page {batch.iteration}",
        )

        records = []
        for index in indices:
            try:
                record = await self._enrich_entity(session, page, index, batch.fragments[index])
            except PerEntityError as e:
                logger.info(f"Entity {index} on page {batch.iteration}: {e}")
                record = EnrichedRecord(profile=e.link, error=str(e))
            records.append(record)

        failed = sum(1 for r in records if r.error)
        self.emitter.emit(
            Phase.SCRAPING,
            f"Enriched page {batch.iteration}: {len(records) - failed} ok, {failed} failed",
        )
        return records

    async def _enrich_entity(self, session: Session, page: Page, index: int, fragment: str) -> EnrichedRecord:
        link = await self._resolve_link(page, index, fragment)
        if link is None:
            raise PerEntityError(LINK_NOT_FOUND)

        try:
            async with session.detail_page() as detail:
                await detail.goto(link, wait_until="load", timeout=self.config.detail_navigation_timeout)
                value = await self._read_labelled_value(detail)
        except PlaywrightError as e:
            raise PerEntityError(f"detail page failed: {e}", link=link) from e

        return EnrichedRecord(profile=link, current_company=value)

    async def _resolve_link(self, page: Page, index: int, fragment: str) -> Optional[str]:
        # Re-query by position on every call; the DOM may have changed since capture.
        anchor = page.locator(CARD_SELECTOR).nth(index).locator(PROFILE_LINK_SELECTOR).first
        try:
            if await anchor.count() > 0:
                href = await anchor.get_attribute("href", timeout=self.config.detail_label_timeout)
                if href:
                    return urljoin(page.url, href)
        except PlaywrightError as e:
            logger.debug(f"Entity {index} no longer attached: {e}")
        return link_from_fragment(fragment, page.url)

    async def _read_labelled_value(self, detail: Page) -> Optional[str]:
        control = detail.locator(f'[aria-label^="{self.marker}"]').first
        try:
            await control.wait_for(state="attached", timeout=self.config.detail_label_timeout)
        except PlaywrightError:
            logger.debug(f"No '{self.marker}' control on {detail.url}")
            return None

        label = await control.get_attribute("aria-label")
        match = self._pattern.match(label or "")
        if not match:
            return None
        return match.group("value").strip()
