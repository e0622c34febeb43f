"""
Harvest orchestrator: one end-to-end invocation.

    acquire session -> paginate -> transform (or enrich) -> release -> result
"""

import logging
from typing import List, Optional, Sequence, Union

from playwright.async_api import Page

from .config import HarvestConfig
from .enricher import DetailEnricher
from .errors import InputError
from .events import ProgressEmitter
from .extraction import StructuredExtractionEngine
from .models import EnrichedRecord, HarvestMode, HarvestResult, PageBatch, Phase
from .pagination import PaginationController
from .session import BrowserSessionManager, CookieInput, Session

logger = logging.getLogger(__name__)


class HarvestOrchestrator:
    """Composes session, pagination, enrichment and extraction."""

    def __init__(
        self,
        config: HarvestConfig,
        emitter: ProgressEmitter,
        session_manager: Optional[BrowserSessionManager] = None,
        extraction_engine: Optional[StructuredExtractionEngine] = None,
        enricher: Optional[DetailEnricher] = None,
    ):
        self.config = config
        self.emitter = emitter
        self.session_manager = session_manager or BrowserSessionManager(config, emitter)
        self.extraction_engine = extraction_engine or StructuredExtractionEngine(config, emitter)
        self.enricher = enricher or DetailEnricher(config, emitter)

    async def harvest(
        self,
        url: Optional[str],
        auth_cookies: Optional[Sequence[CookieInput]] = None,
        fields: Optional[List[str]] = None,
        mode: Union[HarvestMode, str] = HarvestMode.EXTRACT,
    ) -> HarvestResult:
        """
        Run one harvest.

        Args:
            url: Listing page URL (required)
            auth_cookies: Cookies injected before navigation
            fields: Accepted for compatibility; the extraction schema is fixed
            mode: ``extract`` (LLM batch transform) or ``enrich`` (detail pages)

        Returns:
            HarvestResult with one record per collected fragment or entity

        Raises:
            InputError: URL missing
            HarvestError: Session, navigation or content failure (error event emitted)
        """
        if not url or not url.strip():
            self.emitter.emit(Phase.ERROR, "URL is required")
            raise InputError("URL is required")
        mode = HarvestMode(mode)
        if fields:
            logger.debug(f"Requested fields ignored by the fixed schema: {fields}")

        self.emitter.emit(Phase.BROWSER_SETUP, "Scraping started")
        logger.info(f"Starting {mode.value} harvest for {url}")

        session: Optional[Session] = None
        try:
            session = await self.session_manager.acquire(auth_cookies)
            if mode == HarvestMode.ENRICH:
                results = await self._run_enrichment(session, url)
            else:
                batches = await PaginationController(self.config, self.emitter).run(session.page, url)
                results = await self.extraction_engine.transform(batches)
        except Exception as e:
            self.emitter.emit(Phase.ERROR, "Scraping failed", error=str(e))
            raise
        finally:
            await self.session_manager.release(session)

        self.emitter.emit(Phase.FINISHING, "Scraping finished")
        logger.info(f"✅ Harvest finished for {url}: {len(results)} record(s)")
        return HarvestResult(results=results)

    async def _run_enrichment(self, session: Session, url: str) -> List[EnrichedRecord]:
        records: List[EnrichedRecord] = []

        async def enrich_batch(page: Page, batch: PageBatch) -> None:
            records.extend(await self.enricher.enrich(session, page, batch))

        await PaginationController(self.config, self.emitter).run(session.page, url, on_batch=enrich_batch)
        return records
