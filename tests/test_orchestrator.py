"""
End-to-end tests of one harvest invocation against the in-memory browser.
"""

import pytest
from openai import OpenAIError

from src.harvest import (
    ContentTimeoutError,
    CookieError,
    DegradedRecord,
    EnrichedRecord,
    HarvestConfig,
    HarvestMode,
    HarvestOrchestrator,
    InputError,
    NavigationError,
    Phase,
    ProfileRecord,
)
from src.harvest.extraction import StructuredExtractionEngine
from src.harvest.session import BrowserSessionManager
from tests.fakes import (
    LISTING_URL,
    PlaywrightTimeout,
    make_browser,
    make_listing,
    make_openai_client,
    messages,
)


def build(config, emitter, env, client=None):
    client = client or make_openai_client()
    orchestrator = HarvestOrchestrator(
        config,
        emitter,
        session_manager=BrowserSessionManager(config, emitter, playwright_factory=env.factory),
        extraction_engine=StructuredExtractionEngine(config, emitter, client=client),
    )
    return orchestrator, client


def assert_torn_down(env):
    assert env.page.closed
    assert env.context.closed
    assert env.browser.closed
    assert env.playwright.stopped


class TestHarvestExtract:
    """Test the extract pipeline."""

    @pytest.mark.asyncio
    async def test_single_page_records_follow_card_order(self, config, emitter):
        env = make_browser([make_listing("Ada", "Alan", "Grace")])
        orchestrator, client = build(config, emitter, env)

        result = await orchestrator.harvest(LISTING_URL, [])

        assert [r.name for r in result.results] == ["Ada", "Alan", "Grace"]
        assert all(isinstance(r, ProfileRecord) for r in result.results)
        assert client.chat.completions.create.await_count == 1
        assert_torn_down(env)

    @pytest.mark.asyncio
    async def test_record_count_matches_fragments(self, config, emitter):
        env = make_browser([make_listing("Ada", "Alan"), make_listing("Grace", "Linus", "Barbara")])
        orchestrator, _ = build(config, emitter, env)

        result = await orchestrator.harvest(LISTING_URL)

        assert len(result.results) == 5
        assert [r.name for r in result.results] == ["Ada", "Alan", "Grace", "Linus", "Barbara"]

    @pytest.mark.asyncio
    async def test_service_failure_still_returns_every_fragment(self, config, emitter, events):
        async def down(**kwargs):
            raise OpenAIError("Connection error.")

        env = make_browser([make_listing("Ada", "Alan"), make_listing("Grace")])
        orchestrator, _ = build(config, emitter, env, client=make_openai_client(down))

        result = await orchestrator.harvest(LISTING_URL)

        assert len(result.results) == 3
        assert all(isinstance(r, DegradedRecord) for r in result.results)
        assert result.results[0].raw_fragment == env.page.listings[0][0]["html"]
        assert any(e.message == "OpenAI error processing pages" for e in events)
        assert events[-1].message == "Scraping finished"

    @pytest.mark.asyncio
    async def test_event_phases_are_ordered(self, config, emitter, events):
        env = make_browser([make_listing("Ada")])
        orchestrator, _ = build(config, emitter, env)

        await orchestrator.harvest(LISTING_URL)

        phases = [event.phase for event in events]
        order = [Phase.BROWSER_SETUP, Phase.SCRAPING, Phase.EXTRACTING, Phase.FINISHING]
        assert [order.index(p) for p in phases] == sorted(order.index(p) for p in phases)
        assert messages(events)[0] == "Scraping started"
        assert messages(events)[-3:] == ["Closing browser", "Browser closed", "Scraping finished"]
        assert emitter.count == len(events)

    @pytest.mark.asyncio
    async def test_cookies_are_injected(self, config, emitter):
        cookie = {"name": "li_at", "value": "abc", "domain": ".listing.example", "path": "/"}
        env = make_browser([make_listing("Ada")])
        orchestrator, _ = build(config, emitter, env)

        await orchestrator.harvest(LISTING_URL, [cookie])

        assert env.context.cookies == [cookie]

    @pytest.mark.asyncio
    async def test_mode_accepts_string(self, config, emitter):
        env = make_browser([make_listing("Ada")])
        orchestrator, _ = build(config, emitter, env)

        result = await orchestrator.harvest(LISTING_URL, mode="extract", fields=["name"])

        assert result.results[0].name == "Ada"


class TestHarvestFailures:
    """Test fatal failures and cleanup."""

    @pytest.mark.asyncio
    async def test_missing_url(self, config, emitter, events):
        env = make_browser([make_listing("Ada")])
        orchestrator, _ = build(config, emitter, env)

        with pytest.raises(InputError):
            await orchestrator.harvest("")

        assert env.manager.started == 0
        assert [(e.phase, e.message) for e in events] == [(Phase.ERROR, "URL is required")]

    @pytest.mark.asyncio
    async def test_navigation_failure_tears_down(self, config, emitter, events):
        env = make_browser([make_listing("Ada")], goto_error=PlaywrightTimeout("Timeout 120000ms exceeded"))
        orchestrator, client = build(config, emitter, env)

        with pytest.raises(NavigationError):
            await orchestrator.harvest(LISTING_URL)

        assert_torn_down(env)
        client.chat.completions.create.assert_not_called()
        error = next(e for e in events if e.phase == Phase.ERROR)
        assert error.message == "Scraping failed"
        assert "120000ms" in error.error
        assert "Scraping finished" not in messages(events)

    @pytest.mark.asyncio
    async def test_content_timeout_tears_down(self, config, emitter):
        env = make_browser([[]])
        orchestrator, _ = build(config, emitter, env)

        with pytest.raises(ContentTimeoutError):
            await orchestrator.harvest(LISTING_URL)

        assert_torn_down(env)

    @pytest.mark.asyncio
    async def test_bad_cookie_reports_error(self, config, emitter, events):
        env = make_browser([make_listing("Ada")])
        orchestrator, _ = build(config, emitter, env)

        with pytest.raises(CookieError):
            await orchestrator.harvest(LISTING_URL, [{"name": "li_at"}])

        assert env.manager.started == 0
        assert events[-1].phase == Phase.ERROR
        assert events[-1].message == "Scraping failed"


class TestHarvestEnrich:
    """Test the enrich pipeline."""

    @pytest.mark.asyncio
    async def test_enrich_mode_visits_detail_pages(self, config, emitter):
        env = make_browser(
            [make_listing("Ada", "Alan"), make_listing("Grace")],
            labels={"https://listing.example/in/grace": "Current company: US Navy. Click to skip"},
            failing_urls=["https://listing.example/in/alan"],
        )
        orchestrator, client = build(config, emitter, env)

        result = await orchestrator.harvest(LISTING_URL, mode=HarvestMode.ENRICH)

        assert [r.profile for r in result.results] == [
            "https://listing.example/in/ada",
            "https://listing.example/in/alan",
            "https://listing.example/in/grace",
        ]
        assert all(isinstance(r, EnrichedRecord) for r in result.results)
        assert result.results[1].error.startswith("detail page failed")
        assert result.results[2].current_company == "US Navy"
        client.chat.completions.create.assert_not_called()
        assert_torn_down(env)

    @pytest.mark.asyncio
    async def test_enrich_mode_respects_entity_bound(self, emitter):
        config = HarvestConfig(max_pages=1, max_entities=1)
        env = make_browser([make_listing("Ada", "Alan", "Grace")])
        orchestrator, _ = build(config, emitter, env)

        result = await orchestrator.harvest(LISTING_URL, mode=HarvestMode.ENRICH)

        assert [r.profile for r in result.results] == ["https://listing.example/in/grace"]

    @pytest.mark.asyncio
    async def test_payload_uses_camel_case(self, config, emitter):
        env = make_browser(
            [make_listing("Ada")],
            labels={"https://listing.example/in/ada": "Current company: Analytical Engines. Click"},
        )
        orchestrator, _ = build(config, emitter, env)

        result = await orchestrator.harvest(LISTING_URL, mode=HarvestMode.ENRICH)

        assert result.to_payload() == {
            "results": [
                {
                    "profile": "https://listing.example/in/ada",
                    "currentCompany": "Analytical Engines",
                    "error": None,
                }
            ]
        }
