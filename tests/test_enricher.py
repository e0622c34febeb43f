"""
Unit tests for the per-entity detail enricher.
"""

import pytest

from src.harvest import EnrichedRecord, HarvestConfig, PageBatch
from src.harvest.enricher import DetailEnricher, label_pattern, link_from_fragment
from src.harvest.session import BrowserSessionManager
from tests.fakes import LISTING_URL, make_browser, make_card, make_listing, messages

ADA = "https://listing.example/in/ada"
ALAN = "https://listing.example/in/alan"
GRACE = "https://listing.example/in/grace"


def company_label(company: str) -> str:
    return f"Current company: {company}. Click to skip to experience card"


async def open_listing(config, emitter, cards, **browser_kwargs):
    env = make_browser([cards], **browser_kwargs)
    session = await BrowserSessionManager(config, emitter, playwright_factory=env.factory).acquire()
    env.page.url = LISTING_URL
    batch = PageBatch(iteration=1, fragments=tuple(card["html"] for card in cards))
    return env, session, batch


class TestLabelParsing:
    """Test the labelled-value pattern and fragment link fallback."""

    def test_value_between_marker_and_period(self):
        match = label_pattern("Current company").match(company_label("Acme Corp"))
        assert match.group("value") == "Acme Corp"

    @pytest.mark.parametrize("company", ["J.P. Morgan", "U.S. Bank", "Booz Allen Hamilton Inc."])
    def test_value_keeps_internal_periods(self, company):
        match = label_pattern("Current company").match(company_label(company))
        assert match.group("value") == company

    def test_label_without_suffix_does_not_match(self):
        assert label_pattern("Current company").match("Current company: Acme Corp") is None

    def test_other_marker_does_not_match(self):
        assert label_pattern("Current company").match("Education: MIT. Click") is None

    def test_link_from_fragment_is_absolute(self):
        card = make_card("Ada", href="/in/ada?miniProfileUrn=1")
        assert link_from_fragment(card["html"], LISTING_URL) == "https://listing.example/in/ada?miniProfileUrn=1"

    def test_link_from_fragment_missing(self):
        assert link_from_fragment(make_card("Ada")["html"], LISTING_URL) is None


class TestDetailEnricher:
    """Test enrichment of listing entities."""

    @pytest.mark.asyncio
    async def test_enriches_every_entity_in_order(self, config, emitter):
        env, session, batch = await open_listing(
            config, emitter, make_listing("Ada", "Alan", "Grace"),
            labels={ADA: company_label("Analytical Engines"), GRACE: company_label("US Navy")},
        )

        records = await DetailEnricher(config, emitter).enrich(session, env.page, batch)

        assert records == [
            EnrichedRecord(profile=ADA, current_company="Analytical Engines"),
            EnrichedRecord(profile=ALAN, current_company=None),
            EnrichedRecord(profile=GRACE, current_company="US Navy"),
        ]

    @pytest.mark.asyncio
    async def test_detail_pages_are_closed(self, config, emitter):
        env, session, batch = await open_listing(config, emitter, make_listing("Ada", "Alan"))

        await DetailEnricher(config, emitter).enrich(session, env.page, batch)

        assert len(env.context.detail_pages) == 2
        assert all(page.closed for page in env.context.detail_pages)
        assert session.pages == [env.page]

    @pytest.mark.asyncio
    async def test_missing_link_is_recorded(self, config, emitter):
        cards = [make_card("Ada", href="/in/ada"), make_card("Nobody")]
        env, session, batch = await open_listing(config, emitter, cards, labels={ADA: company_label("Acme")})

        records = await DetailEnricher(config, emitter).enrich(session, env.page, batch)

        assert records[1] == EnrichedRecord(profile=None, error="link not found")
        assert len(env.context.detail_pages) == 1

    @pytest.mark.asyncio
    async def test_detail_failure_keeps_going(self, config, emitter, events):
        env, session, batch = await open_listing(
            config, emitter, make_listing("Ada", "Alan", "Grace"),
            labels={GRACE: company_label("US Navy")},
            failing_urls=[ALAN],
        )

        records = await DetailEnricher(config, emitter).enrich(session, env.page, batch)

        assert len(records) == 3
        assert records[1].profile == ALAN
        assert records[1].error.startswith("detail page failed")
        assert records[2].current_company == "US Navy"
        assert all(page.closed for page in env.context.detail_pages)
        assert messages(events)[-1] == "Enriched page 1: 2 ok, 1 failed"

    @pytest.mark.asyncio
    async def test_detached_card_falls_back_to_fragment(self, config, emitter):
        cards = [make_card("Ada", href="/in/ada", attached=False)]
        env, session, batch = await open_listing(config, emitter, cards, labels={ADA: company_label("Acme")})

        records = await DetailEnricher(config, emitter).enrich(session, env.page, batch)

        assert records == [EnrichedRecord(profile=ADA, current_company="Acme")]

    @pytest.mark.asyncio
    async def test_max_entities_takes_the_last_entities(self, emitter):
        config = HarvestConfig(max_entities=2)
        env, session, batch = await open_listing(config, emitter, make_listing("Ada", "Alan", "Grace"))

        records = await DetailEnricher(config, emitter).enrich(session, env.page, batch)

        assert [r.profile for r in records] == [ALAN, GRACE]

    @pytest.mark.asyncio
    async def test_label_selector_uses_marker(self, emitter):
        config = HarvestConfig(label_marker="Education")
        env, session, batch = await open_listing(
            config, emitter, make_listing("Ada"),
            labels={ADA: "Education: University of London. Click to skip"},
        )

        records = await DetailEnricher(config, emitter).enrich(session, env.page, batch)

        assert records[0].current_company == "University of London"
        assert env.context.detail_pages[0].selectors == ['[aria-label^="Education"]']

    def test_select_indices(self, emitter):
        assert DetailEnricher(HarvestConfig(), emitter).select_indices(3) == [0, 1, 2]
        assert DetailEnricher(HarvestConfig(max_entities=5), emitter).select_indices(3) == [0, 1, 2]
        assert DetailEnricher(HarvestConfig(max_entities=1), emitter).select_indices(3) == [2]
