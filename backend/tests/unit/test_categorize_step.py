"""
Unit tests for Step 02: Categorize.
"""

import json
from datetime import timedelta

import pytest

from cardflow.core.models import (
    CardType,
    LinkCategory,
    LinkCategoryMetadata,
    LinkPreview,
    LinkPreviewStatus,
    SelectorMatch,
    SelectorResult,
    Stage,
    StageState,
)
from cardflow.jobs.steps.base import PipelineResume, StepCompleted, StepFailed, StepRetry
from cardflow.jobs.steps.step_02_categorize import CategorizeStep, is_category_fresh
from cardflow.services.ai.schemas import LinkCategoryResult

from tests.conftest import FIXED_NOW

REPO_URL = "https://github.com/octo/repo"

REPO_HTML = """
<html><head>
<script type="application/ld+json">
{json}
</script>
</head><body></body></html>
""".replace(
    "{json}",
    json.dumps(
        {
            "@context": "https://schema.org",
            "@type": "SoftwareApplication",
            "name": "repo",
            "operatingSystem": "Linux",
            "applicationCategory": "DeveloperApplication",
        }
    ),
)


def github_preview() -> LinkPreview:
    return LinkPreview(
        status=LinkPreviewStatus.SUCCESS,
        fetched_at=FIXED_NOW,
        url=REPO_URL,
        final_url=REPO_URL,
        title="octo/repo: A repository",
        image_url="https://opengraph.githubassets.com/repo.png",
        raw=[
            SelectorResult(
                selector="a[href$='/stargazers']",
                results=[SelectorMatch(text="1.5k stars")],
            ),
            SelectorResult(
                selector="span[itemprop='programmingLanguage']",
                results=[SelectorMatch(text="Python")],
            ),
            SelectorResult(selector="relative-time", results=[]),
        ],
    )


@pytest.fixture
def link_card(make_card):
    def _make(**fields):
        fields.setdefault("url", REPO_URL)
        fields.setdefault("link_preview", github_preview())
        return make_card(CardType.LINK, **fields)

    return _make


# =============================================================================
# Cache freshness
# =============================================================================


class TestIsCategoryFresh:
    def _metadata(self, age: timedelta, source_url: str = REPO_URL) -> LinkCategoryMetadata:
        return LinkCategoryMetadata(
            category=LinkCategory.SOFTWARE,
            source_url=source_url,
            fetched_at=FIXED_NOW - age,
        )

    def test_recent_same_url(self):
        assert is_category_fresh(self._metadata(timedelta(days=1)), REPO_URL + "/", FIXED_NOW)

    def test_expired(self):
        assert not is_category_fresh(self._metadata(timedelta(days=31)), REPO_URL, FIXED_NOW)

    def test_other_url(self):
        metadata = self._metadata(timedelta(days=1), "https://github.com/other/repo")
        assert not is_category_fresh(metadata, REPO_URL, FIXED_NOW)

    def test_missing(self):
        assert not is_category_fresh(None, REPO_URL, FIXED_NOW)


# =============================================================================
# Step execution
# =============================================================================


@pytest.mark.asyncio
class TestCategorizeStep:
    async def test_provider_and_structured_facts(self, pipeline, store, gateway, fetcher, link_card):
        gateway.respond(
            LinkCategoryResult,
            LinkCategoryResult(category="GitHub Project", confidence=0.92),
        )
        fetcher.add_page(REPO_URL, REPO_HTML)
        card = link_card()

        outcome = await CategorizeStep().execute(pipeline, card.id)

        assert isinstance(outcome, StepCompleted)
        assert outcome.result.category == LinkCategory.SOFTWARE
        assert outcome.result.detected_provider == "github"

        stored = await store.get(card.id)
        category = stored.link_category
        assert category.category == LinkCategory.SOFTWARE
        assert category.source_url == REPO_URL
        assert category.provider == "github"
        assert category.image_url == "https://opengraph.githubassets.com/repo.png"
        assert [(f.label, f.value) for f in category.facts] == [
            ("Stars", "1,500"),
            ("Language", "Python"),
            ("Platform", "Linux"),
            ("Category", "DeveloperApplication"),
        ]
        assert category.raw.provider.name == "github"
        assert category.raw.structured["@type"] == "SoftwareApplication"
        assert category.raw.structured_meta.etag == '"abc123"'
        assert category.fetched_at == FIXED_NOW

        record = stored.processing_status.categorize
        assert record.status == StageState.COMPLETED
        assert record.confidence == 0.92

    async def test_unknown_host_is_its_own_provider(self, pipeline, store, make_card):
        card = make_card(CardType.LINK, url="https://example.com")

        outcome = await CategorizeStep().execute(pipeline, card.id)

        assert outcome.result.category == LinkCategory.ARTICLE
        assert outcome.result.detected_provider == "example.com"
        stored = await store.get(card.id)
        assert stored.link_category.facts is None
        assert stored.link_category.raw.provider.name == "example.com"
        assert stored.link_category.raw.structured is None

    async def test_missing_confidence_defaults(self, pipeline, store, gateway, link_card):
        gateway.respond(LinkCategoryResult, LinkCategoryResult(category="software"))
        card = link_card()

        await CategorizeStep().execute(pipeline, card.id)

        stored = await store.get(card.id)
        assert stored.link_category.confidence == 0.6
        assert stored.processing_status.categorize.confidence == 0.6

    async def test_fresh_category_is_reused(self, pipeline, store, gateway, link_card):
        cached = LinkCategoryMetadata(
            category=LinkCategory.BOOK,
            source_url=REPO_URL,
            confidence=0.7,
            fetched_at=FIXED_NOW - timedelta(days=2),
        )
        card = link_card(link_category=cached)

        outcome = await CategorizeStep().execute(pipeline, card.id)

        assert outcome.result.category == LinkCategory.BOOK
        assert gateway.calls_for(LinkCategoryResult) == []
        assert (await store.get(card.id)).link_category.fetched_at == cached.fetched_at

    async def test_stale_category_is_refreshed(self, pipeline, store, gateway, link_card):
        cached = LinkCategoryMetadata(
            category=LinkCategory.BOOK,
            source_url=REPO_URL,
            fetched_at=FIXED_NOW - timedelta(days=45),
        )
        card = link_card(link_category=cached)

        outcome = await CategorizeStep().execute(pipeline, card.id)

        assert outcome.result.category == LinkCategory.ARTICLE
        assert len(gateway.calls_for(LinkCategoryResult)) == 1

    async def test_known_structured_data_is_not_refetched(self, pipeline, fetcher, gateway, link_card):
        gateway.respond(LinkCategoryResult, LinkCategoryResult(category="software"))
        fetcher.add_page(REPO_URL, REPO_HTML)
        card = link_card()
        await CategorizeStep().execute(pipeline, card.id)
        assert fetcher.requested == [REPO_URL]

        # Same card, category expired: provider facts refresh, JSON-LD does not
        stored = await pipeline.store.get(card.id)
        expired = stored.link_category.model_copy(
            update={"fetched_at": FIXED_NOW - timedelta(days=60)}
        )
        await pipeline.store.patch(card.id, {"link_category": expired})
        await CategorizeStep().execute(pipeline, card.id)

        assert fetcher.requested == [REPO_URL]

    async def test_unknown_category_is_retried(self, pipeline, store, gateway, link_card):
        gateway.respond(LinkCategoryResult, LinkCategoryResult(category="spaceship"))
        card = link_card()

        outcome = await CategorizeStep().execute(pipeline, card.id)

        assert isinstance(outcome, StepRetry)
        assert outcome.delay_ms == 1200
        assert outcome.attempt == 2
        assert "spaceship" in outcome.error
        stored = await store.get(card.id)
        assert stored.processing_status.categorize.status == StageState.IN_PROGRESS
        assert stored.link_category is None

    async def test_gives_up_after_last_attempt(self, pipeline, store, gateway, link_card):
        gateway.fail(LinkCategoryResult, times=1)
        card = link_card()

        outcome = await CategorizeStep().execute(
            pipeline, card.id, PipelineResume(stage=Stage.CATEGORIZE, attempt=5)
        )

        assert isinstance(outcome, StepFailed)
        record = (await store.get(card.id)).processing_status.categorize
        assert record.status == StageState.FAILED
        assert "All providers failed" in record.error

    async def test_non_link_card_is_rejected_and_recorded(self, pipeline, store, make_card):
        card = make_card(CardType.TEXT, content="hello")

        outcome = await CategorizeStep().execute(pipeline, card.id)

        assert isinstance(outcome, StepFailed)
        assert "expected 'link'" in outcome.error
        assert [set(fields) for fields in store.patches_for(card.id)] == [{"processing_status", "updated_at"}]
        record = (await store.get(card.id)).processing_status.categorize
        assert record.status == StageState.FAILED
        assert "expected 'link'" in record.error

    async def test_link_without_url_fails_on_first_attempt(self, pipeline, store, gateway, link_card):
        card = link_card(url=None, link_preview=None)

        outcome = await CategorizeStep().execute(pipeline, card.id)

        assert isinstance(outcome, StepFailed)
        assert "no URL to categorize" in outcome.error
        assert gateway.calls == []
        record = (await store.get(card.id)).processing_status.categorize
        assert record.status == StageState.FAILED
