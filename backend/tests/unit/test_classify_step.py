"""
Unit tests for Step 01: Classify.

Heuristics are exercised directly; the step itself runs against the
in-memory store, scheduler and gateway from conftest.
"""

import pytest

from cardflow.core.models import (
    CardType,
    FileMetadata,
    LinkPreview,
    LinkPreviewStatus,
    MetadataStatus,
    StageState,
)
from cardflow.jobs.steps.base import StepCompleted
from cardflow.jobs.steps.step_01_classify import (
    DEFAULT_CONFIDENCE,
    MEDIUM_CONFIDENCE,
    PALETTE_CONFIDENCE,
    QUOTE_CONFIDENCE,
    STRONG_CONFIDENCE,
    ClassifyStep,
    classify_by_file_metadata,
    classify_by_mime,
    deterministic_classify,
    is_probably_palette,
    resolve_url,
    should_update_type,
)
from cardflow.services.ai.schemas import PaletteColorItem, PaletteResult
from cardflow.services.colors import extract_palette_colors


# =============================================================================
# Heuristics
# =============================================================================


class TestClassifyByMime:
    @pytest.mark.parametrize(
        "mime,expected",
        [
            ("image/png", (CardType.IMAGE, STRONG_CONFIDENCE)),
            ("video/mp4", (CardType.VIDEO, STRONG_CONFIDENCE)),
            ("audio/mpeg", (CardType.AUDIO, STRONG_CONFIDENCE)),
            ("application/pdf", (CardType.DOCUMENT, STRONG_CONFIDENCE)),
            ("text/markdown", (CardType.DOCUMENT, STRONG_CONFIDENCE)),
            ("text/plain", (CardType.TEXT, MEDIUM_CONFIDENCE)),
        ],
    )
    def test_known_mime_types(self, mime, expected):
        assert classify_by_mime(mime) == expected

    def test_unknown_mime_type(self):
        assert classify_by_mime("application/octet-stream") is None
        assert classify_by_mime(None) is None


class TestClassifyByFileMetadata:
    def test_duration_with_dimensions_is_video(self):
        metadata = FileMetadata(duration=12.5, width=1920, height=1080)
        assert classify_by_file_metadata(metadata) == (CardType.VIDEO, MEDIUM_CONFIDENCE)

    def test_duration_without_dimensions_is_audio(self):
        metadata = FileMetadata(duration=80)
        assert classify_by_file_metadata(metadata) == (CardType.AUDIO, MEDIUM_CONFIDENCE)

    def test_dimensions_only_is_image(self):
        metadata = FileMetadata(width=640)
        assert classify_by_file_metadata(metadata) == (CardType.IMAGE, MEDIUM_CONFIDENCE)

    def test_bare_file_is_document(self):
        assert classify_by_file_metadata(FileMetadata()) == (CardType.DOCUMENT, MEDIUM_CONFIDENCE)


class TestDeterministicClassify:
    def test_url_extension_beats_link(self, make_card):
        card = make_card(content="", url="https://cdn.test/report.PDF")
        assert deterministic_classify(card, card.url) == (CardType.DOCUMENT, MEDIUM_CONFIDENCE)

    def test_plain_url_is_link(self, make_card):
        card = make_card(url="https://example.com/post")
        assert deterministic_classify(card, card.url) == (CardType.LINK, MEDIUM_CONFIDENCE)

    def test_file_without_metadata_is_document(self, make_card):
        card = make_card(file_ref="upload-1")
        assert deterministic_classify(card, None) == (CardType.DOCUMENT, MEDIUM_CONFIDENCE)

    def test_three_colors_make_a_palette(self, make_card):
        card = make_card(content="#111111 #222222 #333333")
        assert deterministic_classify(card, None) == (CardType.PALETTE, PALETTE_CONFIDENCE)

    def test_two_colors_need_a_hint(self, make_card):
        plain = make_card(content="#111111 and #222222")
        hinted = make_card(content="#111111 and #222222", tags=["colors"])

        assert deterministic_classify(plain, None) == (CardType.TEXT, DEFAULT_CONFIDENCE)
        assert deterministic_classify(hinted, None) == (CardType.PALETTE, PALETTE_CONFIDENCE)

    def test_is_probably_palette(self):
        assert is_probably_palette(3, False)
        assert is_probably_palette(2, True)
        assert not is_probably_palette(2, False)
        assert not is_probably_palette(1, True)


class TestResolveUrlAndGate:
    def test_lone_url_content_counts_as_url(self, make_card):
        card = make_card(content="  https://example.com/a  ")
        assert resolve_url(card) == "https://example.com/a"

    def test_url_inside_prose_does_not(self, make_card):
        card = make_card(content="read https://example.com/a later")
        assert resolve_url(card) is None

    def test_url_only_forces_update(self):
        assert should_update_type(CardType.TEXT, CardType.LINK, 0.1, url_only=True)
        assert not should_update_type(CardType.LINK, CardType.LINK, 0.9, url_only=True)

    def test_threshold(self):
        assert should_update_type(CardType.TEXT, CardType.IMAGE, 0.6, url_only=False)
        assert not should_update_type(CardType.TEXT, CardType.IMAGE, 0.59, url_only=False)
        assert not should_update_type(CardType.TEXT, CardType.TEXT, 0.99, url_only=False)


# =============================================================================
# Step execution
# =============================================================================


@pytest.mark.asyncio
class TestClassifyStep:
    async def test_lone_url_becomes_link(self, pipeline, store, scheduler, make_card):
        card = make_card(content="https://example.com")

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert isinstance(outcome, StepCompleted)
        assert outcome.result.type == CardType.LINK
        assert outcome.result.confidence == MEDIUM_CONFIDENCE
        assert outcome.result.should_categorize
        assert outcome.result.needs_link_metadata

        stored = await store.get(card.id)
        assert stored.type == CardType.LINK
        assert stored.url == "https://example.com"
        assert stored.metadata_status == MetadataStatus.PENDING
        assert stored.processing_status.classify.status == StageState.COMPLETED
        assert stored.processing_status.classify.confidence == MEDIUM_CONFIDENCE
        assert stored.processing_status.categorize.status == StageState.PENDING

        assert [(job.function, job.args) for job in scheduler.history] == [
            ("extract_link_metadata", (card.id,))
        ]

    async def test_link_with_preview_is_not_refetched(self, pipeline, scheduler, make_card):
        preview = LinkPreview(status=LinkPreviewStatus.SUCCESS, url="https://example.com")
        card = make_card(CardType.LINK, url="https://example.com", link_preview=preview)

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert outcome.result.type == CardType.LINK
        assert not outcome.result.needs_link_metadata
        assert scheduler.history == []

    async def test_quote_markup_on_text_card(self, pipeline, store, make_card):
        card = make_card(content="> A wise quote")

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert outcome.result.type == CardType.QUOTE
        assert outcome.result.confidence == QUOTE_CONFIDENCE
        assert (await store.get(card.id)).type == CardType.QUOTE

    async def test_persisted_quote_is_sticky(self, pipeline, store, make_card):
        card = make_card(CardType.QUOTE, content="#111111 #222222 #333333")

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert outcome.result.type == CardType.QUOTE
        assert outcome.result.confidence == QUOTE_CONFIDENCE
        assert not outcome.result.should_generate_renderables
        # Only the in-progress and completed status writes
        patches = store.patches_for(card.id)
        assert [set(fields) for fields in patches] == [{"processing_status"}, {"processing_status"}]
        assert (await store.get(card.id)).type == CardType.QUOTE

    async def test_quote_with_url_is_reclassified(self, pipeline, store, make_card):
        card = make_card(CardType.QUOTE, content="see this", url="https://example.com/post")

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert outcome.result.type == CardType.LINK
        assert (await store.get(card.id)).type == CardType.LINK

    async def test_image_upload(self, pipeline, store, make_card):
        card = make_card(file_ref="upload-1", file_metadata=FileMetadata(mime_type="image/png"))

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert outcome.result.type == CardType.IMAGE
        assert outcome.result.should_generate_renderables
        stored = await store.get(card.id)
        assert stored.processing_status.renderables.status == StageState.PENDING
        assert stored.processing_status.categorize.status == StageState.COMPLETED

    async def test_plain_text_keeps_type(self, pipeline, store, scheduler, make_card):
        card = make_card(content="Remember to water the plants")

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert outcome.result.type == CardType.TEXT
        assert outcome.result.confidence == DEFAULT_CONFIDENCE
        stored = await store.get(card.id)
        assert stored.processing_status.classify.status == StageState.COMPLETED
        assert "type" not in store.patches_for(card.id)[-1]
        assert scheduler.history == []


@pytest.mark.asyncio
class TestClassifyPalettes:
    async def test_palette_colors_written_with_type(self, pipeline, store, make_card):
        card = make_card(content="Brand palette: #111111, #222222")

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert outcome.result.type == CardType.PALETTE
        last_patch = store.patches_for(card.id)[-1]
        assert last_patch["type"] == CardType.PALETTE
        assert [c.hex for c in last_patch["colors"]] == ["#111111", "#222222"]

    async def test_unchanged_colors_are_not_rewritten(self, pipeline, store, make_card):
        content = "#AA0000 #00AA00 #0000AA"
        card = make_card(content=content, colors=extract_palette_colors(content))

        await ClassifyStep().execute(pipeline, card.id)

        last_patch = store.patches_for(card.id)[-1]
        assert last_patch["type"] == CardType.PALETTE
        assert "colors" not in last_patch

    async def test_ai_fallback_for_named_colors(self, pipeline, store, gateway, make_card):
        gateway.respond(
            PaletteResult,
            PaletteResult(
                colors=[
                    PaletteColorItem(hex="#9FE2BF", name="Sea Foam"),
                    PaletteColorItem(hex="#c2b280", name="Sand"),
                    PaletteColorItem(hex="#FF7F50"),
                    PaletteColorItem(hex="#ff7f50", name="duplicate"),
                    PaletteColorItem(hex="not-a-color"),
                ]
            ),
        )
        card = make_card(content="Our brand palette: sea foam, sand and coral")

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert outcome.result.type == CardType.PALETTE
        stored = await store.get(card.id)
        assert [(c.hex, c.name) for c in stored.colors] == [
            ("#9FE2BF", "Sea Foam"),
            ("#C2B280", "Sand"),
            ("#FF7F50", "coral"),
        ]
        assert len(gateway.calls_for(PaletteResult)) == 1

    async def test_ai_fallback_needs_three_colors(self, pipeline, store, gateway, make_card):
        gateway.respond(
            PaletteResult,
            PaletteResult(colors=[PaletteColorItem(hex="#000000"), PaletteColorItem(hex="#FFFFFF")]),
        )
        card = make_card(content="a palette of night and day")

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert outcome.result.type == CardType.TEXT
        assert (await store.get(card.id)).colors is None

    async def test_ai_fallback_without_provider(self, pipeline, gateway, make_card):
        card = make_card(content="swatches: dusk, ember, moss")

        outcome = await ClassifyStep().execute(pipeline, card.id)

        assert isinstance(outcome, StepCompleted)
        assert outcome.result.type == CardType.TEXT
        assert len(gateway.calls_for(PaletteResult)) == 1
