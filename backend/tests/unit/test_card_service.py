"""
Unit tests for card creation.
"""

import pytest

from cardflow.core.models import CardType, Color, FileMetadata, MetadataStatus, StageState
from cardflow.services.card_service import create_card

from tests.conftest import FIXED_NOW

pytestmark = pytest.mark.asyncio


class TestCreateCard:
    async def test_plain_text(self, pipeline, store):
        card = await create_card(pipeline, "user-1", content="  Remember the milk  ")

        assert card.type == CardType.TEXT
        assert card.content == "Remember the milk"
        assert card.url is None
        assert card.metadata_status is None
        assert card.created_at == FIXED_NOW
        assert await store.get(card.id) is not None

    async def test_quote_markup_is_stripped(self, pipeline, store):
        card = await create_card(pipeline, "user-1", content="> A wise quote")

        assert card.type == CardType.QUOTE
        assert card.content == "A wise quote"
        assert (await store.get(card.id)).content == "A wise quote"

    async def test_quote_markup_ignored_for_explicit_type(self, pipeline):
        card = await create_card(pipeline, "user-1", content="> A wise quote", card_type=CardType.TEXT)

        assert card.type == CardType.TEXT
        assert card.content == "> A wise quote"

    async def test_url_is_taken_from_content(self, pipeline):
        card = await create_card(
            pipeline, "user-1", content="read this https://example.com/post later"
        )

        assert card.url == "https://example.com/post"
        assert card.type == CardType.TEXT

    async def test_explicit_url_wins(self, pipeline):
        card = await create_card(
            pipeline, "user-1", content="see https://a.test", url=" https://b.test "
        )

        assert card.url == "https://b.test"

    async def test_link_card_waits_for_preview(self, pipeline):
        card = await create_card(
            pipeline, "user-1", card_type=CardType.LINK, url="https://example.com"
        )

        assert card.metadata_status == MetadataStatus.PENDING
        assert card.processing_status.categorize.status == StageState.PENDING

    async def test_explicit_type_is_still_classified(self, pipeline, store):
        card = await create_card(pipeline, "user-1", content="notes", card_type=CardType.TEXT)

        assert card.processing_status.classify.status == StageState.PENDING
        stored = await store.get(card.id)
        assert stored.processing_status.classify.status == StageState.PENDING

    async def test_palette_colors_are_parsed(self, pipeline):
        card = await create_card(
            pipeline,
            "user-1",
            content="#ff0000, #00ff00 and #0000ff",
            card_type=CardType.PALETTE,
        )

        assert [color.hex for color in card.colors] == ["#FF0000", "#00FF00", "#0000FF"]

    async def test_given_palette_colors_are_kept(self, pipeline):
        colors = [Color(hex="#123456", name="Ink")]

        card = await create_card(
            pipeline, "user-1", content="#ff0000", card_type=CardType.PALETTE, colors=colors
        )

        assert card.colors == colors

    async def test_file_card_keeps_metadata(self, pipeline):
        metadata = FileMetadata(file_name="cat.png", mime_type="image/png")

        card = await create_card(pipeline, "user-1", file_ref="cat.png", file_metadata=metadata)

        assert card.file_ref == "cat.png"
        assert card.file_metadata == metadata
        assert card.processing_status.classify.status == StageState.PENDING

    async def test_pipeline_is_started(self, pipeline, store, scheduler):
        card = await create_card(pipeline, "user-1", content="hello")

        stored = await store.get(card.id)
        assert stored.workflow_run_id is not None
        assert stored.processing_status.classify.status == StageState.PENDING
        assert len(scheduler.history) == 1
        job = scheduler.history[0]
        assert job.function == "process_card"
        assert job.delay_ms == 0
        assert job.args == (card.id, stored.workflow_run_id, None)

    async def test_ids_are_unique(self, pipeline):
        first = await create_card(pipeline, "user-1", content="a")
        second = await create_card(pipeline, "user-1", content="a")

        assert first.id != second.id
