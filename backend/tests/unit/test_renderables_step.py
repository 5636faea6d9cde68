"""
Unit tests for Step 04: Renderables and the thumbnail service.
"""

import io
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from PIL import Image

from cardflow.core.models import CardType, StageState
from cardflow.jobs.steps.base import StepCompleted
from cardflow.jobs.steps.step_04_renderables import RenderablesStep
from cardflow.services.thumbnails import ThumbnailService, render_thumbnail

from tests.conftest import FIXED_NOW


def png_bytes(width: int = 800, height: int = 600) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), "red").save(out, format="PNG")
    return out.getvalue()


class TestRenderThumbnail:
    def test_downsizes_to_webp(self):
        thumbnail = render_thumbnail(png_bytes(), max_size=200)

        with Image.open(io.BytesIO(thumbnail)) as img:
            assert img.format == "WEBP"
            assert img.size == (200, 150)

    def test_small_images_are_not_enlarged(self):
        thumbnail = render_thumbnail(png_bytes(50, 40), max_size=200)

        with Image.open(io.BytesIO(thumbnail)) as img:
            assert img.size == (50, 40)

    def test_undecodable_payload(self):
        assert render_thumbnail(b"definitely not an image", max_size=200) is None


@pytest.mark.asyncio
class TestRenderablesStep:
    async def test_image_gets_thumbnail(self, pipeline, store, storage, make_card):
        storage.blobs["photo.png"] = png_bytes()
        card = make_card(CardType.IMAGE, file_ref="photo.png")

        outcome = await RenderablesStep().execute(pipeline, card.id)

        assert isinstance(outcome, StepCompleted)
        assert outcome.result.thumbnail_generated
        stored = await store.get(card.id)
        assert stored.thumbnail_ref.endswith(".webp")
        assert stored.thumbnail_ref in storage.blobs
        assert stored.processing_status.renderables.status == StageState.COMPLETED
        assert stored.processing_status.renderables.confidence == 0.95

    async def test_previous_thumbnail_is_replaced(self, pipeline, store, storage, make_card):
        storage.blobs["photo.png"] = png_bytes()
        storage.blobs["old.webp"] = b"old"
        card = make_card(CardType.IMAGE, file_ref="photo.png", thumbnail_ref="old.webp")

        await RenderablesStep().execute(pipeline, card.id)

        assert "old.webp" not in storage.blobs
        assert (await store.get(card.id)).thumbnail_ref != "old.webp"

    async def test_broken_image_still_completes(self, pipeline, store, storage, make_card):
        storage.blobs["photo.png"] = b"broken"
        card = make_card(CardType.IMAGE, file_ref="photo.png")

        outcome = await RenderablesStep().execute(pipeline, card.id)

        assert not outcome.result.thumbnail_generated
        stored = await store.get(card.id)
        assert stored.thumbnail_ref is None
        assert stored.processing_status.renderables.status == StageState.COMPLETED

    async def test_storage_failure_still_completes(self, pipeline, store, storage, make_card):
        storage.blobs["photo.png"] = png_bytes()
        card = make_card(CardType.IMAGE, file_ref="photo.png")

        with patch.object(storage, "store", AsyncMock(side_effect=OSError("disk full"))):
            outcome = await RenderablesStep().execute(pipeline, card.id)

        assert isinstance(outcome, StepCompleted)
        assert not outcome.result.thumbnail_generated
        stored = await store.get(card.id)
        assert stored.thumbnail_ref is None
        assert stored.processing_status.renderables.status == StageState.COMPLETED
        assert stored.processing_status.renderables.confidence == 0.95

    async def test_decompression_bomb_still_completes(self, pipeline, store, storage, make_card):
        storage.blobs["photo.png"] = png_bytes()
        card = make_card(CardType.IMAGE, file_ref="photo.png")

        with patch(
            "cardflow.services.thumbnails.render_thumbnail",
            side_effect=Image.DecompressionBombError("too many pixels"),
        ):
            outcome = await RenderablesStep().execute(pipeline, card.id)

        assert isinstance(outcome, StepCompleted)
        assert (await store.get(card.id)).processing_status.renderables.status == StageState.COMPLETED

    @pytest.mark.parametrize("card_type", [CardType.VIDEO, CardType.DOCUMENT])
    async def test_other_visual_types_pass_through(self, pipeline, store, card_type, make_card):
        card = make_card(card_type, file_ref="file.bin")

        outcome = await RenderablesStep().execute(pipeline, card.id)

        assert not outcome.result.thumbnail_generated
        assert (await store.get(card.id)).processing_status.renderables.status == StageState.COMPLETED


@pytest.mark.asyncio
class TestThumbnailService:
    async def test_uses_injected_clock(self, store, storage, make_card):
        later = FIXED_NOW + timedelta(hours=1)
        storage.blobs["photo.png"] = png_bytes()
        card = make_card(CardType.IMAGE, file_ref="photo.png")

        generated = await ThumbnailService(store, storage, now=lambda: later).generate(card.id)

        assert generated
        assert (await store.get(card.id)).updated_at == later
