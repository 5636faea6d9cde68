"""
Thumbnail generation for image cards.

Downsizes the card's image to fit ``settings.thumbnail_max_size`` and
stores it as WebP; the new key is patched onto ``thumbnail_ref`` and any
previous thumbnail is removed.
"""

import asyncio
import io
from collections.abc import Callable
from datetime import datetime

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from cardflow.core.config import settings
from cardflow.core.exceptions import CardNotFoundError
from cardflow.core.models import CardType, utc_now
from cardflow.services.card_store import CardStore
from cardflow.services.storage import BlobNotFoundError, BlobStorage

logger = structlog.get_logger()


def render_thumbnail(payload: bytes, max_size: int) -> bytes | None:
    """WebP thumbnail bytes, or None when the payload is not a decodable image."""
    try:
        with Image.open(io.BytesIO(payload)) as img:
            image = ImageOps.exif_transpose(img)
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
            image.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
            out = io.BytesIO()
            image.save(out, format="WEBP", quality=80)
            return out.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("thumbnail_decode_failed", error=str(e))
        return None


class ThumbnailService:
    """Generate and persist thumbnails for image cards."""

    def __init__(
        self,
        store: CardStore,
        storage: BlobStorage,
        max_size: int | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.storage = storage
        self.now = now
        self.max_size = max_size or settings.thumbnail_max_size
        self.log = logger.bind(service="ThumbnailService")

    async def generate(self, card_id: str) -> bool:
        """
        Create a thumbnail for the card's file.

        Returns:
            True when a thumbnail was stored, False when the card has no
            usable image

        Raises:
            CardNotFoundError: If the card does not exist
        """
        log = self.log.bind(card_id=card_id)

        card = await self.store.get(card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        if card.type != CardType.IMAGE or not card.file_ref:
            log.debug("thumbnail_skipped", card_type=card.type.value)
            return False

        try:
            payload = await self.storage.read(card.file_ref)
        except BlobNotFoundError:
            log.warning("thumbnail_source_missing", file_ref=card.file_ref)
            return False

        thumbnail = await asyncio.to_thread(render_thumbnail, payload, self.max_size)
        if thumbnail is None:
            return False

        key = await self.storage.store(thumbnail, suffix=".webp")
        await self.store.patch(
            card_id,
            {"thumbnail_ref": key, "updated_at": self.now()},
        )
        if card.thumbnail_ref and card.thumbnail_ref != key:
            await self.storage.delete(card.thumbnail_ref)

        log.info("thumbnail_generated", thumbnail_ref=key, size=len(thumbnail))
        return True
