"""
Card creation.

Builds the initial card document from user input, persists it and kicks
off the enrichment pipeline. Only cheap, local guesses happen here; the
classify step makes the real type decision.
"""

import uuid

import structlog

from cardflow.core.models import (
    Card,
    CardType,
    Color,
    FileMetadata,
    MetadataStatus,
)
from cardflow.core.processing_status import build_initial_processing_status
from cardflow.jobs.card_processing_job import start_pipeline
from cardflow.jobs.context import PipelineContext
from cardflow.services.colors import extract_palette_colors
from cardflow.services.quotes import normalize_quote_content
from cardflow.services.url_utils import extract_url_from_text

logger = structlog.get_logger()


async def create_card(
    ctx: PipelineContext,
    owner_id: str,
    content: str = "",
    card_type: CardType | None = None,
    url: str | None = None,
    file_ref: str | None = None,
    file_metadata: FileMetadata | None = None,
    tags: list[str] | None = None,
    notes: str | None = None,
    colors: list[Color] | None = None,
) -> Card:
    """
    Insert a new card and start its pipeline.

    Args:
        ctx: Worker dependencies (store and scheduler are used here)
        owner_id: Id of the creating user
        card_type: Explicit type; when omitted the card starts as text (or
            quote, for quoted content) and classification decides

    Returns:
        The card as inserted, before any enrichment
    """
    now = ctx.now()
    content = (content or "").strip()
    final_url = url.strip() if url and url.strip() else extract_url_from_text(content)

    resolved_type = card_type or CardType.TEXT
    if card_type is None and not final_url and not file_ref:
        quote = normalize_quote_content(content)
        if quote.removed_quotes:
            resolved_type = CardType.QUOTE
            content = quote.text

    if resolved_type == CardType.PALETTE and not colors:
        palette_text = "\n".join(part for part in (content, notes, ", ".join(tags or [])) if part)
        colors = extract_palette_colors(palette_text) or None

    card = Card(
        id=uuid.uuid4().hex,
        owner_id=owner_id,
        type=resolved_type,
        content=content,
        url=final_url,
        file_ref=file_ref,
        file_metadata=file_metadata,
        tags=tags,
        notes=notes,
        colors=colors,
        metadata_status=MetadataStatus.PENDING if resolved_type == CardType.LINK else None,
        processing_status=build_initial_processing_status(resolved_type, now),
        created_at=now,
        updated_at=now,
    )

    await ctx.store.insert(card)
    logger.info(
        "card_created",
        card_id=card.id,
        card_type=resolved_type.value,
        has_url=bool(final_url),
        has_file=bool(file_ref),
    )

    await start_pipeline(ctx, card.id)
    return card
