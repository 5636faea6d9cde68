"""
Step 01: Classify

Determines the card's content type from deterministic signals, strongest
first: attached file metadata, URL file extensions, a bare URL, color
tokens, then plain text. Quote markup short-circuits the heuristics and a
persisted quote stays a quote.

The type is only rewritten when the guess is confident enough (or the
card is nothing but a URL); a rewrite re-seeds the type-dependent stages
and, for palettes, refreshes the parsed colors in the same patch.
"""

import re
from typing import Any

import structlog

from cardflow.core.models import (
    Card,
    CardType,
    ClassificationResult,
    Color,
    FileMetadata,
    MetadataStatus,
    Stage,
)
from cardflow.core.processing_status import (
    reseed_for_type,
    stage_completed,
    stage_pending,
    with_stage_status,
)
from cardflow.jobs.steps.base import BaseStep, PipelineResume, StepCompleted
from cardflow.services.ai.gateway import AIGateway, NoProviderAvailableError
from cardflow.services.ai.prompts import PALETTE_EXTRACTION_SYSTEM, build_palette_prompt
from cardflow.services.ai.schemas import PaletteResult
from cardflow.services.colors import (
    MAX_PALETTE_COLORS,
    colors_match,
    extract_palette_colors,
    parse_color_string,
)
from cardflow.services.quotes import normalize_quote_content
from cardflow.services.retry_utils import CLASSIFICATION_RETRY
from cardflow.services.url_utils import extension_from_url, extract_url_from_text

logger = structlog.get_logger()

STRONG_CONFIDENCE = 0.97
MEDIUM_CONFIDENCE = 0.9
PALETTE_CONFIDENCE = 0.88
DEFAULT_CONFIDENCE = 0.7
QUOTE_CONFIDENCE = 0.95

# Guesses below this never overwrite the persisted type
TYPE_UPDATE_THRESHOLD = 0.6

DOCUMENT_MIME_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/markdown",
    "text/csv",
    "application/rtf",
)

EXTENSION_TYPES: dict[CardType, frozenset[str]] = {
    CardType.IMAGE: frozenset(
        {"png", "jpg", "jpeg", "webp", "gif", "bmp", "svg", "tiff", "avif", "heic"}
    ),
    CardType.VIDEO: frozenset({"mp4", "mov", "m4v", "webm", "mkv", "avi", "mpeg", "mpg", "wmv"}),
    CardType.AUDIO: frozenset({"mp3", "wav", "flac", "m4a", "aac", "ogg", "oga", "opus"}),
    CardType.DOCUMENT: frozenset(
        {
            "pdf", "doc", "docx", "ppt", "pptx", "xls", "xlsx", "csv",
            "rtf", "md", "txt", "pages", "key", "numbers",
        }
    ),
}

PALETTE_HINTS = (
    "palette",
    "color palette",
    "brand colors",
    "brand palette",
    "swatch",
    "swatches",
    "colorway",
)
PALETTE_TAG_HINT = re.compile(r"palette|color", re.IGNORECASE)

Guess = tuple[CardType, float]


# =============================================================================
# Heuristics
# =============================================================================


def classify_by_mime(mime_type: str | None) -> Guess | None:
    if not mime_type:
        return None
    mime = mime_type.lower()

    for prefix, card_type in (
        ("image/", CardType.IMAGE),
        ("video/", CardType.VIDEO),
        ("audio/", CardType.AUDIO),
    ):
        if mime.startswith(prefix):
            return card_type, STRONG_CONFIDENCE

    if any(candidate in mime for candidate in DOCUMENT_MIME_TYPES):
        return CardType.DOCUMENT, STRONG_CONFIDENCE
    if mime.startswith("text/"):
        return CardType.TEXT, MEDIUM_CONFIDENCE
    return None


def classify_by_extension(extension: str | None) -> Guess | None:
    if not extension:
        return None
    for card_type, extensions in EXTENSION_TYPES.items():
        if extension.lower() in extensions:
            return card_type, MEDIUM_CONFIDENCE
    return None


def classify_by_file_metadata(metadata: FileMetadata | None) -> Guess | None:
    if metadata is None:
        return None

    by_mime = classify_by_mime(metadata.mime_type)
    if by_mime:
        return by_mime

    has_dimensions = bool(metadata.width or metadata.height)
    if metadata.duration and metadata.duration > 0:
        # Moving pictures have dimensions, recordings do not
        return (CardType.VIDEO if has_dimensions else CardType.AUDIO), MEDIUM_CONFIDENCE
    if has_dimensions:
        return CardType.IMAGE, MEDIUM_CONFIDENCE

    return CardType.DOCUMENT, MEDIUM_CONFIDENCE


def build_palette_analysis_text(card: Card) -> str:
    sections: list[str] = []
    if card.content and card.content.strip():
        sections.append(card.content)
    if card.notes and card.notes.strip():
        sections.append(f"Notes: {card.notes}")
    if card.tags:
        sections.append(f"Tags: {', '.join(card.tags)}")
    return "\n".join(sections).strip()


def has_palette_hint(card: Card) -> bool:
    text = build_palette_analysis_text(card).lower()
    if any(hint in text for hint in PALETTE_HINTS):
        return True
    return any(PALETTE_TAG_HINT.search(tag) for tag in card.tags or [])


def is_probably_palette(color_count: int, hinted: bool) -> bool:
    """Several colors, or a couple of colors plus an explicit palette hint."""
    return color_count >= 3 or (color_count >= 2 and hinted)


def resolve_url(card: Card) -> str | None:
    """The card's URL, or its content when the content is a lone URL."""
    if card.url:
        return card.url
    content = (card.content or "").strip()
    if content and extract_url_from_text(content) == content:
        return content
    return None


def is_url_only(card: Card, url: str | None) -> bool:
    if not url or card.file_ref:
        return False
    content = (card.content or "").strip()
    return not content or content == url


def deterministic_classify(card: Card, url: str | None) -> Guess:
    """Heuristic type guess, without any model call."""
    by_file = classify_by_file_metadata(card.file_metadata)
    if by_file:
        return by_file

    by_extension = classify_by_extension(extension_from_url(url))
    if by_extension:
        return by_extension

    if card.file_ref:
        return CardType.DOCUMENT, MEDIUM_CONFIDENCE

    if url:
        return CardType.LINK, MEDIUM_CONFIDENCE

    colors = extract_palette_colors(build_palette_analysis_text(card))
    if is_probably_palette(len(colors), has_palette_hint(card)):
        return CardType.PALETTE, PALETTE_CONFIDENCE

    return CardType.TEXT, DEFAULT_CONFIDENCE


def should_update_type(
    current: CardType, candidate: CardType, confidence: float, url_only: bool
) -> bool:
    if url_only and current != CardType.LINK:
        return True
    return candidate != current and confidence >= TYPE_UPDATE_THRESHOLD


async def extract_palette_with_ai(gateway: AIGateway, text: str) -> list[Color]:
    """Model-extracted palette; empty when the text is blank or no provider answers."""
    if not text:
        return []
    try:
        generation = await gateway.generate_structured(
            PALETTE_EXTRACTION_SYSTEM, build_palette_prompt(text), PaletteResult
        )
    except NoProviderAvailableError as e:
        logger.warning("palette_ai_extraction_failed", error=str(e))
        return []

    colors: dict[str, Color] = {}
    for item in generation.value.colors:
        parsed = parse_color_string(item.hex)
        if parsed is None:
            continue
        hex_value = parsed.hex.upper()
        if hex_value in colors:
            continue
        name = (item.name or "").strip() or parsed.name
        colors[hex_value] = parsed.model_copy(update={"hex": hex_value, "name": name})
    return list(colors.values())[:MAX_PALETTE_COLORS]


# =============================================================================
# Step
# =============================================================================


class ClassifyStep(BaseStep):
    label = "Classify"
    description = "Determining the card's content type..."
    stage = Stage.CLASSIFY
    retry_policy = CLASSIFICATION_RETRY

    async def run(self, ctx, card: Card, cursor: PipelineResume) -> StepCompleted:
        log = self.log.bind(card_id=card.id)
        now = ctx.now()
        url = resolve_url(card)
        has_attachment = bool(url or card.file_ref)

        # A persisted quote without conflicting signals stays a quote
        if card.type == CardType.QUOTE and not has_attachment:
            record = card.processing_status.classify
            confidence = (
                record.confidence
                if record is not None and record.confidence is not None
                else QUOTE_CONFIDENCE
            )
            await self._complete(ctx, card, confidence)
            log.info("classification_sticky_quote", confidence=confidence)
            return StepCompleted(ClassificationResult.for_type(CardType.QUOTE, confidence))

        if not has_attachment and normalize_quote_content(card.content).removed_quotes:
            await ctx.store.patch(
                card.id, self._type_update_fields(card, CardType.QUOTE, QUOTE_CONFIDENCE, now)
            )
            log.info("classification_heuristic_quote")
            return StepCompleted(ClassificationResult.for_type(CardType.QUOTE, QUOTE_CONFIDENCE))

        guessed_type, confidence = deterministic_classify(card, url)
        palette_colors: list[Color] | None = None

        if guessed_type == CardType.TEXT and has_palette_hint(card):
            # Last resort for palettes written in a form the parser misses
            text = build_palette_analysis_text(card)
            if not extract_palette_colors(text):
                palette_colors = await extract_palette_with_ai(ctx.gateway, text)
                if len(palette_colors) >= 3:
                    guessed_type, confidence = CardType.PALETTE, PALETTE_CONFIDENCE

        url_only = is_url_only(card, url)
        if url_only:
            guessed_type = CardType.LINK
        confidence = min(max(confidence, 0.0), 1.0)

        log.info(
            "classification_heuristic_result",
            guessed_type=guessed_type.value,
            confidence=confidence,
            url_only=url_only,
        )

        if should_update_type(card.type, guessed_type, confidence, url_only):
            fields = self._type_update_fields(card, guessed_type, confidence, now)
            if url and not card.url:
                fields["url"] = url
            if guessed_type == CardType.PALETTE:
                colors = await self._recompute_palette(ctx, card, palette_colors)
                if colors and not colors_match(card.colors, colors):
                    fields["colors"] = colors
                    log.info("palette_colors_updated", count=len(colors))
            await ctx.store.patch(card.id, fields)
            log.info(
                "card_type_updated",
                previous_type=card.type.value,
                next_type=guessed_type.value,
                confidence=confidence,
            )
            final_type = guessed_type
        else:
            if guessed_type != card.type:
                log.info(
                    "classification_update_discarded",
                    guessed_type=guessed_type.value,
                    confidence=confidence,
                )
            await self._complete(ctx, card, confidence)
            final_type = card.type

        needs_link_metadata = final_type == CardType.LINK and not card.has_successful_preview
        if needs_link_metadata:
            await ctx.scheduler.run_after(0, "extract_link_metadata", card.id)
            log.info("link_metadata_scheduled")

        result = ClassificationResult.for_type(final_type, confidence, needs_link_metadata)
        log.info("classification_completed", card_type=final_type.value, confidence=confidence)
        return StepCompleted(result)

    async def _complete(self, ctx, card: Card, confidence: float) -> None:
        status = with_stage_status(
            card.processing_status, Stage.CLASSIFY, stage_completed(ctx.now(), confidence)
        )
        await ctx.store.patch(card.id, {"processing_status": status})

    def _type_update_fields(
        self, card: Card, card_type: CardType, confidence: float, now
    ) -> dict[str, Any]:
        status = with_stage_status(
            card.processing_status, Stage.CLASSIFY, stage_completed(now, confidence)
        )
        status = reseed_for_type(status, card_type, now).with_stage(
            Stage.METADATA, stage_pending()
        )
        fields: dict[str, Any] = {
            "type": card_type,
            "processing_status": status,
            "updated_at": now,
        }
        if card_type == CardType.LINK and not card.has_successful_preview:
            fields["metadata_status"] = MetadataStatus.PENDING
        return fields

    async def _recompute_palette(
        self, ctx, card: Card, ai_colors: list[Color] | None
    ) -> list[Color]:
        text = build_palette_analysis_text(card)
        colors = extract_palette_colors(text)
        if colors:
            return colors
        if ai_colors is None:
            ai_colors = await extract_palette_with_ai(ctx.gateway, text)
        return ai_colors
