"""
Step 03: Metadata

Generates AI tags and a summary for every card type. What the model sees
depends on the type:
- text, quote, palette, document: the card text (palettes prefixed with
  their colors, documents with the file name)
- image: a vision call against the stored file
- video: a vision call against the thumbnail when there is one, else text
- audio: the speech-to-text transcript, fed through the text path
- link: the link preview fields, or the bare URL

Link cards whose preview has not been fetched yet are deferred instead of
summarized from the URL alone.
"""

from datetime import datetime

from cardflow.core.config import settings
from cardflow.core.models import (
    AiModelMeta,
    Card,
    CardType,
    MetadataResult,
    MetadataStatus,
    Stage,
)
from cardflow.core.processing_status import stage_completed, with_stage_status
from cardflow.jobs.steps.base import (
    BaseStep,
    PipelineResume,
    StepCompleted,
    StepDeferred,
    StepError,
    StepOutcome,
)
from cardflow.services.ai.gateway import Generation
from cardflow.services.ai.prompts import (
    IMAGE_ANALYSIS_SYSTEM,
    LINK_ANALYSIS_SYSTEM,
    TEXT_ANALYSIS_SYSTEM,
    build_image_prompt,
    build_link_prompt,
    build_text_prompt,
    trim_content,
)
from cardflow.services.ai.schemas import CardMetadataResult
from cardflow.services.retry_utils import METADATA_RETRY
from cardflow.services.transcription import TranscriptionError

TYPE_CONFIDENCE: dict[CardType, float] = {
    CardType.TEXT: 0.95,
    CardType.QUOTE: 0.95,
    CardType.PALETTE: 0.9,
    CardType.DOCUMENT: 0.85,
    CardType.IMAGE: 0.9,
    CardType.VIDEO: 0.88,
    CardType.AUDIO: 0.85,
    CardType.LINK: 0.9,
}


def build_link_content(card: Card) -> str:
    """Preview fields as ``Label: value`` lines, falling back to the URL."""
    parts: list[str] = []
    if card.has_successful_preview:
        preview = card.link_preview
        for label, value in (
            ("Title", preview.title),
            ("Description", preview.description),
            ("Author", preview.author),
            ("Publisher", preview.publisher),
            ("Published", preview.published_at),
        ):
            if value:
                parts.append(f"{label}: {value}")

    if not parts:
        fallback = card.url or card.content
        if fallback:
            parts.append(f"URL: {fallback}")

    return "\n".join(parts)


def build_palette_content(card: Card) -> str:
    content = card.content or ""
    if card.colors:
        listing = ", ".join(
            f"{color.hex} ({color.name})" if color.name else color.hex for color in card.colors
        )
        content = f"Colors: {listing}\n{content}"
    return content


def build_document_content(card: Card) -> str:
    content = card.content or ""
    if card.file_metadata and card.file_metadata.file_name:
        content = f"{card.file_metadata.file_name}\n{content}"
    return content


def is_waiting_for_preview(card: Card) -> bool:
    return (
        card.type == CardType.LINK
        and card.link_preview is None
        and card.metadata_status == MetadataStatus.PENDING
    )


class MetadataStep(BaseStep):
    label = "Metadata"
    description = "Generating AI tags and summary..."
    stage = Stage.METADATA
    retry_policy = METADATA_RETRY

    async def run(self, ctx, card: Card, cursor: PipelineResume) -> StepOutcome:
        log = self.log.bind(card_id=card.id, card_type=card.type.value)

        if is_waiting_for_preview(card):
            if cursor.deferrals < settings.metadata_max_deferrals:
                log.info("metadata_deferred_for_link_preview", deferrals=cursor.deferrals)
                return StepDeferred(
                    delay_ms=settings.metadata_defer_seconds * 1000,
                    reason="link preview pending",
                )
            log.warning("link_preview_wait_exhausted", deferrals=cursor.deferrals)

        transcript: str | None = None
        if card.type == CardType.AUDIO:
            transcript = await self._transcribe(ctx, card)
            generation = (
                await self._analyze_text(ctx, transcript)
                if transcript
                else None
            )
        else:
            generation = await self._generate(ctx, card)

        tags = generation.value.tags if generation else []
        summary = generation.value.summary if generation else ""
        if not tags and not summary and not transcript:
            raise StepError("No AI metadata generated for card")

        now = ctx.now()
        confidence = TYPE_CONFIDENCE.get(card.type, 0.9)
        status = with_stage_status(
            card.processing_status, Stage.METADATA, stage_completed(now, confidence)
        )
        fields = {
            "ai_tags": tags or None,
            "ai_summary": summary or None,
            "ai_transcript": transcript,
            "processing_status": status,
            "updated_at": now,
        }
        if generation:
            fields["ai_model_meta"] = self._model_meta(generation, now)
        await ctx.store.patch(card.id, fields)

        log.info("metadata_generated", tags=len(tags), has_summary=bool(summary))
        return StepCompleted(
            MetadataResult(
                ai_tags=tags,
                ai_summary=summary,
                ai_transcript=transcript,
                confidence=confidence,
            )
        )

    async def _generate(self, ctx, card: Card) -> Generation[CardMetadataResult] | None:
        if card.type == CardType.IMAGE:
            return await self._analyze_image(ctx, card.file_ref, None)

        if card.type == CardType.VIDEO:
            title = (card.file_metadata.file_name if card.file_metadata else None) or (
                card.content or None
            )
            if card.thumbnail_ref:
                generation = await self._analyze_image(ctx, card.thumbnail_ref, title)
                if generation:
                    return generation
            return await self._analyze_text(ctx, title or "")

        if card.type == CardType.LINK:
            content = build_link_content(card)
            if not content.strip():
                return None
            return await ctx.gateway.generate_structured(
                LINK_ANALYSIS_SYSTEM,
                build_link_prompt(content, card.url or card.content),
                CardMetadataResult,
            )

        if card.type == CardType.DOCUMENT:
            content = build_document_content(card)
        elif card.type == CardType.PALETTE:
            content = build_palette_content(card)
        else:
            content = card.content or ""
        return await self._analyze_text(ctx, content)

    async def _analyze_text(self, ctx, content: str) -> Generation[CardMetadataResult] | None:
        trimmed = trim_content(content)
        if not trimmed:
            return None
        return await ctx.gateway.generate_structured(
            TEXT_ANALYSIS_SYSTEM, build_text_prompt(trimmed), CardMetadataResult
        )

    async def _analyze_image(
        self, ctx, file_ref: str | None, title: str | None
    ) -> Generation[CardMetadataResult] | None:
        if not file_ref:
            return None
        image_url = await ctx.storage.get_url(file_ref)
        if not image_url:
            self.log.warning("image_url_unavailable", file_ref=file_ref)
            return None
        return await ctx.gateway.generate_structured_vision(
            IMAGE_ANALYSIS_SYSTEM, build_image_prompt(title), image_url, CardMetadataResult
        )

    async def _transcribe(self, ctx, card: Card) -> str | None:
        if not card.file_ref:
            return None
        audio_url = await ctx.storage.get_url(card.file_ref)
        if not audio_url:
            return None
        mime_type = card.file_metadata.mime_type if card.file_metadata else None
        try:
            return await ctx.transcriber.transcribe(audio_url, mime_type)
        except TranscriptionError as e:
            self.log.warning("transcription_failed", card_id=card.id, error=str(e))
            return None

    @staticmethod
    def _model_meta(generation: Generation, now: datetime) -> AiModelMeta:
        return AiModelMeta(provider=generation.provider, model=generation.model, generated_at=now)
