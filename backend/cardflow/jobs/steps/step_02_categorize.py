"""
Step 02: Categorize

Link cards only. Asks the model which of the fourteen link categories the
page belongs to, then enriches the result with facts:
- provider routines read the selector results captured with the link
  preview (no network)
- JSON-LD structured data is fetched once per card and matched to the
  category by ``@type``

A category that is still fresh for the same normalized URL is reused
without a model call.
"""

from datetime import datetime, timedelta
from typing import Any

from cardflow.core.config import settings
from cardflow.core.exceptions import WrongCardTypeError
from cardflow.core.link_categories import (
    LINK_CATEGORY_DEFAULT_CONFIDENCE,
    normalize_link_category,
)
from cardflow.core.models import (
    Card,
    CardType,
    CategorizationResult,
    LinkCategoryFact,
    LinkCategoryMetadata,
    LinkCategoryRaw,
    ProviderPayload,
    Stage,
)
from cardflow.core.processing_status import stage_completed, with_stage_status
from cardflow.jobs.steps.base import BaseStep, PipelineResume, StepCompleted, StepError
from cardflow.services.ai.prompts import (
    build_categorization_prompt,
    build_categorization_system_prompt,
)
from cardflow.services.ai.schemas import LinkCategoryResult
from cardflow.services.enrichment import (
    build_raw_selector_map,
    detect_provider,
    enrich_provider,
    enrich_with_structured_data,
    fetch_structured_data,
    merge_facts,
)
from cardflow.services.retry_utils import CATEGORIZATION_RETRY
from cardflow.services.url_utils import normalize_url


def is_category_fresh(
    existing: LinkCategoryMetadata | None, source_url: str, now: datetime
) -> bool:
    """True when ``existing`` was built for the same URL within the cache TTL."""
    if existing is None or existing.fetched_at is None:
        return False
    if normalize_url(existing.source_url) != normalize_url(source_url):
        return False
    return now - existing.fetched_at < timedelta(days=settings.link_category_ttl_days)


def merge_provider_raw(
    raw: LinkCategoryRaw, provider: str | None, enrichment_raw: dict[str, Any] | None
) -> LinkCategoryRaw:
    """Fold the provider name and fresh provider fields into the raw payload."""
    if provider and (enrichment_raw or raw.provider is None):
        previous = raw.provider.model_dump() if raw.provider else {}
        payload = {**previous, "name": provider, **(enrichment_raw or {})}
        return raw.model_copy(update={"provider": ProviderPayload(**payload)})
    if enrichment_raw:
        payload = {"name": enrichment_raw.get("name") or "unknown", **enrichment_raw}
        return raw.model_copy(update={"provider": ProviderPayload(**payload)})
    return raw


class CategorizeStep(BaseStep):
    label = "Categorize"
    description = "Categorizing link and collecting facts..."
    stage = Stage.CATEGORIZE
    retry_policy = CATEGORIZATION_RETRY

    def validate(self, card: Card) -> None:
        if card.type != CardType.LINK:
            raise WrongCardTypeError(card.id, card.type.value, CardType.LINK.value)

    async def run(self, ctx, card: Card, cursor: PipelineResume) -> StepCompleted:
        log = self.log.bind(card_id=card.id)
        now = ctx.now()

        preview = card.link_preview if card.has_successful_preview else None
        source_url = card.url or ((preview.final_url or preview.url) if preview else None)
        if not source_url:
            raise StepError(f"Card {card.id} has no URL to categorize", retryable=False)

        if is_category_fresh(card.link_category, source_url, now):
            metadata = card.link_category
            log.info("link_category_cache_hit", category=metadata.category.value)
        else:
            metadata = await self._categorize(ctx, card, source_url, now)

        status = with_stage_status(
            card.processing_status,
            Stage.CATEGORIZE,
            stage_completed(now, metadata.confidence or LINK_CATEGORY_DEFAULT_CONFIDENCE),
        )
        await ctx.store.patch(
            card.id,
            {"link_category": metadata, "processing_status": status, "updated_at": now},
        )

        log.info(
            "categorization_completed",
            category=metadata.category.value,
            provider=metadata.detected_provider,
            facts=len(metadata.facts or []),
        )
        return StepCompleted(
            CategorizationResult(
                category=metadata.category,
                confidence=metadata.confidence or LINK_CATEGORY_DEFAULT_CONFIDENCE,
                image_url=metadata.image_url,
                fact_count=len(metadata.facts or []),
                detected_provider=metadata.detected_provider,
            )
        )

    async def _classify(self, ctx, card: Card) -> LinkCategoryResult:
        generation = await ctx.gateway.generate_structured(
            build_categorization_system_prompt(),
            build_categorization_prompt(card),
            LinkCategoryResult,
        )
        return generation.value

    async def _categorize(
        self, ctx, card: Card, source_url: str, now: datetime
    ) -> LinkCategoryMetadata:
        classification = await self._classify(ctx, card)
        category = normalize_link_category(classification.category)
        if category is None:
            raise StepError(f"Unknown link category '{classification.category}'")

        preview = card.link_preview if card.has_successful_preview else None
        image_url = preview.image_url if preview else None
        facts: list[LinkCategoryFact] = []
        raw = (
            card.link_category.raw.model_copy()
            if card.link_category and card.link_category.raw
            else LinkCategoryRaw()
        )

        provider = detect_provider(source_url, classification.provider_hint)
        enrichment = enrich_provider(
            provider, category, build_raw_selector_map(preview.raw if preview else None)
        )
        if enrichment:
            image_url = image_url or enrichment.image_url
            merge_facts(facts, enrichment.facts)
        raw = merge_provider_raw(raw, provider, enrichment.raw if enrichment else None)

        if raw.structured is None:
            structured = await fetch_structured_data(ctx.fetcher, source_url, now)
            if structured and structured.entities:
                enriched = enrich_with_structured_data(category, structured.entities)
                if enriched:
                    image_url = image_url or enriched.image_url
                    merge_facts(facts, enriched.facts)
                    raw = raw.model_copy(
                        update={"structured": enriched.raw, "structured_meta": structured.meta}
                    )

        return LinkCategoryMetadata(
            category=category,
            source_url=source_url,
            image_url=image_url,
            provider=provider,
            facts=facts or None,
            raw=raw,
            confidence=(
                classification.confidence
                if classification.confidence is not None
                else LINK_CATEGORY_DEFAULT_CONFIDENCE
            ),
            detected_provider=provider,
            fetched_at=now,
        )
