"""
AI Backfill Job - resubmit cards that never got AI metadata.

Cards older than the grace period without an AI provenance stamp are
restarted in batches. Also exposes the single-card manual retry used by
card owners and admins. Both are safe to repeat: restarting a card only
resets its enrichment state and enqueues a new run.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import structlog

from cardflow.core.config import settings
from cardflow.core.exceptions import CardNotFoundError, PermissionDeniedError
from cardflow.core.models import Card
from cardflow.jobs.card_processing_job import start_pipeline
from cardflow.jobs.context import PipelineContext
from cardflow.services.retry_utils import START_PIPELINE_RETRY

logger = structlog.get_logger()

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as supplied by the auth layer."""

    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


async def find_cards_missing_ai(ctx: PipelineContext) -> list[Card]:
    """Live cards past the grace period that carry no AI provenance stamp."""
    cutoff = ctx.now() - timedelta(minutes=settings.backfill_grace_minutes)
    return await ctx.store.list_missing_ai(cutoff, settings.backfill_batch_size)


async def start_with_retries(ctx: PipelineContext, card_id: str) -> str:
    """
    ``start_pipeline`` with backoff for transient store or queue errors.

    Raises:
        CardNotFoundError: Immediately, the card is gone
        Exception: The last error once attempts run out
    """
    policy = START_PIPELINE_RETRY
    attempt = 1
    while True:
        try:
            return await start_pipeline(ctx, card_id)
        except CardNotFoundError:
            raise
        except Exception as e:
            if not policy.should_retry(attempt):
                raise
            delay_ms = policy.delay_ms(attempt)
            logger.warning(
                "pipeline_start_retry",
                card_id=card_id,
                attempt=attempt,
                delay_ms=delay_ms,
                error=str(e),
            )
            await asyncio.sleep(delay_ms / 1000)
            attempt += 1


async def backfill_missing_ai(ctx: PipelineContext) -> dict[str, Any]:
    """Restart every card found by ``find_cards_missing_ai``."""
    requested_at = ctx.now()
    candidates = await find_cards_missing_ai(ctx)

    failed_card_ids: list[str] = []
    for card in candidates:
        try:
            await start_with_retries(ctx, card.id)
        except Exception as e:
            failed_card_ids.append(card.id)
            logger.error("backfill_start_failed", card_id=card.id, error=str(e))

    enqueued_count = len(candidates) - len(failed_card_ids)
    if enqueued_count:
        logger.info("backfill_enqueued", enqueued=enqueued_count, failed=len(failed_card_ids))

    return {
        "requested_at": requested_at,
        "enqueued_count": enqueued_count,
        "pending_sample_count": len(candidates),
        "failed_card_ids": failed_card_ids,
    }


async def retry_ai_backfill(ctx: PipelineContext, identity: Identity) -> dict[str, Any]:
    """
    Admin entry point for a manual backfill pass.

    Raises:
        PermissionDeniedError: If the caller is not an admin
    """
    if not identity.is_admin:
        raise PermissionDeniedError(f"User {identity.user_id} may not run the AI backfill")
    logger.info("backfill_requested", user_id=identity.user_id)
    return await backfill_missing_ai(ctx)


async def retry_card_enrichment(
    ctx: PipelineContext, identity: Identity, card_id: str
) -> dict[str, Any]:
    """
    Restart the pipeline of one card for its owner or an admin.

    Returns:
        ``{"requested_at", "success", "run_id"}`` or, for missing and
        deleted cards, ``success=False`` with ``reason="not_found"``

    Raises:
        PermissionDeniedError: If the caller neither owns nor administers the card
    """
    requested_at = ctx.now()
    card = await ctx.store.get(card_id)
    if card is None or card.is_deleted:
        return {"requested_at": requested_at, "success": False, "reason": "not_found"}

    if card.owner_id != identity.user_id and not identity.is_admin:
        raise PermissionDeniedError(f"User {identity.user_id} may not retry card {card_id}")

    try:
        run_id = await start_with_retries(ctx, card_id)
    except CardNotFoundError:
        return {"requested_at": requested_at, "success": False, "reason": "not_found"}

    logger.info("card_enrichment_retried", card_id=card_id, user_id=identity.user_id, run_id=run_id)
    return {"requested_at": requested_at, "success": True, "run_id": run_id}


async def run_ai_backfill(ctx: dict) -> dict:
    """ARQ job (and cron) wrapper around ``backfill_missing_ai``."""
    result = await backfill_missing_ai(ctx["pipeline"])
    return {**result, "requested_at": result["requested_at"].isoformat()}
