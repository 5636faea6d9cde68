"""
Card Processing Job - Steps 1-4: Classify, Categorize, Metadata, Renderables.

This job drives one card through the enrichment pipeline in a single
linear pass:
1. Step 01: Classify - always
2. Step 02: Categorize - link cards only
3. Step 03: Metadata - always
4. Step 04: Renderables - image, video and document cards

A step that asks for a retry or a deferral ends the current job; the
same job is re-enqueued with a resume cursor pointing at that step, so
earlier steps never run twice. A step that fails for good is recorded on
its stage and the pass continues with the next one.

Every (re)start gets a fresh run id. Runs are not cancelled when a newer
one starts; whichever writes last wins.
"""

import uuid
from typing import Any

import structlog

from cardflow.core.exceptions import CardNotFoundError
from cardflow.core.logging import bind_workflow_context
from cardflow.core.models import Card, ClassificationResult, Stage
from cardflow.core.processing_status import build_initial_processing_status
from cardflow.jobs.context import PipelineContext
from cardflow.jobs.steps.base import (
    BaseStep,
    PipelineResume,
    StepCompleted,
    StepDeferred,
    StepFailed,
    StepRetry,
)

logger = structlog.get_logger()

STAGE_ORDER = [Stage.CLASSIFY, Stage.CATEGORIZE, Stage.METADATA, Stage.RENDERABLES]

# Steps for the card pipeline
PIPELINE_STEPS = None  # Lazy loaded to avoid circular imports


def get_pipeline_steps() -> dict[Stage, BaseStep]:
    """Lazy load pipeline steps to avoid circular imports."""
    global PIPELINE_STEPS
    if PIPELINE_STEPS is None:
        from cardflow.jobs.steps.step_01_classify import ClassifyStep
        from cardflow.jobs.steps.step_02_categorize import CategorizeStep
        from cardflow.jobs.steps.step_03_metadata import MetadataStep
        from cardflow.jobs.steps.step_04_renderables import RenderablesStep

        PIPELINE_STEPS = {
            Stage.CLASSIFY: ClassifyStep(),
            Stage.CATEGORIZE: CategorizeStep(),
            Stage.METADATA: MetadataStep(),
            Stage.RENDERABLES: RenderablesStep(),
        }
    return PIPELINE_STEPS


def signals_for_card(card: Card) -> ClassificationResult:
    """Classification signals re-derived from the persisted type."""
    record = card.processing_status.classify
    confidence = record.confidence if record and record.confidence is not None else 0.0
    return ClassificationResult.for_type(card.type, confidence)


def should_run(stage: Stage, signals: ClassificationResult) -> bool:
    if stage == Stage.CATEGORIZE:
        return signals.should_categorize
    if stage == Stage.METADATA:
        return signals.should_generate_metadata
    if stage == Stage.RENDERABLES:
        return signals.should_generate_renderables
    return True


async def start_pipeline(ctx: PipelineContext, card_id: str) -> str:
    """
    Reset a card's enrichment state and enqueue a fresh pipeline run.

    AI fields are cleared and every stage is re-seeded for the card's
    current type before the run id is attached, so nothing of an earlier
    run survives into the new one.

    Returns:
        The new run id

    Raises:
        CardNotFoundError: If the card does not exist
    """
    card = await ctx.store.get(card_id)
    if card is None:
        raise CardNotFoundError(card_id)

    run_id = uuid.uuid4().hex
    now = ctx.now()
    await ctx.store.patch(
        card_id,
        {
            "processing_status": build_initial_processing_status(card.type, now),
            "workflow_run_id": run_id,
            "ai_tags": None,
            "ai_summary": None,
            "ai_transcript": None,
            "ai_model_meta": None,
            "updated_at": now,
        },
    )
    await ctx.scheduler.run_after(0, "process_card", card_id, run_id, None)

    logger.info("pipeline_started", card_id=card_id, run_id=run_id, card_type=card.type.value)
    return run_id


async def run_pipeline(
    ctx: PipelineContext,
    card_id: str,
    run_id: str,
    resume: PipelineResume | None = None,
) -> dict[str, Any]:
    """
    Execute the pipeline for one card, starting at ``resume.stage`` if given.

    Returns:
        Result dict with the overall status and the outcome per stage
    """
    with bind_workflow_context(card_id=card_id, run_id=run_id):
        log = logger.bind(card_id=card_id, run_id=run_id)
        steps = get_pipeline_steps()
        start_stage = resume.stage if resume else Stage.CLASSIFY
        log.info("Card pipeline received", start_stage=start_stage.value)

        try:
            card = await ctx.store.get(card_id)
            if card is None:
                raise CardNotFoundError(card_id)
            if card.workflow_run_id and card.workflow_run_id != run_id:
                log.info("run_superseded", current_run_id=card.workflow_run_id)

            signals = signals_for_card(card)
            outcomes: dict[str, str] = {}

            for stage in STAGE_ORDER[STAGE_ORDER.index(start_stage):]:
                if stage != Stage.CLASSIFY and not should_run(stage, signals):
                    outcomes[stage.value] = "skipped"
                    continue

                cursor = resume if resume and resume.stage == stage else PipelineResume(stage=stage)
                outcome = await steps[stage].execute(ctx, card_id, cursor)

                if isinstance(outcome, StepRetry):
                    next_cursor = PipelineResume(
                        stage=stage, attempt=outcome.attempt, deferrals=cursor.deferrals
                    )
                    await _reschedule(ctx, card_id, run_id, next_cursor, outcome.delay_ms)
                    log.info(
                        "pipeline_retry_scheduled",
                        stage=stage.value,
                        attempt=outcome.attempt,
                        delay_ms=outcome.delay_ms,
                    )
                    return {"status": "retry_scheduled", "stage": stage.value, "delay_ms": outcome.delay_ms}

                if isinstance(outcome, StepDeferred):
                    next_cursor = PipelineResume(
                        stage=stage, attempt=cursor.attempt, deferrals=cursor.deferrals + 1
                    )
                    await _reschedule(ctx, card_id, run_id, next_cursor, outcome.delay_ms)
                    log.info(
                        "pipeline_deferred",
                        stage=stage.value,
                        reason=outcome.reason,
                        delay_ms=outcome.delay_ms,
                    )
                    return {"status": "deferred", "stage": stage.value, "delay_ms": outcome.delay_ms}

                if isinstance(outcome, StepFailed):
                    outcomes[stage.value] = "failed"
                    if stage == Stage.CLASSIFY:
                        refreshed = await ctx.store.get(card_id)
                        if refreshed is None:
                            raise CardNotFoundError(card_id)
                        signals = signals_for_card(refreshed)
                    continue

                outcomes[stage.value] = "completed"
                if stage == Stage.CLASSIFY and isinstance(outcome, StepCompleted):
                    signals = outcome.result

            final = await ctx.store.get(card_id)
            if final is None:
                raise CardNotFoundError(card_id)

        except CardNotFoundError as e:
            log.error("Card pipeline aborted", error=str(e))
            return {"status": "error", "message": str(e)}

        complete = final.processing_status.is_complete()
        log.info("Card pipeline finished", complete=complete, outcomes=outcomes)
        return {
            "status": "completed" if complete else "failed",
            "run_id": run_id,
            "card_type": final.type.value,
            "stages": outcomes,
        }


async def _reschedule(
    ctx: PipelineContext,
    card_id: str,
    run_id: str,
    cursor: PipelineResume,
    delay_ms: int,
) -> None:
    await ctx.scheduler.run_after(
        delay_ms, "process_card", card_id, run_id, cursor.model_dump(mode="json")
    )


# =============================================================================
# ARQ job functions
# =============================================================================


async def process_card(
    ctx: dict,
    card_id: str,
    run_id: str,
    resume: dict | None = None,
) -> dict:
    """
    Run (or resume) the enrichment pipeline for one card.

    Args:
        ctx: ARQ context holding the ``PipelineContext`` under ``"pipeline"``
        card_id: Card to process
        run_id: Run id attached by ``start_pipeline``
        resume: Serialized ``PipelineResume`` when continuing a run

    Returns:
        Result dict with status and per-stage outcomes
    """
    cursor = PipelineResume.model_validate(resume) if resume else None
    return await run_pipeline(ctx["pipeline"], card_id, run_id, cursor)


async def extract_link_metadata(ctx: dict, card_id: str) -> dict:
    """Fetch and store the link preview of one card."""
    pipeline: PipelineContext = ctx["pipeline"]
    log = logger.bind(card_id=card_id, job_type="link_metadata")

    try:
        preview = await pipeline.link_previews.extract(card_id)
    except CardNotFoundError as e:
        log.error("Link metadata job aborted", error=str(e))
        return {"status": "error", "message": str(e)}

    return {"status": preview.status.value, "url": preview.url}
