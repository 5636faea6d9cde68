"""
Step 04: Renderables

Produces display assets for visual cards. Only image cards with a stored
file get a thumbnail today; video and document cards pass through. The
stage always completes, a missing thumbnail just means the client falls
back to the original file.
"""

from cardflow.core.exceptions import CardNotFoundError
from cardflow.core.models import Card, CardType, RenderablesResult, Stage
from cardflow.core.processing_status import stage_completed, with_stage_status
from cardflow.jobs.steps.base import BaseStep, PipelineResume, StepCompleted
from cardflow.services.retry_utils import RENDERABLES_RETRY

RENDERABLES_CONFIDENCE = 0.95


class RenderablesStep(BaseStep):
    label = "Renderables"
    description = "Generating thumbnails..."
    stage = Stage.RENDERABLES
    retry_policy = RENDERABLES_RETRY

    async def run(self, ctx, card: Card, cursor: PipelineResume) -> StepCompleted:
        log = self.log.bind(card_id=card.id)
        generated = False
        if card.type == CardType.IMAGE and card.file_ref:
            try:
                generated = await ctx.thumbnails.generate(card.id)
            except CardNotFoundError:
                raise
            except Exception as e:
                log.warning("thumbnail_generation_failed", file_ref=card.file_ref, error=str(e))

        now = ctx.now()
        status = with_stage_status(
            card.processing_status,
            Stage.RENDERABLES,
            stage_completed(now, RENDERABLES_CONFIDENCE),
        )
        await ctx.store.patch(card.id, {"processing_status": status, "updated_at": now})

        log.info("renderables_completed", thumbnail_generated=generated)
        return StepCompleted(RenderablesResult(thumbnail_generated=generated))
