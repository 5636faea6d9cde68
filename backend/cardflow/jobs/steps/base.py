from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

import structlog
from pydantic import BaseModel

from cardflow.core.exceptions import CardNotFoundError, WrongCardTypeError
from cardflow.core.models import Card, Stage
from cardflow.core.processing_status import (
    stage_failed,
    stage_in_progress,
    with_stage_status,
)
from cardflow.services.retry_utils import RetryPolicy

if TYPE_CHECKING:
    from cardflow.jobs.context import PipelineContext

logger = structlog.get_logger()


class StepError(Exception):
    """Controlled step failure with a readable message.

    Use this when a step ran but produced nothing usable, as opposed to
    unexpected exceptions. Goes through the step's retry policy unless
    raised with ``retryable=False``.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class PipelineResume(BaseModel):
    """Where a rescheduled pipeline run picks up again."""

    stage: Stage
    attempt: int = 1
    deferrals: int = 0


# =============================================================================
# Step outcomes
# =============================================================================


@dataclass(frozen=True)
class StepCompleted:
    result: BaseModel


@dataclass(frozen=True)
class StepDeferred:
    """The step's input is not ready yet; run it again after ``delay_ms``."""

    delay_ms: int
    reason: str


@dataclass(frozen=True)
class StepRetry:
    delay_ms: int
    attempt: int
    error: str


@dataclass(frozen=True)
class StepFailed:
    error: str


StepOutcome = Union[StepCompleted, StepDeferred, StepRetry, StepFailed]


class BaseStep(ABC):
    """Base class for all card pipeline steps."""

    label: str = "Base Step"
    description: str = "Performing base step..."
    stage: Stage
    retry_policy: RetryPolicy

    def __init__(self):
        self.log = logger.bind(step=self.label)

    def validate(self, card: Card) -> None:
        """Reject cards this step cannot handle. Runs before any write."""

    @abstractmethod
    async def run(
        self, ctx: "PipelineContext", card: Card, cursor: PipelineResume
    ) -> StepOutcome:
        """Logic for the step goes here.

        Successful runs persist their fields together with the completed
        stage record in a single patch and return ``StepCompleted``.
        """

    async def execute(
        self, ctx: "PipelineContext", card_id: str, cursor: PipelineResume | None = None
    ) -> StepOutcome:
        """Wrapper around run() that handles stage status and retries.

        Raises:
            CardNotFoundError: If the card is gone; the run cannot continue
        """
        cursor = cursor or PipelineResume(stage=self.stage)
        log = self.log.bind(card_id=card_id, attempt=cursor.attempt)

        card = await ctx.store.get(card_id)
        if card is None:
            raise CardNotFoundError(card_id)

        try:
            self.validate(card)
        except WrongCardTypeError as e:
            log.error("step_rejected_input", error=str(e))
            await self.mark_failed(ctx, card_id, str(e))
            return StepFailed(error=str(e))

        log.info("Starting step", card_type=card.type.value)

        status = with_stage_status(
            card.processing_status,
            self.stage,
            stage_in_progress(ctx.now(), card.processing_status.get(self.stage)),
        )
        await ctx.store.patch(card_id, {"processing_status": status})
        card = card.model_copy(update={"processing_status": status})

        try:
            outcome = await self.run(ctx, card, cursor)
        except CardNotFoundError:
            raise
        except Exception as e:
            if getattr(e, "retryable", True) and self.retry_policy.should_retry(cursor.attempt):
                delay_ms = self.retry_policy.delay_ms(cursor.attempt)
                log.warning("step_retry_scheduled", error=str(e), delay_ms=delay_ms)
                return StepRetry(delay_ms=delay_ms, attempt=cursor.attempt + 1, error=str(e))

            await self.mark_failed(ctx, card_id, str(e))
            log.error("stage_failed", error=str(e), attempts=cursor.attempt)
            return StepFailed(error=str(e))

        if isinstance(outcome, StepCompleted):
            log.info("Step completed")
        return outcome

    async def mark_failed(self, ctx: "PipelineContext", card_id: str, error: str) -> None:
        card = await ctx.store.get(card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        status = with_stage_status(
            card.processing_status,
            self.stage,
            stage_failed(ctx.now(), error, card.processing_status.get(self.stage)),
        )
        await ctx.store.patch(card_id, {"processing_status": status, "updated_at": ctx.now()})

