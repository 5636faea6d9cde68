"""
Stage status constructors.

Pure helpers for building StageRecord values and the seeded
ProcessingStatus of a freshly (re)started card. Nothing here touches
storage; callers persist the merged status in the same patch as their
own field updates.
"""

from datetime import datetime

from cardflow.core.models import (
    CardType,
    ProcessingStatus,
    Stage,
    StageRecord,
    StageState,
    VISUAL_TYPES,
)


def stage_pending() -> StageRecord:
    return StageRecord(status=StageState.PENDING)


def stage_in_progress(now: datetime, previous: StageRecord | None = None) -> StageRecord:
    """Mark a stage as running, keeping the earlier start time and confidence."""
    return StageRecord(
        status=StageState.IN_PROGRESS,
        started_at=previous.started_at if previous and previous.started_at else now,
        confidence=previous.confidence if previous else None,
    )


def stage_completed(now: datetime, confidence: float = 1.0) -> StageRecord:
    return StageRecord(
        status=StageState.COMPLETED,
        completed_at=now,
        confidence=min(max(confidence, 0.0), 1.0),
    )


def stage_failed(
    now: datetime, error: str, previous: StageRecord | None = None
) -> StageRecord:
    return StageRecord(
        status=StageState.FAILED,
        started_at=previous.started_at if previous else None,
        completed_at=now,
        confidence=previous.confidence if previous else None,
        error=error,
    )


def with_stage_status(
    status: ProcessingStatus | None, stage: Stage, record: StageRecord
) -> ProcessingStatus:
    return (status or ProcessingStatus()).with_stage(stage, record)


def build_initial_processing_status(card_type: CardType, now: datetime) -> ProcessingStatus:
    """
    Seed the four stages for a card of the given (guessed) type.

    Stages that cannot apply to the type start out completed at full
    confidence so overall completion stays a simple all-completed check.
    """
    return ProcessingStatus(
        classify=stage_pending(),
        categorize=(
            stage_pending() if card_type == CardType.LINK else stage_completed(now)
        ),
        metadata=stage_pending(),
        renderables=(
            stage_pending() if card_type in VISUAL_TYPES else stage_completed(now)
        ),
    )


def reseed_for_type(
    status: ProcessingStatus, card_type: CardType, now: datetime
) -> ProcessingStatus:
    """Re-derive the type-dependent stages after a reclassification."""
    return status.model_copy(
        update={
            "categorize": (
                stage_pending() if card_type == CardType.LINK else stage_completed(now)
            ),
            "renderables": (
                stage_pending() if card_type in VISUAL_TYPES else stage_completed(now)
            ),
        }
    )
