"""
Card Pipeline Steps

Pipeline:
    step_01: Classify     - Determine the card type (heuristics, palette AI fallback)
    step_02: Categorize   - Link category, provider and structured-data facts
    step_03: Metadata     - AI tags, summary and audio transcript
    step_04: Renderables  - Thumbnails for visual cards
"""

from cardflow.jobs.steps.base import (
    BaseStep,
    PipelineResume,
    StepCompleted,
    StepDeferred,
    StepError,
    StepFailed,
    StepOutcome,
    StepRetry,
)
from cardflow.jobs.steps.step_01_classify import ClassifyStep
from cardflow.jobs.steps.step_02_categorize import CategorizeStep
from cardflow.jobs.steps.step_03_metadata import MetadataStep
from cardflow.jobs.steps.step_04_renderables import RenderablesStep

__all__ = [
    "BaseStep",
    "CategorizeStep",
    "ClassifyStep",
    "MetadataStep",
    "PipelineResume",
    "RenderablesStep",
    "StepCompleted",
    "StepDeferred",
    "StepError",
    "StepFailed",
    "StepOutcome",
    "StepRetry",
]
