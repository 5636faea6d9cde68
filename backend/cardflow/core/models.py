"""
Core models and types for Cardflow.

Pydantic models describe the card document as the pipeline sees it. They
are the single source of truth for what gets serialized into the card
store's JSON columns.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class CardType(str, Enum):
    TEXT = "text"
    LINK = "link"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    PALETTE = "palette"
    QUOTE = "quote"


class Stage(str, Enum):
    CLASSIFY = "classify"
    CATEGORIZE = "categorize"
    METADATA = "metadata"
    RENDERABLES = "renderables"


class StageState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class MetadataStatus(str, Enum):
    """Lifecycle of the link-preview extraction for link cards."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class LinkPreviewStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class LinkCategory(str, Enum):
    BOOK = "book"
    MOVIE = "movie"
    TV = "tv"
    ARTICLE = "article"
    NEWS = "news"
    PODCAST = "podcast"
    MUSIC = "music"
    PRODUCT = "product"
    RECIPE = "recipe"
    COURSE = "course"
    RESEARCH = "research"
    EVENT = "event"
    SOFTWARE = "software"
    DESIGN_PORTFOLIO = "design_portfolio"


VISUAL_TYPES = frozenset({CardType.IMAGE, CardType.VIDEO, CardType.DOCUMENT})


# =============================================================================
# Stage status
# =============================================================================


class StageRecord(BaseModel):
    """Lifecycle record of a single pipeline stage."""

    status: StageState
    started_at: datetime | None = None
    completed_at: datetime | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    error: str | None = None


class ProcessingStatus(BaseModel):
    """Per-card progress through the four pipeline stages."""

    classify: StageRecord | None = None
    categorize: StageRecord | None = None
    metadata: StageRecord | None = None
    renderables: StageRecord | None = None

    def get(self, stage: Stage) -> StageRecord | None:
        return getattr(self, stage.value)

    def with_stage(self, stage: Stage, record: StageRecord) -> "ProcessingStatus":
        return self.model_copy(update={stage.value: record})

    def is_complete(self) -> bool:
        return all(
            record is not None and record.status == StageState.COMPLETED
            for record in (self.classify, self.categorize, self.metadata, self.renderables)
        )


# =============================================================================
# Card sub-documents
# =============================================================================


class RGB(BaseModel):
    r: int
    g: int
    b: int


class HSL(BaseModel):
    h: int
    s: int
    l: int  # noqa: E741


class Color(BaseModel):
    hex: str
    name: str | None = None
    rgb: RGB | None = None
    hsl: HSL | None = None


class FileMetadata(BaseModel):
    file_name: str | None = None
    file_size: int | None = None
    mime_type: str | None = None
    duration: float | None = None
    width: int | None = None
    height: int | None = None


class SelectorAttribute(BaseModel):
    name: str
    value: str


class SelectorMatch(BaseModel):
    text: str | None = None
    attributes: list[SelectorAttribute] = Field(default_factory=list)


class SelectorResult(BaseModel):
    """Raw result of one CSS selector applied to a fetched page."""

    selector: str
    results: list[SelectorMatch] = Field(default_factory=list)


class LinkPreview(BaseModel):
    source: str = "html"
    status: LinkPreviewStatus
    fetched_at: datetime | None = None
    url: str
    final_url: str | None = None
    canonical_url: str | None = None
    title: str | None = None
    description: str | None = None
    image_url: str | None = None
    favicon_url: str | None = None
    site_name: str | None = None
    author: str | None = None
    publisher: str | None = None
    published_at: str | None = None
    error: str | None = None
    raw: list[SelectorResult] | None = None


class LinkCategoryFact(BaseModel):
    label: str
    value: str
    icon: str | None = None


class ProviderPayload(BaseModel):
    """Provider-specific raw data; unrecognized keys are kept as extras."""

    model_config = ConfigDict(extra="allow")

    name: str


class StructuredDataMeta(BaseModel):
    etag: str | None = None
    last_modified: str | None = None
    fetched_at: datetime | None = None


class LinkCategoryRaw(BaseModel):
    provider: ProviderPayload | None = None
    # Selected JSON-LD fields of the entity that matched the category
    structured: dict[str, Any] | None = None
    structured_meta: StructuredDataMeta | None = None


class LinkCategoryMetadata(BaseModel):
    category: LinkCategory
    source_url: str
    image_url: str | None = None
    provider: str | None = None
    facts: list[LinkCategoryFact] | None = None
    raw: LinkCategoryRaw | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    detected_provider: str | None = None
    fetched_at: datetime | None = None


class AiModelMeta(BaseModel):
    provider: str
    model: str
    generated_at: datetime


# =============================================================================
# Card
# =============================================================================


class Card(BaseModel):
    """A single user-created content item, the unit the pipeline enriches."""

    id: str
    owner_id: str
    type: CardType = CardType.TEXT
    content: str = ""
    url: str | None = None
    file_ref: str | None = None
    file_metadata: FileMetadata | None = None
    tags: list[str] | None = None
    notes: str | None = None
    colors: list[Color] | None = None
    link_preview: LinkPreview | None = None
    metadata_status: MetadataStatus | None = None
    link_category: LinkCategoryMetadata | None = None
    ai_tags: list[str] | None = None
    ai_summary: str | None = None
    ai_transcript: str | None = None
    ai_model_meta: AiModelMeta | None = None
    thumbnail_ref: str | None = None
    processing_status: ProcessingStatus = Field(default_factory=ProcessingStatus)
    workflow_run_id: str | None = None
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime | None = None

    @property
    def has_successful_preview(self) -> bool:
        return (
            self.link_preview is not None
            and self.link_preview.status == LinkPreviewStatus.SUCCESS
        )


# =============================================================================
# Step results
# =============================================================================


class ClassificationResult(BaseModel):
    type: CardType
    confidence: float
    needs_link_metadata: bool = False
    should_categorize: bool = False
    should_generate_metadata: bool = True
    should_generate_renderables: bool = False

    @classmethod
    def for_type(
        cls, card_type: CardType, confidence: float, needs_link_metadata: bool = False
    ) -> "ClassificationResult":
        """Derive downstream signals from a final card type."""
        return cls(
            type=card_type,
            confidence=confidence,
            needs_link_metadata=needs_link_metadata,
            should_categorize=card_type == CardType.LINK,
            should_generate_metadata=True,
            should_generate_renderables=card_type in VISUAL_TYPES,
        )


class CategorizationResult(BaseModel):
    category: LinkCategory
    confidence: float
    image_url: str | None = None
    fact_count: int = 0
    detected_provider: str | None = None


class MetadataResult(BaseModel):
    ai_tags: list[str] = Field(default_factory=list)
    ai_summary: str = ""
    ai_transcript: str | None = None
    confidence: float = 0.9


class RenderablesResult(BaseModel):
    thumbnail_generated: bool = False
