"""
SQLAlchemy ORM models for Cardflow.

Structured sub-documents (processing status, link preview, colors, ...)
are stored as JSON columns holding the pydantic ``model_dump(mode="json")``
form of the corresponding domain model.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from cardflow.db.database import Base


class TimestampMixin:
    """Mixin for created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )


class CardModel(Base, TimestampMixin):
    """A user-created card and its enrichment state."""

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="text")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    url: Mapped[str | None] = mapped_column(Text)
    file_ref: Mapped[str | None] = mapped_column(String(255))
    file_metadata: Mapped[dict | None] = mapped_column(JSON(none_as_null=True))
    tags: Mapped[list | None] = mapped_column(JSON(none_as_null=True))
    notes: Mapped[str | None] = mapped_column(Text)
    colors: Mapped[list | None] = mapped_column(JSON(none_as_null=True))

    # Link preview extraction
    link_preview: Mapped[dict | None] = mapped_column(JSON(none_as_null=True))
    metadata_status: Mapped[str | None] = mapped_column(String(20))
    link_category: Mapped[dict | None] = mapped_column(JSON(none_as_null=True))

    # AI enrichment
    ai_tags: Mapped[list | None] = mapped_column(JSON(none_as_null=True))
    ai_summary: Mapped[str | None] = mapped_column(Text)
    ai_transcript: Mapped[str | None] = mapped_column(Text)
    ai_model_meta: Mapped[dict | None] = mapped_column(JSON(none_as_null=True))

    thumbnail_ref: Mapped[str | None] = mapped_column(String(255))

    # Pipeline state
    processing_status: Mapped[dict | None] = mapped_column(JSON(none_as_null=True))
    workflow_run_id: Mapped[str | None] = mapped_column(String(64))

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_cards_owner_deleted", "owner_id", "is_deleted"),
        Index("idx_cards_deleted_created", "is_deleted", "created_at"),
    )
