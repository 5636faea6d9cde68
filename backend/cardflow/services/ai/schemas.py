"""
Response schemas for structured model calls.
"""

from pydantic import BaseModel, Field, field_validator


class CardMetadataResult(BaseModel):
    """Tags plus a short summary for any card."""

    tags: list[str] = Field(default_factory=list, description="5-6 short tags of one or two words")
    summary: str = Field(default="", description="1-2 sentence summary")

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for tag in v:
            cleaned = " ".join(tag.split()).strip().lower()
            if cleaned and cleaned not in seen:
                seen.append(cleaned)
        return seen[:8]


class LinkCategoryResult(BaseModel):
    """Category guess for a link; ``category`` is free text until normalized."""

    category: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    provider_hint: str | None = None
    tags: list[str] | None = None


class PaletteColorItem(BaseModel):
    hex: str
    name: str | None = None


class PaletteResult(BaseModel):
    colors: list[PaletteColorItem] = Field(default_factory=list)
