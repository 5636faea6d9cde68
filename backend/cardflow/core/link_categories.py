"""
Link category taxonomy and label normalization.
"""

import re

from cardflow.core.models import LinkCategory

LINK_CATEGORY_LABELS: dict[LinkCategory, str] = {
    LinkCategory.BOOK: "Book / eBook",
    LinkCategory.MOVIE: "Movie / Film",
    LinkCategory.TV: "TV Show / Series",
    LinkCategory.ARTICLE: "Article / Long-form Post",
    LinkCategory.NEWS: "News Brief / Blog Update",
    LinkCategory.PODCAST: "Podcast Episode / Audio Show",
    LinkCategory.MUSIC: "Music Track / Album",
    LinkCategory.PRODUCT: "Product / Shopping Page",
    LinkCategory.RECIPE: "Recipe / Cooking Guide",
    LinkCategory.COURSE: "Course / Tutorial / Learning Resource",
    LinkCategory.RESEARCH: "Research Paper / Academic Publication",
    LinkCategory.EVENT: "Event / Webinar / Meetup",
    LinkCategory.SOFTWARE: "Software / App / GitHub Project",
    LinkCategory.DESIGN_PORTFOLIO: "Design Portfolio",
}

# Confidence used when the model omits one
LINK_CATEGORY_DEFAULT_CONFIDENCE = 0.6


def _normalize_variant(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", value.strip().lower()).strip()


def _build_lookup() -> dict[str, LinkCategory]:
    lookup: dict[str, LinkCategory] = {}

    def register(variant: str, category: LinkCategory) -> None:
        key = _normalize_variant(variant)
        if key:
            lookup[key] = category

    for category in LinkCategory:
        register(category.value, category)
        label = LINK_CATEGORY_LABELS[category]
        register(label, category)
        for part in re.split(r"[/,|()-]", label):
            register(part, category)

    return lookup


_LOOKUP = _build_lookup()


def normalize_link_category(value: str | None) -> LinkCategory | None:
    """Map a free-text label ("TV Show", "GitHub Project", ...) onto the taxonomy."""
    if not value:
        return None
    key = _normalize_variant(value)
    if not key:
        return None
    return _LOOKUP.get(key)
