"""
Structured data (JSON-LD) enrichment.

Fetches the link's page once, pulls up to ``structured_data_max_items``
JSON-LD entities out of it, and extracts category-specific facts from the
entity whose ``@type`` fits the link category (a Recipe for recipes, a
Movie for movies, ...).

Fetch and parse failures are logged and yield no entities; they never
fail categorization.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from bs4 import BeautifulSoup

from cardflow.core.config import settings
from cardflow.core.models import LinkCategory, LinkCategoryFact, StructuredDataMeta, utc_now
from cardflow.services.enrichment.common import (
    ProviderEnrichment,
    format_date,
    format_duration,
)
from cardflow.services.html_fetcher import FetchError, HtmlFetcher

logger = structlog.get_logger()

# Fields kept from a matched entity in ``link_category.raw.structured``
STRUCTURED_DATA_FIELDS = [
    "name",
    "url",
    "image",
    "@type",
    "sameAs",
    "datePublished",
    "dateModified",
    "startDate",
    "endDate",
    "author",
    "creator",
    "publisher",
    "headline",
    "description",
    "aggregateRating",
    "recipeIngredient",
    "recipeInstructions",
    "offers",
    "genre",
    "keywords",
    "duration",
    "performer",
    "byArtist",
]

# Category -> JSON-LD @type candidates, in preference order
CATEGORY_TYPES: dict[LinkCategory, list[str]] = {
    LinkCategory.BOOK: ["Book"],
    LinkCategory.MOVIE: ["Movie", "VideoObject", "CreativeWork"],
    LinkCategory.TV: ["TVSeries", "TVEpisode", "VideoObject"],
    LinkCategory.ARTICLE: ["NewsArticle", "Article", "BlogPosting"],
    LinkCategory.NEWS: ["NewsArticle", "Article", "BlogPosting"],
    LinkCategory.PODCAST: ["PodcastEpisode", "PodcastSeries", "AudioObject"],
    LinkCategory.MUSIC: ["MusicRecording", "MusicAlbum", "MusicPlaylist"],
    LinkCategory.PRODUCT: ["Product", "Offer"],
    LinkCategory.RECIPE: ["Recipe"],
    LinkCategory.COURSE: ["Course", "EducationalOccupationalProgram"],
    LinkCategory.RESEARCH: ["ScholarlyArticle", "ResearchArticle", "Report"],
    LinkCategory.EVENT: ["Event", "MusicEvent", "BusinessEvent"],
    LinkCategory.SOFTWARE: ["SoftwareApplication", "SoftwareSourceCode"],
    LinkCategory.DESIGN_PORTFOLIO: ["CreativeWork", "CollectionPage", "Portfolio"],
}


@dataclass
class StructuredData:
    entities: list[dict[str, Any]] = field(default_factory=list)
    meta: StructuredDataMeta | None = None


# =============================================================================
# Parsing
# =============================================================================


def _fingerprint(item: dict[str, Any]) -> str:
    picked = {key: item[key] for key in ("@type", "name", "url") if key in item}
    return json.dumps(picked, sort_keys=True, default=str)


def _iter_items(parsed: Any):
    values = parsed if isinstance(parsed, list) else [parsed]
    for item in values:
        if not isinstance(item, dict):
            continue
        graph = item.get("@graph")
        if isinstance(graph, list):
            yield from (entry for entry in graph if isinstance(entry, dict))
        else:
            yield item


def parse_structured_data(html: str, max_items: int | None = None) -> list[dict[str, Any]]:
    """JSON-LD entities of a page, deduplicated on (@type, name, url)."""
    limit = max_items or settings.structured_data_max_items
    soup = BeautifulSoup(html, "html.parser")
    entities: list[dict[str, Any]] = []
    seen: set[str] = set()

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        text = (script.string or script.get_text() or "").strip()
        if not text:
            continue
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("structured_data_block_invalid", error=str(e))
            continue

        for item in _iter_items(parsed):
            fingerprint = _fingerprint(item)
            if fingerprint in seen:
                continue
            seen.add(fingerprint)
            entities.append(item)
            if len(entities) >= limit:
                return entities

    return entities


async def fetch_structured_data(
    fetcher: HtmlFetcher, url: str, now: datetime | None = None
) -> StructuredData | None:
    """Fetch ``url`` and parse its JSON-LD; None on any fetch problem."""
    try:
        page = await fetcher.fetch(url)
    except FetchError as e:
        logger.warning("structured_data_fetch_failed", url=url[:120], error=str(e))
        return None

    if "text/html" not in page.content_type.lower():
        logger.info("structured_data_skipped_non_html", url=url[:120], content_type=page.content_type)
        return None

    return StructuredData(
        entities=parse_structured_data(page.text),
        meta=StructuredDataMeta(
            etag=page.etag,
            last_modified=page.last_modified,
            fetched_at=now or utc_now(),
        ),
    )


# =============================================================================
# Value helpers
# =============================================================================


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _matches_type(entity: dict[str, Any], types: list[str]) -> bool:
    candidate_types = {entry.lower() for entry in _as_list(entity.get("@type")) if isinstance(entry, str)}
    return any(t.lower() in candidate_types for t in types)


def find_by_type(entities: list[dict[str, Any]], types: list[str]) -> dict[str, Any] | None:
    return next((entity for entity in entities if _matches_type(entity, types)), None)


def _names(value: Any) -> list[str]:
    names = []
    for entry in _as_list(value):
        if isinstance(entry, str):
            names.append(entry)
        elif isinstance(entry, dict) and isinstance(entry.get("name"), str):
            names.append(entry["name"])
    return names


def _text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict) and value.get("name"):
        return str(value["name"])
    return None


def _image(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, list) and value:
        first = value[0]
        if isinstance(first, str):
            return first
        if isinstance(first, dict) and first.get("url"):
            return first["url"]
    if isinstance(value, dict) and value.get("url"):
        return value["url"]
    return None


def _rating(entity: dict[str, Any], *keys: str) -> str | None:
    rating = entity.get("aggregateRating")
    if not isinstance(rating, dict):
        return None
    for key in keys:
        value = _text(rating.get(key))
        if value:
            return value
    return None


# =============================================================================
# Fact extraction per category
# =============================================================================


def _facts_for(category: LinkCategory, entity: dict[str, Any]) -> list[tuple[str, str | None]]:
    if category == LinkCategory.BOOK:
        return [
            ("Authors", ", ".join(_names(entity.get("author")))),
            ("Rating", _rating(entity, "ratingValue")),
            ("Reviews", _rating(entity, "ratingCount", "reviewCount")),
            ("Length", _text(entity.get("numberOfPages") or entity.get("bookFormat"))),
            ("Published", format_date(entity.get("datePublished"))),
        ]

    if category == LinkCategory.MOVIE:
        return [
            ("Rating", _rating(entity, "ratingValue")),
            ("Votes", _rating(entity, "ratingCount", "reviewCount")),
            ("Release", format_date(entity.get("datePublished") or entity.get("dateCreated"))),
        ]

    if category == LinkCategory.TV:
        return [
            ("Seasons", _text(entity.get("numberOfSeasons") or entity.get("seasonNumber"))),
            ("Episodes", _text(entity.get("numberOfEpisodes"))),
            ("First aired", format_date(entity.get("datePublished") or entity.get("dateCreated"))),
        ]

    if category in (LinkCategory.ARTICLE, LinkCategory.NEWS):
        published = format_date(entity.get("datePublished"))
        updated = format_date(entity.get("dateModified"))
        return [
            ("Published", published),
            ("Updated", updated if updated != published else None),
        ]

    if category == LinkCategory.PODCAST:
        return [
            ("Duration", format_duration(entity.get("duration"))),
            ("Series", _text(entity.get("partOfSeries")) or _text(entity.get("isPartOf"))),
        ]

    if category == LinkCategory.MUSIC:
        artists = entity.get("byArtist") or entity.get("creator") or entity.get("performer")
        return [
            ("Artist", ", ".join(_names(artists))),
            ("Length", format_duration(entity.get("duration"))),
        ]

    if category == LinkCategory.PRODUCT:
        offers = entity.get("offers")
        offer = offers[0] if isinstance(offers, list) and offers else offers
        price = None
        if isinstance(offer, dict) and offer.get("price") is not None:
            price = f"{offer['price']} {offer.get('priceCurrency') or ''}".strip()
        return [("Price", price), ("Brand", _text(entity.get("brand")))]

    if category == LinkCategory.RECIPE:
        timing = " · ".join(
            f"{label} {value}"
            for label, value in (
                ("Prep", format_duration(entity.get("prepTime"))),
                ("Cook", format_duration(entity.get("cookTime"))),
                ("Total", format_duration(entity.get("totalTime"))),
            )
            if value
        )
        ingredients = _names(entity.get("recipeIngredient"))
        servings = _as_list(entity.get("recipeYield"))
        return [
            ("Servings", _text(servings[0]) if servings else None),
            ("Timing", timing),
            ("Ingredients", ", ".join(ingredients[:6])),
        ]

    if category == LinkCategory.COURSE:
        return [("Provider", _text(entity.get("provider")) or _text(entity.get("publisher")))]

    if category == LinkCategory.RESEARCH:
        return [
            ("Authors", ", ".join(_names(entity.get("author")))),
            ("Published", format_date(entity.get("datePublished"))),
        ]

    if category == LinkCategory.EVENT:
        start = format_date(entity.get("startDate"))
        end = format_date(entity.get("endDate"))
        dates = f"{start} → {end}" if start and end and start != end else start or end
        location = entity.get("location")
        location_name = location.get("name") if isinstance(location, dict) else None
        return [("Dates", dates), ("Location", _text(location_name) or _text(location))]

    if category == LinkCategory.SOFTWARE:
        return [
            ("Platform", _text(entity.get("operatingSystem"))),
            ("Category", _text(entity.get("applicationCategory"))),
        ]

    if category == LinkCategory.DESIGN_PORTFOLIO:
        return [("Creator", _text(entity.get("author")) or _text(entity.get("creator")))]

    return []


def enrich_with_structured_data(
    category: LinkCategory, entities: list[dict[str, Any]]
) -> ProviderEnrichment | None:
    """Facts and image from the first entity whose @type fits the category."""
    types = CATEGORY_TYPES.get(category)
    entity = find_by_type(entities, types) if types else None
    if entity is None:
        return None

    facts = [
        LinkCategoryFact(label=label, value=value)
        for label, value in _facts_for(category, entity)
        if value
    ]
    raw = {key: entity[key] for key in STRUCTURED_DATA_FIELDS if key in entity}

    return ProviderEnrichment(image_url=_image(entity.get("image")), facts=facts, raw=raw)
