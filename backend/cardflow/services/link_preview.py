"""
Link Preview Extraction.

Fetches a link card's page and resolves the preview fields (title,
description, image, favicon, site name, author, publisher, published
time, canonical URL) from ordered selector lists. The raw result of every
selector is kept on the preview so provider enrichers can read counts,
ratings and prices later without fetching the page again.

The preview and ``metadata_status`` are written in a single patch.
"""

import re
from dataclasses import dataclass
from collections.abc import Callable
from datetime import datetime
from urllib.parse import urljoin, urlparse

import structlog
from bs4 import BeautifulSoup

from cardflow.core.exceptions import CardNotFoundError
from cardflow.core.models import (
    LinkPreview,
    LinkPreviewStatus,
    MetadataStatus,
    SelectorAttribute,
    SelectorMatch,
    SelectorResult,
    utc_now,
)
from cardflow.services.card_store import CardStore
from cardflow.services.html_fetcher import FetchError, HtmlFetcher
from cardflow.services.url_utils import normalize_url

logger = structlog.get_logger()


@dataclass(frozen=True)
class SelectorSource:
    """A CSS selector and where to read its value ("text" or an attribute)."""

    selector: str
    attribute: str = "content"


def _meta(*selectors: str) -> list[SelectorSource]:
    return [SelectorSource(selector) for selector in selectors]


def _text(*selectors: str) -> list[SelectorSource]:
    return [SelectorSource(selector, "text") for selector in selectors]


# =============================================================================
# Preview selectors (first non-empty value wins)
# =============================================================================

TITLE_SOURCES = _meta(
    "meta[property='og:title']",
    "meta[name='og:title']",
    "meta[name='twitter:title']",
    "meta[property='twitter:title']",
    "meta[name='title']",
) + _text("head > title")

DESCRIPTION_SOURCES = _meta(
    "meta[property='og:description']",
    "meta[name='og:description']",
    "meta[name='description']",
    "meta[property='description']",
    "meta[name='twitter:description']",
    "meta[property='twitter:description']",
)

IMAGE_SOURCES = _meta(
    "meta[property='og:image:secure_url']",
    "meta[property='og:image:url']",
    "meta[property='og:image']",
    "meta[name='og:image']",
    "meta[property='twitter:image']",
    "meta[name='twitter:image']",
    "meta[property='twitter:image:src']",
    "meta[name='twitter:image:src']",
) + [
    SelectorSource("link[rel='image_src']", "href"),
    SelectorSource("meta[name='msapplication-TileImage']"),
]

FAVICON_SOURCES = [
    SelectorSource("link[rel='icon']", "href"),
    SelectorSource("link[rel='shortcut icon']", "href"),
    SelectorSource("link[rel='apple-touch-icon']", "href"),
    SelectorSource("link[rel='apple-touch-icon-precomposed']", "href"),
    SelectorSource("link[rel='mask-icon']", "href"),
]

SITE_NAME_SOURCES = _meta(
    "meta[property='og:site_name']",
    "meta[name='og:site_name']",
    "meta[name='application-name']",
    "meta[name='publisher']",
)

AUTHOR_SOURCES = _meta(
    "meta[name='author']",
    "meta[property='article:author']",
    "meta[name='byl']",
    "meta[property='book:author']",
)

PUBLISHER_SOURCES = _meta(
    "meta[property='article:publisher']",
    "meta[name='publisher']",
    "meta[property='og:site_name']",
)

PUBLISHED_TIME_SOURCES = _meta(
    "meta[property='article:published_time']",
    "meta[name='article:published_time']",
    "meta[name='pubdate']",
    "meta[name='publication_date']",
    "meta[name='date']",
)

CANONICAL_SOURCES = [SelectorSource("link[rel='canonical']", "href")] + _meta(
    "meta[property='og:url']",
    "meta[name='og:url']",
)

FINAL_URL_SOURCES = _meta(
    "meta[property='og:url']",
    "meta[name='og:url']",
    "meta[property='al:web:url']",
    "meta[property='twitter:url']",
    "meta[name='twitter:url']",
)

# =============================================================================
# Provider selectors (kept raw for the categorization enrichers)
# =============================================================================

GITHUB_SOURCES = _text(
    "a[href$='/stargazers']",
    "a[href$='/network/members']",
    "a[href$='/watchers']",
    "span[itemprop='programmingLanguage']",
    "relative-time",
)

GOODREADS_SOURCES = _meta(
    "meta[property='books:rating:average']",
    "meta[property='books:rating:count']",
    "meta[property='books:isbn']",
)

AMAZON_SOURCES = _meta(
    "meta[property='og:price:amount']",
    "meta[property='og:price:currency']",
    "meta[name='price']",
) + _text(
    "#priceblock_ourprice",
    "#priceblock_dealprice",
    ".a-price .a-offscreen",
)

IMDB_SOURCES = _meta(
    "meta[name='imdb:rating']",
    "meta[name='imdb:votes']",
    "meta[property='video:release_date']",
) + _text(
    "span[data-testid='hero-rating-bar__aggregate-rating__score']",
    "span[data-testid='title-techspec_runtime'] span",
)

DRIBBBLE_SOURCES = _meta(
    "meta[name='twitter:creator']",
    *(f"meta[name='twitter:label{index}']" for index in range(1, 5)),
    *(f"meta[name='twitter:data{index}']" for index in range(1, 5)),
) + _text(
    "a[rel='author']",
    ".shot-byline a",
    "a[href$='/likes']",
    "[data-testid='shot-likes']",
    "[data-testid='shot-likes-count']",
    ".shot-stats [data-label='Likes']",
    "a[href$='/views']",
    "[data-testid='shot-views']",
    "[data-testid='shot-views-count']",
    ".shot-stats [data-label='Views']",
    "a[href$='/comments']",
    "[data-testid='shot-comments']",
    "[data-testid='shot-comments-count']",
    ".shot-stats [data-label='Comments']",
) + _meta(
    "meta[name='keywords']",
    "meta[name='parsely-tags']",
    "meta[property='article:tag']",
) + _text("a[rel='tag']")

SCRAPE_SELECTORS: list[str] = list(
    dict.fromkeys(
        source.selector
        for source in (
            TITLE_SOURCES
            + DESCRIPTION_SOURCES
            + IMAGE_SOURCES
            + FAVICON_SOURCES
            + SITE_NAME_SOURCES
            + AUTHOR_SOURCES
            + PUBLISHER_SOURCES
            + PUBLISHED_TIME_SOURCES
            + CANONICAL_SOURCES
            + FINAL_URL_SOURCES
            + GITHUB_SOURCES
            + GOODREADS_SOURCES
            + AMAZON_SOURCES
            + IMDB_SOURCES
            + DRIBBBLE_SOURCES
        )
    )
)

# Matches kept per selector while resolving; only the first is persisted
MAX_MATCHES_PER_SELECTOR = 5

WHITESPACE = re.compile(r"\s+")


# =============================================================================
# Scraping
# =============================================================================


def _attribute_value(value: str | list[str]) -> str:
    # bs4 returns multi-valued attributes (rel, class) as lists
    return " ".join(value) if isinstance(value, list) else str(value)


def scrape_selectors(html: str, selectors: list[str] = SCRAPE_SELECTORS) -> list[SelectorResult]:
    """Apply every selector to the page and capture text and attributes."""
    soup = BeautifulSoup(html, "html.parser")
    results: list[SelectorResult] = []

    for selector in selectors:
        matches: list[SelectorMatch] = []
        for element in soup.select(selector, limit=MAX_MATCHES_PER_SELECTOR):
            text = element.get_text(" ", strip=True) or None
            attributes = [
                SelectorAttribute(name=name, value=_attribute_value(value))
                for name, value in element.attrs.items()
            ]
            matches.append(SelectorMatch(text=text, attributes=attributes))

        results.append(SelectorResult(selector=selector, results=matches))

    return results


def to_selector_map(results: list[SelectorResult] | None) -> dict[str, list[SelectorMatch]]:
    if not results:
        return {}
    return {entry.selector: entry.results for entry in results}


def find_attribute_value(match: SelectorMatch | None, attribute: str) -> str | None:
    if match is None:
        return None
    needle = attribute.lower()
    for attr in match.attributes:
        if attr.name.lower() == needle:
            return attr.value.strip() or None
    return None


def get_selector_value(
    selector_map: dict[str, list[SelectorMatch]], source: SelectorSource
) -> str | None:
    """Value of the first match that has one for ``source.attribute``."""
    for match in selector_map.get(source.selector, []):
        if source.attribute == "text":
            if match.text and match.text.strip():
                return match.text.strip()
        else:
            value = find_attribute_value(match, source.attribute)
            if value:
                return value
    return None


def first_from_sources(
    selector_map: dict[str, list[SelectorMatch]], sources: list[SelectorSource]
) -> str | None:
    for source in sources:
        value = get_selector_value(selector_map, source)
        if value:
            return value
    return None


# =============================================================================
# Sanitizing
# =============================================================================


def sanitize_text(value: str | None, max_length: int) -> str | None:
    if not value:
        return None
    normalized = WHITESPACE.sub(" ", value).strip()
    if not normalized:
        return None
    return normalized[:max_length]


def sanitize_url(base_url: str, value: str | None, allow_data: bool = False) -> str | None:
    """Resolve ``value`` against the page URL; only http(s) (or data: images) pass."""
    if not value or not value.strip():
        return None
    trimmed = value.strip()
    lowered = trimmed.lower()

    if lowered.startswith("data:"):
        return trimmed if allow_data else None
    if lowered.startswith(("javascript:", "mailto:")):
        return None

    try:
        resolved = urljoin(base_url, trimmed)
        scheme = urlparse(resolved).scheme
    except ValueError:
        return None
    return resolved if scheme in ("http", "https") else None


def build_debug_raw(results: list[SelectorResult]) -> list[SelectorResult]:
    """Trim each selector to its first match for persistence."""
    return [
        SelectorResult(selector=entry.selector, results=entry.results[:1])
        for entry in results
    ]


# =============================================================================
# Preview building
# =============================================================================


def parse_link_preview(
    url: str,
    results: list[SelectorResult],
    now: datetime,
    base_url: str | None = None,
) -> LinkPreview:
    """Build a successful preview from scraped selector results.

    Relative URLs resolve against ``base_url`` (the post-redirect URL).
    """
    selector_map = to_selector_map(results)
    base = base_url or url

    published_raw = first_from_sources(selector_map, PUBLISHED_TIME_SOURCES)
    canonical_url = sanitize_url(base, first_from_sources(selector_map, CANONICAL_SOURCES))
    final_url = sanitize_url(base, first_from_sources(selector_map, FINAL_URL_SOURCES))

    return LinkPreview(
        status=LinkPreviewStatus.SUCCESS,
        fetched_at=now,
        url=url,
        final_url=final_url or canonical_url or url,
        canonical_url=canonical_url,
        title=sanitize_text(first_from_sources(selector_map, TITLE_SOURCES), 512),
        description=sanitize_text(first_from_sources(selector_map, DESCRIPTION_SOURCES), 2048),
        image_url=sanitize_url(base, first_from_sources(selector_map, IMAGE_SOURCES), allow_data=True),
        favicon_url=sanitize_url(base, first_from_sources(selector_map, FAVICON_SOURCES)),
        site_name=sanitize_text(first_from_sources(selector_map, SITE_NAME_SOURCES), 256),
        author=sanitize_text(first_from_sources(selector_map, AUTHOR_SOURCES), 256),
        publisher=sanitize_text(first_from_sources(selector_map, PUBLISHER_SOURCES), 256),
        published_at=published_raw.strip()[:128] if published_raw else None,
        raw=build_debug_raw(results),
    )


def build_error_preview(url: str, error: str, now: datetime) -> LinkPreview:
    return LinkPreview(
        status=LinkPreviewStatus.ERROR,
        fetched_at=now,
        url=url,
        final_url=url,
        error=error[:500],
    )


# =============================================================================
# Service
# =============================================================================


class LinkPreviewService:
    """Fetch and persist the link preview of one card."""

    def __init__(
        self,
        store: CardStore,
        fetcher: HtmlFetcher,
        now: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.fetcher = fetcher
        self.now = now
        self.log = logger.bind(service="LinkPreviewService")

    async def extract(self, card_id: str) -> LinkPreview:
        """
        Fetch the card's URL and store the resulting preview.

        Fetch and parse failures produce an ``error`` preview with
        ``metadata_status=failed``; they are not raised.

        Raises:
            CardNotFoundError: If the card does not exist
        """
        log = self.log.bind(card_id=card_id)

        card = await self.store.get(card_id)
        if card is None:
            raise CardNotFoundError(card_id)

        now = self.now()

        if not card.url:
            preview = build_error_preview("", "Card has no URL", now)
            status = MetadataStatus.FAILED
        else:
            url = normalize_url(card.url)
            try:
                page = await self.fetcher.fetch(url)
                preview = parse_link_preview(
                    url, scrape_selectors(page.text), now, base_url=page.final_url
                )
                status = MetadataStatus.COMPLETED
            except FetchError as e:
                log.warning("link_preview_fetch_failed", url=url[:120], error=str(e))
                preview = build_error_preview(url, str(e), now)
                status = MetadataStatus.FAILED

        await self.store.patch(
            card_id,
            {"link_preview": preview, "metadata_status": status, "updated_at": now},
        )

        log.info(
            "link_preview_saved",
            status=preview.status.value,
            has_title=bool(preview.title),
            has_image=bool(preview.image_url),
        )
        return preview
