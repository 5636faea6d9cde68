"""
Provider enrichers.

Each enricher reads selectors captured on the link preview for one site
(GitHub, Goodreads, Amazon, IMDb, Dribbble) and returns display facts.
No network access happens here.
"""

import re
from urllib.parse import urlparse

from cardflow.core.models import LinkCategory, LinkCategoryFact
from cardflow.services.enrichment.common import (
    ProviderEnrichment,
    RawSelectorMap,
    format_count_string,
    format_date,
    format_rating,
    get_raw_attribute,
    get_raw_text,
    normalize_whitespace,
)

# Hostname fragment -> provider name, checked in order
PROVIDER_HOSTS: list[tuple[tuple[str, ...], str]] = [
    (("github.com",), "github"),
    (("goodreads.com",), "goodreads"),
    (("amazon.",), "amazon"),
    (("imdb.com",), "imdb"),
    (("netflix.com",), "netflix"),
    (("behance.net",), "behance"),
    (("dribbble.com",), "dribbble"),
    (("spotify.com",), "spotify"),
    (("apple.com",), "apple"),
    (("youtube.com", "youtu.be"), "youtube"),
    (("medium.com",), "medium"),
    (("substack.com",), "substack"),
]


def detect_provider(url: str | None, hint: str | None = None) -> str | None:
    """Provider name for a URL: the AI hint, a known site, or the bare hostname."""
    if hint:
        return hint
    if not url:
        return None
    try:
        hostname = (urlparse(url).hostname or "").lower()
    except ValueError:
        return None
    if not hostname:
        return None
    for fragments, provider in PROVIDER_HOSTS:
        if any(fragment in hostname for fragment in fragments):
            return provider
    return hostname


def _fact(label: str, value: str) -> LinkCategoryFact:
    return LinkCategoryFact(label=label, value=value)


# =============================================================================
# GitHub / Goodreads / Amazon / IMDb
# =============================================================================


def enrich_github(raw_map: RawSelectorMap) -> ProviderEnrichment | None:
    stars = format_count_string(get_raw_text(raw_map, "a[href$='/stargazers']"))
    forks = format_count_string(get_raw_text(raw_map, "a[href$='/network/members']"))
    watchers = format_count_string(get_raw_text(raw_map, "a[href$='/watchers']"))
    language = get_raw_text(raw_map, "span[itemprop='programmingLanguage']")
    updated_raw = get_raw_text(raw_map, "relative-time")

    facts = []
    if stars:
        facts.append(_fact("Stars", stars))
    if forks:
        facts.append(_fact("Forks", forks))
    if watchers:
        facts.append(_fact("Watchers", watchers))
    if language:
        facts.append(_fact("Language", language))
    if updated_raw:
        updated = normalize_whitespace(re.sub(r"^on\s+", "", updated_raw, flags=re.IGNORECASE))
        if updated:
            facts.append(_fact("Updated", updated))

    if not facts:
        return None

    return ProviderEnrichment(
        facts=facts,
        raw={
            "stars": stars,
            "forks": forks,
            "watchers": watchers,
            "language": language,
            "updated": updated_raw,
        },
    )


def enrich_goodreads(raw_map: RawSelectorMap) -> ProviderEnrichment | None:
    average = format_rating(
        get_raw_attribute(raw_map, "meta[property='books:rating:average']", "content")
    )
    count = format_count_string(
        get_raw_attribute(raw_map, "meta[property='books:rating:count']", "content")
    )
    isbn = get_raw_attribute(raw_map, "meta[property='books:isbn']", "content")

    facts = []
    if average:
        facts.append(_fact("Average rating", f"{average} / 5"))
    if count:
        facts.append(_fact("Ratings", count))
    if isbn:
        facts.append(_fact("ISBN", isbn))

    if not facts:
        return None

    return ProviderEnrichment(
        facts=facts,
        raw={"rating_average": average, "rating_count": count, "isbn": isbn},
    )


def enrich_amazon(raw_map: RawSelectorMap) -> ProviderEnrichment | None:
    price = (
        get_raw_text(raw_map, "#priceblock_ourprice")
        or get_raw_text(raw_map, "#priceblock_dealprice")
        or get_raw_text(raw_map, ".a-price .a-offscreen")
        or get_raw_attribute(raw_map, "meta[name='price']", "content")
        or get_raw_attribute(raw_map, "meta[property='og:price:amount']", "content")
    )
    currency = get_raw_attribute(raw_map, "meta[property='og:price:currency']", "content")

    if not price and not currency:
        return None

    label = f"{price or ''} {currency}".strip() if currency else price
    return ProviderEnrichment(
        facts=[_fact("Price", label)] if label else [],
        raw={"price": price, "currency": currency},
    )


def enrich_imdb(raw_map: RawSelectorMap) -> ProviderEnrichment | None:
    rating = format_rating(
        get_raw_attribute(raw_map, "meta[name='imdb:rating']", "content")
        or get_raw_text(raw_map, "span[data-testid='hero-rating-bar__aggregate-rating__score']")
    )
    votes = format_count_string(get_raw_attribute(raw_map, "meta[name='imdb:votes']", "content"))
    runtime = get_raw_text(raw_map, "span[data-testid='title-techspec_runtime'] span")
    release_raw = get_raw_attribute(raw_map, "meta[property='video:release_date']", "content")
    release = format_date(release_raw)

    facts = []
    if rating:
        facts.append(_fact("IMDb rating", f"{rating} / 10"))
    if votes:
        facts.append(_fact("Votes", votes))
    if runtime:
        facts.append(_fact("Runtime", runtime))
    if release:
        facts.append(_fact("Released", release))

    if not facts:
        return None

    return ProviderEnrichment(
        facts=facts,
        raw={"rating": rating, "votes": votes, "runtime": runtime, "release_date": release_raw},
    )


# =============================================================================
# Dribbble
# =============================================================================

DRIBBBLE_STAT_SELECTORS = {
    "likes": [
        "a[href$='/likes']",
        "[data-testid='shot-likes']",
        "[data-testid='shot-likes-count']",
        ".shot-stats [data-label='Likes']",
    ],
    "views": [
        "a[href$='/views']",
        "[data-testid='shot-views']",
        "[data-testid='shot-views-count']",
        ".shot-stats [data-label='Views']",
    ],
    "comments": [
        "a[href$='/comments']",
        "[data-testid='shot-comments']",
        "[data-testid='shot-comments-count']",
        ".shot-stats [data-label='Comments']",
    ],
}

DESIGNER_SELECTORS = ["meta[name='twitter:creator']", "a[rel='author']", ".shot-byline a"]

KEYWORD_SELECTORS = [
    "meta[name='keywords']",
    "meta[name='parsely-tags']",
    "meta[property='article:tag']",
]

IMAGE_SELECTORS = [
    "meta[property='og:image:secure_url']",
    "meta[property='og:image']",
    "meta[name='og:image']",
    "meta[name='twitter:image']",
    "meta[property='twitter:image']",
]


def _selector_value(raw_map: RawSelectorMap, selector: str) -> str | None:
    if selector.startswith("meta["):
        return get_raw_attribute(raw_map, selector, "content")
    return get_raw_text(raw_map, selector)


def _twitter_stats(raw_map: RawSelectorMap) -> dict[str, str]:
    """Stats announced through twitter:labelN / twitter:dataN pairs."""
    stats: dict[str, str] = {}
    for index in range(1, 5):
        label = get_raw_attribute(raw_map, f"meta[name='twitter:label{index}']", "content")
        value = get_raw_attribute(raw_map, f"meta[name='twitter:data{index}']", "content")
        if not (label and value):
            continue
        lowered = label.lower()
        key = next((k for k in ("like", "view", "comment") if k in lowered), None)
        if key and f"{key}s" not in stats:
            stats[f"{key}s"] = value
    return stats


def _stat(raw_map: RawSelectorMap, selectors: list[str], seed: str | None) -> tuple[str | None, str | None]:
    """(raw, formatted) for a stat, preferring the seeded twitter value."""
    for candidate in [seed] + [_selector_value(raw_map, s) for s in selectors]:
        normalized = normalize_whitespace(candidate)
        if normalized:
            return candidate, format_count_string(normalized) or normalized
    return None, None


def _sanitize_designer(value: str | None) -> str | None:
    normalized = normalize_whitespace(value)
    if not normalized:
        return None
    normalized = normalized.lstrip("@").strip()
    normalized = re.sub(r"\s+on\s+dribbble$", "", normalized, flags=re.IGNORECASE).strip()
    return normalized or None


def _dribbble_title(raw_map: RawSelectorMap) -> str | None:
    return get_raw_attribute(raw_map, "meta[property='og:title']", "content") or get_raw_text(
        raw_map, "head > title"
    )


def _designer(raw_map: RawSelectorMap) -> tuple[str | None, str | None]:
    candidates: list[str] = []

    title = _dribbble_title(raw_map)
    if title:
        by_index = title.lower().rfind(" by ")
        if by_index != -1:
            tail = title[by_index + 4:]
            tail = re.sub(r"\|\s*dribbble$", "", tail, flags=re.IGNORECASE)
            tail = re.sub(r"\son\s+dribbble$", "", tail.strip(), flags=re.IGNORECASE)
            from_title = normalize_whitespace(tail)
            if from_title:
                candidates.append(from_title)

    meta_author = get_raw_attribute(raw_map, "meta[name='author']", "content") or get_raw_attribute(
        raw_map, "meta[property='article:author']", "content"
    )
    if meta_author:
        candidates.append(meta_author)
    candidates.extend(v for v in (_selector_value(raw_map, s) for s in DESIGNER_SELECTORS) if v)

    for candidate in candidates:
        display = _sanitize_designer(candidate)
        if display:
            return display, candidate
    return None, None


def _keywords(raw_map: RawSelectorMap) -> list[str]:
    keyword_string = next(
        (v for v in (get_raw_attribute(raw_map, s, "content") for s in KEYWORD_SELECTORS) if v),
        None,
    ) or get_raw_text(raw_map, "a[rel='tag']")
    if not keyword_string:
        return []

    unique: list[str] = []
    for item in re.split(r"[,|]", keyword_string):
        value = normalize_whitespace(item)
        if value and value not in unique:
            unique.append(value)
        if len(unique) == 5:
            break
    return unique


def enrich_dribbble(raw_map: RawSelectorMap) -> ProviderEnrichment | None:
    designer, designer_raw = _designer(raw_map)
    seeds = _twitter_stats(raw_map)
    stats = {
        key: _stat(raw_map, selectors, seeds.get(key))
        for key, selectors in DRIBBBLE_STAT_SELECTORS.items()
    }
    keywords = _keywords(raw_map)
    image_url = next(
        (v for v in (get_raw_attribute(raw_map, s, "content") for s in IMAGE_SELECTORS) if v),
        None,
    )

    facts = []
    if designer:
        facts.append(_fact("Designer", designer))
    for key, label in (("likes", "Likes"), ("views", "Views"), ("comments", "Comments")):
        formatted = stats[key][1]
        if formatted:
            facts.append(_fact(label, formatted))
    if keywords:
        facts.append(_fact("Tags" if len(keywords) > 1 else "Tag", ", ".join(keywords[:3])))

    stats_raw = {key: raw or formatted for key, (raw, formatted) in stats.items() if raw or formatted}
    raw = {
        key: value
        for key, value in {
            "title": _dribbble_title(raw_map),
            "description": get_raw_attribute(raw_map, "meta[property='og:description']", "content")
            or get_raw_attribute(raw_map, "meta[name='description']", "content"),
            "designer": designer_raw or designer,
            "stats": stats_raw or None,
            "keywords": keywords or None,
        }.items()
        if value is not None
    }

    if not image_url and not facts and not raw:
        return None

    return ProviderEnrichment(image_url=image_url, facts=facts, raw=raw or None)


# =============================================================================
# Routing
# =============================================================================


def enrich_provider(
    provider: str | None, category: LinkCategory, raw_map: RawSelectorMap
) -> ProviderEnrichment | None:
    """Run the enricher for ``provider`` when it applies to ``category``."""
    if provider == "github" and category == LinkCategory.SOFTWARE:
        return enrich_github(raw_map)
    if provider == "goodreads" and category == LinkCategory.BOOK:
        return enrich_goodreads(raw_map)
    if provider == "amazon" and category in (LinkCategory.PRODUCT, LinkCategory.BOOK):
        return enrich_amazon(raw_map)
    if provider == "imdb" and category in (LinkCategory.MOVIE, LinkCategory.TV):
        return enrich_imdb(raw_map)
    if provider == "dribbble" and category == LinkCategory.DESIGN_PORTFOLIO:
        return enrich_dribbble(raw_map)
    # Netflix hides metadata from OG tags; the link preview is all there is
    return None
