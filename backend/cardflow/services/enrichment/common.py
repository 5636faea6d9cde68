"""
Shared helpers for provider and structured-data enrichment.

Enrichers read the first match of each selector captured on the link
preview (``RawSelectorMap``) and turn it into display facts.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cardflow.core.models import LinkCategoryFact, SelectorMatch, SelectorResult

RawSelectorMap = dict[str, SelectorMatch]

WHITESPACE = re.compile(r"\s+")
LEADING_NUMBER = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)")
ISO_DURATION = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$", re.IGNORECASE)


@dataclass
class ProviderEnrichment:
    """Facts, image and raw payload contributed by one enrichment source."""

    image_url: str | None = None
    facts: list[LinkCategoryFact] = field(default_factory=list)
    raw: dict[str, Any] | None = None


def build_raw_selector_map(raw: list[SelectorResult] | None) -> RawSelectorMap:
    """First match per selector, skipping selectors that matched nothing."""
    if not raw:
        return {}
    return {entry.selector: entry.results[0] for entry in raw if entry.results}


def normalize_whitespace(value: str | None) -> str | None:
    if not value:
        return None
    trimmed = WHITESPACE.sub(" ", value).strip()
    return trimmed or None


def get_raw_text(raw_map: RawSelectorMap, selector: str) -> str | None:
    entry = raw_map.get(selector)
    return normalize_whitespace(entry.text) if entry else None


def get_raw_attribute(raw_map: RawSelectorMap, selector: str, attribute: str) -> str | None:
    entry = raw_map.get(selector)
    if entry is None:
        return None
    needle = attribute.lower()
    for attr in entry.attributes:
        if attr.name.lower() == needle:
            return normalize_whitespace(attr.value)
    return None


def _parse_leading_float(value: str) -> float | None:
    match = LEADING_NUMBER.match(value.strip())
    return float(match.group(0)) if match else None


def _extract_numeric_token(value: str | None) -> str | None:
    trimmed = normalize_whitespace(value)
    if not trimmed:
        return None
    for segment in trimmed.split(" "):
        if any(char.isdigit() for char in segment.replace(",", "").replace(".", "")):
            return segment
    return trimmed


def _parse_count(value: str | None) -> int | None:
    token = _extract_numeric_token(value)
    if not token:
        return None
    lower = token.lower()
    multiplier = 1
    if lower.endswith("k"):
        multiplier, lower = 1_000, lower[:-1]
    elif lower.endswith("m"):
        multiplier, lower = 1_000_000, lower[:-1]
    parsed = _parse_leading_float(lower.replace(",", ""))
    if parsed is None:
        return None
    return round(parsed * multiplier)


def format_count_string(value: str | None) -> str | None:
    """'1.5k' -> '1,500'; unparseable values come back whitespace-normalized."""
    number = _parse_count(value)
    if number is not None:
        return f"{number:,}"
    return normalize_whitespace(value)


def format_rating(value: str | None) -> str | None:
    """Two-decimal rating ('4' -> '4.00')."""
    if not value:
        return None
    numeric = _parse_leading_float(value)
    if numeric is None:
        return normalize_whitespace(value)
    return f"{numeric:.2f}"


def format_date(value: str | None) -> str | None:
    """ISO date or datetime -> 'Dec 25, 2023'; None when unparseable."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def format_duration(value: str | None) -> str | None:
    """ISO-8601 time duration ('PT1H30M') -> '1h 30m'."""
    if not value or not isinstance(value, str):
        return None
    match = ISO_DURATION.match(value)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds:
        parts.append(f"{seconds}s")
    return " ".join(parts) or None


def merge_facts(
    target: list[LinkCategoryFact], incoming: list[LinkCategoryFact] | None
) -> list[LinkCategoryFact]:
    """Append facts not already present, keyed by label and value."""
    if not incoming:
        return target
    seen = {(fact.label, fact.value) for fact in target}
    for fact in incoming:
        key = (fact.label, fact.value)
        if key not in seen:
            target.append(fact)
            seen.add(key)
    return target
