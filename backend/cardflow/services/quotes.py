"""
Quote markup detection.

De-quoting strips Markdown-style ``>`` blockquote markers and decorative
layers of surrounding quotation marks. A card whose content loses any
markup this way is treated as a quote.
"""

import re
from dataclasses import dataclass

OPENING_QUOTE_TO_CLOSING = {
    '"': '"',
    "'": "'",
    "`": "`",
    "＂": "＂",
    "“": "”",
    "„": "“",
    "‘": "’",
    "‚": "‘",
    "❝": "❞",
    "❛": "❜",
    "«": "»",
    "‹": "›",
    "｢": "｣",
    "「": "」",
    "『": "』",
    "《": "》",
    "〈": "〉",
    "〝": "〞",
    "﹁": "﹂",
    "﹃": "﹄",
}

TRAILING_ATTRIBUTION_PREFIX = frozenset({"—", "-", "–", "―", "~"})
TRAILING_PAREN_PREFIX = frozenset({"(", "[", "{"})
TRAILING_PUNCT_ONLY = re.compile(r"^[\s.,!?;:…·、。！？；：•]+$")
BLOCKQUOTE_MARKER = re.compile(r"^\s*>+ ?", re.MULTILINE)


@dataclass(frozen=True)
class QuoteNormalization:
    text: str
    removed_quotes: bool


def _allowed_trailing_text(text: str) -> bool:
    trimmed = text.lstrip()
    if not trimmed:
        return True
    first = trimmed[0]
    if first in TRAILING_ATTRIBUTION_PREFIX or first in TRAILING_PAREN_PREFIX:
        return True
    return bool(TRAILING_PUNCT_ONLY.match(trimmed))


def _find_closing_index(value: str, closing: str) -> int:
    for index in range(len(value) - 1, 0, -1):
        if value[index] == closing and _allowed_trailing_text(value[index + 1:]):
            return index
    return -1


def _strip_blockquote(value: str) -> tuple[str, bool]:
    if not value.lstrip().startswith(">"):
        return value, False
    return BLOCKQUOTE_MARKER.sub("", value).strip(), True


def normalize_quote_content(content: str | None) -> QuoteNormalization:
    """Strip quote markup, reporting whether anything was removed."""
    original = content if isinstance(content, str) else ""
    working, removed = _strip_blockquote(original.strip())

    if len(working) < 2 and not removed:
        return QuoteNormalization(text=original, removed_quotes=False)

    # Decorative quote layers may be nested, peel them one at a time
    while len(working) > 1:
        closing = OPENING_QUOTE_TO_CLOSING.get(working[0])
        if closing is None:
            break
        closing_index = _find_closing_index(working, closing)
        if closing_index == -1:
            break
        working = (working[1:closing_index] + working[closing_index + 1:]).strip()
        removed = True

    if removed and not working:
        # Bare markup with nothing inside is not a quote
        return QuoteNormalization(text=original, removed_quotes=False)

    return QuoteNormalization(text=working if removed else original, removed_quotes=removed)
