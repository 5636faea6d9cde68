"""
AI Prompts

Centralized prompt templates for card enrichment. System prompts are
static so providers with prompt caching can reuse them across requests;
dynamic content always goes last.
"""

import json
from urllib.parse import urlparse

from cardflow.core.link_categories import LINK_CATEGORY_LABELS
from cardflow.core.models import Card

MAX_PROMPT_CONTENT = 4000

TEXT_ANALYSIS_SYSTEM = """You are an expert content analyzer. Generate relevant tags and a concise summary for the given content.

Guidelines:
- Tags should be 5-6 specific, relevant tags of one or two words each
- Summary should be 1-2 sentences that capture the essence
- Focus on the main topics, themes, and key information
- Use clear, searchable language"""

IMAGE_ANALYSIS_SYSTEM = """You are an expert image analyzer. Generate relevant tags and a concise summary for the given image.

Guidelines:
- Tags should be 5-6 tags of one or two words describing objects, scenes, concepts, emotions
- Summary should be 1-2 sentences describing what the image shows
- Focus on the main visual elements and context
- Use clear, searchable language"""

LINK_ANALYSIS_SYSTEM = """You are an expert web content analyzer. Generate relevant tags and a concise summary for the given web page content.

Guidelines:
- Tags should be 5-6 tags of one or two words capturing main topics, categories, and key concepts
- Include relevant technology, industry, or topic tags where applicable
- Summary should be 1-2 sentences capturing the essence and value of the content
- Focus on what makes this link useful and searchable
- Consider the source, author, and context when available"""

PALETTE_EXTRACTION_SYSTEM = (
    "You extract colour palettes from user notes or CSS snippets. "
    "Only return colours that are explicitly present and prefer hex codes."
)


def trim_content(value: str | None, max_length: int = MAX_PROMPT_CONTENT) -> str | None:
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return f"{trimmed[:max_length]}…" if len(trimmed) > max_length else trimmed


def build_text_prompt(content: str) -> str:
    return f"Analyze this content and generate tags and summary:\n\n{content}"


def build_image_prompt(title: str | None = None) -> str:
    if title:
        return f"Image title: {title}\n\nAnalyze this image and generate tags and summary:"
    return "Analyze this image and generate tags and summary:"


def build_link_prompt(content: str, url: str | None) -> str:
    url_line = f"\nURL: {url}\n" if url else ""
    return (
        "Analyze this web page content and generate optimized tags and summary "
        f"for knowledge management:\n\n{content}\n{url_line}\n"
        "Generate tags and summary that will help the user rediscover and "
        "understand the value of this content."
    )


def build_palette_prompt(text: str) -> str:
    return f"List every colour mentioned in this text:\n\n{trim_content(text) or ''}"


def build_categorization_system_prompt() -> str:
    categories = "\n".join(
        f"- {label} ({category.value})" for category, label in LINK_CATEGORY_LABELS.items()
    )
    return (
        "You are an assistant that classifies URLs into content categories.\n\n"
        f"Categories you may choose from:\n{categories}\n\n"
        "Pick the category that best describes the main subject of the URL. "
        "Use provider hints when obvious (e.g. github.com → software, imdb.com → movie)."
    )


def build_categorization_prompt(card: Card) -> str:
    """Assemble URL, preview fields, tags and user content for categorization."""
    sections: list[str] = []

    if card.url:
        sections.append(f"URL: {card.url}")
        parsed = urlparse(card.url)
        if parsed.hostname:
            sections.append(f"Domain: {parsed.hostname}")
            sections.append(f"Pathname: {parsed.path or '/'}")

    if card.has_successful_preview:
        preview = card.link_preview
        details = {
            "title": preview.title,
            "description": preview.description,
            "siteName": preview.site_name,
            "author": preview.author,
            "publisher": preview.publisher,
            "publishedAt": preview.published_at,
            "imageUrl": preview.image_url,
        }
        details = {k: v for k, v in details.items() if v}
        if details:
            sections.append(f"Link preview metadata: {json.dumps(details, indent=2)}")

    if card.tags:
        sections.append(f"Existing tags: {', '.join(card.tags)}")

    combined = "\n\n".join(
        value for value in (card.content, card.notes) if value and value.strip()
    )
    trimmed = trim_content(combined)
    if trimmed:
        sections.append(f"User-provided content:\n{trimmed}")

    sections.append(
        "Select the best fitting category from this list: "
        f"{', '.join(LINK_CATEGORY_LABELS.values())}."
    )
    return "\n\n".join(sections)
