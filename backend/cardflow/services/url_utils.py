"""
URL utilities for card enrichment.

Provides:
- normalize_url: canonical form used to key cached link categories
- extract_domain / extension_from_url: hostname and file-extension cues
- extract_url_from_text: first http(s) URL in free text
- is_safe_url / resolves_to_public_ip: SSRF guards for outbound fetches
"""

import asyncio
import ipaddress
import re
import socket
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import structlog

logger = structlog.get_logger()


# =============================================================================
# Constants
# =============================================================================

# Query parameters to strip (tracking, session, etc.)
STRIP_PARAMS = {
    "fbclid", "gclid", "dclid", "msclkid", "igshid", "mc_cid", "mc_eid",
    "_ga", "_gl", "ref", "ref_src", "si",
}

URL_IN_TEXT = re.compile(r"https?://[^\s<>\"'`]+", re.IGNORECASE)
EXTENSION_IN_PATH = re.compile(r"\.([a-zA-Z0-9]+)$")


# =============================================================================
# URL Normalization
# =============================================================================


def normalize_url(url: str) -> str:
    """Normalize a URL for cache comparison.

    - Strip tracking params (utm_*, fbclid, gclid, ...)
    - Remove anchors (#section)
    - Lowercase scheme and hostname
    - Drop trailing slashes from the path
    """
    try:
        parsed = urlparse(url.strip())
        if not parsed.scheme or not parsed.netloc:
            return url.strip()

        netloc = parsed.netloc.lower()
        path = re.sub(r"/+", "/", parsed.path).rstrip("/")

        query = ""
        if parsed.query:
            filtered = [
                (k, v)
                for k, v in parse_qsl(parsed.query, keep_blank_values=True)
                if k.lower() not in STRIP_PARAMS and not k.lower().startswith("utm_")
            ]
            query = urlencode(filtered)

        return urlunparse((parsed.scheme.lower(), netloc, path, "", query, ""))
    except ValueError:
        return url.strip()


def extract_domain(url: str) -> str | None:
    """Extract domain from URL without www prefix."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.hostname:
        return None
    domain = parsed.hostname.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def extension_from_url(url: str | None) -> str | None:
    """File extension of the URL path, lowercased, if any."""
    if not url:
        return None
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    match = EXTENSION_IN_PATH.search(path)
    return match.group(1).lower() if match else None


def extract_url_from_text(text: str | None) -> str | None:
    """Return the first http(s) URL in the text, without trailing punctuation."""
    if not text:
        return None
    match = URL_IN_TEXT.search(text)
    if not match:
        return None
    return match.group(0).rstrip(".,;:!?)]}")


# =============================================================================
# SSRF guards
# =============================================================================


def is_safe_url(url: str) -> bool:
    """Validate URL structure (scheme, no userinfo, has host)."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if parsed.scheme not in ("http", "https"):
        return False
    if parsed.username or parsed.password:
        return False
    return bool(parsed.netloc and parsed.hostname)


async def resolves_to_public_ip(host: str) -> bool:
    """Check if host resolves only to global (public) IPs.

    Blocks: private, loopback, link-local, multicast, reserved, unspecified.
    """

    def _check() -> bool:
        try:
            infos = socket.getaddrinfo(host, None, socket.AF_UNSPEC)
        except (socket.gaierror, UnicodeError):
            return False
        if not infos:
            return False
        for _, _, _, _, addr in infos:
            try:
                if not ipaddress.ip_address(addr[0]).is_global:
                    return False
            except ValueError:
                return False
        return True

    return await asyncio.to_thread(_check)
