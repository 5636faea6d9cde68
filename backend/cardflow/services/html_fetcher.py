"""
Bounded HTML fetcher.

Fetches a page for link previews and structured-data extraction:
- SSRF-safe: every redirect hop is re-validated (scheme, DNS to public IPs)
- Bounded: bodies are read as a stream and cut at ``max_bytes``; pages
  announcing more than twice the limit are refused up front
- Retries transient network errors via ``with_retries``
"""

import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

import httpx
import structlog
from bs4.dammit import EncodingDetector, UnicodeDammit

from cardflow.core.config import settings
from cardflow.services.retry_utils import with_retries
from cardflow.services.url_utils import is_safe_url, resolves_to_public_ip

logger = structlog.get_logger()

MAX_REDIRECTS = 5

CHARSET_PATTERN = re.compile(r'charset\s*=\s*"?([^";,\s]+)"?', re.IGNORECASE)


def detect_encoding(body: bytes, content_type: str | None = None) -> str:
    """
    Pick the encoding of an HTML body.

    Priority:
    1. Content-Type header charset
    2. BOM
    3. <meta charset> or http-equiv declaration
    4. UnicodeDammit sniffing
    5. UTF-8
    """
    if content_type:
        match = CHARSET_PATTERN.search(content_type)
        if match:
            return match.group(1).lower()

    _, bom_encoding = EncodingDetector.strip_byte_order_mark(body)
    if bom_encoding:
        return bom_encoding

    declared = EncodingDetector.find_declared_encoding(body, is_html=True)
    if declared:
        return declared

    return UnicodeDammit(body, is_html=True).original_encoding or "utf-8"


def decode_body(body: bytes, content_type: str | None = None) -> str:
    """Decode with the detected encoding; undecodable bytes are replaced."""
    encoding = detect_encoding(body, content_type)
    stripped, bom_encoding = EncodingDetector.strip_byte_order_mark(body)
    if bom_encoding == encoding:
        body = stripped
    try:
        return body.decode(encoding, errors="replace")
    except LookupError:
        logger.debug("unknown_page_encoding", encoding=encoding)
        return body.decode("utf-8", errors="replace")


class FetchError(Exception):
    """The page could not be fetched (unsafe, too large, bad status, network)."""

    pass


@dataclass
class FetchedPage:
    url: str
    final_url: str
    status_code: int
    content_type: str
    body: bytes
    truncated: bool = False
    etag: str | None = None
    last_modified: str | None = None

    @property
    def text(self) -> str:
        return decode_body(self.body, self.content_type)


class HtmlFetcher:
    """Fetch pages with a byte budget.

    Args:
        client: Shared httpx client (created on demand when omitted)
        max_bytes: Default read budget per page
        check_dns: Reject hosts that resolve to non-public addresses
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        max_bytes: int | None = None,
        check_dns: bool = True,
    ):
        self._client = client
        self._owns_client = client is None
        self.max_bytes = max_bytes or settings.structured_data_max_bytes
        self.check_dns = check_dns
        self.log = logger.bind(component="HtmlFetcher")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.fetch_timeout,
                headers={
                    "User-Agent": settings.fetch_user_agent,
                    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _validate(self, url: str) -> None:
        if not is_safe_url(url):
            raise FetchError(f"Refusing to fetch unsafe URL: {url[:120]}")
        if self.check_dns and not await resolves_to_public_ip(urlparse(url).hostname):
            raise FetchError(f"Host does not resolve to a public address: {urlparse(url).hostname}")

    async def _read_bounded(self, url: str, max_bytes: int) -> tuple[httpx.Response, bytes, bool]:
        client = self._get_client()
        async with client.stream("GET", url, follow_redirects=False) as response:
            if response.is_redirect:
                return response, b"", False

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes * 2:
                raise FetchError(f"Response too large ({declared} bytes)")

            chunks: list[bytes] = []
            received = 0
            truncated = False
            async for chunk in response.aiter_bytes():
                chunks.append(chunk)
                received += len(chunk)
                if received >= max_bytes:
                    truncated = True
                    break
            body = b"".join(chunks)[:max_bytes]
            return response, body, truncated

    async def fetch(self, url: str, max_bytes: int | None = None) -> FetchedPage:
        """Fetch ``url`` following up to five validated redirects.

        Raises:
            FetchError: On unsafe targets, oversize bodies, non-2xx status
                or exhausted network retries
        """
        budget = max_bytes or self.max_bytes
        current_url = url

        try:
            for _ in range(MAX_REDIRECTS + 1):
                await self._validate(current_url)
                response, body, truncated = await with_retries(
                    self._read_bounded, current_url, budget, max_attempts=2
                )

                if response.is_redirect:
                    location = response.headers.get("location")
                    if not location:
                        raise FetchError("Redirect without location header")
                    current_url = urljoin(current_url, location)
                    continue

                if not 200 <= response.status_code < 300:
                    raise FetchError(f"HTTP {response.status_code} for {current_url[:120]}")

                self.log.debug(
                    "page_fetched",
                    url=current_url[:120],
                    status=response.status_code,
                    size=len(body),
                    truncated=truncated,
                )
                return FetchedPage(
                    url=url,
                    final_url=current_url,
                    status_code=response.status_code,
                    content_type=response.headers.get("content-type", ""),
                    body=body,
                    truncated=truncated,
                    etag=response.headers.get("etag"),
                    last_modified=response.headers.get("last-modified"),
                )
        except httpx.HTTPError as e:
            raise FetchError(f"Request failed for {current_url[:120]}: {e}") from e

        raise FetchError(f"Too many redirects for {url[:120]}")
