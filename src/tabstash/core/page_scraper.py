"""Page fetching and regex scraping of titles and favicons."""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlsplit

import httpx

from ..utils.html_entities import decode_html_entities
from ..utils.url_utils import extract_hostname

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; TabStash/1.0)"
DEFAULT_FAVICON_SERVICE = "https://www.google.com/s2/favicons?domain={domain}&sz=128"

TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
OG_TITLE_RE = re.compile(
    r"""<meta\s+property=["']og:title["']\s+content=["']([^"']+)["']""", re.IGNORECASE
)
# rel before href, then href before rel
ICON_LINK_RES = (
    re.compile(
        r"""<link[^>]*rel=["'](?:shortcut )?icon["'][^>]*href=["']([^"']+)["']""",
        re.IGNORECASE,
    ),
    re.compile(
        r"""<link[^>]*href=["']([^"']+)["'][^>]*rel=["'](?:shortcut )?icon["']""",
        re.IGNORECASE,
    ),
)


class PageFetchError(Exception):
    """Page could not be fetched."""

    pass


@dataclass
class ScrapedPage:
    title: Optional[str] = None
    favicon: Optional[str] = None


def extract_title(html: str) -> Optional[str]:
    """Extract the page title from <title>, falling back to og:title.

    Returns:
        Entity-decoded, trimmed title, or None if neither is present
    """
    match = TITLE_RE.search(html) or OG_TITLE_RE.search(html)
    if match is None:
        return None
    title = decode_html_entities(match.group(1).strip())
    return title or None


def resolve_favicon_url(href: str, page_url: str) -> str:
    """Make a favicon href absolute relative to the page it came from.

    Example:
        "//cdn.example.com/i.ico" -> "https://cdn.example.com/i.ico"
        "/favicon.ico" on https://example.com/a/b -> "https://example.com/favicon.ico"
        "icons/x.png" on https://example.com/a/b -> "https://example.com/a/icons/x.png"
    """
    if href.startswith("//"):
        return "https:" + href

    parts = urlsplit(page_url)
    origin = f"{parts.scheme}://{parts.netloc}"
    if href.startswith("/"):
        return origin + href
    if not href.startswith("http"):
        return urljoin(origin + parts.path, href)
    return href


def extract_favicon(html: str, page_url: str) -> Optional[str]:
    """Find an icon/shortcut icon link, checking both attribute orders."""
    for pattern in ICON_LINK_RES:
        match = pattern.search(html)
        if match:
            return resolve_favicon_url(match.group(1), page_url)
    return None


def fallback_favicon_url(
    page_url: str, template: str = DEFAULT_FAVICON_SERVICE
) -> Optional[str]:
    """Favicon service URL for the page's host, or None without a host."""
    host = extract_hostname(page_url)
    if not host:
        return None
    return template.format(domain=host)


class PageScraper:
    """Fetches pages over HTTP and scrapes title/favicon out of the markup."""

    def __init__(
        self,
        timeout: float = 5.0,
        user_agent: str = DEFAULT_USER_AGENT,
        max_response_size: int = 10 * 1024 * 1024,
    ):
        """Initialize page scraper.

        Args:
            timeout: Whole-request timeout in seconds
            user_agent: User-Agent header sent with every fetch
            max_response_size: Largest body accepted, in bytes
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_response_size = max_response_size

    async def fetch_html(self, url: str) -> str:
        """Fetch a page body.

        Raises:
            PageFetchError: On timeout, network failure, non-2xx status or
                oversized body
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            ) as client:
                response = await client.get(url)

                if not response.is_success:
                    raise PageFetchError(f"HTTP {response.status_code}: {url}")

                if len(response.content) > self.max_response_size:
                    raise PageFetchError(
                        f"Response too large: {len(response.content)} bytes: {url}"
                    )

                return response.text

        except httpx.TimeoutException as e:
            raise PageFetchError(f"Request timed out after {self.timeout}s: {url}") from e
        except httpx.HTTPError as e:
            raise PageFetchError(f"Network error: {e}") from e

    async def scrape(
        self, url: str, want_title: bool = True, want_favicon: bool = True
    ) -> ScrapedPage:
        """Fetch a page and scrape the requested fields.

        Raises:
            PageFetchError: If the page cannot be fetched
        """
        html = await self.fetch_html(url)

        page = ScrapedPage()
        if want_title:
            page.title = extract_title(html)
        if want_favicon:
            page.favicon = extract_favicon(html, url)
        return page
