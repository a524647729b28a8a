"""Page capture: fetching raw HTML and parsing it into a document.

The extraction cascade needs two views of a page: the raw HTML text (for
regex strategies) and a parsed document (for selector strategies).
"""
import logging
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from bookmarker.config import get_config

logger = logging.getLogger(__name__)

NON_BOOKMARKABLE_PREFIXES = (
    "chrome://",
    "chrome-extension://",
    "about:",
    "data:",
    "blob:",
    "javascript:",
)


def is_bookmarkable_url(url: Optional[str]) -> bool:
    """Quick rejection of empty URLs and browser-internal protocols."""
    if not url:
        return False
    return not url.startswith(NON_BOOKMARKABLE_PREFIXES)


def parse_document(html: str) -> BeautifulSoup:
    """Parse raw HTML into a queryable document."""
    return BeautifulSoup(html or "", "lxml")


async def fetch_page_html(
    url: str,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """Fetch the raw HTML of a page.

    Args:
        url: URL to fetch
        timeout: Request timeout in seconds (defaults to config)
        transport: Optional httpx transport (used by tests)

    Returns:
        The HTML text or None if the fetch failed
    """
    network = get_config().network
    if timeout is None:
        timeout = network.request_timeout

    try:
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": network.user_agent},
            transport=transport,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.text

    except httpx.HTTPError as e:
        logger.warning("HTTP error fetching %s: %s", url, e)
        return None
