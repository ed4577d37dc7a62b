"""Listing page fetcher using httpx."""

from __future__ import annotations

import logging
from typing import NamedTuple, Protocol, runtime_checkable

import httpx

from mediarelay.shared.cookies import cookie_header_to_dict
from mediarelay.shared.exceptions import DiscoveryError

logger = logging.getLogger(__name__)

_BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "cs-CZ,cs;q=0.9,en;q=0.8",
}


class FetchedPage(NamedTuple):
    url: str  # after redirects
    html: str


@runtime_checkable
class PageFetcher(Protocol):
    """Protocol for fetching listing HTML with an account's cookies."""

    async def fetch(self, url: str) -> FetchedPage: ...


def listing_page_url(listing_url: str, page_param: str, page: int) -> str:
    separator = "&" if "?" in listing_url else "?"
    return f"{listing_url}{separator}{page_param}={page}"


class HttpxPageFetcher:
    """Fetch listing pages, keeping cookies the origin sets along the way.

    Implements the ``PageFetcher`` protocol.
    """

    def __init__(self, *, cookies: str = "", user_agent: str = "Mozilla/5.0", timeout: int = 15) -> None:
        self._cookies = cookie_header_to_dict(cookies)
        self._user_agent = user_agent
        self._timeout = timeout

    async def fetch(self, url: str) -> FetchedPage:
        """Return the final URL and page HTML.

        Raises:
            DiscoveryError: On transport errors and non-2xx responses.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                cookies=self._cookies,
                headers={"User-Agent": self._user_agent, **_BROWSER_HEADERS},
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                self._cookies.update(resp.cookies)
                return FetchedPage(url=str(resp.url), html=resp.text)
        except httpx.HTTPError as exc:
            raise DiscoveryError(f"fetch failed for {url}: {exc}") from exc
