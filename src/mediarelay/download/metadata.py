"""Resolve the media URL and byte size behind a detail page."""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin

import httpx

from mediarelay.download.extractor import extract_media_url
from mediarelay.shared.exceptions import ExtractionError
from mediarelay.shared.models import MediaMetadata

logger = logging.getLogger(__name__)

# RPC channel served by the host, called by download units.
EXTRACT_METADATA_CHANNEL = "download:extract-metadata"

_CONTENT_RANGE_TOTAL_RE = re.compile(r"/(\d+)\s*$")


def with_download_intent(url: str) -> str:
    """Append the origin's ``do=download`` flag, which serves the HQ source."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}do=download"


def size_from_headers(headers: httpx.Headers) -> int | None:
    """Total size from ``Content-Range: bytes 0-0/TOTAL``, else ``Content-Length``."""
    content_range = headers.get("content-range")
    if content_range:
        match = _CONTENT_RANGE_TOTAL_RE.search(content_range)
        if match:
            return int(match.group(1)) or None
        return None
    content_length = headers.get("content-length")
    if content_length and content_length.isdigit():
        return int(content_length) or None
    return None


class MetadataResolver:
    """Fetch a detail page, extract the media URL and probe its size."""

    def __init__(
        self,
        *,
        user_agent: str = "Mozilla/5.0",
        timeout: int = 15,
        hq_processing: bool = True,
    ) -> None:
        self._user_agent = user_agent
        self._timeout = timeout
        self._hq_processing = hq_processing

    async def resolve(
        self,
        url: str,
        cookies: str,
        *,
        size_hint: int | None = None,
        hq_processing: bool | None = None,
    ) -> MediaMetadata:
        """Return the media URL and size.

        Raises:
            ExtractionError: If the page cannot be fetched, no strategy finds a
                URL, or neither the probe nor ``size_hint`` gives a size.
        """
        hq = self._hq_processing if hq_processing is None else hq_processing
        page_url = with_download_intent(url) if hq else url
        headers = {"User-Agent": self._user_agent, "Cookie": cookies}

        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True, headers=headers) as client:
            try:
                resp = await client.get(page_url)
                resp.raise_for_status()
            except httpx.HTTPError as exc:
                raise ExtractionError(f"detail page fetch failed: {exc}") from exc

            found = extract_media_url(resp.text)
            if found is None:
                raise ExtractionError("could not find media url on page")
            strategy, media_url = found
            media_url = urljoin(str(resp.url), media_url)
            logger.info("media url via %s: %s", strategy, media_url)

            size = await self.probe_size(client, media_url)

        if size is None:
            if not size_hint:
                raise ExtractionError("could not determine size")
            logger.info("size probe failed, using listing size hint %d", size_hint)
            size = size_hint

        return MediaMetadata(media_url=media_url, size=size)

    @staticmethod
    async def probe_size(client: httpx.AsyncClient, media_url: str) -> int | None:
        """Issue a one-byte range request and read the size from its headers."""
        try:
            # Streamed so a server that ignores Range never sends the body.
            async with client.stream("GET", media_url, headers={"Range": "bytes=0-0"}) as resp:
                resp.raise_for_status()
                return size_from_headers(resp.headers)
        except httpx.HTTPError as exc:
            logger.warning("size probe failed for %s: %s", media_url, exc)
            return None
