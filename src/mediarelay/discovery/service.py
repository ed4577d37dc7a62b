"""Paginated discovery of candidate items across the listing views."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Iterable

from mediarelay.discovery.crawler import PageFetcher, listing_page_url
from mediarelay.discovery.parser import is_login_page, parse_listing
from mediarelay.shared.enums import VideoStatus
from mediarelay.shared.events import CompleteEvent, ProgressEvent, StatusEvent
from mediarelay.shared.exceptions import DiscoveryError
from mediarelay.shared.models import Candidate

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class DiscoveryService:
    """Walk listing views page by page and collect unprocessed candidates.

    ``discover()`` is an async generator of engine events. It stops when:

    1. ``target_count`` unprocessed candidates were found;
    2. ``buffer_multiplier * target_count`` unique candidates were scanned;
    3. every page of every listing was fetched.
    """

    def __init__(
        self,
        *,
        fetcher: PageFetcher,
        listing_urls: list[str],
        page_param: str,
        pages_per_listing: int = 10,
        rate_limit: float = 0.5,
        buffer_multiplier: int = 6,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if buffer_multiplier < 1:
            raise ValueError("buffer_multiplier must be >= 1")
        self._fetcher = fetcher
        self._listing_urls = listing_urls
        self._page_param = page_param
        self._pages_per_listing = pages_per_listing
        self._rate_limit = rate_limit
        self._buffer_multiplier = buffer_multiplier
        self._sleep = sleep

    def page_urls(self) -> list[str]:
        return [
            listing_page_url(listing, self._page_param, page)
            for listing in self._listing_urls
            for page in range(1, self._pages_per_listing + 1)
        ]

    async def _fetch_candidates(self, url: str) -> list[Candidate]:
        try:
            page = await self._fetcher.fetch(url)
        except DiscoveryError as exc:
            logger.warning("skipping page: %s", exc)
            return []
        if is_login_page(page.url, page.html):
            logger.error("got login page for %s, cookies are not authenticated", url)
            return []
        return parse_listing(page.html, page.url)

    async def discover(
        self,
        target_count: int,
        processed_urls: Iterable[str] = (),
        *,
        video_id: str | None = None,
    ) -> AsyncIterator[StatusEvent | ProgressEvent | CompleteEvent]:
        processed = set(processed_urls)
        scan_limit = target_count * self._buffer_multiplier
        pages = self.page_urls()
        seen: set[str] = set()
        candidates: list[Candidate] = []

        yield StatusEvent(video_id=video_id, status=VideoStatus.DISCOVERING.value, message="discovery started")

        for scanned, url in enumerate(pages, start=1):
            if len(candidates) >= target_count or len(seen) >= scan_limit:
                break
            if scanned > 1:
                await self._sleep(self._rate_limit)

            page_candidates = await self._fetch_candidates(url)
            for candidate in page_candidates:
                if candidate.url in seen:
                    continue
                seen.add(candidate.url)
                if candidate.url not in processed and len(candidates) < target_count:
                    candidates.append(candidate)

            logger.info(
                "page %d/%d: %d links, %d new candidates, %d scanned",
                scanned,
                len(pages),
                len(page_candidates),
                len(candidates),
                len(seen),
            )
            yield ProgressEvent(
                video_id=video_id,
                progress=scanned / len(pages) * 100,
                found=len(candidates),
                phase=VideoStatus.DISCOVERING.value,
            )

        logger.info("discovery finished with %d candidate(s)", len(candidates))
        yield CompleteEvent(
            video_id=video_id,
            success=True,
            status=VideoStatus.COMPLETED.value,
            candidates=candidates,
        )
