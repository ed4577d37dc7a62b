"""Paged listing of the videos the account has uploaded."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from mediarelay.discovery.crawler import PageFetcher, listing_page_url
from mediarelay.discovery.parser import has_uploaded_videos, is_login_page, parse_uploaded_videos
from mediarelay.shared.enums import VideoStatus
from mediarelay.shared.events import CompleteEvent, ProgressEvent, StatusEvent
from mediarelay.shared.exceptions import AuthenticationError, DiscoveryError

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class UploadedVideosService:
    """Read one page of the profile's uploaded-videos listing.

    The next page is fetched as well, only to tell whether it has items.
    """

    def __init__(
        self,
        *,
        fetcher: PageFetcher,
        listing_url: str,
        page_param: str,
        per_page: int = 20,
        rate_limit: float = 0.3,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._listing_url = listing_url
        self._page_param = page_param
        self._per_page = per_page
        self._rate_limit = rate_limit
        self._sleep = sleep

    def page_url(self, page: int) -> str:
        if page <= 1:
            return self._listing_url
        return listing_page_url(self._listing_url, self._page_param, page)

    async def _has_next_page(self, page: int) -> bool:
        try:
            fetched = await self._fetcher.fetch(self.page_url(page + 1))
        except DiscoveryError as exc:
            logger.warning("could not check page %d: %s", page + 1, exc)
            return False
        return has_uploaded_videos(fetched.html)

    async def list_page(
        self,
        page: int = 1,
        *,
        video_id: str | None = None,
    ) -> AsyncIterator[StatusEvent | ProgressEvent | CompleteEvent]:
        """Yield status, progress and one complete event carrying the page's videos.

        Raises:
            AuthenticationError: If the origin answers with its login form.
            DiscoveryError: If the requested page cannot be fetched.
        """
        page = max(page, 1)
        yield StatusEvent(video_id=video_id, status=VideoStatus.LOADING.value, message=f"loading page {page}")
        await self._sleep(self._rate_limit)

        fetched = await self._fetcher.fetch(self.page_url(page))
        if is_login_page(fetched.url, fetched.html):
            raise AuthenticationError("uploaded videos requested with unauthenticated cookies")

        videos = parse_uploaded_videos(fetched.html, fetched.url, limit=self._per_page)
        has_more = await self._has_next_page(page)
        logger.info("uploaded videos page %d: %d item(s), more=%s", page, len(videos), has_more)

        yield ProgressEvent(
            video_id=video_id,
            progress=50.0 if has_more else 100.0,
            found=len(videos),
            phase=VideoStatus.LOADING.value,
        )
        yield CompleteEvent(
            video_id=video_id,
            success=True,
            status=VideoStatus.COMPLETED.value,
            videos=videos,
            page=page,
            has_more=has_more,
        )
