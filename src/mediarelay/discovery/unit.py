"""Discovery unit: one discovery run per process."""

from __future__ import annotations

import logging
from typing import Any

from mediarelay.config import get_settings, split_csv
from mediarelay.discovery.crawler import HttpxPageFetcher
from mediarelay.discovery.service import DiscoveryService
from mediarelay.rpc.channel import UnitContext, run_unit
from mediarelay.shared.cookies import parse_cookie_file
from mediarelay.shared.events import CompleteEvent, ErrorEvent

logger = logging.getLogger(__name__)


async def main(payload: dict[str, Any], ctx: UnitContext) -> None:
    """Payload: ``{cookies, count, processedUrls?, videoId?}``."""
    settings = get_settings()
    video_id = payload.get("videoId")
    try:
        count = int(payload.get("count") or settings.discovery_target_count)
        service = DiscoveryService(
            fetcher=HttpxPageFetcher(
                cookies=parse_cookie_file(payload.get("cookies") or ""),
                user_agent=settings.user_agent,
                timeout=settings.discovery_timeout,
            ),
            listing_urls=[settings.absolute_url(u) for u in split_csv(settings.discovery_listing_urls)],
            page_param=settings.listing_page_param,
            pages_per_listing=settings.discovery_pages_per_listing,
            rate_limit=settings.discovery_rate_limit_seconds,
            buffer_multiplier=settings.discovery_buffer_multiplier,
        )
        async for event in service.discover(count, payload.get("processedUrls") or [], video_id=video_id):
            await ctx.emit(event)
    except Exception as exc:
        logger.exception("discovery failed: %s", exc)
        await ctx.emit(ErrorEvent(video_id=video_id, error=str(exc) or type(exc).__name__))
        await ctx.emit(CompleteEvent(video_id=video_id, success=False, error=str(exc) or type(exc).__name__))


if __name__ == "__main__":
    run_unit(main)
