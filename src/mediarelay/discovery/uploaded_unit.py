"""Uploaded-videos unit: one listing page per process."""

from __future__ import annotations

import logging
from typing import Any

from mediarelay.config import get_settings
from mediarelay.discovery.crawler import HttpxPageFetcher
from mediarelay.discovery.uploaded import UploadedVideosService
from mediarelay.rpc.channel import UnitContext, run_unit
from mediarelay.shared.cookies import parse_cookie_file
from mediarelay.shared.events import CompleteEvent, ErrorEvent

logger = logging.getLogger(__name__)


async def main(payload: dict[str, Any], ctx: UnitContext) -> None:
    """Payload: ``{cookies, page?}``."""
    settings = get_settings()
    try:
        service = UploadedVideosService(
            fetcher=HttpxPageFetcher(
                cookies=parse_cookie_file(payload.get("cookies") or ""),
                user_agent=settings.user_agent,
                timeout=settings.discovery_timeout,
            ),
            listing_url=settings.absolute_url(settings.uploaded_videos_path),
            page_param=settings.uploaded_page_param,
            per_page=settings.uploaded_videos_per_page,
        )
        async for event in service.list_page(int(payload.get("page") or 1)):
            await ctx.emit(event)
    except Exception as exc:
        logger.exception("uploaded videos listing failed: %s", exc)
        await ctx.emit(ErrorEvent(error=str(exc) or type(exc).__name__))
        await ctx.emit(CompleteEvent(success=False, error=str(exc) or type(exc).__name__))


if __name__ == "__main__":
    run_unit(main)
