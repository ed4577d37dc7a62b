"""Upload unit: one file upload per process."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from mediarelay.config import Settings, get_settings
from mediarelay.rpc.channel import UnitContext, run_unit
from mediarelay.shared.cookies import parse_cookie_file
from mediarelay.shared.events import CompleteEvent
from mediarelay.upload.client import UploadClient
from mediarelay.upload.service import UploadRequest, UploadService

logger = logging.getLogger(__name__)


def build_service(settings: Settings) -> UploadService:
    client = UploadClient(
        prepare_url=settings.upload_prepare_url,
        cdn_url=settings.upload_cdn_url,
        user_agent=settings.user_agent,
        timeout=settings.upload_timeout,
        read_size=settings.upload_read_size,
        read_delay=settings.upload_read_delay,
    )
    return UploadService(
        client=client,
        max_attempts=settings.upload_max_attempts,
        retry_delay=settings.upload_retry_delay,
        ema_alpha=settings.upload_ema_alpha,
        sample_interval=settings.upload_sample_interval,
    )


async def main(payload: dict[str, Any], ctx: UnitContext) -> None:
    """Payload: ``{filePath, cookies, videoId?}``."""
    video_id = payload.get("videoId")
    file_path = payload.get("filePath")
    if not isinstance(file_path, str) or not file_path:
        await ctx.emit(CompleteEvent(video_id=video_id, success=False, error="upload payload requires a filePath"))
        return

    request = UploadRequest(
        file_path=Path(file_path),
        cookies=parse_cookie_file(payload.get("cookies") or ""),
        video_id=video_id,
    )
    await build_service(get_settings()).run(request, ctx.emit)


if __name__ == "__main__":
    run_unit(main)
