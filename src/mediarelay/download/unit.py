"""Download unit: one download per process.

Metadata resolution is delegated to the host over the
``download:extract-metadata`` RPC channel; the transfer itself runs here.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mediarelay.config import Settings, get_settings
from mediarelay.download.filenames import generate_filename
from mediarelay.download.metadata import EXTRACT_METADATA_CHANNEL
from mediarelay.download.service import DownloadRequest, DownloadService
from mediarelay.download.transfer import ChunkedTransfer, ExternalTransfer, StreamingTransfer
from mediarelay.download.watermark import FFmpegWatermarker
from mediarelay.rpc.channel import UnitContext, run_unit
from mediarelay.shared.cookies import parse_cookie_file
from mediarelay.shared.enums import DownloadMode
from mediarelay.shared.events import CompleteEvent
from mediarelay.shared.exceptions import ExtractionError, RpcError
from mediarelay.shared.models import MediaMetadata

logger = logging.getLogger(__name__)


def build_request(payload: dict[str, Any], settings: Settings) -> DownloadRequest:
    """Payload: ``{url, cookies, videoId?, title?, outputPath?, sizeHint?, mode?, hqProcessing?, addWatermark?}``."""
    url = payload.get("url")
    if not isinstance(url, str) or not url:
        raise ValueError("download payload requires a url")
    output = payload.get("outputPath") or str(Path(settings.video_dir) / generate_filename(payload.get("title")))
    return DownloadRequest(
        url=url,
        cookies=parse_cookie_file(payload.get("cookies") or ""),
        output_path=Path(output),
        video_id=payload.get("videoId"),
        size_hint=payload.get("sizeHint") or None,
        mode=DownloadMode(payload.get("mode") or settings.download_mode),
        hq_processing=bool(payload.get("hqProcessing", settings.hq_processing)),
        add_watermark=bool(payload.get("addWatermark", settings.add_watermark)),
    )


def build_service(settings: Settings, ctx: UnitContext) -> DownloadService:
    async def resolve_metadata(request: DownloadRequest) -> MediaMetadata:
        args = {
            "url": request.url,
            "cookies": request.cookies,
            "hqProcessing": request.hq_processing,
            "sizeHint": request.size_hint,
        }
        try:
            result = await ctx.call(EXTRACT_METADATA_CHANNEL, args, timeout=settings.rpc_timeout)
            return MediaMetadata.model_validate(result)
        except RpcError as exc:
            raise ExtractionError(f"metadata extraction failed: {exc}") from exc
        except ValidationError as exc:
            raise ExtractionError(f"malformed metadata from host: {exc}") from exc

    return DownloadService(
        resolve_metadata=resolve_metadata,
        chunked=ChunkedTransfer(
            chunk_size=settings.chunk_size,
            concurrency=settings.download_concurrency,
            retries=settings.chunk_retries,
            chunk_timeout=settings.chunk_timeout,
            user_agent=settings.user_agent,
        ),
        streaming=StreamingTransfer(timeout=settings.streaming_timeout, user_agent=settings.user_agent),
        external={
            DownloadMode.CURL: ExternalTransfer("curl", binary=settings.curl_bin, user_agent=settings.user_agent),
            DownloadMode.WGET: ExternalTransfer("wget", binary=settings.wget_bin, user_agent=settings.user_agent),
        },
        watermarker=FFmpegWatermarker(
            text=settings.watermark_text,
            ffmpeg_bin=settings.ffmpeg_bin,
            timeout=settings.watermark_timeout,
        ),
        min_size=settings.min_video_size,
        max_size=settings.max_video_size,
    )


async def main(payload: dict[str, Any], ctx: UnitContext) -> None:
    settings = get_settings()
    try:
        request = build_request(payload, settings)
    except ValueError as exc:
        await ctx.emit(CompleteEvent(video_id=payload.get("videoId"), success=False, error=str(exc)))
        return

    started = time.monotonic()
    result = await build_service(settings, ctx).run(request, ctx.emit)
    logger.info(
        "download of %s finished in %.1fs (success=%s, skipped=%s)",
        request.url,
        time.monotonic() - started,
        result.success,
        result.skipped,
    )


if __name__ == "__main__":
    run_unit(main)
