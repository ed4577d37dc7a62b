"""Download pipeline: metadata → transfer → finalize."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from mediarelay.download.metadata import with_download_intent
from mediarelay.download.transfer import ChunkedTransfer, ExternalTransfer, ProgressCallback, StreamingTransfer
from mediarelay.download.watermark import FFmpegWatermarker
from mediarelay.shared.enums import DownloadMode, VideoStatus
from mediarelay.shared.events import CompleteEvent, ProgressEvent, StatusEvent
from mediarelay.shared.exceptions import (
    DownloadError,
    MediarelayError,
    RangeNotSatisfiableError,
    SizeOutOfBoundsError,
    TransportError,
)
from mediarelay.shared.models import MediaMetadata
from mediarelay.shared.speed import SlidingWindowMeter

logger = logging.getLogger(__name__)

Emit = Callable[[Any], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class DownloadRequest:
    url: str
    cookies: str
    output_path: Path
    video_id: str | None = None
    size_hint: int | None = None
    mode: DownloadMode = DownloadMode.CHUNKS
    hq_processing: bool = True
    add_watermark: bool = False

    @property
    def temp_path(self) -> Path:
        return self.output_path.with_name(self.output_path.name + ".tmp")


ResolveMetadata = Callable[[DownloadRequest], Awaitable[MediaMetadata]]


class DownloadService:
    """Run one download and report it as engine events.

    ``run()`` never raises for domain failures: every outcome ends in exactly
    one ``CompleteEvent`` (success, skip or failure), which is also returned.
    Only cancellation propagates, after the temporary file is removed.
    """

    def __init__(
        self,
        *,
        resolve_metadata: ResolveMetadata,
        chunked: ChunkedTransfer,
        streaming: StreamingTransfer,
        external: dict[DownloadMode, ExternalTransfer] | None = None,
        watermarker: FFmpegWatermarker | None = None,
        min_size: int = 300 * 1024 * 1024,
        max_size: int = 20 * 1024**3,
    ) -> None:
        self._resolve_metadata = resolve_metadata
        self._chunked = chunked
        self._streaming = streaming
        self._external = external or {}
        self._watermarker = watermarker
        self._min_size = min_size
        self._max_size = max_size

    def check_bounds(self, size: int) -> None:
        """Raise ``SizeOutOfBoundsError`` outside ``[min_size, max_size]`` (inclusive)."""
        if size < self._min_size:
            raise SizeOutOfBoundsError("too small", size)
        if size > self._max_size:
            raise SizeOutOfBoundsError("too large", size)

    async def run(self, request: DownloadRequest, emit: Emit) -> CompleteEvent:
        video_id = request.video_id

        async def status(value: VideoStatus, message: str | None = None) -> None:
            await emit(StatusEvent(video_id=video_id, status=value.value, message=message))

        async def finish(event: CompleteEvent) -> CompleteEvent:
            await emit(event)
            return event

        await status(VideoStatus.STARTING)
        if request.output_path.exists():
            logger.info("file already exists: %s", request.output_path)
            await status(VideoStatus.ALREADY_EXISTS)
            return await finish(
                CompleteEvent(
                    video_id=video_id,
                    success=False,
                    skipped=True,
                    status=VideoStatus.ALREADY_EXISTS.value,
                    path=str(request.output_path),
                    error="already exists",
                )
            )

        temp_path = request.temp_path
        try:
            await status(VideoStatus.EXTRACTING)
            metadata = await self._resolve_metadata(request)
            self.check_bounds(metadata.size)

            await status(VideoStatus.DOWNLOADING)
            written = await self._transfer(request, metadata, temp_path, self._progress(request, emit))

            await self._finalize(request, temp_path, status)
        except SizeOutOfBoundsError as exc:
            logger.info("skipping %s: %s", request.url, exc)
            await status(VideoStatus.SKIPPED, str(exc))
            return await finish(
                CompleteEvent(
                    video_id=video_id,
                    success=False,
                    skipped=True,
                    status=VideoStatus.SKIPPED.value,
                    size=exc.size,
                    error=str(exc),
                )
            )
        except MediarelayError as exc:
            temp_path.unlink(missing_ok=True)
            logger.error("download failed for %s: %s", request.url, exc)
            await status(VideoStatus.ERROR, str(exc))
            return await finish(
                CompleteEvent(
                    video_id=video_id,
                    success=False,
                    status=VideoStatus.ERROR.value,
                    error=str(exc) or type(exc).__name__,
                )
            )
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        await status(VideoStatus.COMPLETED)
        return await finish(
            CompleteEvent(
                video_id=video_id,
                success=True,
                status=VideoStatus.COMPLETED.value,
                path=str(request.output_path),
                size=written,
            )
        )

    def _progress(self, request: DownloadRequest, emit: Emit) -> ProgressCallback:
        meter = SlidingWindowMeter()

        async def report(downloaded: int, total: int | None) -> None:
            meter.update(downloaded)
            percent = min(downloaded / total * 100, 100.0) if total else 0.0
            await emit(
                ProgressEvent(
                    video_id=request.video_id,
                    progress=percent,
                    speed=meter.speed,
                    eta=meter.eta(total - downloaded) if total else -1.0,
                    size=total,
                    downloaded=downloaded,
                    phase=VideoStatus.DOWNLOADING.value,
                )
            )

        return report

    async def _transfer(
        self,
        request: DownloadRequest,
        metadata: MediaMetadata,
        temp_path: Path,
        on_progress: ProgressCallback,
    ) -> int:
        if request.mode in (DownloadMode.CURL, DownloadMode.WGET):
            return await self._transfer_external(request, metadata, temp_path, on_progress)

        try:
            written = await self._chunked.run(metadata.media_url, request.cookies, metadata.size, temp_path, on_progress)
        except RangeNotSatisfiableError as exc:
            logger.warning("range requests unsupported (%s), restarting as a single stream", exc)
            written = await self._streaming.run(metadata.media_url, request.cookies, temp_path, on_progress)

        if written != metadata.size:
            raise DownloadError(f"incomplete download: {written}/{metadata.size} bytes")
        return written

    async def _transfer_external(
        self,
        request: DownloadRequest,
        metadata: MediaMetadata,
        temp_path: Path,
        on_progress: ProgressCallback,
    ) -> int:
        transfer = self._external.get(request.mode)
        if transfer is None:
            raise DownloadError(f"download mode {request.mode.value} is not configured")
        try:
            return await transfer.run(metadata.media_url, request.cookies, metadata.size, temp_path, on_progress)
        except TransportError as exc:
            intent_url = with_download_intent(request.url)
            if intent_url == metadata.media_url:
                raise
            logger.warning("%s rejected media url (%s), retrying via %s", request.mode.value, exc, intent_url)
            temp_path.unlink(missing_ok=True)
            return await transfer.run(intent_url, request.cookies, metadata.size, temp_path, on_progress)

    async def _finalize(
        self,
        request: DownloadRequest,
        temp_path: Path,
        status: Callable[[VideoStatus], Awaitable[None]],
    ) -> None:
        await status(VideoStatus.ASSEMBLING)
        if request.add_watermark and self._watermarker is not None:
            await status(VideoStatus.WATERMARKING)
            # ffmpeg picks the container from the extension, so keep ".mp4" last.
            staged = request.output_path.with_name(f"{request.output_path.stem}.watermark{request.output_path.suffix}")
            try:
                await self._watermarker.apply(str(temp_path), str(staged))
            except BaseException:
                staged.unlink(missing_ok=True)
                raise
            os.replace(staged, request.output_path)
            temp_path.unlink(missing_ok=True)
        else:
            os.replace(temp_path, request.output_path)
        logger.info("download finalized: %s", request.output_path)
