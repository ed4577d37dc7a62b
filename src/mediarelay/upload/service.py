"""Upload pipeline: prepare → stream with retries."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from mediarelay.shared.enums import VideoStatus
from mediarelay.shared.events import CompleteEvent, ProgressEvent, StatusEvent
from mediarelay.shared.exceptions import MediarelayError, TransportError, UploadError
from mediarelay.shared.speed import EmaSpeedMeter
from mediarelay.upload.client import UploadClient

logger = logging.getLogger(__name__)

Emit = Callable[[Any], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class UploadRequest:
    file_path: Path
    cookies: str
    video_id: str | None = None


class UploadService:
    """Upload one file and report it as engine events.

    The signed parameters are fetched once and reused for every attempt.
    Only transfer failures are retried; a failed prepare step ends the run.
    """

    def __init__(
        self,
        *,
        client: UploadClient,
        max_attempts: int = 5,
        retry_delay: float = 5.0,
        ema_alpha: float = 0.3,
        sample_interval: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._client = client
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._ema_alpha = ema_alpha
        self._sample_interval = sample_interval
        self._sleep = sleep

    async def run(self, request: UploadRequest, emit: Emit) -> CompleteEvent:
        video_id = request.video_id

        async def fail(reason: str) -> CompleteEvent:
            logger.error("upload of %s failed: %s", request.file_path, reason)
            await emit(StatusEvent(video_id=video_id, status=VideoStatus.ERROR.value, message=reason))
            event = CompleteEvent(video_id=video_id, success=False, status=VideoStatus.ERROR.value, error=reason)
            await emit(event)
            return event

        await emit(StatusEvent(video_id=video_id, status=VideoStatus.STARTING.value))
        if not request.file_path.is_file():
            return await fail(f"file not found: {request.file_path}")
        size = request.file_path.stat().st_size

        await emit(StatusEvent(video_id=video_id, status=VideoStatus.PROCESSING.value))
        try:
            params = await self._client.prepare(request.file_path.name, size, request.cookies)
        except MediarelayError as exc:
            return await fail(str(exc))

        await emit(StatusEvent(video_id=video_id, status=VideoStatus.UPLOADING.value))
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            body = self._client.build_body(params, request.file_path, self._progress(video_id, size, emit))
            try:
                result = await self._client.send(params, body)
            except (UploadError, TransportError) as exc:
                last_error = exc
                logger.warning("upload attempt %d/%d failed: %s", attempt, self._max_attempts, exc)
                if attempt < self._max_attempts:
                    await self._sleep(self._retry_delay)
                continue

            logger.info("upload of %s complete on attempt %d: %s", request.file_path.name, attempt, result)
            await emit(StatusEvent(video_id=video_id, status=VideoStatus.COMPLETED.value))
            event = CompleteEvent(
                video_id=video_id,
                success=True,
                status=VideoStatus.COMPLETED.value,
                path=str(request.file_path),
                size=size,
            )
            await emit(event)
            return event

        return await fail(f"upload failed after {self._max_attempts} attempts: {last_error}")

    def _progress(self, video_id: str | None, size: int, emit: Emit) -> Callable[[int], Awaitable[None]]:
        meter = EmaSpeedMeter(alpha=self._ema_alpha, interval=self._sample_interval)

        async def report(sent: int) -> None:
            if not meter.update(sent) and sent < size:
                return
            await emit(
                ProgressEvent(
                    video_id=video_id,
                    progress=min(sent / size * 100, 100.0) if size else 100.0,
                    speed=meter.speed,
                    eta=meter.eta(size - sent),
                    size=size,
                    downloaded=sent,
                    phase=VideoStatus.UPLOADING.value,
                )
            )

        return report
