"""Two-phase queue: each item is downloaded, then uploaded, one item at a time."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

from mediarelay.download.filenames import generate_filename
from mediarelay.orchestrator.units import EventHandler, UnitHandle
from mediarelay.shared.enums import QueuePhase, QueueStatus, SubPhase, UnitKind, VideoStatus
from mediarelay.shared.events import CompleteEvent, ProgressEvent, StatusEvent
from mediarelay.shared.exceptions import MediarelayError
from mediarelay.shared.models import QueueItem, Video, utc_now
from mediarelay.shared.store import ProcessedUrlStore, QueueStore

logger = logging.getLogger(__name__)

UnitFactory = Callable[[UnitKind, EventHandler], UnitHandle]
CookieProvider = Callable[[str], Awaitable[str]]

_SUB_PHASES = {s.value: s for s in SubPhase}
_VIDEO_STATUSES = {s.value: s for s in VideoStatus}

CANCELLED_REASON = "cancelled by user"


class _PhaseFailed(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason or "unknown error"


@dataclass(frozen=True, slots=True)
class ActiveUnit:
    """The unit currently working on the active item."""

    item_id: uuid.UUID
    phase: QueuePhase
    handle: UnitHandle


class QueueOrchestrator:
    """Drive queue items through ``pending → download → upload → completed``.

    At most one item is ``active``. ``process_next()`` picks the first pending
    item by priority, runs its download unit, then its upload unit with
    freshly resolved cookies, and records the outcome. A failure in either
    phase marks the item ``failed`` with a reason and leaves the rest of the
    queue untouched.
    """

    def __init__(
        self,
        *,
        unit_factory: UnitFactory,
        cookies: CookieProvider,
        output_dir: str | Path,
        store: QueueStore | None = None,
        processed: ProcessedUrlStore | None = None,
        download_options: dict[str, Any] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._unit_factory = unit_factory
        self._cookies = cookies
        self._output_dir = Path(output_dir)
        self._store = store
        self._processed = processed
        self._download_options = download_options or {}
        self._clock = clock
        self._items: list[QueueItem] = []
        self._paused = False
        self._active: ActiveUnit | None = None
        self._cancelled: set[uuid.UUID] = set()

    # ── Queries ─────────────────────────────────────────────────

    @property
    def items(self) -> list[QueueItem]:
        return sorted(self._items, key=lambda i: i.priority)

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def active_item(self) -> QueueItem | None:
        return next((i for i in self._items if i.status == QueueStatus.ACTIVE), None)

    @property
    def active_unit(self) -> ActiveUnit | None:
        return self._active

    def get(self, item_id: uuid.UUID) -> QueueItem | None:
        return next((i for i in self._items if i.id == item_id), None)

    def next_pending(self) -> QueueItem | None:
        if self._paused:
            return None
        return next((i for i in self.items if i.status == QueueStatus.PENDING), None)

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in QueueStatus}
        for item in self._items:
            counts[item.status.value] += 1
        return counts

    # ── Persistence ─────────────────────────────────────────────

    async def load(self) -> int:
        """Restore the queue from the store. Interrupted items go back to pending."""
        if self._store is None:
            return 0
        restored = []
        for item in await self._store.load():
            if item.status == QueueStatus.ACTIVE:
                item = item.model_copy(update={"status": QueueStatus.PENDING, "sub_phase": None})
            restored.append(item)
        self._items = restored
        logger.info("restored %d queue item(s)", len(restored))
        return len(restored)

    async def _save(self) -> None:
        if self._store is not None:
            await self._store.save(self.items)

    def _set(self, item_id: uuid.UUID, **updates: Any) -> QueueItem:
        for index, item in enumerate(self._items):
            if item.id == item_id:
                updated = item.model_copy(update=updates)
                self._items[index] = updated
                return updated
        raise KeyError(f"queue item not found: {item_id}")

    def _set_video(self, item_id: uuid.UUID, **updates: Any) -> QueueItem:
        item = self.get(item_id)
        if item is None:
            raise KeyError(f"queue item not found: {item_id}")
        return self._set(item_id, video=item.video.model_copy(update=updates))

    # ── Mutations ───────────────────────────────────────────────

    def _next_priority(self) -> int:
        return max((i.priority for i in self._items), default=-1) + 1

    async def add(self, video: Video, account_id: str) -> QueueItem:
        item = QueueItem(video=video, account_id=account_id, priority=self._next_priority(), added_at=self._clock())
        self._items.append(item)
        await self._save()
        logger.info("queued %s for %s", video.title, account_id)
        return item

    async def add_upload(self, file_path: str | Path, account_id: str, *, title: str | None = None) -> QueueItem:
        """Queue a local file that skips the download phase."""
        path = Path(file_path)
        video = Video(title=title or path.stem, path=str(path), size=path.stat().st_size if path.exists() else None)
        item = QueueItem(
            video=video,
            account_id=account_id,
            kind=QueuePhase.UPLOAD,
            priority=self._next_priority(),
            added_at=self._clock(),
        )
        self._items.append(item)
        await self._save()
        logger.info("queued direct upload of %s for %s", path, account_id)
        return item

    async def pause(self) -> None:
        self._paused = True
        logger.info("queue paused")

    async def resume(self) -> None:
        self._paused = False
        logger.info("queue resumed")

    async def pause_item(self, item_id: uuid.UUID) -> bool:
        """Hold a pending item in place; ``process_next`` skips it."""
        item = self.get(item_id)
        if item is None or item.status != QueueStatus.PENDING:
            return False
        self._set(item_id, status=QueueStatus.PAUSED)
        await self._save()
        return True

    async def resume_item(self, item_id: uuid.UUID) -> bool:
        item = self.get(item_id)
        if item is None or item.status != QueueStatus.PAUSED:
            return False
        self._set(item_id, status=QueueStatus.PENDING)
        await self._save()
        return True

    async def retry_failed(self) -> int:
        """Move every failed item back to pending. Returns how many were reset."""
        failed = [i for i in self._items if i.status == QueueStatus.FAILED]
        for item in failed:
            self._set(
                item.id,
                status=QueueStatus.PENDING,
                error=None,
                status_message=None,
                sub_phase=None,
                completed_at=None,
                speed=None,
                eta=None,
            )
        if failed:
            await self._save()
            logger.info("retrying %d failed item(s)", len(failed))
        return len(failed)

    async def reorder(self, item_ids: list[uuid.UUID]) -> None:
        """Put ``item_ids`` first in the given order; the rest keep their relative order.

        Raises:
            ValueError: If an id is unknown or listed twice.
        """
        known = {i.id for i in self._items}
        if len(set(item_ids)) != len(item_ids):
            raise ValueError("duplicate ids in reorder")
        unknown = [str(i) for i in item_ids if i not in known]
        if unknown:
            raise ValueError(f"unknown queue item(s): {', '.join(unknown)}")

        listed = set(item_ids)
        order = list(item_ids) + [i.id for i in self.items if i.id not in listed]
        for priority, item_id in enumerate(order):
            self._set(item_id, priority=priority)
        await self._save()

    async def remove(self, item_id: uuid.UUID) -> bool:
        """Remove a non-active item.

        Raises:
            ValueError: If the item is the active one.
        """
        item = self.get(item_id)
        if item is None:
            return False
        if item.status == QueueStatus.ACTIVE:
            raise ValueError("cannot remove the active item, stop it first")
        self._items = [i for i in self._items if i.id != item_id]
        await self._save()
        return True

    async def clear(self) -> int:
        """Drop every item except the active one. Returns how many were removed."""
        kept = [i for i in self._items if i.status == QueueStatus.ACTIVE]
        removed = len(self._items) - len(kept)
        self._items = kept
        await self._save()
        return removed

    async def stop_active(self) -> bool:
        """Terminate the active unit; its item is marked failed."""
        active = self._active
        if active is None:
            return False
        logger.info("stopping active %s unit for item %s", active.phase.value, active.item_id)
        self._cancelled.add(active.item_id)
        await active.handle.terminate()
        return True

    # ── Processing ──────────────────────────────────────────────

    async def run_until_idle(self) -> int:
        """Process pending items until none is left (or the queue is paused)."""
        processed = 0
        while await self.process_next() is not None:
            processed += 1
        return processed

    async def process_next(self) -> QueueItem | None:
        """Run the next pending item through its phases. None when nothing ran."""
        if self.active_item is not None:
            return None
        item = self.next_pending()
        if item is None:
            return None

        upload_only = item.kind == QueuePhase.UPLOAD or (item.phase == QueuePhase.UPLOAD and bool(item.video.path))
        phase = QueuePhase.UPLOAD if upload_only else QueuePhase.DOWNLOAD
        item = self._set(
            item.id,
            status=QueueStatus.ACTIVE,
            phase=phase,
            started_at=self._clock(),
            completed_at=None,
            error=None,
        )
        await self._save()

        try:
            path = item.video.path if upload_only else await self._download(item)
            await self._upload(item, path or "")
        except _PhaseFailed as exc:
            self._fail(item.id, exc.reason)
        except asyncio.CancelledError:
            self._fail(item.id, CANCELLED_REASON)
            await self._save()
            raise
        finally:
            self._cancelled.discard(item.id)

        await self._save()
        return self.get(item.id)

    def _fail(self, item_id: uuid.UUID, reason: str) -> None:
        logger.warning("item %s failed: %s", item_id, reason)
        self._set(
            item_id,
            status=QueueStatus.FAILED,
            error=reason,
            sub_phase=None,
            completed_at=self._clock(),
        )
        self._set_video(item_id, status=VideoStatus.FAILED, error=reason)

    async def _resolve_cookies(self, item: QueueItem) -> str:
        try:
            return await self._cookies(item.account_id)
        except MediarelayError as exc:
            raise _PhaseFailed(f"no session for {item.account_id}: {exc}") from exc

    async def _run_unit(self, item: QueueItem, kind: UnitKind, phase: QueuePhase, payload: dict[str, Any]) -> CompleteEvent:
        handle = self._unit_factory(kind, self._event_handler(item.id, phase))
        self._active = ActiveUnit(item_id=item.id, phase=phase, handle=handle)
        try:
            await handle.start(payload)
            result = await handle.wait()
        except MediarelayError as exc:
            await handle.terminate()
            raise _PhaseFailed(str(exc)) from exc
        except asyncio.CancelledError:
            await handle.terminate()
            raise
        finally:
            self._active = None

        if item.id in self._cancelled:
            raise _PhaseFailed(CANCELLED_REASON)
        if result is None:
            raise _PhaseFailed(f"{kind.value} unit exited without a result")
        return result

    async def _download(self, item: QueueItem) -> str:
        cookies = await self._resolve_cookies(item)
        video = item.video
        payload = {
            "url": video.url,
            "cookies": cookies,
            "videoId": str(video.id),
            "title": video.title,
            "outputPath": str(self._output_dir / generate_filename(video.title)),
            "sizeHint": video.size,
            **self._download_options,
        }
        result = await self._run_unit(item, UnitKind.DOWNLOAD, QueuePhase.DOWNLOAD, payload)
        if not result.success or not result.path:
            raise _PhaseFailed(result.error or "download failed")

        self._set_video(item.id, path=result.path, size=result.size or video.size, progress=100.0)
        self._set(item.id, phase=QueuePhase.UPLOAD, sub_phase=None, progress=100.0, upload_progress=0.0)
        await self._save()
        logger.info("download done for %s, starting upload", video.title)
        return result.path

    async def _upload(self, item: QueueItem, path: str) -> None:
        if not path:
            raise _PhaseFailed("no file to upload")
        # Sessions may have rotated during a long download.
        cookies = await self._resolve_cookies(item)
        payload = {"filePath": path, "cookies": cookies, "videoId": str(item.video.id)}
        result = await self._run_unit(item, UnitKind.UPLOAD, QueuePhase.UPLOAD, payload)
        if not result.success:
            raise _PhaseFailed(result.error or "upload failed")

        self._set(
            item.id,
            status=QueueStatus.COMPLETED,
            upload_progress=100.0,
            completed_at=self._clock(),
            speed=None,
            eta=None,
        )
        self._set_video(item.id, status=VideoStatus.COMPLETED)
        if self._processed is not None and item.video.url:
            await self._processed.add(item.video.url)
        logger.info("item %s completed (%s)", item.id, item.video.title)

    def _event_handler(self, item_id: uuid.UUID, phase: QueuePhase) -> EventHandler:
        async def handle(event: Any) -> None:
            if self.get(item_id) is None:
                return
            if isinstance(event, ProgressEvent):
                if phase == QueuePhase.DOWNLOAD:
                    updates: dict[str, Any] = {"progress": event.progress}
                    if event.size:
                        updates["size"] = event.size
                else:
                    updates = {"upload_progress": event.progress}
                self._set(item_id, speed=event.speed, eta=event.eta, **updates)
            elif isinstance(event, StatusEvent):
                updates = {"status_message": event.message or event.status}
                if phase == QueuePhase.DOWNLOAD and event.status in _SUB_PHASES:
                    updates["sub_phase"] = _SUB_PHASES[event.status]
                self._set(item_id, **updates)
                if event.status in _VIDEO_STATUSES:
                    self._set_video(item_id, status=_VIDEO_STATUSES[event.status])

        return handle
