"""Frozen Pydantic domain models shared by all modules."""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mediarelay.shared.enums import QueuePhase, QueueStatus, SubPhase, VideoStatus


def utc_now() -> datetime:
    """Return timezone-aware UTC timestamps for model defaults."""
    return datetime.now(timezone.utc)


class Account(BaseModel):
    """An origin-site account discovered from the data directory."""

    model_config = {"frozen": True}

    id: str
    email: str
    cookie_file: str | None = None
    is_active: bool = True
    has_credentials: bool = False
    credits: int | None = None


class Session(BaseModel):
    """Cached authenticated cookies for one account."""

    model_config = {"frozen": True}

    account_id: str
    email: str
    cookies: str
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at


class Candidate(BaseModel):
    """A discovered, not-yet-queued media item."""

    model_config = {"frozen": True}

    url: str
    title: str
    thumbnail: str | None = None
    size: int | None = None


class UploadedVideo(BaseModel):
    """One entry of the account's own uploaded-videos listing."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str
    url: str
    thumbnail: str | None = None
    size: int | None = None
    downloads_premium: int = Field(default=0, alias="downloadsPremium")
    downloads_total: int = Field(default=0, alias="downloadsTotal")
    likes: int = 0
    dislikes: int = 0

    @property
    def views(self) -> int:
        return self.downloads_premium + self.downloads_total


class Video(BaseModel):
    """The media item carried by a queue item."""

    model_config = {"frozen": True}

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    title: str
    url: str = ""
    thumbnail: str | None = None
    size: int | None = None
    status: VideoStatus = VideoStatus.PENDING
    progress: float = 0.0
    path: str | None = None
    error: str | None = None


class QueueItem(BaseModel):
    """One entry of the download → upload queue."""

    model_config = {"frozen": True}

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    video: Video
    account_id: str
    # Direct uploads of local files start in the upload phase.
    kind: QueuePhase = QueuePhase.DOWNLOAD
    status: QueueStatus = QueueStatus.PENDING
    phase: QueuePhase | None = None
    sub_phase: SubPhase | None = None
    priority: int = 0
    size: int | None = None
    speed: float | None = None
    eta: float | None = None
    progress: float = 0.0
    upload_progress: float = 0.0
    status_message: str | None = None
    error: str | None = None
    added_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class Chunk(BaseModel):
    """An inclusive byte range ``[start, end]`` of one transfer."""

    model_config = {"frozen": True}

    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def range_header(self) -> str:
        return f"bytes={self.start}-{self.end}"


class MediaMetadata(BaseModel):
    """Resolved media URL and size for one detail page."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    media_url: str = Field(alias="mp4Url")
    size: int = Field(alias="fileSize")


class UploadParameters(BaseModel):
    """Signed, single-use parameters issued by the origin for one upload."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, coerce_numbers_to_str=True)

    signed_response_token: str = Field(alias="response")
    project: str
    nonce: str
    params: str
    signature: str
    upload_url: str | None = Field(default=None, alias="url")

    @field_validator("params", mode="before")
    @classmethod
    def _serialize_params(cls, value: object) -> object:
        if isinstance(value, (dict, list)):
            return json.dumps(value, separators=(",", ":"))
        return value

    def form_fields(self) -> dict[str, str]:
        """Form fields in the order the CDN expects them, before the file part."""
        return {
            "response": self.signed_response_token,
            "project": self.project,
            "nonce": self.nonce,
            "params": self.params,
            "signature": self.signature,
        }
