"""Domain enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, unique


@unique
class QueueStatus(str, Enum):
    """Lifecycle states for a queued item."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


@unique
class QueuePhase(str, Enum):
    """Which engine currently owns an active queue item."""

    DOWNLOAD = "download"
    UPLOAD = "upload"


@unique
class SubPhase(str, Enum):
    """Finer-grained step inside the download phase."""

    DOWNLOADING = "downloading"
    ASSEMBLING = "assembling"
    WATERMARKING = "watermarking"


@unique
class VideoStatus(str, Enum):
    """Per-video status reported by the engines."""

    PENDING = "pending"
    STARTING = "starting"
    DISCOVERING = "discovering"
    LOADING = "loading"
    EXTRACTING = "extracting"
    DOWNLOADING = "downloading"
    ASSEMBLING = "assembling"
    WATERMARKING = "watermarking"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    ALREADY_EXISTS = "already-exists"
    SKIPPED = "skipped"
    ERROR = "error"


@unique
class DownloadMode(str, Enum):
    """Transfer strategies for the download engine."""

    CHUNKS = "chunks"
    CURL = "curl"
    WGET = "wget"


@unique
class CookieSource(str, Enum):
    """Where a cookie header handed out by the session manager came from."""

    CACHE = "cache"
    REFRESHED = "refreshed"
    FILE = "file"


@unique
class UnitKind(str, Enum):
    """Isolated execution unit types, one module per kind."""

    DISCOVER = "discover"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    SESSION = "session"
    MY_VIDEOS = "my-videos"
