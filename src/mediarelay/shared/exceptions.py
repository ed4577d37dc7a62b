"""Hierarchical exception types for the mediarelay pipeline."""

from __future__ import annotations


class MediarelayError(Exception):
    """Base exception for all mediarelay errors."""


# ── Infrastructure ──────────────────────────────────────────────


class StoreError(MediarelayError):
    """Failed to read or write persisted queue state."""


class RpcError(MediarelayError):
    """The remote side of an RPC call reported an error."""


class RpcTimeoutError(RpcError):
    """No response envelope arrived within the call timeout."""


class UnitError(MediarelayError):
    """An isolated execution unit crashed or exited unexpectedly."""


class TransportError(MediarelayError):
    """Connection, timeout or unexpected HTTP status from a remote peer."""


# ── Session ─────────────────────────────────────────────────────


class AuthenticationError(MediarelayError):
    """No usable authenticated session (login failed, cookies invalid)."""


# ── Discovery ───────────────────────────────────────────────────


class DiscoveryError(MediarelayError):
    """Listing fetch or parse failed."""


# ── Download ────────────────────────────────────────────────────


class DownloadError(MediarelayError):
    """Media download failed."""


class ExtractionError(DownloadError):
    """No media URL or size could be resolved from the detail page."""


class SizeOutOfBoundsError(DownloadError):
    """Resolved size is outside the accepted range. Reported as a skip."""

    def __init__(self, reason: str, size: int) -> None:
        super().__init__(f"{reason} ({size / 1_048_576:.1f} MB)")
        self.reason = reason
        self.size = size


class RangeNotSatisfiableError(DownloadError):
    """The server rejected or ignored byte-range requests."""


class WatermarkError(DownloadError):
    """FFmpeg watermark overlay failed."""


# ── Upload ──────────────────────────────────────────────────────


class UploadError(MediarelayError):
    """CDN upload failed."""
