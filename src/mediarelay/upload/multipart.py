"""Hand-framed ``multipart/form-data`` body streamed from disk.

The body is an async iterable handed to httpx as request content. httpx only
pulls the next block once the previous one was written to the socket, so
file reads are paced by the transport. Framing is manual so the exact
``Content-Length`` is known up front.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

import aiofiles

ReadCallback = Callable[[int], Awaitable[None]]

_CRLF = b"\r\n"


def quote_filename(name: str) -> str:
    """Percent-encode the characters that would break a quoted header value."""
    return name.replace("\r", "%0D").replace("\n", "%0A").replace('"', "%22")


def _new_boundary() -> str:
    return f"----mediarelay{uuid.uuid4().hex}"


class MultipartBody:
    """Form fields, then one file part, then the closing boundary.

    Re-iterable: every ``async for`` re-reads the file from the start, so one
    instance can back several upload attempts.
    """

    def __init__(
        self,
        fields: dict[str, str],
        file_path: str | Path,
        *,
        file_field: str = "file",
        filename: str | None = None,
        file_content_type: str = "video/mp4",
        boundary: str | None = None,
        read_size: int = 256 * 1024,
        read_delay: float = 0.005,
        on_read: ReadCallback | None = None,
    ) -> None:
        self._fields = fields
        self._file_path = Path(file_path)
        self._file_field = file_field
        self._filename = filename or self._file_path.name
        self._file_content_type = file_content_type
        self.boundary = boundary or _new_boundary()
        self._read_size = read_size
        self._read_delay = read_delay
        self._on_read = on_read
        self.file_size = os.path.getsize(self._file_path)

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def preamble(self) -> bytes:
        dash = f"--{self.boundary}".encode()
        parts: list[bytes] = []
        for name, value in self._fields.items():
            parts += [
                dash,
                _CRLF,
                f'Content-Disposition: form-data; name="{name}"'.encode(),
                _CRLF,
                _CRLF,
                value.encode("utf-8"),
                _CRLF,
            ]
        parts += [
            dash,
            _CRLF,
            (
                f'Content-Disposition: form-data; name="{self._file_field}"; '
                f'filename="{quote_filename(self._filename)}"'
            ).encode("utf-8"),
            _CRLF,
            f"Content-Type: {self._file_content_type}".encode(),
            _CRLF,
            _CRLF,
        ]
        return b"".join(parts)

    def epilogue(self) -> bytes:
        return _CRLF + f"--{self.boundary}--".encode() + _CRLF

    @property
    def content_length(self) -> int:
        return len(self.preamble()) + self.file_size + len(self.epilogue())

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self.preamble()
        sent = 0
        async with aiofiles.open(self._file_path, "rb") as fh:
            while True:
                block = await fh.read(self._read_size)
                if not block:
                    break
                sent += len(block)
                yield block
                if self._on_read is not None:
                    await self._on_read(sent)
                if self._read_delay > 0:
                    await asyncio.sleep(self._read_delay)
        yield self.epilogue()
