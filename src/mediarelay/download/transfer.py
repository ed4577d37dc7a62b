"""Byte transfer strategies: chunked ranges, single stream, external tools."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Awaitable, Callable

import aiofiles
import httpx

from mediarelay.download.chunks import plan_chunks
from mediarelay.shared.exceptions import RangeNotSatisfiableError, TransportError
from mediarelay.shared.models import Chunk

logger = logging.getLogger(__name__)

# (bytes written so far, total size or None when unknown)
ProgressCallback = Callable[[int, "int | None"], Awaitable[None]]

_STREAM_BLOCK = 64 * 1024
_STREAM_REPORT_EVERY = 1024 * 1024


def _request_headers(cookies: str, user_agent: str) -> dict[str, str]:
    return {"User-Agent": user_agent, "Cookie": cookies}


class ChunkedTransfer:
    """Parallel byte-range download written in place at each chunk's offset.

    Raises ``RangeNotSatisfiableError`` as soon as any chunk gets a 416 or a
    full-body 200, so the caller can restart as a single stream.
    """

    def __init__(
        self,
        *,
        chunk_size: int = 1024 * 1024,
        concurrency: int = 2,
        retries: int = 2,
        chunk_timeout: float = 120.0,
        user_agent: str = "Mozilla/5.0",
    ) -> None:
        self._chunk_size = chunk_size
        self._concurrency = concurrency
        self._retries = retries
        self._chunk_timeout = chunk_timeout
        self._user_agent = user_agent
        self.in_flight = 0
        self.peak_in_flight = 0

    async def run(
        self,
        url: str,
        cookies: str,
        size: int,
        dest: Path,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        chunks = plan_chunks(size, self._chunk_size)
        semaphore = asyncio.Semaphore(self._concurrency)
        write_lock = asyncio.Lock()
        written = 0
        logger.info("chunked download: %d bytes in %d chunks (concurrency=%d)", size, len(chunks), self._concurrency)

        dest.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(dest, "wb") as fh, httpx.AsyncClient(
            timeout=self._chunk_timeout,
            follow_redirects=True,
            headers=_request_headers(cookies, self._user_agent),
        ) as client:

            async def fetch_and_write(chunk: Chunk) -> None:
                nonlocal written
                async with semaphore:
                    self.in_flight += 1
                    self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
                    try:
                        data = await self._fetch_chunk(client, url, chunk)
                    finally:
                        self.in_flight -= 1
                async with write_lock:
                    await fh.seek(chunk.start)
                    await fh.write(data)
                    written += len(data)
                    current = written
                if on_progress is not None:
                    await on_progress(current, size)

            tasks = [asyncio.ensure_future(fetch_and_write(chunk)) for chunk in chunks]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        return written

    async def _fetch_chunk(self, client: httpx.AsyncClient, url: str, chunk: Chunk) -> bytes:
        for attempt in range(self._retries + 1):
            try:
                resp = await asyncio.wait_for(
                    client.get(url, headers={"Range": chunk.range_header}),
                    timeout=self._chunk_timeout,
                )
            except asyncio.TimeoutError:
                error: Exception = TransportError(f"chunk {chunk.index}: timed out after {self._chunk_timeout:g}s")
            except httpx.HTTPError as exc:
                error = exc
            else:
                if resp.status_code == 416:
                    raise RangeNotSatisfiableError(f"chunk {chunk.index}: 416 range not satisfiable")
                if resp.status_code == 200:
                    raise RangeNotSatisfiableError(f"chunk {chunk.index}: server ignored Range header")
                if resp.status_code == 206 and len(resp.content) == chunk.length:
                    return resp.content
                error = TransportError(
                    f"chunk {chunk.index}: status {resp.status_code}, {len(resp.content)}/{chunk.length} bytes"
                )
            logger.warning("chunk %d attempt %d/%d failed: %s", chunk.index, attempt + 1, self._retries + 1, error)
        raise TransportError(f"chunk {chunk.index} failed after {self._retries + 1} attempts: {error}") from error


class StreamingTransfer:
    """One unconditional GET streamed to disk, bounded by a total timeout."""

    def __init__(self, *, timeout: float = 600.0, user_agent: str = "Mozilla/5.0") -> None:
        self._timeout = timeout
        self._user_agent = user_agent

    async def run(
        self,
        url: str,
        cookies: str,
        dest: Path,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        try:
            return await asyncio.wait_for(self._stream(url, cookies, dest, on_progress), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"streaming download timed out after {self._timeout:g}s") from exc

    async def _stream(self, url: str, cookies: str, dest: Path, on_progress: ProgressCallback | None) -> int:
        logger.info("streaming download from %s", url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        reported = 0
        try:
            async with httpx.AsyncClient(
                timeout=None,
                follow_redirects=True,
                headers=_request_headers(cookies, self._user_agent),
            ) as client, client.stream("GET", url) as resp:
                resp.raise_for_status()
                length = resp.headers.get("content-length")
                total = int(length) if length and length.isdigit() else None
                async with aiofiles.open(dest, "wb") as fh:
                    async for block in resp.aiter_bytes(_STREAM_BLOCK):
                        await fh.write(block)
                        written += len(block)
                        if on_progress is not None and written - reported >= _STREAM_REPORT_EVERY:
                            reported = written
                            await on_progress(written, total)
        except httpx.HTTPError as exc:
            raise TransportError(f"streaming download failed: {exc}") from exc

        if on_progress is not None:
            await on_progress(written, total or written)
        logger.info("streaming complete: %d bytes", written)
        return written


_CURL_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)%")
_WGET_PERCENT_RE = re.compile(r"(\d+)%\s")


class ExternalTransfer:
    """Download through a ``curl`` or ``wget`` subprocess.

    Progress is parsed from the tool's stderr percentage output. The
    subprocess is killed if the transfer is cancelled.
    """

    def __init__(self, tool: str, *, binary: str | None = None, user_agent: str = "Mozilla/5.0") -> None:
        if tool not in ("curl", "wget"):
            raise ValueError(f"unsupported download tool: {tool}")
        self._tool = tool
        self._binary = binary or tool
        self._user_agent = user_agent
        self._percent_re = _CURL_PERCENT_RE if tool == "curl" else _WGET_PERCENT_RE

    def build_command(self, url: str, dest: Path, cookies: str) -> list[str]:
        if self._tool == "curl":
            return [
                self._binary,
                "-L",
                "-f",
                "-o",
                str(dest),
                "-C",
                "-",
                "--progress-bar",
                "--cookie",
                cookies,
                "--user-agent",
                self._user_agent,
                url,
            ]
        return [
            self._binary,
            "-O",
            str(dest),
            "--progress=dot:mega",
            "--header",
            f"Cookie: {cookies}",
            "--user-agent",
            self._user_agent,
            url,
        ]

    def parse_percent(self, text: str) -> float | None:
        """Last percentage printed in a block of tool output."""
        matches = self._percent_re.findall(text)
        if not matches:
            return None
        return min(float(matches[-1]), 100.0)

    async def run(
        self,
        url: str,
        cookies: str,
        size: int,
        dest: Path,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        dest.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(url, dest, cookies)
        logger.info("downloading with %s: %s", self._tool, url)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise TransportError(f"{self._tool} binary not found: {self._binary}") from exc

        if proc.stderr is None:
            raise TransportError(f"{self._tool} started without a stderr pipe")

        tail = ""
        try:
            while True:
                block = await proc.stderr.read(4096)
                if not block:
                    break
                text = block.decode(errors="replace")
                tail = (tail + text)[-500:]
                percent = self.parse_percent(text)
                if percent is not None and on_progress is not None:
                    await on_progress(int(size * percent / 100), size)
            returncode = await proc.wait()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if returncode != 0:
            raise TransportError(f"{self._tool} exited with code {returncode}: {tail.strip()[-200:]}")

        written = dest.stat().st_size if dest.exists() else 0
        if on_progress is not None:
            await on_progress(written, size)
        logger.info("%s complete: %d bytes", self._tool, written)
        return written
