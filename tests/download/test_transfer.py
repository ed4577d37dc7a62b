"""Tests for chunked, streaming and external transfers."""

from __future__ import annotations

import asyncio
import os
import stat

import httpx
import pytest
import respx

from mediarelay.download.transfer import ChunkedTransfer, ExternalTransfer, StreamingTransfer
from mediarelay.shared.exceptions import RangeNotSatisfiableError, TransportError

MEDIA = "https://cdn.prehrajto.cz/v/abc.mp4"
BODY = bytes(range(256)) * 40  # 10240 bytes = 10 chunks of 1024


def _range_server(body: bytes, *, reject_start: int | None = None, flaky: dict[int, int] | None = None):
    """respx side effect serving byte ranges of ``body``.

    ``reject_start`` answers 416 for the chunk starting there; ``flaky`` maps
    a chunk start to how many times it should first fail with 500.
    """
    failures = dict(flaky or {})

    def handler(request: httpx.Request) -> httpx.Response:
        range_header = request.headers.get("Range")
        if range_header is None:
            return httpx.Response(200, content=body)
        start, end = (int(x) for x in range_header.removeprefix("bytes=").split("-"))
        if start == reject_start:
            return httpx.Response(416)
        if failures.get(start):
            failures[start] -= 1
            return httpx.Response(500)
        return httpx.Response(
            206,
            content=body[start : end + 1],
            headers={"Content-Range": f"bytes {start}-{end}/{len(body)}"},
        )

    return handler


class ProgressRecorder:
    def __init__(self) -> None:
        self.calls: list[tuple[int, int | None]] = []

    async def __call__(self, downloaded: int, total: int | None) -> None:
        self.calls.append((downloaded, total))


class TestChunkedTransfer:
    @respx.mock
    async def test_writes_every_chunk_in_place(self, tmp_path) -> None:
        respx.get(MEDIA).mock(side_effect=_range_server(BODY))
        transfer = ChunkedTransfer(chunk_size=1024, concurrency=2)
        progress = ProgressRecorder()
        dest = tmp_path / "out.mp4.tmp"

        written = await transfer.run(MEDIA, "sid=1", len(BODY), dest, progress)

        assert written == len(BODY)
        assert dest.read_bytes() == BODY
        assert transfer.peak_in_flight <= 2
        assert transfer.in_flight == 0
        # One report per chunk; only the last one reaches the full size.
        assert len(progress.calls) == 10
        assert [d for d, _ in progress.calls[:-1]] == sorted(d for d, _ in progress.calls[:-1])
        assert all(d < len(BODY) for d, _ in progress.calls[:-1])
        assert progress.calls[-1] == (len(BODY), len(BODY))

    @respx.mock
    async def test_retries_failed_chunk(self, tmp_path) -> None:
        respx.get(MEDIA).mock(side_effect=_range_server(BODY, flaky={2048: 2}))
        dest = tmp_path / "out.tmp"

        written = await ChunkedTransfer(chunk_size=1024, retries=2).run(MEDIA, "", len(BODY), dest)

        assert written == len(BODY)
        assert dest.read_bytes() == BODY

    @respx.mock
    async def test_gives_up_after_retries(self, tmp_path) -> None:
        respx.get(MEDIA).mock(side_effect=_range_server(BODY, flaky={0: 5}))
        with pytest.raises(TransportError, match="chunk 0 failed after 3 attempts"):
            await ChunkedTransfer(chunk_size=1024, retries=2).run(MEDIA, "", len(BODY), tmp_path / "out.tmp")

    async def test_stalled_chunk_is_retried_after_timeout(self, tmp_path, monkeypatch) -> None:
        serve = _range_server(BODY)
        stalls = {1024: 1}

        async def get(self, url, *, headers=None):
            request = httpx.Request("GET", url, headers=headers)
            start = int(request.headers["Range"].removeprefix("bytes=").split("-")[0])
            if stalls.get(start):
                stalls[start] -= 1
                await asyncio.sleep(10)
            return serve(request)

        monkeypatch.setattr(httpx.AsyncClient, "get", get)
        dest = tmp_path / "out.tmp"

        written = await ChunkedTransfer(chunk_size=1024, chunk_timeout=0.05).run(MEDIA, "", len(BODY), dest)

        assert written == len(BODY)
        assert dest.read_bytes() == BODY
        assert stalls == {1024: 0}

    async def test_chunk_timeout_exhausts_retries(self, tmp_path, monkeypatch) -> None:
        async def get(self, url, *, headers=None):
            await asyncio.sleep(10)

        monkeypatch.setattr(httpx.AsyncClient, "get", get)

        with pytest.raises(TransportError, match="timed out after 0.05s"):
            await ChunkedTransfer(chunk_size=1024, retries=1, chunk_timeout=0.05).run(
                MEDIA, "", 1024, tmp_path / "out.tmp"
            )

    @respx.mock
    async def test_416_raises_range_error(self, tmp_path) -> None:
        respx.get(MEDIA).mock(side_effect=_range_server(BODY, reject_start=2048))
        with pytest.raises(RangeNotSatisfiableError, match="chunk 2"):
            await ChunkedTransfer(chunk_size=1024).run(MEDIA, "", len(BODY), tmp_path / "out.tmp")

    @respx.mock
    async def test_ignored_range_header(self, tmp_path) -> None:
        respx.get(MEDIA).mock(return_value=httpx.Response(200, content=BODY))
        with pytest.raises(RangeNotSatisfiableError, match="ignored Range"):
            await ChunkedTransfer(chunk_size=1024).run(MEDIA, "", len(BODY), tmp_path / "out.tmp")


class TestStreamingTransfer:
    @respx.mock
    async def test_streams_whole_body(self, tmp_path) -> None:
        route = respx.get(MEDIA).mock(side_effect=_range_server(BODY))
        progress = ProgressRecorder()
        dest = tmp_path / "out.tmp"

        written = await StreamingTransfer().run(MEDIA, "sid=1", dest, progress)

        assert written == len(BODY)
        assert dest.read_bytes() == BODY
        assert "Range" not in route.calls.last.request.headers
        assert progress.calls[-1] == (len(BODY), len(BODY))

    @respx.mock
    async def test_http_error(self, tmp_path) -> None:
        respx.get(MEDIA).mock(return_value=httpx.Response(403))
        with pytest.raises(TransportError, match="streaming download failed"):
            await StreamingTransfer().run(MEDIA, "", tmp_path / "out.tmp")


class TestExternalTransfer:
    def test_curl_command(self, tmp_path) -> None:
        cmd = ExternalTransfer("curl", user_agent="UA").build_command(MEDIA, tmp_path / "o", "sid=1")
        assert cmd[:4] == ["curl", "-L", "-f", "-o"]
        assert cmd[cmd.index("--cookie") + 1] == "sid=1"
        assert cmd[-1] == MEDIA

    def test_wget_command(self, tmp_path) -> None:
        cmd = ExternalTransfer("wget", binary="/usr/bin/wget").build_command(MEDIA, tmp_path / "o", "sid=1")
        assert cmd[0] == "/usr/bin/wget"
        assert "Cookie: sid=1" in cmd

    def test_unsupported_tool(self) -> None:
        with pytest.raises(ValueError):
            ExternalTransfer("aria2c")

    def test_parse_percent(self) -> None:
        curl = ExternalTransfer("curl")
        assert curl.parse_percent("##  12.5%\r#####  47.0%\r") == 47.0
        assert curl.parse_percent("no progress") is None
        wget = ExternalTransfer("wget")
        assert wget.parse_percent("  1024K ........ ........ 33% 5.1M 2s\n") == 33.0

    async def test_missing_binary(self, tmp_path) -> None:
        transfer = ExternalTransfer("curl", binary=str(tmp_path / "no-such-curl"))
        with pytest.raises(TransportError, match="binary not found"):
            await transfer.run(MEDIA, "", 10, tmp_path / "out.tmp")

    async def test_runs_tool_and_reports_progress(self, tmp_path) -> None:
        fake = tmp_path / "fake-curl"
        fake.write_text(
            "#!/bin/sh\n"
            'while [ "$#" -gt 0 ]; do if [ "$1" = "-o" ]; then out="$2"; fi; shift; done\n'
            "printf 'hello' > \"$out\"\n"
            "printf '  50.0%%\\r' >&2\n"
        )
        fake.chmod(fake.stat().st_mode | stat.S_IXUSR)
        progress = ProgressRecorder()
        dest = tmp_path / "out.tmp"

        written = await ExternalTransfer("curl", binary=str(fake)).run(MEDIA, "", 5, dest, progress)

        assert written == 5
        assert dest.read_bytes() == b"hello"
        assert progress.calls[-1] == (5, 5)

    async def test_non_zero_exit(self, tmp_path) -> None:
        fake = tmp_path / "failing-curl"
        fake.write_text("#!/bin/sh\necho 'curl: (22) 403 Forbidden' >&2\nexit 22\n")
        os.chmod(fake, 0o755)

        with pytest.raises(TransportError, match="exited with code 22"):
            await ExternalTransfer("curl", binary=str(fake)).run(MEDIA, "", 5, tmp_path / "out.tmp")

    async def test_missing_stderr_pipe(self, tmp_path, monkeypatch) -> None:
        class NoPipes:
            stderr = None

        async def spawn(*args, **kwargs):
            return NoPipes()

        monkeypatch.setattr(asyncio, "create_subprocess_exec", spawn)

        with pytest.raises(TransportError, match="without a stderr pipe"):
            await ExternalTransfer("wget").run(MEDIA, "", 5, tmp_path / "out.tmp")
