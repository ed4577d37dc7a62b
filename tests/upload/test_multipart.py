"""Tests for the streamed multipart body."""

from __future__ import annotations

from email.parser import BytesParser
from email.policy import HTTP

from mediarelay.upload.multipart import MultipartBody, quote_filename


async def _collect(body: MultipartBody) -> bytes:
    return b"".join([block async for block in body])


class TestMultipartBody:
    async def test_framing_parses_as_form_data(self, tmp_path) -> None:
        video = tmp_path / "clip.mp4"
        video.write_bytes(b"\x00\x01" * 1000)
        body = MultipartBody({"response": "tok", "project": "7"}, video, boundary="XYZ", read_size=300, read_delay=0)

        raw = await _collect(body)

        assert len(raw) == body.content_length
        message = BytesParser(policy=HTTP).parsebytes(b"Content-Type: " + body.content_type.encode() + b"\r\n\r\n" + raw)
        parts = list(message.iter_parts())
        assert [p.get_param("name", header="content-disposition") for p in parts] == ["response", "project", "file"]
        assert parts[0].get_content() == "tok"
        assert parts[2].get_filename() == "clip.mp4"
        assert parts[2].get_payload(decode=True) == video.read_bytes()

    async def test_fields_precede_file_and_close_boundary_ends(self, tmp_path) -> None:
        video = tmp_path / "v.mp4"
        video.write_bytes(b"abc")
        body = MultipartBody({"nonce": "n"}, video, boundary="B", read_delay=0)

        raw = await _collect(body)

        assert raw.index(b'name="nonce"') < raw.index(b'name="file"')
        assert raw.endswith(b"\r\n--B--\r\n")

    async def test_reports_bytes_sent_and_is_reiterable(self, tmp_path) -> None:
        video = tmp_path / "v.mp4"
        video.write_bytes(b"x" * 1000)
        seen: list[int] = []

        async def on_read(sent: int) -> None:
            seen.append(sent)

        body = MultipartBody({}, video, read_size=400, read_delay=0, on_read=on_read)
        first = await _collect(body)
        second = await _collect(body)

        assert first == second
        assert seen == [400, 800, 1000, 400, 800, 1000]

    async def test_unsafe_filename_keeps_framing_intact(self, tmp_path) -> None:
        video = tmp_path / "v.mp4"
        video.write_bytes(b"abc")
        body = MultipartBody({"nonce": "n"}, video, filename='Bad "name"\r\nX-Injected: 1.mp4', boundary="B", read_delay=0)

        raw = await _collect(body)

        message = BytesParser(policy=HTTP).parsebytes(b"Content-Type: " + body.content_type.encode() + b"\r\n\r\n" + raw)
        parts = list(message.iter_parts())
        assert len(parts) == 2
        assert parts[1]["X-Injected"] is None
        assert parts[1].get_filename() == "Bad %22name%22%0D%0AX-Injected: 1.mp4"
        assert parts[1].get_payload(decode=True) == b"abc"


def test_quote_filename() -> None:
    assert quote_filename("plain.mp4") == "plain.mp4"
    assert quote_filename('a"b\r\nc.mp4') == "a%22b%0D%0Ac.mp4"
