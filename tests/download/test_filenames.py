"""Tests for output file naming."""

from __future__ import annotations

from mediarelay.download.filenames import MAX_FILENAME_LENGTH, generate_filename


class TestGenerateFilename:
    def test_strips_size_prefix(self) -> None:
        assert generate_filename("[  2.76 GB  ] - Some video name") == "Some_video_name.mp4"
        assert generate_filename("[0,49 MB] - Short") == "Short.mp4"

    def test_underscores_are_normalized_first(self) -> None:
        assert generate_filename("[_1.00_GB_]_-_Title_here") == "Title_here.mp4"

    def test_unsafe_characters_removed(self) -> None:
        assert generate_filename('a/b\\c:d*e?f"g<h>i|j') == "abcdefghij.mp4"

    def test_length_cap(self) -> None:
        name = generate_filename("x" * 300)
        assert name == "x" * MAX_FILENAME_LENGTH + ".mp4"

    def test_fallback(self) -> None:
        assert generate_filename(None, now=1700000000.123) == "video_1700000000123.mp4"
        assert generate_filename("???", now=1.0) == "video_1000.mp4"
