"""Media URL extraction from a detail page.

Strategies are tried in order; the first one that yields a URL wins. Only
the structured ``contentUrl`` meta tag is URL-decoded, every other match is
kept verbatim because CDN signatures depend on the exact encoding.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable
from urllib.parse import unquote

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

_DIRECT_MP4_RE = re.compile(r"(https?://[^\"'\s]+\.mp4[^\"'\s]*)", re.IGNORECASE)
_DATA_SRC_RE = re.compile(r'data-src="([^"]+)"')
_IMAGE_MARKERS = ("thumb.prehrajto.cz", ".jpg", ".webp", ".png")

_PLAYER_PATTERNS = (
    re.compile(r'data-url="([^"]+)"'),
    re.compile(r'video[^>]*src="([^"]+)"', re.IGNORECASE),
    re.compile(r'source[^>]*src="([^"]+)"[^>]*>', re.IGNORECASE),
    re.compile(r"videoUrl\s*[=:]\s*[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"file\s*[=:]\s*[\"']([^\"']+\.mp4[^\"']*)[\"']", re.IGNORECASE),
    re.compile(r"\"url\"\s*:\s*[\"']([^\"']+\.mp4[^\"']*)[\"']", re.IGNORECASE),
    re.compile(r'data-video="([^"]+)"'),
    re.compile(r"player\.src\([^)]*[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"src:\s*[\"']([^\"']+\.mp4[^\"']*)[\"']", re.IGNORECASE),
)


@dataclass(frozen=True, slots=True)
class ExtractionStrategy:
    name: str
    extract: Callable[[str], str | None]


def _meta_content_url(html: str) -> str | None:
    tag = BeautifulSoup(html, "lxml").find("meta", attrs={"itemprop": "contentUrl"})
    if tag is None:
        return None
    content = tag.get("content")
    if not isinstance(content, str) or not content:
        return None
    # The parser already turned &amp; into &.
    return unquote(content)


def _direct_mp4(html: str) -> str | None:
    match = _DIRECT_MP4_RE.search(html)
    return match.group(1) if match else None


def _data_src(html: str) -> str | None:
    for match in _DATA_SRC_RE.finditer(html):
        candidate = match.group(1)
        if any(marker in candidate for marker in _IMAGE_MARKERS):
            continue
        return candidate
    return None


def _player_config(html: str) -> str | None:
    for pattern in _PLAYER_PATTERNS:
        match = pattern.search(html)
        if match and match.group(1):
            return match.group(1)
    return None


STRATEGIES: tuple[ExtractionStrategy, ...] = (
    ExtractionStrategy("meta-content-url", _meta_content_url),
    ExtractionStrategy("direct-mp4", _direct_mp4),
    ExtractionStrategy("data-src", _data_src),
    ExtractionStrategy("player-config", _player_config),
)


def extract_media_url(
    html: str,
    strategies: tuple[ExtractionStrategy, ...] = STRATEGIES,
) -> tuple[str, str] | None:
    """Return ``(strategy name, media URL)`` for the first strategy that matches."""
    for strategy in strategies:
        url = strategy.extract(html)
        if url:
            logger.debug("media url found by %s", strategy.name)
            return strategy.name, url
    return None
