"""Listing-page parsing via BeautifulSoup.

Each video card (``div.video-wrapper``) is parsed on its own so that the
link, size tag and thumbnail always come from the same card.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from mediarelay.shared.models import Candidate, UploadedVideo

logger = logging.getLogger(__name__)

_DETAIL_HREF_RE = re.compile(r"^/([^/]+)/([a-f0-9]+)$")
_SIZE_RE = re.compile(r"^([\d.]+)\s*([GMK]B)$", re.IGNORECASE)
_THUMB_HOST = "thumb.prehrajto.cz"
_SIZE_CLASS = "video__tag--size"

# First path segments that look like detail links but are not videos.
SKIPPED_SEGMENTS = frozenset({"video", "profil", "genre", "category"})

_LOGIN_PATHS = ("/prihlaseni", "/registrace")
_UNIT_BYTES = {"GB": 1024**3, "MB": 1024**2, "KB": 1024}


def parse_size_to_bytes(text: str | None) -> int | None:
    """``"2.76 GB"`` → bytes (binary units). None if unparseable."""
    if not text:
        return None
    match = _SIZE_RE.match(text.strip())
    if match is None:
        return None
    try:
        value = float(match.group(1))
    except ValueError:
        return None
    return round(value * _UNIT_BYTES[match.group(2).upper()])


def format_size_prefix(text: str) -> str:
    """Render a listing size as GB centred in 11 characters, e.g. ``"  2.76 GB  "``.

    Unparseable input is returned unchanged.
    """
    size = parse_size_to_bytes(text)
    if size is None:
        return text
    formatted = f"{size / 1024**3:.2f} GB"
    return formatted.ljust(9).rjust(11)


def normalize_title(slug: str) -> str:
    """``"some-video-name"`` → ``"Some video name"``."""
    title = " ".join(slug.replace("-", " ").split())
    return title[:1].upper() + title[1:]


def is_login_page(url: str, html: str) -> bool:
    """True when the origin answered a listing request with its login form."""
    if not any(path in url for path in _LOGIN_PATHS):
        return False
    return "frm-login-loginForm" in html or 'type="password"' in html


def _card_link(card: Tag) -> tuple[str, str] | None:
    anchors = card.find_all("a", href=True)
    parent = card.find_parent("a", href=True)
    if parent is not None:
        anchors.append(parent)
    for anchor in anchors:
        href = anchor.get("href")
        if not isinstance(href, str):
            continue
        match = _DETAIL_HREF_RE.match(href)
        if match:
            return match.group(1), href
    return None


def _card_thumbnail(card: Tag) -> str | None:
    for img in card.find_all("img"):
        for attr in ("src", "data-src"):
            src = img.get(attr)
            if isinstance(src, str) and _THUMB_HOST in src:
                return f"https:{src}" if src.startswith("//") else src
    return None


def _card_size(card: Tag) -> str | None:
    tag = card.find(class_=_SIZE_CLASS)
    if tag is None:
        return None
    text = tag.get_text(strip=True)
    return text or None


def parse_listing(html: str, base_url: str) -> list[Candidate]:
    """Extract unique candidates from one listing page, in page order."""
    soup = BeautifulSoup(html, "lxml")
    found: dict[str, Candidate] = {}
    cards = soup.find_all(class_="video-wrapper")

    for card in cards:
        link = _card_link(card)
        if link is None:
            continue
        slug, href = link
        if slug in SKIPPED_SEGMENTS:
            continue
        url = urljoin(base_url, href)
        if url in found:
            continue

        title = normalize_title(slug)
        size_text = _card_size(card)
        if size_text:
            title = f"[{format_size_prefix(size_text)}] - {title}"

        found[url] = Candidate(
            url=url,
            title=title,
            thumbnail=_card_thumbnail(card),
            size=parse_size_to_bytes(size_text),
        )

    logger.debug("parsed %d candidates from %d cards", len(found), len(cards))
    return list(found.values())


# ── Uploaded-videos listing (``/profil/nahrana-videa``) ──────────

_UPLOADED_ITEM_RE = re.compile(r"^snippet-uploadedVideoListing-video-(\d+)$")
_UPLOADED_TITLE_RE = re.compile(r"^snippet-uploadedVideoListing-videoName-\d+$")
_DOWNLOADS_LABEL_RE = re.compile(r"Počet stažení")
_DOWNLOADS_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)\s*$")


def _int_text(tag: Tag | None) -> int:
    if tag is None:
        return 0
    text = tag.get_text(strip=True)
    return int(text) if text.isdigit() else 0


def _uploaded_downloads(item: Tag) -> tuple[int, int]:
    label = item.find(string=_DOWNLOADS_LABEL_RE)
    if label is None:
        return 0, 0
    counts = label.find_next(string=_DOWNLOADS_RE)
    if counts is None or not any(parent is item for parent in counts.parents):
        return 0, 0
    match = _DOWNLOADS_RE.match(counts)
    return (int(match.group(1)), int(match.group(2))) if match else (0, 0)


def _uploaded_size(item: Tag) -> int | None:
    for strong in item.find_all("strong"):
        size = parse_size_to_bytes(strong.get_text(strip=True))
        if size is not None:
            return size
    return None


def _uploaded_item(item: Tag, video_id: str, base_url: str) -> UploadedVideo:
    heading = item.find("h3", id=_UPLOADED_TITLE_RE)
    title = heading.get_text(strip=True) if heading is not None else ""
    link = _card_link(item)
    premium, total = _uploaded_downloads(item)
    return UploadedVideo(
        id=video_id,
        title=title or "Unknown",
        url=urljoin(base_url, link[1] if link else f"/video/{video_id}"),
        thumbnail=_card_thumbnail(item),
        size=_uploaded_size(item),
        downloads_premium=premium,
        downloads_total=total,
        likes=_int_text(item.select_one(".color-green strong")),
        dislikes=_int_text(item.select_one(".color-primary strong")),
    )


def parse_uploaded_videos(html: str, base_url: str, *, limit: int = 20) -> list[UploadedVideo]:
    """Extract the account's own uploads from one page of its profile listing."""
    soup = BeautifulSoup(html, "lxml")
    videos: dict[str, UploadedVideo] = {}
    for item in soup.find_all(id=_UPLOADED_ITEM_RE):
        match = _UPLOADED_ITEM_RE.match(item["id"])
        if match is None or match.group(1) in videos:
            continue
        videos[match.group(1)] = _uploaded_item(item, match.group(1), base_url)
        if len(videos) >= limit:
            break
    return list(videos.values())


def has_uploaded_videos(html: str) -> bool:
    return BeautifulSoup(html, "lxml").find(id=_UPLOADED_ITEM_RE) is not None
