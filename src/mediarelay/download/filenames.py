"""Output file naming for downloaded items."""

from __future__ import annotations

import re
import time

MAX_FILENAME_LENGTH = 100

_SIZE_PREFIX_RE = re.compile(r"^\[\s*[\d.,]+\s*(GB|MB)\s*\]\s*-\s*", re.IGNORECASE)
_UNSAFE_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def generate_filename(title: str | None, *, now: float | None = None) -> str:
    """``"[  2.76 GB  ] - Some title"`` → ``"Some_title.mp4"``."""
    if title:
        clean = _SIZE_PREFIX_RE.sub("", title.replace("_", " "))
        clean = _UNSAFE_RE.sub("", clean)
        clean = "_".join(clean.split())[:MAX_FILENAME_LENGTH]
        if clean:
            return f"{clean}.mp4"
    millis = int((now if now is not None else time.time()) * 1000)
    return f"video_{millis}.mp4"
