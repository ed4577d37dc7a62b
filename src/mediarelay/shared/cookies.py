"""Cookie codec.

We support three input forms, all normalized to one ``k=v; k2=v2`` header:
- Raw HTTP Cookie header strings (returned unchanged, minus Set-Cookie attributes).
- Set-Cookie style lines: ``name=value; Domain=...; Path=...`` (one per line).
- Netscape cookie files (7 tab-separated columns), as exported by browser plugins.

This module intentionally avoids logging cookie values.
"""

from __future__ import annotations

from pathlib import Path

_HTTPONLY_PREFIX = "#HttpOnly_"

_ATTRIBUTE_NAMES = frozenset({"path", "domain", "expires", "max-age", "secure", "httponly", "samesite"})


def _without_attributes(header: str) -> str:
    pairs = []
    for part in header.split(";"):
        pair = part.strip()
        name = pair.split("=", 1)[0].strip()
        if "=" in pair and name and name.lower() not in _ATTRIBUTE_NAMES:
            pairs.append(pair)
    return "; ".join(pairs)


def parse_cookie_file(content: str) -> str:
    """Parse cookie-file content into a single Cookie header string."""
    if not content:
        return ""

    # Single line: either a normalized header or one Set-Cookie line.
    stripped = content.strip()
    if ";" in stripped and "\n" not in stripped and "=" in stripped and "\t" not in stripped:
        return _without_attributes(stripped)

    cookies: dict[str, str] = {}
    for raw_line in stripped.splitlines():
        line = raw_line.strip()
        if line.startswith(_HTTPONLY_PREFIX):
            line = line[len(_HTTPONLY_PREFIX) :]
        elif not line or line.startswith("#"):
            continue

        # Netscape cookie format: domain\tflag\tpath\tsecure\texpiry\tname\tvalue
        parts = line.split("\t")
        if len(parts) >= 7:
            name = parts[5].strip()
            if name:
                cookies[name] = parts[6].strip()
            continue

        pair = line.split(";", 1)[0]
        if "=" not in pair:
            continue
        name, value = pair.split("=", 1)
        name = name.strip()
        if name:
            cookies[name] = value.strip()

    return "; ".join(f"{k}={v}" for k, v in cookies.items())


def parse_set_cookie_headers(headers: list[str]) -> str:
    """Collapse ``Set-Cookie`` header values into a Cookie header string."""
    pairs: list[str] = []
    for header in headers:
        pair = header.split(";", 1)[0].strip()
        if "=" in pair:
            pairs.append(pair)
    return "; ".join(pairs)


def cookie_header_to_dict(raw: str) -> dict[str, str]:
    """Parse a raw Cookie header into a dict."""
    cookies: dict[str, str] = {}
    for part in raw.replace("\n", ";").split(";"):
        pair = part.strip()
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        key = key.strip()
        if key:
            cookies[key] = value.strip()
    return cookies


def cookie_names(raw: str) -> set[str]:
    return set(cookie_header_to_dict(raw))


def load_cookie_file(path: Path) -> str:
    """Read a cookie file from disk and return the normalized header.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    return parse_cookie_file(path.read_text(encoding="utf-8"))


def write_cookie_file(path: Path, header: str) -> None:
    """Persist a cookie header as one ``name=value`` per line."""
    lines = [f"{k}={v}" for k, v in cookie_header_to_dict(header).items()]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
