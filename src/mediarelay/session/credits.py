"""Point balance scraped from the account's commission page."""

from __future__ import annotations

import logging

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "Aktuální stav vašich bodů"


def parse_credits(html: str, label: str = DEFAULT_LABEL) -> int | None:
    """Find the ``label`` row of the commission table and return its number."""
    soup = BeautifulSoup(html, "lxml")
    for table in soup.find_all("table", class_="table"):
        for row in table.find_all("tr"):
            cells = [td.get_text(strip=True) for td in row.find_all("td")]
            if len(cells) >= 2 and cells[0] == label:
                return int(cells[1]) if cells[1].isdigit() else None
    return None


async def fetch_credits(
    cookies: str,
    *,
    url: str,
    label: str = DEFAULT_LABEL,
    user_agent: str = "Mozilla/5.0",
    timeout: int = 10,
) -> int | None:
    """GET the commission page with ``cookies``; None when the balance is unavailable."""
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            resp = await client.get(url, headers={"User-Agent": user_agent, "Cookie": cookies})
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("credits request failed: %s", exc)
        return None
    credits = parse_credits(resp.text, label)
    if credits is None:
        logger.info("no credit balance on %s", url)
    return credits
