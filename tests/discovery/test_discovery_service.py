"""Tests for paginated discovery."""

from __future__ import annotations

import pytest

from mediarelay.discovery.crawler import FetchedPage
from mediarelay.discovery.service import DiscoveryService
from mediarelay.shared.events import CompleteEvent, ProgressEvent, StatusEvent
from mediarelay.shared.exceptions import DiscoveryError


def _card(slug: str, video_hash: str) -> str:
    return (
        f'<div class="video-wrapper"><a href="/{slug}/{video_hash}">'
        f'<span class="video__tag--size">1 GB</span></a></div>'
    )


def _page(*cards: tuple[str, str]) -> str:
    return "<html><body>" + "".join(_card(s, h) for s, h in cards) + "</body></html>"


class FakeFetcher:
    """Serves canned HTML keyed by page number (``...page=N``)."""

    def __init__(self, pages: dict[str, str], *, login_for: set[str] = frozenset(), failing: set[str] = frozenset()):
        self.pages = pages
        self.login_for = login_for
        self.failing = failing
        self.requested: list[str] = []

    async def fetch(self, url: str) -> FetchedPage:
        self.requested.append(url)
        if url in self.failing:
            raise DiscoveryError(f"fetch failed for {url}: 503")
        if url in self.login_for:
            return FetchedPage(url="https://prehrajto.cz/prihlaseni", html='<form id="frm-login-loginForm">')
        return FetchedPage(url=url, html=self.pages.get(url, "<html></html>"))


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _service(fetcher: FakeFetcher, sleep: FakeSleep, **kwargs) -> DiscoveryService:
    return DiscoveryService(
        fetcher=fetcher,
        listing_urls=["https://prehrajto.cz/list"],
        page_param="page",
        pages_per_listing=kwargs.pop("pages_per_listing", 3),
        rate_limit=0.5,
        sleep=sleep,
        **kwargs,
    )


async def _collect(service: DiscoveryService, *args, **kwargs) -> list:
    return [event async for event in service.discover(*args, **kwargs)]


PAGE = "https://prehrajto.cz/list?page={}"


class TestDiscover:
    async def test_collects_unprocessed_candidates(self) -> None:
        fetcher = FakeFetcher(
            {
                PAGE.format(1): _page(("a", "01"), ("b", "02")),
                PAGE.format(2): _page(("b", "02"), ("c", "03")),
                PAGE.format(3): _page(("d", "04")),
            }
        )
        sleep = FakeSleep()

        events = await _collect(
            _service(fetcher, sleep), 10, ["https://prehrajto.cz/a/01"], video_id="discover-1"
        )

        assert isinstance(events[0], StatusEvent) and events[0].status == "discovering"
        complete = events[-1]
        assert isinstance(complete, CompleteEvent) and complete.success
        assert [c.url.rsplit("/", 2)[1] for c in complete.candidates] == ["b", "c", "d"]
        assert complete.video_id == "discover-1"
        # Rate limit before every request except the first.
        assert sleep.calls == [0.5, 0.5]

        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert [round(p.progress) for p in progress] == [33, 67, 100]
        assert [p.found for p in progress] == [1, 2, 3]

    async def test_stops_at_target(self) -> None:
        fetcher = FakeFetcher(
            {
                PAGE.format(1): _page(("a", "01"), ("b", "02"), ("c", "03")),
                PAGE.format(2): _page(("d", "04")),
            }
        )

        events = await _collect(_service(fetcher, FakeSleep()), 2)

        assert len(events[-1].candidates) == 2
        assert fetcher.requested == [PAGE.format(1)]

    async def test_stops_at_scan_buffer(self) -> None:
        processed = [f"https://prehrajto.cz/v{i}/0{i}" for i in range(6)]
        fetcher = FakeFetcher(
            {
                PAGE.format(1): _page(*[(f"v{i}", f"0{i}") for i in range(3)]),
                PAGE.format(2): _page(*[(f"v{i}", f"0{i}") for i in range(3, 6)]),
                PAGE.format(3): _page(("fresh", "ff")),
            }
        )

        events = await _collect(_service(fetcher, FakeSleep(), buffer_multiplier=3), 2, processed)

        assert events[-1].candidates == []
        assert PAGE.format(3) not in fetcher.requested

    async def test_login_and_failed_pages_are_skipped(self) -> None:
        fetcher = FakeFetcher(
            {PAGE.format(3): _page(("ok", "0a"))},
            login_for={PAGE.format(1)},
            failing={PAGE.format(2)},
        )

        events = await _collect(_service(fetcher, FakeSleep()), 5)

        assert [c.url for c in events[-1].candidates] == ["https://prehrajto.cz/ok/0a"]

    async def test_pages_cover_every_listing(self) -> None:
        service = DiscoveryService(
            fetcher=FakeFetcher({}),
            listing_urls=["https://x/a", "https://x/b?f=7days"],
            page_param="p",
            pages_per_listing=2,
        )
        assert service.page_urls() == ["https://x/a?p=1", "https://x/a?p=2", "https://x/b?f=7days&p=1", "https://x/b?f=7days&p=2"]

    def test_invalid_multiplier(self) -> None:
        with pytest.raises(ValueError):
            _service(FakeFetcher({}), FakeSleep(), buffer_multiplier=0)
