"""Tests for host-side wiring in the worker."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from mediarelay.config import Settings
from mediarelay.download.metadata import MetadataResolver
from mediarelay.orchestrator.units import UnitProcess
from mediarelay.orchestrator.worker import (
    _flag_value,
    _pick_account,
    extract_metadata_handler,
    list_uploaded_videos,
    login_with_stored_credentials,
    make_unit_factory,
    with_credits,
)
from mediarelay.session.accounts import AccountStore
from mediarelay.orchestrator import worker
from mediarelay.shared.enums import CookieSource, UnitKind
from mediarelay.shared.events import CompleteEvent
from mediarelay.shared.exceptions import AuthenticationError, DiscoveryError
from mediarelay.shared.models import Account, MediaMetadata, UploadedVideo


class TestExtractMetadataHandler:
    async def test_forwards_arguments(self) -> None:
        resolver = MagicMock(spec=MetadataResolver)
        resolver.resolve = AsyncMock(return_value=MediaMetadata(media_url="https://cdn/x.mp4", size=9))
        handle = extract_metadata_handler(resolver)

        result = await handle({"url": "https://prehrajto.cz/a/1f", "cookies": "sid=1", "sizeHint": 5, "hqProcessing": False})

        assert result.size == 9
        resolver.resolve.assert_awaited_once_with("https://prehrajto.cz/a/1f", "sid=1", size_hint=5, hq_processing=False)

    async def test_requires_url(self) -> None:
        handle = extract_metadata_handler(MagicMock(spec=MetadataResolver))
        with pytest.raises(ValueError, match="missing argument: url"):
            await handle({"cookies": "sid=1"})


class TestCliHelpers:
    def test_flag_value(self) -> None:
        assert _flag_value(["--discover", "5", "--once"], "--discover") == "5"
        assert _flag_value(["--once"], "--discover") is None
        with pytest.raises(SystemExit):
            _flag_value(["--discover"], "--discover")

    def test_pick_account(self) -> None:
        accounts = [
            Account(id="a@x", email="a@x"),
            Account(id="b@x", email="b@x", has_credentials=True),
            Account(id="c@x", email="c@x", cookie_file="/data/login_c@x.dat"),
        ]
        assert _pick_account(accounts, None).email == "b@x"
        assert _pick_account(accounts, "c@x").email == "c@x"
        assert _pick_account(accounts, "a@x") is None


def test_unit_factory_builds_processes(settings: Settings) -> None:
    create = make_unit_factory(settings, {})
    unit = create(UnitKind.DOWNLOAD, AsyncMock())
    assert isinstance(unit, UnitProcess)
    assert unit.kind == UnitKind.DOWNLOAD


class TestLoginWithStoredCredentials:
    async def test_missing_credentials(self, settings: Settings) -> None:
        session = MagicMock()
        session.login = AsyncMock()
        assert await login_with_stored_credentials(settings, session, "a@x") is False
        session.login.assert_not_awaited()

    async def test_login(self, settings: Settings) -> None:
        AccountStore(settings.data_dir).save_credentials("a@x", "pw")
        session = MagicMock()
        session.login = AsyncMock(return_value=(True, None))

        assert await login_with_stored_credentials(settings, session, "a@x") is True
        session.login.assert_awaited_once_with("a@x", "pw")


class TestWithCredits:
    async def test_fills_balances(self) -> None:
        session = MagicMock()
        session.get_credits = AsyncMock(side_effect=[1234, AuthenticationError("session:get-credits failed")])
        accounts = [Account(id="a@x", email="a@x"), Account(id="b@x", email="b@x")]

        listed = await with_credits(session, accounts)

        assert [a.credits for a in listed] == [1234, None]
        assert accounts[0].credits is None


class FakeListingUnit:
    result: CompleteEvent | None = None

    def __init__(self, kind: UnitKind, **kwargs) -> None:
        self.kind = kind
        self.payload: dict | None = None
        FakeListingUnit.instance = self

    async def start(self, payload: dict) -> None:
        self.payload = payload

    async def wait(self) -> CompleteEvent | None:
        return FakeListingUnit.result

    async def terminate(self) -> None:
        pass


class TestListUploadedVideos:
    @pytest.fixture()
    def session(self) -> MagicMock:
        session = MagicMock()
        session.get_cookies = AsyncMock(return_value=("sid=1", CookieSource.FILE))
        return session

    async def test_returns_listing(self, settings: Settings, session: MagicMock, monkeypatch) -> None:
        video = UploadedVideo(id="1", title="A", url="https://prehrajto.cz/a/ff")
        FakeListingUnit.result = CompleteEvent(success=True, videos=[video], page=2, has_more=False)
        monkeypatch.setattr(worker, "UnitProcess", FakeListingUnit)

        listing = await list_uploaded_videos(settings, session, Account(id="a@x", email="a@x"), 2)

        assert listing.videos == [video]
        assert FakeListingUnit.instance.kind == UnitKind.MY_VIDEOS
        assert FakeListingUnit.instance.payload == {"cookies": "sid=1", "page": 2}

    async def test_failure(self, settings: Settings, session: MagicMock, monkeypatch) -> None:
        FakeListingUnit.result = CompleteEvent(success=False, error="uploaded videos requested with unauthenticated cookies")
        monkeypatch.setattr(worker, "UnitProcess", FakeListingUnit)

        with pytest.raises(DiscoveryError, match="unauthenticated"):
            await list_uploaded_videos(settings, session, Account(id="a@x", email="a@x"), 1)
