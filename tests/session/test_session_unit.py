"""Tests for the session unit's RPC handlers."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from mediarelay.config import Settings
from mediarelay.rpc.bridge import RpcBridge
from mediarelay.session.manager import LoginResult, SessionManager
from mediarelay.session.unit import build_manager, register_handlers
from mediarelay.shared.enums import CookieSource
from mediarelay.shared.events import CallEnvelope, ResultEnvelope
from mediarelay.shared.exceptions import AuthenticationError


class FakeContext:
    def __init__(self) -> None:
        self.sent: list[Any] = []
        self.bridge = RpcBridge(self._send)

    async def _send(self, message: Any) -> None:
        self.sent.append(message)


@pytest.fixture()
def manager() -> MagicMock:
    mock = MagicMock(spec=SessionManager)
    mock.resolve_cookies = AsyncMock(return_value=("sid=1", CookieSource.CACHE))
    mock.validate = AsyncMock(return_value=True)
    mock.login = AsyncMock(return_value=LoginResult(success=False, error="login failed"))
    mock.refresh = AsyncMock(side_effect=AuthenticationError("no credentials found for x"))
    mock.get_credits = AsyncMock(return_value=1234)
    return mock


async def _call(ctx: FakeContext, channel: str, args: dict[str, Any]) -> ResultEnvelope:
    await ctx.bridge.handle_call(CallEnvelope(channel=channel, args=args, correlation_id="c1"))
    reply = ctx.sent[-1]
    assert isinstance(reply, ResultEnvelope)
    return reply


class TestHandlers:
    async def test_get_cookies(self, manager: MagicMock) -> None:
        ctx = FakeContext()
        register_handlers(ctx, manager)  # type: ignore[arg-type]

        reply = await _call(ctx, "session:get-cookies", {"accountId": "user@example.com"})

        assert reply.result == {"cookies": "sid=1", "source": "cache"}
        manager.resolve_cookies.assert_awaited_once_with("user@example.com")

    async def test_missing_argument(self, manager: MagicMock) -> None:
        ctx = FakeContext()
        register_handlers(ctx, manager)  # type: ignore[arg-type]

        reply = await _call(ctx, "session:validate", {})

        assert reply.error == "missing argument: accountId"

    async def test_login_failure_is_a_result(self, manager: MagicMock) -> None:
        ctx = FakeContext()
        register_handlers(ctx, manager)  # type: ignore[arg-type]

        reply = await _call(ctx, "session:login", {"email": "a@b.c", "password": "x"})

        assert reply.error is None
        assert reply.result == {"success": False, "cookies": None, "error": "login failed"}

    async def test_refresh_error_is_reported(self, manager: MagicMock) -> None:
        ctx = FakeContext()
        register_handlers(ctx, manager)  # type: ignore[arg-type]

        reply = await _call(ctx, "session:refresh", {"accountId": "x"})

        assert reply.error == "no credentials found for x"

    async def test_save_credentials_and_clear_cache(self, manager: MagicMock) -> None:
        ctx = FakeContext()
        register_handlers(ctx, manager)  # type: ignore[arg-type]

        assert (await _call(ctx, "session:save-credentials", {"email": "a@b.c", "password": "x"})).result == {
            "success": True
        }
        assert (await _call(ctx, "session:clear-cache", {})).result == {"success": True}
        manager.save_credentials.assert_called_once_with("a@b.c", "x")
        manager.clear_cache.assert_called_once_with()

    async def test_get_credits(self, manager: MagicMock) -> None:
        ctx = FakeContext()
        register_handlers(ctx, manager)  # type: ignore[arg-type]

        reply = await _call(ctx, "session:get-credits", {"accountId": "user@example.com"})

        assert reply.result == {"credits": 1234}
        manager.get_credits.assert_awaited_once_with("user@example.com")


def test_build_manager(settings: Settings) -> None:
    assert isinstance(build_manager(settings), SessionManager)
