"""Host-side proxy for the session unit's ``session:*`` channels."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from mediarelay.shared.enums import CookieSource
from mediarelay.shared.exceptions import AuthenticationError, RpcError

logger = logging.getLogger(__name__)

Caller = Callable[..., Awaitable[Any]]


class SessionClient:
    """Typed wrapper around RPC calls into the session unit.

    ``call`` is the bridge's ``call`` bound to the session unit, so this
    class never touches the subprocess directly.
    """

    def __init__(self, call: Caller, *, timeout: float = 120.0) -> None:
        self._call = call
        self._timeout = timeout

    async def _request(self, channel: str, args: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await self._call(channel, args, timeout=self._timeout)
        except RpcError as exc:
            raise AuthenticationError(f"{channel} failed: {exc}") from exc
        if not isinstance(result, dict):
            raise AuthenticationError(f"{channel} returned {type(result).__name__}")
        return result

    async def get_cookies(self, account_id: str) -> tuple[str, CookieSource]:
        result = await self._request("session:get-cookies", {"accountId": account_id})
        cookies = result.get("cookies")
        if not cookies:
            raise AuthenticationError(f"no cookies for {account_id}")
        return cookies, CookieSource(result.get("source", CookieSource.FILE.value))

    async def validate(self, account_id: str) -> bool:
        result = await self._request("session:validate", {"accountId": account_id})
        return bool(result.get("valid"))

    async def login(self, email: str, password: str) -> tuple[bool, str | None]:
        """Returns ``(success, error)``."""
        result = await self._request("session:login", {"email": email, "password": password})
        return bool(result.get("success")), result.get("error")

    async def refresh(self, account_id: str) -> str:
        result = await self._request("session:refresh", {"accountId": account_id})
        return result["cookies"]

    async def save_credentials(self, email: str, password: str) -> None:
        await self._request("session:save-credentials", {"email": email, "password": password})

    async def clear_cache(self) -> None:
        await self._request("session:clear-cache", {})

    async def get_credits(self, account_id: str) -> int | None:
        result = await self._request("session:get-credits", {"accountId": account_id})
        credits = result.get("credits")
        return credits if isinstance(credits, int) else None
