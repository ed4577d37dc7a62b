"""Per-account session lifecycle: cache, validation, login, fallbacks."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from mediarelay.session.accounts import AccountStore, email_from_account_id
from mediarelay.session.browser import LoginDriver
from mediarelay.session.credits import DEFAULT_LABEL, fetch_credits
from mediarelay.shared.enums import CookieSource
from mediarelay.shared.exceptions import AuthenticationError
from mediarelay.shared.models import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LoginResult:
    """Outcome of a credential login. Never raised, always returned."""

    success: bool
    cookies: str | None = None
    error: str | None = None


class SessionManager:
    """Owns authenticated cookie state for every account.

    ``get_cookies`` resolution order:

    1. in-memory session, if unexpired *and* still accepted by the origin;
    2. fresh login with the stored credentials file;
    3. the last cookie file written to disk.
    """

    def __init__(
        self,
        *,
        accounts: AccountStore,
        driver: LoginDriver,
        validate_url: str,
        valid_markers: tuple[str, ...],
        ttl_seconds: int = 30 * 24 * 60 * 60,
        user_agent: str = "Mozilla/5.0",
        timeout: int = 10,
        clock: Callable[[], float] = time.time,
        credits_url: str | None = None,
        credits_label: str = DEFAULT_LABEL,
    ) -> None:
        self._accounts = accounts
        self._driver = driver
        self._validate_url = validate_url
        self._valid_markers = valid_markers
        self._ttl = ttl_seconds
        self._user_agent = user_agent
        self._timeout = timeout
        self._clock = clock
        self._credits_url = credits_url
        self._credits_label = credits_label
        self._cache: dict[str, Session] = {}

    def cached(self, account_id: str) -> Session | None:
        return self._cache.get(account_id)

    def clear_cache(self) -> None:
        self._cache.clear()

    def save_credentials(self, email: str, password: str) -> None:
        self._accounts.save_credentials(email, password)

    async def get_cookies(self, account_id: str) -> str:
        cookies, _source = await self.resolve_cookies(account_id)
        return cookies

    async def resolve_cookies(self, account_id: str) -> tuple[str, CookieSource]:
        """Return a cookie header and where it came from.

        Raises:
            AuthenticationError: If cache, login and cookie file all fail.
        """
        cached = self._cache.get(account_id)
        if cached is not None and not cached.is_expired(self._clock()):
            if await self.is_session_valid(cached.cookies):
                return cached.cookies, CookieSource.CACHE
            logger.info("cached session for %s rejected by origin", cached.email)
            self._cache.pop(account_id, None)

        email = email_from_account_id(account_id)
        credentials = self._accounts.read_credentials(email)
        if credentials is not None:
            result = await self.login(credentials.email, credentials.password, account_id=account_id)
            if result.success and result.cookies:
                return result.cookies, CookieSource.REFRESHED
            logger.warning("credential login failed for %s, falling back to cookie file", email)

        cookies = self._accounts.read_cookies(email)
        if cookies:
            return cookies, CookieSource.FILE

        raise AuthenticationError(f"no cookies available for {account_id}")

    async def validate(self, account_id: str) -> bool:
        """Check whether the account currently has an accepted session."""
        cached = self._cache.get(account_id)
        if cached is None:
            cookies = self._accounts.read_cookies(email_from_account_id(account_id))
            return bool(cookies) and await self.is_session_valid(cookies or "")

        if cached.is_expired(self._clock()):
            logger.info("session expired for %s", cached.email)
            self._cache.pop(account_id, None)
            return False

        valid = await self.is_session_valid(cached.cookies)
        if not valid:
            self._cache.pop(account_id, None)
        return valid

    async def is_session_valid(self, cookies: str) -> bool:
        """Fetch the profile page; only authenticated pages contain a marker."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                resp = await client.get(
                    self._validate_url,
                    headers={"User-Agent": self._user_agent, "Cookie": cookies},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.debug("session validation request failed: %s", exc)
            return False
        return any(marker in resp.text for marker in self._valid_markers)

    async def login(self, email: str, password: str, *, account_id: str | None = None) -> LoginResult:
        """Log in through the browser driver and persist the result."""
        try:
            cookies = await self._driver.login(email, password)
        except Exception as exc:
            logger.error("login error for %s: %s", email, exc)
            return LoginResult(success=False, error=f"login error: {exc}")

        if not cookies:
            return LoginResult(success=False, error="login failed")

        try:
            self._accounts.save_credentials(email, password)
            self._accounts.write_cookies(email, cookies)
        except OSError as exc:
            logger.error("could not persist session for %s: %s", email, exc)
            return LoginResult(success=False, error=f"could not persist session: {exc}")
        key = account_id or email
        self._cache[key] = Session(
            account_id=key,
            email=email,
            cookies=cookies,
            expires_at=self._clock() + self._ttl,
        )
        return LoginResult(success=True, cookies=cookies)

    async def refresh(self, account_id: str) -> str:
        """Force a new login with the stored credentials.

        Raises:
            AuthenticationError: If no credentials exist or the login fails.
        """
        cached = self._cache.get(account_id)
        email = cached.email if cached is not None else email_from_account_id(account_id)
        credentials = self._accounts.read_credentials(email)
        if credentials is None:
            raise AuthenticationError(f"no credentials found for {email}")

        result = await self.login(credentials.email, credentials.password, account_id=account_id)
        if not result.success or not result.cookies:
            raise AuthenticationError(f"refresh failed for {email}: {result.error}")
        return result.cookies

    async def get_credits(self, account_id: str) -> int | None:
        """Point balance for the account, using cached or on-disk cookies only."""
        if self._credits_url is None:
            return None
        cached = self._cache.get(account_id)
        if cached is not None and not cached.is_expired(self._clock()):
            cookies: str | None = cached.cookies
        else:
            cookies = self._accounts.read_cookies(email_from_account_id(account_id))
        if not cookies:
            return None
        return await fetch_credits(
            cookies,
            url=self._credits_url,
            label=self._credits_label,
            user_agent=self._user_agent,
            timeout=self._timeout,
        )
