"""Headless-browser login via Playwright.

The origin finishes its login with a JavaScript redirect, so a plain HTTP
form post never yields the authentication cookies.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from bs4 import BeautifulSoup
from playwright.async_api import Browser, async_playwright

logger = logging.getLogger(__name__)

EMAIL_SELECTOR = "#frm-login-loginForm-email"
PASSWORD_SELECTOR = "#frm-login-loginForm-password"
SUBMIT_SELECTOR = '#frm-login-loginForm button[type="submit"]'


@runtime_checkable
class LoginDriver(Protocol):
    """Protocol for credential-based login automation."""

    async def login(self, email: str, password: str) -> str | None:
        """Log in and return the harvested Cookie header, or None on failure."""
        ...


def visible_text(html: str) -> str:
    """Collapse rendered HTML to whitespace-normalized text."""
    text = BeautifulSoup(html, "lxml").get_text(" ")
    return " ".join(text.split())


class PlaywrightLoginDriver:
    """Drive the login form in headless Chromium and harvest cookies.

    Implements the ``LoginDriver`` protocol. The browser is closed on every
    path, including failures and exceptions.
    """

    def __init__(
        self,
        *,
        login_url: str,
        home_url: str,
        success_marker: str,
        required_cookies: tuple[str, ...],
        settle_seconds: float = 5.0,
        headless: bool = True,
    ) -> None:
        self._login_url = login_url
        self._home_url = home_url
        self._success_marker = success_marker
        self._required_cookies = required_cookies
        self._settle_ms = int(settle_seconds * 1000)
        self._headless = headless

    async def login(self, email: str, password: str) -> str | None:
        logger.info("logging in as %s (playwright)", email)
        async with async_playwright() as pw:
            browser = await pw.chromium.launch(
                headless=self._headless,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
            try:
                return await self._submit(browser, email, password)
            finally:
                await browser.close()

    async def _submit(self, browser: Browser, email: str, password: str) -> str | None:
        context = await browser.new_context()
        page = await context.new_page()

        await page.goto(self._login_url, wait_until="networkidle")
        await page.fill(EMAIL_SELECTOR, email)
        await page.fill(PASSWORD_SELECTOR, password)
        await page.click(SUBMIT_SELECTOR)
        await page.wait_for_timeout(self._settle_ms)

        if self._success_marker not in visible_text(await page.content()):
            logger.error("login failed for %s: no success message", email)
            return None

        # The home page visit establishes the long-lived session cookies.
        await page.goto(self._home_url, wait_until="networkidle")
        cookies = await context.cookies(self._home_url)

        names = {c.get("name") for c in cookies}
        missing = [name for name in self._required_cookies if name not in names]
        if missing:
            logger.error("login failed for %s: missing cookies %s", email, ", ".join(missing))
            return None

        logger.info("login successful for %s (%d cookies)", email, len(cookies))
        return "; ".join(f"{c['name']}={c['value']}" for c in cookies)
