"""Tests for browser login helpers."""

from __future__ import annotations

from mediarelay.session.browser import LoginDriver, PlaywrightLoginDriver, visible_text


def test_visible_text_collapses_markup() -> None:
    html = "<html><body><div>Přihlášení   proběhlo</div>\n<p>úspěšně</p><script></script></body></html>"
    assert "Přihlášení proběhlo úspěšně" in visible_text(html)


def test_playwright_driver_satisfies_protocol() -> None:
    driver = PlaywrightLoginDriver(
        login_url="https://prehrajto.cz/prihlaseni",
        home_url="https://prehrajto.cz/",
        success_marker="ok",
        required_cookies=("access_token",),
    )
    assert isinstance(driver, LoginDriver)
