"""Long-lived session unit.

Owns the session cache and headless-browser logins for every account. The
host reaches it through the ``session:*`` RPC channels only.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from mediarelay.config import Settings, get_settings, split_csv
from mediarelay.rpc.channel import UnitContext, run_unit
from mediarelay.session.accounts import AccountStore
from mediarelay.session.browser import PlaywrightLoginDriver
from mediarelay.session.manager import SessionManager
from mediarelay.shared.enums import VideoStatus
from mediarelay.shared.events import StatusEvent

logger = logging.getLogger(__name__)


def build_manager(settings: Settings) -> SessionManager:
    driver = PlaywrightLoginDriver(
        login_url=settings.absolute_url(settings.login_path),
        home_url=settings.absolute_url("/"),
        success_marker=settings.login_success_marker,
        required_cookies=tuple(split_csv(settings.session_required_cookies)),
        settle_seconds=settings.login_settle_seconds,
    )
    return SessionManager(
        accounts=AccountStore(settings.data_dir),
        driver=driver,
        validate_url=settings.absolute_url(settings.profile_path),
        valid_markers=tuple(split_csv(settings.session_valid_markers)),
        ttl_seconds=settings.session_ttl_seconds,
        user_agent=settings.user_agent,
        timeout=settings.session_validate_timeout,
        credits_url=settings.absolute_url(settings.credits_path),
        credits_label=settings.credits_label,
    )


def _require(args: dict[str, Any], *names: str) -> list[str]:
    values = []
    for name in names:
        value = args.get(name)
        if not isinstance(value, str) or not value:
            raise ValueError(f"missing argument: {name}")
        values.append(value)
    return values


def register_handlers(ctx: UnitContext, manager: SessionManager) -> None:
    """Expose the manager on the ``session:*`` channels."""

    async def get_cookies(args: dict[str, Any]) -> dict[str, Any]:
        (account_id,) = _require(args, "accountId")
        cookies, source = await manager.resolve_cookies(account_id)
        return {"cookies": cookies, "source": source.value}

    async def validate(args: dict[str, Any]) -> dict[str, Any]:
        (account_id,) = _require(args, "accountId")
        return {"valid": await manager.validate(account_id)}

    async def login(args: dict[str, Any]) -> dict[str, Any]:
        email, password = _require(args, "email", "password")
        result = await manager.login(email, password, account_id=args.get("accountId") or None)
        return {"success": result.success, "cookies": result.cookies, "error": result.error}

    async def refresh(args: dict[str, Any]) -> dict[str, Any]:
        (account_id,) = _require(args, "accountId")
        return {"cookies": await manager.refresh(account_id)}

    async def save_credentials(args: dict[str, Any]) -> dict[str, Any]:
        email, password = _require(args, "email", "password")
        manager.save_credentials(email, password)
        return {"success": True}

    async def clear_cache(args: dict[str, Any]) -> dict[str, Any]:
        manager.clear_cache()
        return {"success": True}

    async def get_credits(args: dict[str, Any]) -> dict[str, Any]:
        (account_id,) = _require(args, "accountId")
        return {"credits": await manager.get_credits(account_id)}

    ctx.bridge.register("session:get-cookies", get_cookies)
    ctx.bridge.register("session:validate", validate)
    ctx.bridge.register("session:login", login)
    ctx.bridge.register("session:refresh", refresh)
    ctx.bridge.register("session:save-credentials", save_credentials)
    ctx.bridge.register("session:clear-cache", clear_cache)
    ctx.bridge.register("session:get-credits", get_credits)


async def main(payload: dict[str, Any], ctx: UnitContext) -> None:
    settings = get_settings()
    register_handlers(ctx, build_manager(settings))
    await ctx.emit(StatusEvent(status=VideoStatus.STARTING.value, message="session unit ready"))
    logger.info("session unit serving (data_dir=%s)", settings.data_dir)
    # Serve until the host sends terminate or closes stdin.
    await asyncio.Event().wait()


if __name__ == "__main__":
    run_unit(main)
