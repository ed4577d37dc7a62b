"""Host process: session unit, queue orchestrator and the ``mediarelay`` CLI.

Usage::

    mediarelay [--account EMAIL] [--discover N] [--once]
    mediarelay --login EMAIL
    mediarelay --accounts
    mediarelay [--account EMAIL] --my-videos PAGE
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

from mediarelay.config import Settings, get_settings
from mediarelay.download.metadata import EXTRACT_METADATA_CHANNEL, MetadataResolver
from mediarelay.orchestrator.queue import QueueOrchestrator, UnitFactory
from mediarelay.orchestrator.units import EventHandler, UnitProcess
from mediarelay.rpc.bridge import Handler
from mediarelay.session.accounts import AccountStore
from mediarelay.session.client import SessionClient
from mediarelay.shared.enums import UnitKind
from mediarelay.shared.events import CompleteEvent, ErrorEvent, StatusEvent
from mediarelay.shared.exceptions import AuthenticationError, DiscoveryError
from mediarelay.shared.models import Account, Candidate, Video
from mediarelay.shared.store import ProcessedUrlStore, QueueStore, create_redis

logger = logging.getLogger(__name__)

_IDLE_SLEEP_SECONDS = 5


def extract_metadata_handler(resolver: MetadataResolver) -> Handler:
    """Serve ``download:extract-metadata`` calls from download units."""

    async def handle(args: dict[str, Any]) -> Any:
        url = args.get("url")
        if not isinstance(url, str) or not url:
            raise ValueError("missing argument: url")
        hq = args.get("hqProcessing")
        return await resolver.resolve(
            url,
            args.get("cookies") or "",
            size_hint=args.get("sizeHint") or None,
            hq_processing=None if hq is None else bool(hq),
        )

    return handle


async def log_event(event: Any) -> None:
    if isinstance(event, ErrorEvent):
        logger.error("unit error: %s", event.error)
    elif isinstance(event, StatusEvent):
        logger.info("status %s%s", event.status, f": {event.message}" if event.message else "")
    elif isinstance(event, CompleteEvent) and not event.success:
        logger.warning("unit finished without success: %s", event.error)


def make_unit_factory(settings: Settings, handlers: dict[str, Handler]) -> UnitFactory:
    def create(kind: UnitKind, on_event: EventHandler) -> UnitProcess:
        async def forward(event: Any) -> None:
            await log_event(event)
            await on_event(event)

        return UnitProcess(
            kind,
            on_event=forward,
            handlers=handlers,
            rpc_timeout=settings.rpc_timeout,
            grace_seconds=settings.unit_grace_seconds,
        )

    return create


async def discover(
    settings: Settings,
    session: SessionClient,
    account: Account,
    count: int,
    processed_urls: set[str],
) -> list[Candidate]:
    """Run one discovery unit and return its candidates.

    Raises:
        DiscoveryError: If the unit fails or exits without a result.
    """
    cookies, source = await session.get_cookies(account.id)
    logger.info("discovering %d candidate(s) for %s (cookies from %s)", count, account.email, source.value)
    unit = UnitProcess(UnitKind.DISCOVER, on_event=log_event, grace_seconds=settings.unit_grace_seconds)
    try:
        await unit.start({"cookies": cookies, "count": count, "processedUrls": sorted(processed_urls)})
        result = await unit.wait()
    except asyncio.CancelledError:
        await unit.terminate()
        raise
    if result is None or not result.success:
        raise DiscoveryError(result.error if result is not None else "discovery unit exited without a result")
    return list(result.candidates or [])


async def with_credits(session: SessionClient, accounts: list[Account]) -> list[Account]:
    """Copy of ``accounts`` with each point balance filled in where available."""
    result = []
    for account in accounts:
        try:
            credits = await session.get_credits(account.id)
        except AuthenticationError as exc:
            logger.warning("credits unavailable for %s: %s", account.email, exc)
            credits = None
        result.append(account.model_copy(update={"credits": credits}))
    return result


async def list_uploaded_videos(
    settings: Settings,
    session: SessionClient,
    account: Account,
    page: int,
) -> CompleteEvent:
    """Run one uploaded-videos unit for ``page`` and return its final event.

    Raises:
        DiscoveryError: If the unit fails or exits without a result.
    """
    cookies, _source = await session.get_cookies(account.id)
    unit = UnitProcess(UnitKind.MY_VIDEOS, on_event=log_event, grace_seconds=settings.unit_grace_seconds)
    try:
        await unit.start({"cookies": cookies, "page": page})
        result = await unit.wait()
    except asyncio.CancelledError:
        await unit.terminate()
        raise
    if result is None or not result.success:
        raise DiscoveryError(result.error if result is not None else "uploaded videos unit exited without a result")
    return result


def _flag_value(argv: list[str], flag: str) -> str | None:
    if flag not in argv:
        return None
    index = argv.index(flag)
    if index + 1 >= len(argv):
        raise SystemExit(f"{flag} requires a value")
    return argv[index + 1]


def _pick_account(accounts: list[Account], email: str | None) -> Account | None:
    usable = [a for a in accounts if a.is_active and (a.cookie_file or a.has_credentials)]
    if email is not None:
        return next((a for a in usable if a.email == email), None)
    return usable[0] if usable else None


async def login_with_stored_credentials(settings: Settings, session: SessionClient, email: str) -> bool:
    credentials = AccountStore(settings.data_dir).read_credentials(email)
    if credentials is None:
        logger.error("no credentials file for %s", email)
        return False
    ok, error = await session.login(credentials.email, credentials.password)
    if ok:
        logger.info("login succeeded for %s", email)
    else:
        logger.error("login failed for %s: %s", email, error)
    return ok


async def run(settings: Settings, argv: list[str]) -> int:
    redis = await create_redis(settings)
    session_unit = UnitProcess(
        UnitKind.SESSION,
        on_event=log_event,
        rpc_timeout=settings.session_call_timeout,
        grace_seconds=settings.unit_grace_seconds,
    )
    await session_unit.start({})
    session = SessionClient(session_unit.call, timeout=settings.session_call_timeout)

    try:
        login_email = _flag_value(argv, "--login")
        if login_email is not None:
            return 0 if await login_with_stored_credentials(settings, session, login_email) else 1

        accounts = AccountStore(settings.data_dir).list_accounts()
        if "--accounts" in argv:
            for listed in await with_credits(session, accounts):
                logger.info(
                    "%s cookies=%s credentials=%s credits=%s",
                    listed.email,
                    "yes" if listed.cookie_file else "no",
                    "yes" if listed.has_credentials else "no",
                    "n/a" if listed.credits is None else listed.credits,
                )
            return 0

        account = _pick_account(accounts, _flag_value(argv, "--account"))
        if account is None:
            logger.error("no usable account in %s", settings.data_dir)
            return 1

        my_videos_page = _flag_value(argv, "--my-videos")
        if my_videos_page is not None:
            try:
                listing = await list_uploaded_videos(settings, session, account, int(my_videos_page))
            except (DiscoveryError, AuthenticationError) as exc:
                logger.error("uploaded videos listing failed: %s", exc)
                return 1
            for video in listing.videos or []:
                logger.info("%s | %s | views=%d | %s", video.id, video.title, video.views, video.url)
            logger.info("page %s: %d video(s), more=%s", listing.page, len(listing.videos or []), listing.has_more)
            return 0

        processed = ProcessedUrlStore(redis, settings.processed_urls_key)
        resolver = MetadataResolver(
            user_agent=settings.user_agent,
            timeout=settings.metadata_timeout,
            hq_processing=settings.hq_processing,
        )
        handlers = {EXTRACT_METADATA_CHANNEL: extract_metadata_handler(resolver)}

        async def cookies_for(account_id: str) -> str:
            cookies, _source = await session.get_cookies(account_id)
            return cookies

        orchestrator = QueueOrchestrator(
            unit_factory=make_unit_factory(settings, handlers),
            cookies=cookies_for,
            output_dir=settings.video_dir,
            store=QueueStore(redis, settings.queue_state_key),
            processed=processed,
            download_options={
                "mode": settings.download_mode,
                "hqProcessing": settings.hq_processing,
                "addWatermark": settings.add_watermark,
            },
        )
        await orchestrator.load()

        discover_count = _flag_value(argv, "--discover")
        if discover_count is not None:
            try:
                candidates = await discover(settings, session, account, int(discover_count), await processed.all())
            except (DiscoveryError, AuthenticationError) as exc:
                logger.error("discovery failed: %s", exc)
                return 1
            for candidate in candidates:
                video = Video(title=candidate.title, url=candidate.url, thumbnail=candidate.thumbnail, size=candidate.size)
                await orchestrator.add(video, account.id)
            logger.info("queued %d discovered item(s)", len(candidates))

        if "--once" in argv:
            done = await orchestrator.run_until_idle()
            logger.info("processed %d item(s): %s", done, orchestrator.counts())
            return 0

        logger.info("mediarelay worker started (account=%s)", account.email)
        while True:
            done = await orchestrator.run_until_idle()
            if done:
                logger.info("queue idle after %d item(s): %s", done, orchestrator.counts())
            await asyncio.sleep(_IDLE_SLEEP_SECONDS)
    finally:
        await session_unit.terminate()
        await redis.aclose()


def main() -> None:
    """Entry point for the ``mediarelay`` console script."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = get_settings()
    sys.exit(asyncio.run(run(settings, sys.argv[1:])))


if __name__ == "__main__":
    main()
