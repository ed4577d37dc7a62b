"""Correlation-id request/response bridge between a unit and the host.

Both sides own one ``RpcBridge``. ``call()`` sends a ``CallEnvelope`` and
waits for the ``ResultEnvelope`` with the same correlation id; ``dispatch()``
is fed every incoming envelope and either settles a pending call or runs the
locally registered handler for the requested channel.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from mediarelay.shared.events import CallEnvelope, ResultEnvelope
from mediarelay.shared.exceptions import RpcError, RpcTimeoutError

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]
Sender = Callable[[Any], Awaitable[None]]


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


class RpcBridge:
    """Request table keyed by correlation id plus a channel → handler registry."""

    def __init__(
        self,
        send: Sender,
        *,
        timeout: float = 30.0,
        id_factory: Callable[[], str] = _new_correlation_id,
    ) -> None:
        self._send = send
        self._timeout = timeout
        self._id_factory = id_factory
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._handlers: dict[str, Handler] = {}
        self._handler_tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def register(self, channel: str, handler: Handler) -> None:
        self._handlers[channel] = handler

    async def call(self, channel: str, args: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        """Invoke ``channel`` on the other side and return its result.

        Raises:
            RpcTimeoutError: If no result arrives within the timeout.
            RpcError: If the remote handler failed or the bridge was closed.
        """
        correlation_id = self._id_factory()
        if correlation_id in self._pending:
            raise RpcError(f"correlation id already in flight: {correlation_id}")

        limit = self._timeout if timeout is None else timeout
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future
        logger.debug("rpc call %s (id=%s)", channel, correlation_id)
        try:
            await self._send(CallEnvelope(channel=channel, args=args or {}, correlation_id=correlation_id))
            return await asyncio.wait_for(future, timeout=limit)
        except asyncio.TimeoutError as exc:
            raise RpcTimeoutError(f"rpc {channel} timed out after {limit:g}s") from exc
        finally:
            self._pending.pop(correlation_id, None)

    def resolve(self, envelope: ResultEnvelope) -> bool:
        """Settle the pending call matching ``envelope``. Returns False for unknown ids."""
        future = self._pending.pop(envelope.correlation_id, None)
        if future is None or future.done():
            logger.debug("dropping result for unknown correlation id %s", envelope.correlation_id)
            return False
        if envelope.error is not None:
            future.set_exception(RpcError(envelope.error))
        else:
            future.set_result(envelope.result)
        return True

    async def handle_call(self, envelope: CallEnvelope) -> None:
        """Run the local handler for an incoming call and send back the result."""
        handler = self._handlers.get(envelope.channel)
        if handler is None:
            reply = ResultEnvelope(correlation_id=envelope.correlation_id, error=f"unknown channel: {envelope.channel}")
        else:
            try:
                value = await handler(envelope.args)
                if isinstance(value, BaseModel):
                    value = value.model_dump(mode="json", by_alias=True)
                reply = ResultEnvelope(correlation_id=envelope.correlation_id, result=value)
            except Exception as exc:
                logger.warning("rpc handler %s failed: %s", envelope.channel, exc)
                reply = ResultEnvelope(correlation_id=envelope.correlation_id, error=str(exc) or type(exc).__name__)
        await self._send(reply)

    def dispatch(self, message: Any) -> bool:
        """Route an incoming message. Returns False if it is not an RPC envelope."""
        if isinstance(message, ResultEnvelope):
            self.resolve(message)
            return True
        if isinstance(message, CallEnvelope):
            # Handlers run concurrently so a slow one never blocks the read loop.
            task = asyncio.create_task(self.handle_call(message))
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_tasks.discard)
            return True
        return False

    def close(self, reason: str = "rpc bridge closed") -> None:
        """Fail every pending call and cancel running handlers."""
        for future in self._pending.values():
            if not future.done():
                future.set_exception(RpcError(reason))
        self._pending.clear()
        for task in list(self._handler_tasks):
            task.cancel()
