"""Unit-side message loop over stdin/stdout.

A unit is started by the host as ``python -m mediarelay.<component>.unit``.
The host writes a ``start`` message (the task payload) to stdin, then RPC
results and possibly a ``terminate`` message. The unit writes events and RPC
calls to stdout, one JSON object per line. Logging goes to stderr.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, Protocol

from pydantic import ValidationError

from mediarelay.rpc.bridge import RpcBridge
from mediarelay.shared.events import StartMessage, TerminateMessage, encode_message, parse_message

logger = logging.getLogger(__name__)

# Discovery results can be large; lines are not limited to asyncio's 64 KiB default.
STREAM_LIMIT = 16 * 1024 * 1024


class MessageChannel(Protocol):
    """Bidirectional message transport used by a unit."""

    async def send(self, message: Any) -> None: ...

    async def receive(self) -> Any | None: ...


class StdioChannel:
    """Newline-delimited JSON over the process' stdin/stdout."""

    def __init__(self, reader: asyncio.StreamReader) -> None:
        self._reader = reader
        self._out = sys.stdout.buffer

    @classmethod
    async def open(cls) -> StdioChannel:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=STREAM_LIMIT)
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        return cls(reader)

    async def send(self, message: Any) -> None:
        self._out.write(encode_message(message))
        self._out.flush()

    async def receive(self) -> Any | None:
        """Return the next valid message, or None at EOF."""
        while True:
            line = await self._reader.readline()
            if not line:
                return None
            if not line.strip():
                continue
            try:
                return parse_message(line)
            except (ValidationError, ValueError) as exc:
                logger.warning("ignoring malformed host message: %s", exc)


class UnitContext:
    """What a unit task gets to talk to the host."""

    def __init__(self, channel: MessageChannel, bridge: RpcBridge) -> None:
        self._channel = channel
        self.bridge = bridge

    async def emit(self, event: Any) -> None:
        await self._channel.send(event)

    async def call(self, channel: str, args: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        return await self.bridge.call(channel, args, timeout=timeout)


UnitMain = Callable[[dict[str, Any], UnitContext], Awaitable[None]]


async def _pump(channel: MessageChannel, bridge: RpcBridge, task: asyncio.Task[None]) -> None:
    while True:
        message = await channel.receive()
        if message is None:
            logger.info("host closed stdin, stopping unit")
            task.cancel()
            return
        if isinstance(message, TerminateMessage):
            logger.info("terminate requested by host")
            task.cancel()
            return
        if not bridge.dispatch(message):
            logger.warning("unexpected %s message from host", getattr(message, "type", "?"))


async def serve_unit(main: UnitMain, *, channel: MessageChannel | None = None, rpc_timeout: float = 30.0) -> int:
    """Wait for the start payload, run ``main`` and return a process exit code."""
    channel = channel or await StdioChannel.open()
    bridge = RpcBridge(channel.send, timeout=rpc_timeout)

    start = await channel.receive()
    if not isinstance(start, StartMessage):
        logger.error("expected start message, got %r", start)
        return 2

    task = asyncio.create_task(main(start.payload, UnitContext(channel, bridge)))
    pump = asyncio.create_task(_pump(channel, bridge, task))
    try:
        await task
        return 0
    except asyncio.CancelledError:
        logger.info("unit task cancelled")
        return 0
    finally:
        pump.cancel()
        bridge.close("unit shutting down")


def run_unit(main: UnitMain, *, rpc_timeout: float = 30.0) -> None:
    """Process entry point shared by all ``*.unit`` modules."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    sys.exit(asyncio.run(serve_unit(main, rpc_timeout=rpc_timeout)))
