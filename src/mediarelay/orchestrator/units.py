"""Host-side management of isolated execution units (OS subprocesses)."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, Protocol

from pydantic import ValidationError

from mediarelay.rpc.bridge import Handler, RpcBridge
from mediarelay.rpc.channel import STREAM_LIMIT
from mediarelay.shared.enums import UnitKind
from mediarelay.shared.events import CompleteEvent, StartMessage, TerminateMessage, encode_message, parse_message
from mediarelay.shared.exceptions import UnitError

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None]]

UNIT_MODULES: dict[UnitKind, str] = {
    UnitKind.DISCOVER: "mediarelay.discovery.unit",
    UnitKind.DOWNLOAD: "mediarelay.download.unit",
    UnitKind.UPLOAD: "mediarelay.upload.unit",
    UnitKind.SESSION: "mediarelay.session.unit",
    UnitKind.MY_VIDEOS: "mediarelay.discovery.uploaded_unit",
}


class UnitHandle(Protocol):
    """What the orchestrator needs from a running unit."""

    kind: UnitKind

    async def start(self, payload: dict[str, Any]) -> None: ...

    async def wait(self) -> CompleteEvent | None: ...

    async def terminate(self) -> None: ...


class UnitProcess:
    """One unit subprocess speaking newline-delimited JSON on stdin/stdout.

    Engine events go to ``on_event``, RPC envelopes to the bridge. Calls from
    the unit are served by ``handlers``. Unit stderr is re-logged under
    ``mediarelay.unit.<kind>``.
    """

    def __init__(
        self,
        kind: UnitKind,
        *,
        on_event: EventHandler | None = None,
        handlers: dict[str, Handler] | None = None,
        rpc_timeout: float = 30.0,
        grace_seconds: float = 1.0,
        command: list[str] | None = None,
    ) -> None:
        self.kind = kind
        self._on_event = on_event
        self._grace = grace_seconds
        self._command = command or [sys.executable, "-m", UNIT_MODULES[kind]]
        self._proc: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task[None]] = []
        self._result: CompleteEvent | None = None
        self._unit_log = logging.getLogger(f"mediarelay.unit.{kind.value}")
        self.bridge = RpcBridge(self._send, timeout=rpc_timeout)
        for channel, handler in (handlers or {}).items():
            self.bridge.register(channel, handler)

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc is not None else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def result(self) -> CompleteEvent | None:
        return self._result

    async def start(self, payload: dict[str, Any]) -> None:
        if self._proc is not None:
            raise UnitError(f"{self.kind.value} unit already started")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as exc:
            raise UnitError(f"failed to spawn {self.kind.value} unit: {exc}") from exc

        logger.info("%s unit started (pid=%d)", self.kind.value, self._proc.pid)
        self._readers = [
            asyncio.create_task(self._read_stdout()),
            asyncio.create_task(self._read_stderr()),
        ]
        await self._send(StartMessage(payload=payload))

    async def call(self, channel: str, args: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        if not self.running:
            raise UnitError(f"{self.kind.value} unit is not running")
        return await self.bridge.call(channel, args, timeout=timeout)

    async def _send(self, message: Any) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise UnitError(f"{self.kind.value} unit has no stdin")
        try:
            self._proc.stdin.write(encode_message(message))
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise UnitError(f"{self.kind.value} unit closed its stdin") from exc

    def _pipe(self, name: str) -> asyncio.StreamReader:
        stream = getattr(self._proc, name, None)
        if stream is None:
            raise UnitError(f"{self.kind.value} unit has no {name} pipe")
        return stream

    async def _read_stdout(self) -> None:
        stdout = self._pipe("stdout")
        while True:
            line = await stdout.readline()
            if not line:
                return
            if not line.strip():
                continue
            try:
                message = parse_message(line)
            except (ValidationError, ValueError) as exc:
                logger.warning("%s unit sent malformed message: %s", self.kind.value, exc)
                continue
            if self.bridge.dispatch(message):
                continue
            if isinstance(message, CompleteEvent):
                self._result = message
            if self._on_event is not None:
                try:
                    await self._on_event(message)
                except Exception:
                    logger.exception("event handler failed for %s unit", self.kind.value)

    async def _read_stderr(self) -> None:
        stderr = self._pipe("stderr")
        while True:
            line = await stderr.readline()
            if not line:
                return
            text = line.decode(errors="replace").rstrip()
            if text:
                self._unit_log.info("%s", text)

    async def wait(self) -> CompleteEvent | None:
        """Wait for the unit to exit and return its final complete event, if any."""
        if self._proc is None:
            raise UnitError(f"{self.kind.value} unit was never started")
        returncode = await self._proc.wait()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self.bridge.close(f"{self.kind.value} unit exited")
        if returncode != 0:
            logger.warning("%s unit exited with code %d", self.kind.value, returncode)
        return self._result

    async def terminate(self) -> None:
        """Ask the unit to stop; kill it if it outlives the grace period."""
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            await self._send(TerminateMessage())
        except UnitError as exc:
            logger.debug("terminate not delivered: %s", exc)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._grace)
        except asyncio.TimeoutError:
            logger.warning("%s unit ignored terminate, killing pid %d", self.kind.value, proc.pid)
            proc.kill()
            await proc.wait()
        for task in self._readers:
            task.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self.bridge.close(f"{self.kind.value} unit terminated")
