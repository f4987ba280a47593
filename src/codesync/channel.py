"""Real-time channel transport to the relay server."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging as py_logging
from collections.abc import Callable
from typing import Any, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from codesync.errors import CodeSyncError, ExitCode

logger = py_logging.getLogger(__name__)

EventHandler = Callable[[str, Any], None]


class Channel(Protocol):
    @property
    def connected(self) -> bool: ...

    async def open(self, on_event: EventHandler) -> None: ...

    def emit(self, event: str, data: object) -> None: ...

    async def close(self) -> None: ...


def encode_frame(event: str, data: object) -> str:
    return json.dumps({"event": event, "data": data}, ensure_ascii=False, separators=(",", ":"))


def decode_frame(raw: str | bytes) -> tuple[str, Any] | None:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(frame, dict):
        return None
    event = frame.get("event")
    if not isinstance(event, str) or not event:
        return None
    return event, frame.get("data")


class WebSocketChannel:
    """JSON-over-WebSocket channel.

    Outbound frames go through a queue drained by one writer task, so a single
    publisher's events reach the relay in emit order. ``close`` drains frames that
    were emitted before it was called.
    """

    def __init__(self, url: str, *, open_timeout: float = 10.0, close_timeout: float = 5.0) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self._connection: ClientConnection | None = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []
        self._writer: asyncio.Task[None] | None = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def open(self, on_event: EventHandler) -> None:
        try:
            self._connection = await connect(self.url, open_timeout=self.open_timeout)
        except (OSError, asyncio.TimeoutError, InvalidHandshake, InvalidURI) as exc:
            raise CodeSyncError(
                f"Could not connect to relay server at {self.url}.",
                code=ExitCode.CHANNEL_ERROR,
                hint=str(exc) or "Check that the relay server is running.",
            ) from exc
        self._connected = True
        logger.info("Connected to relay server url=%s", self.url)
        self._writer = asyncio.create_task(self._write(self._connection))
        self._tasks = [
            asyncio.create_task(self._read(self._connection, on_event)),
            self._writer,
        ]

    def emit(self, event: str, data: object) -> None:
        if not self._connected:
            logger.debug("Dropping outbound event on closed channel event=%s", event)
            return
        self._outbox.put_nowait(encode_frame(event, data))

    async def close(self) -> None:
        self._connected = False
        await self._flush()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        self._writer = None
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Disconnected from relay server url=%s", self.url)

    async def _read(self, connection: ClientConnection, on_event: EventHandler) -> None:
        try:
            async for raw in connection:
                frame = decode_frame(raw)
                if frame is None:
                    logger.debug("Skipping malformed frame from relay")
                    continue
                event, data = frame
                try:
                    on_event(event, data)
                except Exception:
                    logger.exception("Inbound handler failed event=%s", event)
        except ConnectionClosed as exc:
            logger.warning("Relay connection closed: %s", exc)
        finally:
            self._connected = False

    async def _flush(self) -> None:
        # Frames emitted before close still go out; nothing new is accepted.
        writer = self._writer
        if writer is None or writer.done():
            return
        try:
            await asyncio.wait_for(self._outbox.join(), timeout=self.close_timeout)
        except asyncio.TimeoutError:
            logger.warning("Outbound events still queued at close count=%s", self._outbox.qsize())

    async def _write(self, connection: ClientConnection) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await connection.send(frame)
            except ConnectionClosed:
                self._connected = False
                logger.warning("Relay connection closed while sending; outbound events dropped")
                return
            finally:
                self._outbox.task_done()
