"""
Reconnecting websocket client for the room server.

Keeps one logical connection alive across transport drops. Reconnect
attempts back off exponentially up to a fixed ceiling and never give up;
`disconnect()` is the only way to stop them. Outbound messages are never
buffered: `send()` returns False while the transport is down.

Usage:
    client = ReconnectingClient("ws://localhost:3001/ws")
    client.add_message_handler(print)
    await client.connect()
    await client.send({"type": "join_room", "room_code": "ABC123"})
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Callable, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

INITIAL_RECONNECT_DELAY = 1.0
MAX_RECONNECT_DELAY = 5.0
RECONNECT_MULTIPLIER = 1.5

MessageHandler = Callable[[dict], Any]
StatusHandler = Callable[[bool], Any]


class Backoff:
    """Delay sequence: initial, initial*multiplier, ... capped at maximum."""

    def __init__(
        self,
        initial: float = INITIAL_RECONNECT_DELAY,
        maximum: float = MAX_RECONNECT_DELAY,
        multiplier: float = RECONNECT_MULTIPLIER,
    ):
        self.initial = initial
        self.maximum = maximum
        self.multiplier = multiplier
        self.delay = initial

    def increase(self) -> float:
        self.delay = min(self.delay * self.multiplier, self.maximum)
        return self.delay

    def reset(self) -> None:
        self.delay = self.initial


class ReconnectingClient:
    def __init__(
        self,
        url: str,
        backoff: Optional[Backoff] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.backoff = backoff or Backoff()
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closed = False
        self._message_handlers: List[MessageHandler] = []
        self._status_handlers: List[StatusHandler] = []

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    # --- Handler registration ---

    def add_message_handler(self, handler: MessageHandler) -> None:
        if handler not in self._message_handlers:
            self._message_handlers.append(handler)

    def remove_message_handler(self, handler: MessageHandler) -> None:
        if handler in self._message_handlers:
            self._message_handlers.remove(handler)

    def add_status_handler(self, handler: StatusHandler) -> None:
        if handler not in self._status_handlers:
            self._status_handlers.append(handler)

    def remove_status_handler(self, handler: StatusHandler) -> None:
        if handler in self._status_handlers:
            self._status_handlers.remove(handler)

    # --- Connection lifecycle ---

    async def connect(self) -> aiohttp.ClientWebSocketResponse:
        """Open the transport; on failure a reconnect is scheduled and the error re-raised."""
        self._closed = False
        try:
            return await self._open()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.error("Failed to connect WebSocket: %s", exc)
            self._schedule_reconnect()
            raise

    async def _open(self) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        ws = await self._session.ws_connect(self.url)
        self._ws = ws
        self.backoff.reset()
        logger.info("WebSocket connected to %s", self.url)
        self._reader = asyncio.create_task(self._read(ws))
        await self._notify_status(True)
        return ws

    async def _read(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error("WebSocket error: %s", ws.exception())
                    break
        finally:
            if self._ws is ws:
                self._ws = None
            if not self._closed:
                logger.info("WebSocket disconnected")
                await self._notify_status(False)
                self._schedule_reconnect()

    async def _dispatch(self, data: str) -> None:
        if data == "pong":
            return
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON message: %r", data)
            return
        if isinstance(message, dict) and message.get("type") == "ping":
            await self.send({"type": "pong"})
            return
        for handler in list(self._message_handlers):
            await self._call(handler, message)

    async def _notify_status(self, connected: bool) -> None:
        for handler in list(self._status_handlers):
            await self._call(handler, connected)

    async def _call(self, handler, arg) -> None:
        try:
            result = handler(arg)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Handler %r failed", handler)

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
        delay = self.backoff.delay
        logger.info("Attempting to reconnect in %.1fs...", delay)
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(delay, self._start_reconnect)

    def _start_reconnect(self) -> None:
        self._reconnect_timer = None
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        if self._closed or self.is_connected:
            return
        try:
            await self._open()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.warning("Reconnect failed: %s", exc)
            self.backoff.increase()
            self._schedule_reconnect()

    async def send(self, message: dict) -> bool:
        if not self.is_connected:
            return False
        try:
            await self._ws.send_str(json.dumps(message))
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as exc:
            logger.warning("Send failed: %s", exc)
            return False
        return True

    async def disconnect(self) -> None:
        """Tear down for good: close the socket and stop reconnecting."""
        self._closed = True
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
            self._reconnect_task = None

        ws, self._ws = self._ws, None
        was_connected = ws is not None and not ws.closed
        if ws is not None:
            await ws.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        if was_connected:
            await self._notify_status(False)
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
