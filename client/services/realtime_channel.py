"""
RealtimeChannel - one WebSocket connection delivering ordered JSON events.

Two tasks per channel:
- reader: receives frames, parses them into RealtimeEvent, enqueues them
- dispatcher: drains the queue in order and calls the handlers

Lifecycle callbacks (open/close/error) travel through the same queue as
messages, so a handler never sees a message after the close that ended it.

Handlers may be plain functions or coroutine functions. A handler that
raises is logged and the channel keeps going.

Usage:
    channel = RealtimeChannel()
    await channel.connect(settings.ws_url, ChannelHandlers(on_message=handle))
    await channel.send(RealtimeEvent.build(EventType.ADMIN_AUTH, token=token))
    ...
    await channel.close()
"""
import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

import aiohttp

from models.domain.realtime_event import MalformedEventError, RealtimeEvent

logger = logging.getLogger(__name__)

_OPEN = 'open'
_MESSAGE = 'message'
_CLOSE = 'close'
_ERROR = 'error'


@dataclass
class ChannelHandlers:
    on_message: Optional[Callable[[RealtimeEvent], Any]] = None
    on_open: Optional[Callable[[], Any]] = None
    on_close: Optional[Callable[[], Any]] = None
    on_error: Optional[Callable[[BaseException], Any]] = None


class RealtimeChannel:
    """
    WebSocket channel on aiohttp.

    Reconnect is off by default (`reconnect_attempts=0`); with attempts > 0
    the reader waits `reconnect_delay` seconds between tries and `on_open`
    fires again on every successful reconnect.
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        reconnect_attempts: int = 0,
        reconnect_delay: float = 3.0,
        heartbeat: Optional[float] = None,
    ):
        self.session = session
        self._owns_session = session is None
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.heartbeat = heartbeat

        self.url: Optional[str] = None
        self.handlers = ChannelHandlers()

        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._queue: Optional[asyncio.Queue] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._connected = False
        self._closing = False

        # Metrics
        self.events_received = 0
        self.frames_dropped = 0
        self.handler_failures = 0

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def _ensure_session(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self._owns_session = True

    # =========================================================================
    # Connect / close
    # =========================================================================

    async def connect(self, url: str, handlers: Optional[ChannelHandlers] = None) -> bool:
        """
        Open the socket and start delivering events.

        Returns True if the first attempt connected. A failed first attempt
        is reported through `on_error` (and retried if reconnect is enabled);
        it never raises.
        """
        if self._dispatch_task is not None and not self._dispatch_task.done():
            raise RuntimeError("Channel is already connected; close() it first")

        self.url = url
        self.handlers = handlers or ChannelHandlers()
        self._closing = False
        self._queue = asyncio.Queue()

        await self._ensure_session()
        self._dispatch_task = asyncio.ensure_future(self._dispatch_loop())

        connected = await self._open_socket()
        if connected or self.reconnect_attempts > 0:
            self._reader_task = asyncio.ensure_future(self._run(connected))
        return connected

    async def close(self):
        """
        Stop reading, drop undelivered events, close the socket.

        `on_close` fires here if the connection was still up. Safe to call
        more than once, and from inside a handler.
        """
        self._closing = True

        current = asyncio.current_task()
        for task in (self._reader_task, self._dispatch_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reader_task = None
        if self._dispatch_task is not current:
            self._dispatch_task = None

        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None

        # Undelivered events are dropped, but a queued close still counts
        deliver_close = self._connected
        while self._queue is not None and not self._queue.empty():
            kind, _ = self._queue.get_nowait()
            if kind == _CLOSE:
                deliver_close = True
        self._connected = False
        if deliver_close:
            await self._invoke(_CLOSE, None)

        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()
            self.session = None

        logger.info(
            f"Channel closed. Events: {self.events_received}, "
            f"dropped frames: {self.frames_dropped}, handler failures: {self.handler_failures}"
        )

    # =========================================================================
    # Send
    # =========================================================================

    async def send(self, message: Union[RealtimeEvent, dict, str]) -> bool:
        """
        Serialise and send one envelope. Returns False (and logs) instead of
        raising when the channel is not open or the write fails.
        """
        try:
            if isinstance(message, RealtimeEvent):
                raw = message.to_json()
            elif isinstance(message, str):
                raw = message
            else:
                raw = json.dumps(message, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping unserialisable message: {e}")
            return False

        if not self.is_open:
            logger.debug(f"Channel not open; dropping outgoing message {raw[:80]}")
            return False

        try:
            await self._ws.send_str(raw)
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
            logger.warning(f"Send failed: {e}")
            return False
        return True

    # =========================================================================
    # Reader side
    # =========================================================================

    async def _open_socket(self) -> bool:
        try:
            self._ws = await self.session.ws_connect(self.url, heartbeat=self.heartbeat)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"WebSocket connect to {self.url} failed: {e}")
            self._ws = None
            self._enqueue(_ERROR, e)
            return False

        logger.info(f"WebSocket connected: {self.url}")
        self._connected = True
        self._enqueue(_OPEN, None)
        return True

    async def _run(self, connected: bool):
        """Reader loop: read until the socket ends, then maybe reconnect"""
        attempts_left = self.reconnect_attempts

        while True:
            if connected:
                attempts_left = self.reconnect_attempts
                await self._read_frames()
                self._ws = None
                self._connected = False
                self._enqueue(_CLOSE, None)

            if self._closing or attempts_left <= 0:
                break

            attempts_left -= 1
            logger.info(
                f"Reconnecting to {self.url} in {self.reconnect_delay}s "
                f"({attempts_left} attempts left after this one)"
            )
            await asyncio.sleep(self.reconnect_delay)
            if self._closing:
                break
            connected = await self._open_socket()

        logger.debug("Reader stopped")

    async def _read_frames(self):
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._handle_frame(msg.data.decode('utf-8', errors='replace'))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception()
                    logger.warning(f"WebSocket error: {error}")
                    self._enqueue(_ERROR, error)
                    break
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"WebSocket read failed: {e}")
            self._enqueue(_ERROR, e)
        finally:
            if not ws.closed:
                await ws.close()

        logger.info(f"WebSocket disconnected: {self.url} (code={ws.close_code})")

    def _handle_frame(self, raw: str):
        try:
            event = RealtimeEvent.from_json(raw)
        except MalformedEventError as e:
            self.frames_dropped += 1
            logger.warning(f"Dropping malformed frame: {e}")
            return
        self.events_received += 1
        self._enqueue(_MESSAGE, event)

    def _enqueue(self, kind: str, value: Any):
        self._queue.put_nowait((kind, value))

    # =========================================================================
    # Dispatch side
    # =========================================================================

    async def _dispatch_loop(self):
        while not self._closing:
            item: Tuple[str, Any] = await self._queue.get()
            kind, value = item
            try:
                await self._invoke(kind, value)
            finally:
                self._queue.task_done()

    async def _invoke(self, kind: str, value: Any):
        handler = getattr(self.handlers, f"on_{kind}", None)
        if handler is None:
            return
        try:
            result = handler() if kind in (_OPEN, _CLOSE) else handler(value)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.handler_failures += 1
            logger.error(f"Realtime {kind} handler failed: {e}", exc_info=True)
