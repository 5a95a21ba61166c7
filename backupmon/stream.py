from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import aiohttp
from pydantic import ValidationError

from .events import MESSAGE_EVENTS, EventBus, Listener, ListenerHandle, StreamEvent
from .exceptions import ProtocolError, TransportError
from .models import BackupConfiguration, ConnectionState
from .util.time import now_ms
from .wire import BackupConfigurationPayload, Envelope

logger = logging.getLogger("backupmon.stream")


class EventStreamClient:
    """Push channel of one dashboard session.

    Holds a single WebSocket to the backup service, re-dispatches inbound
    envelopes to listeners by type, and reconnects at a fixed interval a
    bounded number of times after an established connection drops. A failed
    initial connect() does not start the reconnect loop.
    """

    def __init__(
        self,
        url: str,
        client_id: str = "web-client",
        *,
        session: aiohttp.ClientSession | None = None,
        reconnect_interval: float = 3.0,
        max_reconnect_attempts: int = 5,
        heartbeat: float | None = None,
    ):
        self._url = url
        self.client_id = client_id
        self._session = session
        self._owns_session = session is None
        self._reconnect_interval = reconnect_interval
        self._max_reconnect_attempts = max_reconnect_attempts
        self._heartbeat = heartbeat

        self._state = ConnectionState()
        self._bus = EventBus()
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def state(self) -> ConnectionState:
        """Snapshot of connection state."""
        return ConnectionState(
            connected=self._state.connected,
            reconnect_attempts=self._state.reconnect_attempts,
        )

    @property
    def max_reconnect_attempts(self) -> int:
        return self._max_reconnect_attempts

    def on(self, event: str | StreamEvent, callback: Listener) -> ListenerHandle:
        """Register a listener."""
        return self._bus.on(event, callback)

    def off(self, event: str | StreamEvent, callback: Listener) -> bool:
        """Remove a listener."""
        return self._bus.off(event, callback)

    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> bool:
        """Open the connection; True once open, False if it could not be opened."""
        if self._closed:
            logger.warning("connect() called on a disconnected stream client")
            return False
        if self.is_connected():
            return True

        try:
            ws = await self._open()
        except TransportError as e:
            logger.error(str(e))
            self._bus.emit(StreamEvent.error, {"error": "WebSocket connection error"})
            return False

        if self._closed:
            await ws.close()
            return False

        self._ws = ws
        self._state.connected = True
        self._state.reconnect_attempts = 0
        logger.info(f"Connected to {self._url} as {self.client_id}")
        self._bus.emit(StreamEvent.connection, {"connected": True})
        self._reader = asyncio.create_task(self._read_loop(ws), name=f"stream-{self.client_id}")
        return True

    async def _open(self) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        try:
            return await self._session.ws_connect(
                self._url,
                params={"clientId": self.client_id},
                heartbeat=self._heartbeat,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(f"Could not connect to {self._url}: {e!r}") from e

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Receive until the socket closes, then hand over to reconnection."""
        try:
            while True:
                msg = await ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    logger.warning("Dropping binary frame")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()!r}")
                    break
                else:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Stream reader error: {e}")

        if self._closed or self._ws is not ws:
            return

        self._ws = None
        self._state.connected = False
        with contextlib.suppress(Exception):
            await ws.close()
        logger.warning(f"Disconnected from {self._url}")
        self._bus.emit(StreamEvent.connection, {"connected": False})
        self._schedule_reconnect()

    def _handle_text(self, raw: str) -> None:
        try:
            envelope = _decode(raw)
            event = MESSAGE_EVENTS.get(envelope.type)
            if event is None:
                raise ProtocolError(f"Unrecognized message type: {envelope.type}")
        except ProtocolError as e:
            logger.warning(f"Dropping inbound message: {e}")
            return

        logger.debug(f"Received {envelope.type}")
        self._bus.emit(event, envelope.data)

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(
            self._reconnect_loop(), name=f"stream-reconnect-{self.client_id}"
        )

    async def _reconnect_loop(self) -> None:
        """Fixed-interval, bounded retry. Stops on success or when attempts run out."""
        while not self._closed:
            if self._state.reconnect_attempts >= self._max_reconnect_attempts:
                logger.error(
                    f"Maximum reconnect attempts reached ({self._max_reconnect_attempts})"
                )
                self._bus.emit(
                    StreamEvent.max_reconnect_attempts_reached,
                    {"attempts": self._state.reconnect_attempts},
                )
                return

            self._state.reconnect_attempts += 1
            logger.info(
                f"Reconnecting in {self._reconnect_interval}s "
                f"({self._state.reconnect_attempts}/{self._max_reconnect_attempts})"
            )
            await asyncio.sleep(self._reconnect_interval)
            if await self.connect():
                return

    async def send_message(self, type: str, data: Any = None) -> bool:
        """Send an envelope. Returns False (never raises) when not connected."""
        ws = self._ws
        if ws is None or ws.closed:
            logger.warning(f"WebSocket not connected, dropping {type}")
            return False

        envelope = Envelope(type=type, data=data if data is not None else {}, timestamp=now_ms())
        try:
            await ws.send_str(envelope.model_dump_json())
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.warning(f"Failed to send {type}: {e!r}")
            return False
        return True

    async def save_configuration(self, config: BackupConfiguration) -> bool:
        payload = BackupConfigurationPayload.from_model(config)
        return await self.send_message(
            "SAVE_CONFIGURATION", payload.model_dump(mode="json", by_alias=True)
        )

    async def get_configuration(self) -> bool:
        return await self.send_message("GET_CONFIGURATION")

    async def start_backup(self) -> bool:
        return await self.send_message("START_BACKUP")

    async def get_job_status(self) -> bool:
        return await self.send_message("GET_JOB_STATUS")

    async def test_ssh_connection(self) -> bool:
        return await self.send_message("TEST_SSH_CONNECTION")

    async def disconnect(self) -> None:
        """Close the connection and drop all listeners. Safe to call repeatedly."""
        first = not self._closed
        self._closed = True

        await _cancel(self._reconnect_task)
        self._reconnect_task = None

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            with contextlib.suppress(Exception):
                await ws.close()

        await _cancel(self._reader)
        self._reader = None

        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

        self._state.connected = False
        self._bus.clear()
        if first:
            logger.info(f"Stream client {self.client_id} disconnected")


def _decode(raw: str) -> Envelope:
    try:
        return Envelope.model_validate_json(raw)
    except ValidationError as e:
        raise ProtocolError(f"Malformed envelope: {e.error_count()} error(s)") from e


async def _cancel(task: asyncio.Task[Any] | None) -> None:
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
