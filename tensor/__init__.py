"""Tensor websocket client.

This module owns the streaming connection to Tensor:
- Connecting with the API key header and subscribing to each collection
- Keep-alive pings while the socket is open
- Reconnection with exponential backoff, without giving up
- Graceful shutdown that lets the frame in progress finish

A reader task turns socket activity into Opened, Frame, Closed and
TransportError events on a queue; one processing loop consumes them in order,
so a slow frame never hides a close from the reader.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from config import Collection, DEFAULT_COLLECTIONS
from .events import Closed, ConnectionEvent, Frame, Opened, TransportError
from .messages import (
    DecodedMessage,
    ErrorReport,
    KeepAliveAck,
    MessageDecodeError,
    TransactionEvent,
    Unrecognized,
    decode_message,
)

logger = logging.getLogger(__name__)

TENSOR_WS_URL = 'wss://api.mainnet.tensordev.io/ws'
API_KEY_HEADER = 'x-tensor-api-key'

PING_INTERVAL = 30  # seconds
RECONNECT_BASE_DELAY_MS = 1000
RECONNECT_MAX_DELAY_MS = 30000
SHUTDOWN_GRACE_PERIOD = 1.0  # seconds

PING_MESSAGE = {'event': 'ping', 'payload': {}}

TransactionHandler = Callable[[TransactionEvent], Awaitable[Any]]


class ConnectionState(Enum):
    """Websocket connection states."""
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    CLOSING = 'closing'


def reconnect_delay(
    attempts: int,
    base_ms: int = RECONNECT_BASE_DELAY_MS,
    cap_ms: int = RECONNECT_MAX_DELAY_MS
) -> int:
    """Delay before reconnect attempt number `attempts`, in milliseconds."""
    return min(base_ms * 2 ** attempts, cap_ms)


def subscription_messages(collections: Iterable[Collection]) -> List[Dict[str, Any]]:
    """Subscription requests for the collections, by id and by slug."""
    collections = tuple(collections)
    by_id = [
        {'event': 'newTransaction', 'payload': {'collId': collection.collection_id}}
        for collection in collections
    ]
    by_slug = [
        {'event': 'newTransaction', 'payload': {'slug': collection.slug}}
        for collection in collections
    ]
    return by_id + by_slug


class ConnectionManager:
    """Manage the Tensor websocket connection and feed transactions to a handler."""

    def __init__(
        self,
        api_key: str,
        handler: TransactionHandler,
        collections: Iterable[Collection] = DEFAULT_COLLECTIONS,
        url: str = TENSOR_WS_URL,
        ping_interval: float = PING_INTERVAL,
        base_delay_ms: int = RECONNECT_BASE_DELAY_MS,
        max_delay_ms: int = RECONNECT_MAX_DELAY_MS,
        connect: Callable[..., Awaitable[Any]] = websockets.connect
    ):
        """Initialize the connection manager.

        Args:
            api_key: Tensor API key, sent as a header on connect
            handler: Coroutine function called with each TransactionEvent
            collections: Collections to subscribe to
            url: Websocket URL
            ping_interval: Seconds between keep-alive pings
            base_delay_ms: Base reconnect delay
            max_delay_ms: Reconnect delay cap
            connect: Websocket connect function
        """
        self.api_key = api_key
        self.handler = handler
        self.collections = tuple(collections)
        self.url = url
        self.ping_interval = ping_interval
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._connect = connect

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self._websocket = None
        self._events: Optional[asyncio.Queue] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Future] = None
        self._stopping = asyncio.Event()

    @property
    def shutting_down(self) -> bool:
        return self._stopping.is_set()

    # State transitions

    def on_connecting(self) -> ConnectionState:
        """Disconnected -> Connecting."""
        self.state = ConnectionState.CONNECTING
        return self.state

    def on_opened(self) -> ConnectionState:
        """Connecting -> Connected. Resets the reconnect counter."""
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        return self.state

    def on_transport_error(self, error: BaseException) -> ConnectionState:
        """Log a transport error. The close event that follows decides the state."""
        logger.error(f"WebSocket error: {error}")
        return self.state

    def on_closed(self, code: Optional[int] = None, reason: str = '') -> ConnectionState:
        """Connecting/Connected -> Disconnected. Stops the keep-alive."""
        logger.info(f"WebSocket closed: {code} - {reason}")
        self._stop_keepalive()
        self._websocket = None
        if self.state != ConnectionState.CLOSING:
            self.state = ConnectionState.DISCONNECTED
        return self.state

    def schedule_reconnect(self) -> int:
        """Count a failed connection and return the delay before the next attempt, in ms."""
        self.reconnect_attempts += 1
        delay = reconnect_delay(self.reconnect_attempts, self.base_delay_ms, self.max_delay_ms)
        logger.info(
            f"Reconnecting in {delay / 1000:g} seconds (attempt {self.reconnect_attempts})..."
        )
        return delay

    def request_shutdown(self, signame: Optional[str] = None) -> ConnectionState:
        """Begin a graceful shutdown: stop taking frames and close the socket."""
        if self.shutting_down:
            return self.state

        logger.info(f"{signame or 'Shutdown'} received, shutting down gracefully...")
        self._stopping.set()
        self.state = ConnectionState.CLOSING
        self._stop_keepalive()

        if self._websocket is not None:
            self._close_task = asyncio.ensure_future(self._close_socket(self._websocket))
        if self._events is not None:
            self._events.put_nowait(Closed(None, 'shutdown'))
        return self.state

    # Connection lifecycle

    async def run(self) -> None:
        """Connect and process events until shutdown is requested."""
        while not self.shutting_down:
            await self._run_connection()
            if self.shutting_down:
                break

            delay = self.schedule_reconnect()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay / 1000)
            except asyncio.TimeoutError:
                pass

        self.state = ConnectionState.CLOSING
        logger.info("Connection manager stopped")

    async def serve(self, grace_period: float = SHUTDOWN_GRACE_PERIOD) -> None:
        """Run until shutdown, then allow up to grace_period seconds for in-flight work."""
        runner = asyncio.create_task(self.run())
        stopping = asyncio.create_task(self._stopping.wait())
        try:
            await asyncio.wait({runner, stopping}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopping.cancel()

        if not runner.done():
            try:
                await asyncio.wait_for(runner, timeout=grace_period)
            except asyncio.TimeoutError:
                logger.warning(f"In-flight work did not finish within {grace_period}s")

        if self._close_task is not None and not self._close_task.done():
            done, _ = await asyncio.wait({self._close_task}, timeout=grace_period)
            if not done:
                logger.warning(f"WebSocket close did not complete within {grace_period}s")

        if runner.done() and not runner.cancelled() and runner.exception():
            raise runner.exception()

    async def _run_connection(self) -> None:
        """One connection, from connect to close."""
        self.on_connecting()
        logger.info(f"Connecting to Tensor WebSocket (reconnect attempts: {self.reconnect_attempts})...")

        try:
            websocket = await self._connect(
                self.url,
                additional_headers={API_KEY_HEADER: self.api_key},
                ping_interval=None,  # Tensor expects application-level pings
            )
        except Exception as e:
            self.on_transport_error(e)
            self.on_closed(None, f"connect failed: {e}")
            return

        self._websocket = websocket
        self._events = asyncio.Queue()
        if self.shutting_down:
            # Shutdown arrived during the handshake
            await self._close_socket(websocket)
            return

        reader = asyncio.create_task(self._read_frames(websocket, self._events))
        try:
            await self._process_events(websocket, self._events)
        finally:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
            if self._close_task is not None:
                # wait() leaves the close running if this task is cancelled
                await asyncio.wait({self._close_task})
            self._stop_keepalive()
            self._events = None
            self._websocket = None

    async def _read_frames(self, websocket, events: asyncio.Queue) -> None:
        """Turn socket activity into events. Runs alongside frame processing."""
        events.put_nowait(Opened())
        try:
            async for message in websocket:
                events.put_nowait(Frame(message))
        except Exception as e:
            # ConnectionClosedError on abnormal closure, anything else from the transport
            events.put_nowait(TransportError(e))
        finally:
            code = getattr(websocket, 'close_code', None)
            reason = getattr(websocket, 'close_reason', None) or ''
            # The close is acted on here, not after the frame in progress
            self._stop_keepalive()
            events.put_nowait(Closed(code, reason))

    async def _process_events(self, websocket, events: asyncio.Queue) -> None:
        while True:
            event: ConnectionEvent = await events.get()

            if isinstance(event, Opened):
                if self.shutting_down:
                    continue
                self.on_opened()
                logger.info("WebSocket connection opened")
                await self._subscribe(websocket)
                self._start_keepalive(websocket)

            elif isinstance(event, Frame):
                if self.shutting_down:
                    logger.debug("Shutting down, dropping frame")
                    continue
                await self.handle_frame(event.text)

            elif isinstance(event, TransportError):
                self.on_transport_error(event.error)

            elif isinstance(event, Closed):
                self.on_closed(event.code, event.reason)
                return

    async def _subscribe(self, websocket) -> None:
        logger.info("Subscribing to collections...")
        for message in subscription_messages(self.collections):
            logger.info(f"Sending: {json.dumps(message)}")
            try:
                await websocket.send(json.dumps(message))
            except ConnectionClosed as e:
                # Reader reports the close
                logger.warning(f"Connection closed while subscribing: {e}")
                return
        logger.info("Waiting for events...")

    # Frames

    async def handle_frame(self, raw) -> Optional[DecodedMessage]:
        """Decode one frame and act on it. Errors never escape."""
        if not raw:
            return None

        try:
            message = decode_message(raw)
        except MessageDecodeError as e:
            logger.error(f"Failed to parse message: {e.raw}")
            return None

        if isinstance(message, KeepAliveAck):
            logger.debug("pong received (connection alive)")
        elif isinstance(message, ErrorReport):
            logger.error(f"Tensor returned an error: {message.message}")
        elif isinstance(message, TransactionEvent):
            try:
                await self.handler(message)
            except Exception as e:
                logger.error(f"Error handling transaction {message.tx_id}: {e}", exc_info=True)
        elif isinstance(message, Unrecognized):
            logger.debug(f"Ignoring message: {message.payload}")

        return message

    # Keep-alive

    def _start_keepalive(self, websocket) -> None:
        self._stop_keepalive()
        self._keepalive_task = asyncio.create_task(self._keepalive(websocket))

    def _stop_keepalive(self) -> None:
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None

    async def _keepalive(self, websocket) -> None:
        ping = json.dumps(PING_MESSAGE)
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await websocket.send(ping)
            except ConnectionClosed:
                return
            except (OSError, WebSocketException) as e:
                logger.warning(f"Keep-alive ping failed: {e}")
                return

    async def _close_socket(self, websocket) -> None:
        try:
            await websocket.close()
        except (OSError, WebSocketException) as e:
            logger.warning(f"Error closing websocket: {e}")


__all__ = [
    'ConnectionManager',
    'ConnectionState',
    'TENSOR_WS_URL',
    'reconnect_delay',
    'subscription_messages',
]
