"""WebSocket connection manager for the session client."""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed as WebSocketClosed
from websockets.exceptions import InvalidHandshake, InvalidMessage
from websockets.protocol import State

from client.errors import ConnectFailed, ConnectTimeout, ConnectionClosed
from client.protocol import Command, Message
from client.reconnect import ReconnectPolicy

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class CloseInfo:
    """Passed to close listeners."""
    code: Optional[int] = None
    reason: str = ""
    intentional: bool = False


EVENT_MESSAGE = "message"
EVENT_OPEN = "open"
EVENT_CLOSE = "close"
EVENT_ERROR = "error"
_EVENTS = (EVENT_MESSAGE, EVENT_OPEN, EVENT_CLOSE, EVENT_ERROR)


def _closed_during_handshake(error: BaseException) -> bool:
    """True when the server hung up before answering the opening handshake."""
    return isinstance(error, InvalidMessage) and isinstance(error.__cause__, EOFError)


class ConnectionManager:
    """Manages the WebSocket connection to the session server.

    Commands sent while the socket is not open are queued and flushed in
    submission order on the next successful open. A single send task
    drains the outbound queue, so frames leave in the order send() was
    called. Listener callbacks may be plain functions or coroutine
    functions; a failing listener is logged and the rest still run.
    """

    CONNECT_TIMEOUT_SECONDS = 3.0

    def __init__(self, connector: Optional[Connector] = None,
                 connect_timeout: Optional[float] = None):
        self._connector: Connector = connector or websockets.connect
        self.connect_timeout = connect_timeout if connect_timeout is not None else self.CONNECT_TIMEOUT_SECONDS
        self.websocket = None
        self.player_id: Optional[str] = None
        self.state = ConnectionState.IDLE
        self._last_uri: Optional[str] = None
        self._pending: Deque[Command] = deque()
        self._outbox: Optional[asyncio.Queue] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._attempt = 0
        self._listeners: Dict[str, List[Callable]] = {event: [] for event in _EVENTS}

    # Listener registry
    def add_listener(self, event: str, listener: Callable) -> Callable[[], None]:
        """Register ``listener`` for ``event``. Returns an unsubscribe function."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(listener)

        def remove():
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return remove

    def on_message(self, listener: Callable[[Message], Any]) -> Callable[[], None]:
        return self.add_listener(EVENT_MESSAGE, listener)

    def on_open(self, listener: Callable[[], Any]) -> Callable[[], None]:
        return self.add_listener(EVENT_OPEN, listener)

    def on_close(self, listener: Callable[[CloseInfo], Any]) -> Callable[[], None]:
        return self.add_listener(EVENT_CLOSE, listener)

    def on_error(self, listener: Callable[[Exception], Any]) -> Callable[[], None]:
        return self.add_listener(EVENT_ERROR, listener)

    async def _emit(self, event: str, *args):
        for listener in list(self._listeners[event]):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s listener failed", event)

    # Lifecycle
    async def connect(self, uri: str, player_id: Optional[str] = None):
        """Open a connection, replacing any existing one.

        A later connect() or a disconnect() supersedes an attempt still in
        its handshake; the superseded socket is closed as soon as it opens.

        Raises:
            ConnectTimeout: no open within ``connect_timeout`` seconds.
            ConnectionClosed: the channel closed before opening, or the
                attempt was superseded.
            ConnectFailed: the socket could not be opened.
        """
        current = asyncio.current_task()
        if self._reconnect_task is not None and self._reconnect_task is not current:
            # An explicit connect takes over from background retries
            self._reconnect_task.cancel()
            self._reconnect_task = None
        if self.websocket is not None:
            # The old socket's close is intentional, not a failure
            await self._teardown(CloseInfo(reason="superseded", intentional=True))

        self._attempt += 1
        attempt = self._attempt
        self._last_uri = uri
        self.player_id = player_id
        self.state = ConnectionState.CONNECTING
        logger.info("Connecting to %s", uri)

        try:
            websocket = await asyncio.wait_for(self._connector(uri), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            error = ConnectTimeout(f"No open within {self.connect_timeout}s: {uri}")
            await self._fail_attempt(attempt, error)
            raise error
        except (WebSocketClosed, EOFError) as e:
            error = ConnectionClosed(f"Connection closed before opening: {e}")
            await self._fail_attempt(attempt, error, CloseInfo(reason=str(e)))
            raise error from e
        except (OSError, InvalidHandshake) as e:
            if _closed_during_handshake(e):
                error = ConnectionClosed(f"Connection closed before opening: {e}")
                await self._fail_attempt(attempt, error, CloseInfo(reason=str(e)))
            else:
                error = ConnectFailed(f"Failed to connect: {e}")
                await self._fail_attempt(attempt, error)
            raise error from e

        if attempt != self._attempt:
            # disconnect() or a newer connect() ran while the handshake was in flight
            logger.info("Discarding superseded connection to %s", uri)
            try:
                await websocket.close()
            except Exception as e:
                logger.debug("Error closing superseded websocket: %s", e)
            raise ConnectionClosed("Connection closed before opening: superseded")

        self.websocket = websocket
        self.state = ConnectionState.OPEN
        logger.info("Connected")

        self._outbox = asyncio.Queue()
        while self._pending:
            self._outbox.put_nowait(self._pending.popleft())
        self._receive_task = asyncio.create_task(self._receive_loop(websocket))
        self._send_task = asyncio.create_task(self._send_loop(websocket, self._outbox))

        await self._emit(EVENT_OPEN)

    async def _fail_attempt(self, attempt: int, error: Exception, close: Optional[CloseInfo] = None):
        """Report a failed open unless a newer attempt owns the connection."""
        if attempt != self._attempt:
            return
        self.state = ConnectionState.CLOSED
        await self._emit(EVENT_ERROR, error)
        if close is not None:
            await self._emit(EVENT_CLOSE, close)

    async def disconnect(self):
        """Close the connection on purpose. Safe to call repeatedly."""
        self._attempt += 1
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        if self.websocket is not None:
            await self._teardown(CloseInfo(reason="disconnect", intentional=True))
        elif self.state != ConnectionState.IDLE:
            self.state = ConnectionState.CLOSED

    async def _teardown(self, info: CloseInfo):
        """Stop the I/O tasks, close the socket and notify close listeners."""
        websocket = self.websocket
        self.websocket = None
        self.state = ConnectionState.CLOSED

        current = asyncio.current_task()
        for task in (self._receive_task, self._send_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._receive_task = None
        self._send_task = None
        self._requeue_outbox()

        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug("Error closing websocket: %s", e)
            await self._emit(EVENT_CLOSE, info)

    def is_connected(self) -> bool:
        """Report the live socket state.

        A socket that is closing or closed downgrades the bookkeeping to
        CLOSED so later sends are queued instead of lost.
        """
        if self.websocket is None:
            return False
        socket_state = getattr(self.websocket, "state", State.OPEN)
        if socket_state in (State.CLOSING, State.CLOSED):
            # The receive loop still owns the socket and reports the close
            if self.state != ConnectionState.CLOSED:
                logger.debug("Socket is closing/closed, marking connection closed")
            self.state = ConnectionState.CLOSED
            return False
        if socket_state == State.CONNECTING:
            return False
        return self.state == ConnectionState.OPEN

    def send(self, command: Command):
        """Send ``command`` now if open, otherwise queue it for the next open."""
        if self.is_connected() and self._outbox is not None:
            self._outbox.put_nowait(command)
        else:
            logger.debug("Not connected, queueing %s", command.type)
            self._pending.append(command)

    @property
    def pending_count(self) -> int:
        """Number of commands waiting for the next open."""
        return len(self._pending)

    def _requeue_outbox(self, failed: Optional[Command] = None):
        """Move unsent commands back to the front of the pending queue in order."""
        unsent: List[Command] = [failed] if failed is not None else []
        if self._outbox is not None:
            while not self._outbox.empty():
                unsent.append(self._outbox.get_nowait())
        self._outbox = None
        for command in reversed(unsent):
            self._pending.appendleft(command)

    async def _send_loop(self, websocket, outbox: asyncio.Queue):
        """Drain the outbound queue over the socket, one frame at a time."""
        while True:
            command = await outbox.get()
            try:
                await websocket.send(command.to_json())
            except WebSocketClosed:
                logger.warning("Connection closed while sending %s, re-queued", command.type)
                if self.websocket is websocket:
                    self._requeue_outbox(failed=command)
                    await self._handle_remote_close(websocket, None, "closed during send")
                else:
                    self._pending.appendleft(command)
                return

    async def _receive_loop(self, websocket):
        """Receive frames and dispatch them to message listeners."""
        code = None
        reason = ""
        try:
            async for raw_message in websocket:
                try:
                    msg = Message.from_json(raw_message)
                except ValueError as e:
                    logger.warning("Dropping malformed frame: %s", e)
                    continue
                await self._emit(EVENT_MESSAGE, msg)
        except WebSocketClosed as e:
            code = e.rcvd.code if e.rcvd is not None else None
            reason = e.rcvd.reason if e.rcvd is not None else str(e)
        except Exception as e:
            logger.exception("Receive loop failed")
            await self._emit(EVENT_ERROR, e)
            reason = str(e)

        if code is None:
            # A clean close ends the iteration without raising
            code = getattr(websocket, "close_code", None)
            reason = reason or getattr(websocket, "close_reason", None) or ""
        await self._handle_remote_close(websocket, code, reason)

    async def _handle_remote_close(self, websocket, code: Optional[int], reason: str):
        """Record an unexpected close and tell close listeners."""
        if self.websocket is not websocket:
            return
        self.websocket = None
        self.state = ConnectionState.CLOSED
        current = asyncio.current_task()
        for task in (self._receive_task, self._send_task):
            if task is not None and task is not current:
                task.cancel()
        self._receive_task = None
        self._send_task = None
        self._requeue_outbox()
        logger.info("Connection closed (code=%s, reason=%s)", code, reason)
        await self._emit(EVENT_CLOSE, CloseInfo(code=code, reason=reason, intentional=False))

    # Reconnection (opt-in)
    def reconnect(self, policy: Optional[ReconnectPolicy] = None) -> asyncio.Task:
        """Start retrying the last address under ``policy``.

        Returns the background task; its result is True on success.
        disconnect() cancels it.
        """
        if self._last_uri is None:
            raise RuntimeError("reconnect() called before connect()")
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return self._reconnect_task

        policy = policy or ReconnectPolicy()
        uri = self._last_uri
        player_id = self.player_id

        async def attempt():
            await self.connect(uri, player_id)

        self._reconnect_task = asyncio.create_task(policy.run(attempt))
        return self._reconnect_task

    def is_reconnecting(self) -> bool:
        """Check if currently attempting to reconnect."""
        return self._reconnect_task is not None and not self._reconnect_task.done()
