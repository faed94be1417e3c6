"""
WebSocket transport channel.

A persistent, auto-reconnecting connection to the messaging server. Frames
are JSON text objects of the form ``{"event": <name>, "data": <payload>}``.
Inbound events are handed to subscribers one at a time, in arrival order, on
the channel's reader thread.
"""

import json
import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

from taskchat.config import Settings, settings as default_settings
from taskchat.models.events import EventName

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]
SocketFactory = Callable[[str], Any]


class ConnectionState(str, Enum):
    """Observable connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


StateListener = Callable[[ConnectionState], None]


class TransportChannel:
    """
    Bidirectional event channel to the messaging server.

    Features:
    - At most one live socket at a time
    - Bounded reconnection with a fixed wait between attempts
    - Fire-and-forget emits (dropped while disconnected, never buffered)
    - Connection state published to listeners; drops are not errors

    Usage:
        channel = TransportChannel("wss://chat.example.com/socket")
        channel.on("message", handle_message)
        channel.connect()
        channel.emit("join_conversation", {"conversationId": "..."})
    """

    def __init__(
        self,
        url: str,
        reconnect_attempts: int = 3,
        reconnect_wait: float = 2.0,
        open_timeout: float = 10.0,
        socket_factory: Optional[SocketFactory] = None,
    ):
        """
        Initialize the channel (does not connect).

        Args:
            url: WebSocket server URL
            reconnect_attempts: Consecutive failed attempts tolerated before giving up
            reconnect_wait: Seconds to wait between attempts
            open_timeout: Handshake timeout in seconds
            socket_factory: Callable returning a connected socket for a URL
                (defaults to ``websockets.sync.client.connect``)
        """
        self.url = url
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_wait = reconnect_wait
        self.open_timeout = open_timeout
        self._socket_factory = socket_factory or self._open_websocket

        self._handlers: dict[str, list[EventHandler]] = {}
        self._state_listeners: list[StateListener] = []
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[Any] = None
        self._state = ConnectionState.DISCONNECTED

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "TransportChannel":
        """Build a channel from application settings."""
        config = config or default_settings
        return cls(
            url=config.websocket_url,
            reconnect_attempts=config.reconnect_attempts,
            reconnect_wait=config.reconnect_wait,
            open_timeout=config.open_timeout,
        )

    def _open_websocket(self, url: str) -> Any:
        return ws_connect(url, open_timeout=self.open_timeout)

    # -------------------------
    # Subscriptions
    # -------------------------

    def on(self, event: str, handler: EventHandler) -> None:
        """Subscribe a handler to an inbound event name."""
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        """Remove a previously registered handler."""
        with self._lock:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """
        Subscribe to connection state changes.

        Returns:
            Callable that removes the listener
        """
        with self._lock:
            self._state_listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._state_listeners:
                    self._state_listeners.remove(listener)

        return unsubscribe

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Whether a live socket is open."""
        return self._state == ConnectionState.CONNECTED

    # -------------------------
    # Lifecycle
    # -------------------------

    def connect(self) -> None:
        """Start the connection loop in the background (no-op if running)."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="taskchat-transport", daemon=True
            )
            self._thread.start()

    def disconnect(self, timeout: Optional[float] = 5.0) -> None:
        """Close the socket and stop reconnecting."""
        self._stop_event.set()
        sock = self._socket
        if sock is not None:
            self._close_quietly(sock)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._set_state(ConnectionState.DISCONNECTED)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the connection loop has ended.

        Returns:
            True if the loop ended, False on timeout
        """
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # -------------------------
    # Outbound
    # -------------------------

    def emit(self, event: str, payload: Any) -> bool:
        """
        Send an event to the server.

        Args:
            event: Event name
            payload: JSON-serialisable payload

        Returns:
            True if the frame was handed to a live socket, False if dropped
        """
        frame = json.dumps({"event": event, "data": payload})
        with self._send_lock:
            sock = self._socket
            if sock is None or self._state != ConnectionState.CONNECTED:
                logger.warning(f"Dropping '{event}': transport not connected")
                return False
            try:
                sock.send(frame)
            except (ConnectionClosed, OSError) as e:
                logger.warning(f"Dropping '{event}': send failed: {e}")
                return False
        logger.debug(f"Emitted '{event}'")
        return True

    # -------------------------
    # Connection loop
    # -------------------------

    def _run(self) -> None:
        failures = 0
        while not self._stop_event.is_set():
            self._set_state(ConnectionState.CONNECTING)
            try:
                sock = self._socket_factory(self.url)
            except (OSError, WebSocketException) as e:
                failures += 1
                logger.warning(
                    f"Connection attempt {failures}/{self.reconnect_attempts + 1} "
                    f"to {self.url} failed: {e}"
                )
                if failures > self.reconnect_attempts:
                    logger.error(
                        f"Giving up on {self.url} after {failures} failed attempts"
                    )
                    break
                self._set_state(ConnectionState.DISCONNECTED)
                self._stop_event.wait(self.reconnect_wait)
                continue

            failures = 0
            with self._send_lock:
                self._socket = sock
            self._set_state(ConnectionState.CONNECTED)
            self._dispatch(EventName.CONNECT, None)

            self._read_loop(sock)

            with self._send_lock:
                self._socket = None
            self._close_quietly(sock)
            self._set_state(ConnectionState.DISCONNECTED)
            self._dispatch(EventName.DISCONNECT, None)

            if not self._stop_event.is_set():
                self._stop_event.wait(self.reconnect_wait)

        self._set_state(ConnectionState.DISCONNECTED)

    def _read_loop(self, sock: Any) -> None:
        while not self._stop_event.is_set():
            try:
                raw = sock.recv()
            except ConnectionClosed as e:
                logger.info(f"Connection closed: {e}")
                return
            except OSError as e:
                logger.warning(f"Connection lost: {e}")
                return
            self._handle_frame(raw)

    def _handle_frame(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("Discarding non-UTF-8 frame")
                return
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable frame: {raw[:200]!r}")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            logger.warning(f"Discarding frame without event name: {raw[:200]!r}")
            return
        self._dispatch(frame["event"], frame.get("data"))

    def _dispatch(self, event: str, data: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event, []))
        if not handlers:
            logger.debug(f"No handlers for '{event}'")
        for handler in handlers:
            try:
                handler(data)
            except Exception as e:
                logger.error(f"Handler for '{event}' failed: {e}", exc_info=True)

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            if state == self._state:
                return
            self._state = state
            listeners = list(self._state_listeners)
        if state != ConnectionState.CONNECTING:
            logger.info(f"Transport {state.value}")
        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

    @staticmethod
    def _close_quietly(sock: Any) -> None:
        try:
            sock.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Ignoring error while closing socket: {e}")
