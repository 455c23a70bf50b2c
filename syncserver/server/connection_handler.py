"""Per-connection handling for ControlServer."""

import logging
import selectors
import socket
import threading
from enum import Enum
from typing import Any, Callable, Optional

from .exceptions import (
    DisconnectDetectionError,
    PartialWriteError,
    SerializationError,
    WriteError,
)
from .protocol import ProtocolHandler

logger = logging.getLogger(__name__)

RECV_SIZE = 4096


class ConnectionState(Enum):
    """Lifecycle of a single client connection."""
    ACCEPTED = "accepted"
    SENDING = "sending"
    WAITING = "waiting"
    CLOSED = "closed"


class ConnectionHandler:
    """
    Sends one sync parameters snapshot to a client, then waits for it to leave.

    The handler owns ``connection`` for its whole life. Sending is best
    effort: a failed or short write is logged and the handler still waits
    for the peer to close. Anything the peer sends is read and dropped.
    """

    def __init__(
        self,
        connection: socket.socket,
        peer: Any,
        snapshot: Any,
        poll_interval: float = 0.5,
        on_closed: Optional[Callable[["ConnectionHandler"], None]] = None
    ):
        """
        Initialize connection handler.

        Args:
            connection: Accepted client socket
            peer: Client address as returned by accept()
            snapshot: Sync parameters current when the client connected
            poll_interval: Seconds between checks for a forced close
            on_closed: Called with this handler once the socket is released
        """
        self.connection = connection
        self.peer = peer
        self.snapshot = snapshot
        self.poll_interval = poll_interval
        self.on_closed = on_closed

        self.bytes_sent = 0
        self.bytes_discarded = 0
        self.send_error: Optional[Exception] = None

        self._state = ConnectionState.ACCEPTED
        self._state_lock = threading.Lock()
        self._closing = threading.Event()
        self._closed = threading.Event()

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: ConnectionState):
        with self._state_lock:
            self._state = state
        logger.debug(f"Client {self.peer}: {state.value}")

    def run(self):
        """Serve the connection until the peer disconnects."""
        try:
            self._set_state(ConnectionState.SENDING)
            self._send_snapshot()

            self._set_state(ConnectionState.WAITING)
            try:
                self._wait_for_disconnect()
            except DisconnectDetectionError as e:
                logger.info(f"{e}; treating as disconnect")
        except Exception as e:
            logger.warning(f"Client {self.peer}: unexpected handler error: {e}")
        finally:
            self._release()

    def _send_snapshot(self):
        """Serialize and write the snapshot, logging any failure."""
        try:
            payload = ProtocolHandler.create_snapshot(self.snapshot)
        except SerializationError as e:
            self.send_error = e
            logger.warning(f"Client {self.peer}: {e}; nothing sent")
            return

        try:
            self._write(payload)
        except WriteError as e:
            self.send_error = e
            logger.warning(str(e))
            return

        logger.debug(f"Client {self.peer}: sent {len(payload)} bytes")

    def _write(self, payload: bytes):
        """
        Write the whole payload without retrying after an error.

        Raises:
            WriteError: If nothing could be written
            PartialWriteError: If the connection failed midway
        """
        view = memoryview(payload)
        total = len(payload)

        while self.bytes_sent < total:
            try:
                sent = self.connection.send(view[self.bytes_sent:])
            except OSError as e:
                raise self._write_error(total, e) from e
            if sent == 0:
                raise self._write_error(total, None)
            self.bytes_sent += sent

    def _write_error(self, total: int, cause: Optional[BaseException]) -> WriteError:
        if self.bytes_sent:
            return PartialWriteError(self.peer, self.bytes_sent, total, cause)
        return WriteError(self.peer, self.bytes_sent, total, cause)

    def _wait_for_disconnect(self):
        """
        Block until the peer closes the connection or close() is called.

        Raises:
            DisconnectDetectionError: If waiting on the socket fails
        """
        selector = selectors.DefaultSelector()
        try:
            try:
                selector.register(self.connection, selectors.EVENT_READ)
            except (OSError, ValueError) as e:
                raise DisconnectDetectionError(self.peer, e) from e

            while not self._closing.is_set():
                try:
                    events = selector.select(timeout=self.poll_interval)
                except (OSError, ValueError) as e:
                    raise DisconnectDetectionError(self.peer, e) from e
                if not events:
                    continue

                try:
                    data = self.connection.recv(RECV_SIZE)
                except OSError as e:
                    raise DisconnectDetectionError(self.peer, e) from e

                if not data:
                    return
                self.bytes_discarded += len(data)
                logger.debug(f"Client {self.peer}: ignored {len(data)} bytes")
        finally:
            selector.close()

    def close(self):
        """Force the connection closed from another thread."""
        self._closing.set()
        try:
            self.connection.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already closed or never connected
            pass

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Block until the handler has released its socket."""
        return self._closed.wait(timeout)

    def _release(self):
        try:
            self.connection.close()
        except OSError as e:
            logger.debug(f"Client {self.peer}: error closing socket: {e}")
        self._set_state(ConnectionState.CLOSED)
        self._closed.set()
        logger.info(f"Client {self.peer} disconnected")

        if self.on_closed is not None:
            try:
                self.on_closed(self)
            except Exception as e:
                logger.warning(f"Client {self.peer}: close callback failed: {e}")
