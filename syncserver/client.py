"""Client for the sync control server."""

import logging
import socket
from typing import Any, Dict, Optional, Union

from .server.protocol import ProtocolHandler
from .sync_parameters import SyncParameters

logger = logging.getLogger(__name__)


class SyncClient:
    """Connects to a control server and reads its sync parameters snapshot."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0):
        self.host = host
        self.port = port
        self.socket: Optional[socket.socket] = None
        self._buffer = b""

    def connect(self, timeout: Optional[float] = 5.0):
        """Connect to server."""
        self.socket = socket.create_connection((self.host, self.port), timeout=timeout)
        self._buffer = b""
        logger.info(f"Connected to {self.host}:{self.port}")

    def disconnect(self):
        """Disconnect from server."""
        if self.socket:
            self.socket.close()
            self.socket = None
            logger.info("Disconnected")

    def receive_raw(self, timeout: Optional[float] = 5.0) -> Dict[str, Any]:
        """
        Read until one complete snapshot has arrived.

        The server sends no terminator, so the snapshot is complete as soon
        as the received bytes decode to a JSON object.

        Raises:
            ConnectionError: If the server closes before a full snapshot
            socket.timeout: If nothing completes within ``timeout``
        """
        if self.socket is None:
            raise ConnectionError("Not connected")

        self.socket.settimeout(timeout)
        while True:
            parsed = ProtocolHandler.parse_snapshot(self._buffer)
            if parsed is not None:
                snapshot, consumed = parsed
                self._buffer = self._buffer[consumed:]
                return snapshot

            chunk = self.socket.recv(4096)
            if not chunk:
                raise ConnectionError(
                    f"Server closed the connection after {len(self._buffer)} bytes"
                )
            self._buffer += chunk

    def receive_snapshot(self, timeout: Optional[float] = 5.0) -> Union[SyncParameters, Dict[str, Any]]:
        """
        Read the snapshot and decode it as SyncParameters when possible.

        Values that are not SyncParameters are returned as plain dicts.
        """
        raw = self.receive_raw(timeout)
        if "clock" not in raw:
            return raw
        try:
            return SyncParameters.from_dict(raw)
        except (TypeError, ValueError) as e:
            logger.debug(f"Snapshot is not SyncParameters ({e}); returning raw dict")
            return raw

    def wait_for_close(self, timeout: Optional[float] = None) -> bytes:
        """
        Block until the server closes the connection.

        Returns:
            Any bytes received after the snapshot (empty for a well-behaved server)
        """
        if self.socket is None:
            raise ConnectionError("Not connected")

        self.socket.settimeout(timeout)
        extra = self._buffer
        self._buffer = b""
        while True:
            chunk = self.socket.recv(4096)
            if not chunk:
                return extra
            extra += chunk

    def __enter__(self) -> "SyncClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
