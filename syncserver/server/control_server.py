"""TCP control server handing out sync parameters."""

import ipaddress
import logging
import os
import socket
import threading
from typing import Any, Optional, Set

from ..config import AppConfig, ServerConfig
from ..log import setup_logger
from .connection_handler import ConnectionHandler
from .exceptions import AcceptError, BindError
from .sync_state import SyncParametersCell

logger = logging.getLogger(__name__)

# Pause after a failed accept so persistent errors (e.g. EMFILE) don't spin
ACCEPT_ERROR_BACKOFF = 0.05


class ControlServer:
    """
    TCP server that sends every client the current sync parameters.

    Each accepted client gets exactly one snapshot, taken when it connects,
    followed by silence until it disconnects. Updates made with
    :meth:`set_sync_parameters` only reach clients that connect afterwards;
    already connected clients are never sent a second snapshot.

    The listener is bound when the server is constructed and connections are
    accepted on a background thread, one handler thread per connection.
    """

    def __init__(
        self,
        address: str,
        port: int,
        sync_parameters: Any,
        backlog: int = 128,
        poll_interval: float = 0.5,
        close_connections_on_stop: bool = False,
        log_level: str = "INFO"
    ):
        """
        Bind the listener and start accepting connections.

        Args:
            address: Numeric IPv4 or IPv6 address to listen on
            port: Port to listen on, 0 for any free port
            sync_parameters: Initial sync parameters for clients
            backlog: Listen backlog
            poll_interval: Seconds between shutdown checks in blocking waits
            close_connections_on_stop: Default for stop(close_connections=...)
            log_level: Level for the package logger if it is not configured yet

        Raises:
            ValueError: If the port or other settings are out of range
            BindError: If the listening socket cannot be set up
        """
        self.config = ServerConfig(
            address=address,
            port=port,
            backlog=backlog,
            poll_interval=poll_interval,
            close_connections_on_stop=close_connections_on_stop,
            log_level=log_level,
        )
        setup_logger("syncserver", self.config.logging_level)

        self._sync = SyncParametersCell(sync_parameters)

        self._handlers: Set[ConnectionHandler] = set()
        self._handlers_lock = threading.Lock()
        self._stopping = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False

        self._listener = self._bind()
        self._port = self._listener.getsockname()[1]
        logger.info(f"Sync control server listening on {self.config.address}:{self._port}")

        self._accept_thread = threading.Thread(
            target=self._accept_loop,
            name=f"sync-accept-{self._port}",
            daemon=True
        )
        self._accept_thread.start()

    @classmethod
    def from_config(cls, config: AppConfig) -> "ControlServer":
        """Create a server from a loaded AppConfig."""
        server = config.server
        return cls(
            address=server.address,
            port=server.port,
            sync_parameters=config.sync,
            backlog=server.backlog,
            poll_interval=server.poll_interval,
            close_connections_on_stop=server.close_connections_on_stop,
            log_level=server.log_level,
        )

    def _bind(self) -> socket.socket:
        """Create, bind and activate the listening socket."""
        address, port = self.config.address, self.config.port

        try:
            ip = ipaddress.ip_address(address)
        except ValueError as e:
            logger.warning(f"Could not set up socket listener: {e}")
            raise BindError(address, port, e) from e

        family = socket.AF_INET6 if ip.version == 6 else socket.AF_INET
        try:
            sock = socket.socket(family, socket.SOCK_STREAM)
        except OSError as e:
            raise BindError(address, port, e) from e

        try:
            # On Windows SO_REUSEADDR would allow stealing a port in use
            if os.name != "nt":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((address, port))
            sock.listen(self.config.backlog)
            sock.settimeout(self.config.poll_interval)
        except OSError as e:
            sock.close()
            logger.warning(f"Could not set up socket listener: {e}")
            raise BindError(address, port, e) from e

        return sock

    # ==================== Properties ====================

    @property
    def address(self) -> str:
        """Address the server listens on."""
        return self.config.address

    @property
    def port(self) -> int:
        """Port the server listens on (the bound port when 0 was requested)."""
        return self._port

    @property
    def is_serving(self) -> bool:
        """True from a successful bind until stop() is called."""
        return not self._stopping.is_set()

    @property
    def active_connections(self) -> int:
        """Number of connections whose handler has not finished yet."""
        with self._handlers_lock:
            return len(self._handlers)

    # ==================== Sync parameters ====================

    def get_sync_parameters(self) -> Any:
        """Get the current sync parameters snapshot."""
        return self._sync.get()

    def set_sync_parameters(self, sync_parameters: Any):
        """
        Replace the sync parameters handed to new clients.

        Safe to call from any thread. Clients that are already connected keep
        the snapshot they received. Dicts, lists and non-frozen dataclasses
        are copied when stored; values that cannot be copied are shared and
        must not be modified after this call.
        """
        generation = self._sync.set(sync_parameters)
        logger.info(f"Sync parameters updated (generation {generation})")

    sync_parameters = property(get_sync_parameters, set_sync_parameters)

    # ==================== Accept loop ====================

    def _accept_loop(self):
        """Accept connections until stop() is called."""
        while not self._stopping.is_set():
            try:
                client_socket, client_address = self._listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._stopping.is_set():
                    break
                logger.warning(str(AcceptError(e)))
                self._stopping.wait(ACCEPT_ERROR_BACKOFF)
                continue

            logger.info(f"Client connected from {client_address}")
            self._spawn_handler(client_socket, client_address)

        logger.debug("Accept loop finished")

    def _spawn_handler(self, client_socket: socket.socket, client_address: tuple):
        """Start a handler thread for an accepted connection."""
        try:
            client_socket.settimeout(None)
            # Send the snapshot immediately instead of waiting for more data
            client_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            logger.debug(f"Client {client_address}: could not configure socket: {e}")

        handler = ConnectionHandler(
            connection=client_socket,
            peer=client_address,
            snapshot=self._sync.get(),
            poll_interval=self.config.poll_interval,
            on_closed=self._handler_closed
        )

        with self._handlers_lock:
            self._handlers.add(handler)

        handler_thread = threading.Thread(
            target=handler.run,
            name=f"sync-client-{client_address[0]}:{client_address[1]}",
            daemon=True
        )
        try:
            handler_thread.start()
        except RuntimeError as e:
            logger.warning(f"Client {client_address}: could not start handler: {e}")
            self._handler_closed(handler)
            client_socket.close()

    def _handler_closed(self, handler: ConnectionHandler):
        with self._handlers_lock:
            self._handlers.discard(handler)

    # ==================== Lifecycle ====================

    def stop(self, close_connections: Optional[bool] = None):
        """
        Stop accepting connections and release the listening socket.

        Args:
            close_connections: Also close connections still being served.
                Defaults to the ``close_connections_on_stop`` setting.
        """
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        self._stopping.set()
        if self._accept_thread is not threading.current_thread():
            self._accept_thread.join()
        self._listener.close()

        if close_connections is None:
            close_connections = self.config.close_connections_on_stop
        if close_connections:
            with self._handlers_lock:
                handlers = list(self._handlers)
            for handler in handlers:
                handler.close()
            logger.info(f"Closed {len(handlers)} open connection(s)")

        logger.info("Sync control server stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the accept loop has finished.

        Returns:
            True if the server has stopped accepting
        """
        self._accept_thread.join(timeout)
        return not self._accept_thread.is_alive()

    def __enter__(self) -> "ControlServer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    def __repr__(self) -> str:
        state = "serving" if self.is_serving else "stopped"
        return f"<ControlServer {self.address}:{self.port} {state}>"
