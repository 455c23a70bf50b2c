"""TCP control server module for sync parameters distribution."""

from .connection_handler import ConnectionHandler, ConnectionState
from .control_server import ControlServer
from .exceptions import (
    AcceptError,
    BindError,
    DisconnectDetectionError,
    PartialWriteError,
    SerializationError,
    SyncServerError,
    WriteError,
)
from .protocol import ProtocolHandler
from .sync_state import SyncParametersCell

__all__ = [
    "AcceptError",
    "BindError",
    "ConnectionHandler",
    "ConnectionState",
    "ControlServer",
    "DisconnectDetectionError",
    "PartialWriteError",
    "ProtocolHandler",
    "SerializationError",
    "SyncParametersCell",
    "SyncServerError",
    "WriteError",
]
