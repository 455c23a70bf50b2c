"""Sync control server: hands each TCP client a snapshot of the sync parameters."""

from .config import AppConfig, ServerConfig
from .server import BindError, ControlServer
from .sync_parameters import SyncParameters

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "BindError",
    "ControlServer",
    "ServerConfig",
    "SyncParameters",
]
