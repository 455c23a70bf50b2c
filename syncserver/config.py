"""Configuration settings for the sync control server."""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from .sync_parameters import SyncParameters

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ServerConfig:
    """Listener configuration parameters."""

    address: str = "0.0.0.0"
    port: int = 0  # 0 lets the OS pick a free port
    backlog: int = 128

    # Seconds between shutdown checks while blocked in accept or disconnect waits
    poll_interval: float = 0.5

    # Close connections still waiting for their peer when the server stops
    close_connections_on_stop: bool = False

    log_level: str = "INFO"

    def __post_init__(self):
        if not isinstance(self.address, str) or not self.address:
            raise ValueError(f"address must be a non-empty string, got {self.address!r}")
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ValueError(f"port must be an integer, got {self.port!r}")
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port {self.port} out of range [0, 65535]")
        if self.backlog < 1:
            raise ValueError(f"backlog must be positive, got {self.backlog}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level)


@dataclass
class AppConfig:
    """Overall configuration: listener plus the initial sync parameters."""

    server: ServerConfig = None
    sync: SyncParameters = None

    def __post_init__(self):
        if self.server is None:
            self.server = ServerConfig()
        if self.sync is None:
            self.sync = SyncParameters()

    def to_dict(self) -> dict:
        return {"server": asdict(self.server), "sync": self.sync.to_dict()}

    def save(self, filepath: str):
        """Save configuration to JSON file."""
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: Optional[str]) -> "AppConfig":
        """
        Load configuration from JSON file. ``None`` yields the defaults.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the file is not valid JSON or a section is malformed
        """
        if filepath is None:
            return cls()

        with open(filepath, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"{filepath}: top level must be an object, got {type(data).__name__}")

        server_data = data.get("server", {})
        sync_data = data.get("sync", {})

        return cls(
            server=cls._load_section(filepath, "server", server_data, lambda d: ServerConfig(**d)),
            sync=cls._load_section(filepath, "sync", sync_data, SyncParameters.from_dict),
        )

    @staticmethod
    def _load_section(filepath: str, name: str, section_data, build):
        """Build one config section, reporting shape errors as ValueError."""
        if not isinstance(section_data, dict):
            raise ValueError(f"{filepath}: '{name}' must be an object, got {type(section_data).__name__}")
        try:
            return build(section_data)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{filepath}: invalid '{name}' section: {e}") from e
