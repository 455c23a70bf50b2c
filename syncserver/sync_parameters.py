"""Sync parameters distributed to clients of the control server."""

import json
import logging
from dataclasses import asdict, dataclass, field, fields, replace as dataclass_replace
from typing import Any, Dict, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CLOCK = "0.0.0.0:5637"


def split_clock(clock: str) -> Tuple[str, int]:
    """Split an ``address:port`` clock string into its parts.

    IPv6 addresses may be given bracketed (``[::1]:5637``) or bare, in which
    case the last colon separates the port.
    """
    if not isinstance(clock, str) or ":" not in clock:
        raise ValueError(f"clock must be 'address:port', got {clock!r}")

    host, _, port_text = clock.rpartition(":")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host:
        raise ValueError(f"clock address is empty in {clock!r}")

    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"clock port is not a number in {clock!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"clock port {port} out of range in {clock!r}")

    return host, port


@dataclass(frozen=True)
class SyncParameters:
    """
    Snapshot of the parameters clients need to play in sync.

    Instances are immutable; owners publish a new snapshot with
    :meth:`replace` instead of mutating one that handlers may be reading.
    All time values are in nanoseconds.
    """

    clock: str = DEFAULT_CLOCK  # network clock, "address:port"
    latency: int = 0
    stream_start_delay: int = 0
    base_time: int = 0
    base_time_offset: int = 0
    playlist: Tuple[str, ...] = field(default_factory=tuple)
    current_track: int = -1  # -1 when nothing is queued
    paused: bool = False
    version: int = 1

    def __post_init__(self):
        split_clock(self.clock)

        # Lists from JSON are frozen into tuples so the snapshot stays immutable
        if not isinstance(self.playlist, tuple):
            object.__setattr__(self, "playlist", tuple(self.playlist))

        for name in ("latency", "stream_start_delay", "base_time", "base_time_offset"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

        if not -1 <= self.current_track < len(self.playlist):
            raise ValueError(
                f"current_track {self.current_track} outside playlist of {len(self.playlist)}"
            )

    @property
    def clock_address(self) -> str:
        return split_clock(self.clock)[0]

    @property
    def clock_port(self) -> int:
        return split_clock(self.clock)[1]

    def replace(self, **changes: Any) -> "SyncParameters":
        """Return a new snapshot with ``changes`` applied."""
        return dataclass_replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Field-for-field representation used on the wire."""
        data = asdict(self)
        data["playlist"] = list(self.playlist)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncParameters":
        """Build a snapshot from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.debug(f"Ignoring unknown sync parameter keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def save(self, filepath: str):
        """Save sync parameters to JSON file."""
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> "SyncParameters":
        """Load sync parameters from JSON file."""
        with open(filepath, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)
