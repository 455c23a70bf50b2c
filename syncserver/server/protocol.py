"""Wire encoding for sync parameter snapshots."""

import dataclasses
import json
from collections.abc import Mapping
from typing import Any, Dict, Optional, Tuple

from .exceptions import SerializationError

ENCODING = "utf-8"


class ProtocolHandler:
    """
    Encodes snapshots for clients and decodes them on the client side.

    The payload is one pretty-printed JSON object per connection with no
    length prefix and no terminator; the server goes silent after it.
    """

    @staticmethod
    def to_wire_dict(value: Any) -> Dict[str, Any]:
        """
        Turn a sync parameters value into a plain dict.

        Accepts objects with ``to_dict()``, dataclass instances and mappings.

        Raises:
            SerializationError: If the value has none of those shapes or
                converting it fails
        """
        if hasattr(value, "to_dict") and callable(value.to_dict):
            convert = value.to_dict
        elif dataclasses.is_dataclass(value) and not isinstance(value, type):
            convert = lambda: dataclasses.asdict(value)
        elif isinstance(value, Mapping):
            convert = lambda: dict(value)
        else:
            raise SerializationError(value, "expected a mapping, a dataclass or an object with to_dict()")

        # to_dict(), asdict() and mapping iteration run arbitrary user code
        try:
            data = convert()
        except Exception as e:
            raise SerializationError(value, f"{type(e).__name__}: {e}") from e

        if not isinstance(data, dict):
            raise SerializationError(value, f"to_dict() returned {type(data).__name__}")
        return data

    @staticmethod
    def create_snapshot(value: Any) -> bytes:
        """
        Serialize a sync parameters snapshot.

        Args:
            value: Current sync parameters

        Returns:
            UTF-8 encoded, indented JSON

        Raises:
            SerializationError: If the value cannot be represented as JSON
        """
        data = ProtocolHandler.to_wire_dict(value)
        try:
            text = json.dumps(data, indent=2, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(value, str(e)) from e
        return text.encode(ENCODING)

    @staticmethod
    def parse_snapshot(buffer: bytes) -> Optional[Tuple[Dict[str, Any], int]]:
        """
        Try to decode one complete snapshot from the start of ``buffer``.

        Args:
            buffer: Bytes received so far

        Returns:
            ``(snapshot, consumed_bytes)`` or None while the document is incomplete

        Raises:
            ValueError: If the buffer can never become a valid snapshot
        """
        try:
            text = buffer.decode(ENCODING)
        except UnicodeDecodeError as e:
            # A multi-byte character may be split across reads
            if e.start >= len(buffer) - 3 and e.reason == "unexpected end of data":
                return None
            raise ValueError(f"Snapshot is not valid {ENCODING}: {e}") from e

        stripped = text.lstrip()
        if not stripped:
            return None
        if not stripped.startswith("{"):
            raise ValueError(f"Snapshot must be a JSON object, got {stripped[:20]!r}")

        offset = len(text) - len(stripped)
        try:
            snapshot, end = json.JSONDecoder().raw_decode(stripped)
        except json.JSONDecodeError:
            return None

        consumed = len(text[:offset + end].encode(ENCODING))
        return snapshot, consumed
