"""
Exceptions raised by the sync control server.

Only ``BindError`` reaches the owner of a server; the per-connection errors
are raised inside a connection handler and logged there.
"""

from typing import Any, Dict, Optional

__all__ = [
    'SyncServerError',
    'BindError',
    'AcceptError',
    'SerializationError',
    'WriteError',
    'PartialWriteError',
    'DisconnectDetectionError',
]


class SyncServerError(Exception):
    """Base exception for all sync server errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for logging."""
        return {
            'error_type': self.error_code,
            'message': self.message,
            **self.details
        }

    def __str__(self) -> str:
        if self.details:
            return f"{self.error_code}: {self.message} ({self.details})"
        return f"{self.error_code}: {self.message}"


class BindError(SyncServerError):
    """The listening socket could not be created, bound or activated."""

    def __init__(self, address: str, port: int, cause: BaseException):
        """
        Args:
            address: Address the server tried to listen on
            port: Port the server tried to listen on
            cause: Underlying error (also chained as ``__cause__``)
        """
        super().__init__(
            message=f"Could not listen on {address}:{port}: {cause}",
            error_code="BIND_FAILED",
            details={'address': address, 'port': port}
        )
        self.address = address
        self.port = port
        self.cause = cause


class AcceptError(SyncServerError):
    """A single accept attempt failed."""

    def __init__(self, cause: BaseException):
        super().__init__(
            message=f"Accept failed: {cause}",
            error_code="ACCEPT_FAILED"
        )
        self.cause = cause


class SerializationError(SyncServerError):
    """The sync parameters could not be serialized."""

    def __init__(self, value: Any, reason: str):
        super().__init__(
            message=f"Cannot serialize {type(value).__name__}: {reason}",
            error_code="SERIALIZATION_FAILED",
            details={'value_type': type(value).__name__}
        )


class WriteError(SyncServerError):
    """Sending the snapshot failed before any byte was written."""

    def __init__(
        self,
        peer: Any,
        bytes_sent: int,
        payload_length: int,
        cause: Optional[BaseException] = None,
        error_code: str = "WRITE_FAILED"
    ):
        reason = f": {cause}" if cause is not None else ""
        super().__init__(
            message=f"Could not write out {payload_length} bytes to {peer}{reason}",
            error_code=error_code,
            details={'bytes_sent': bytes_sent, 'payload_length': payload_length}
        )
        self.peer = peer
        self.bytes_sent = bytes_sent
        self.payload_length = payload_length
        self.cause = cause


class PartialWriteError(WriteError):
    """Only part of the snapshot reached the socket."""

    def __init__(
        self,
        peer: Any,
        bytes_sent: int,
        payload_length: int,
        cause: Optional[BaseException] = None
    ):
        super().__init__(
            peer, bytes_sent, payload_length, cause,
            error_code="PARTIAL_WRITE"
        )


class DisconnectDetectionError(SyncServerError):
    """Waiting for the peer to disconnect failed; handled as a disconnect."""

    def __init__(self, peer: Any, cause: BaseException):
        super().__init__(
            message=f"Lost track of {peer}: {cause}",
            error_code="DISCONNECT_DETECTION_FAILED"
        )
        self.peer = peer
        self.cause = cause
