"""Error types raised by the Fabric client.

Everything that can fail before a chat stream is handed to the caller raises
a FabricError subclass. Once a stream is running, failures travel in-band as
ErrorMessage values instead (see fabric_client.streaming.consumer).
"""

from __future__ import annotations


class FabricError(Exception):
    """Base error for all client failures."""


class TransportError(FabricError):
    """The request could not be sent or the connection failed."""


class HTTPError(FabricError):
    """The server answered with a non-success status code."""

    def __init__(self, url: str, status_code: int, body: str | None = None) -> None:
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(str(self))

    def __str__(self) -> str:
        msg = f"HTTP request to {self.url} failed with status code: {self.status_code}"
        if self.body is None:
            return msg
        return f"{msg}: body: {self.body}"


class OperationError(FabricError):
    """A client operation failed. Wraps the transport, HTTP or decode failure."""

    def __init__(self, operation: str, cause: Exception) -> None:
        self.operation = operation
        self.cause = cause
        self.status_code: int | None = getattr(cause, "status_code", None)
        super().__init__(f"failed to {operation}: {cause}")


class ResponseDecodeError(FabricError):
    """A unary response body could not be decoded."""


class ChatRequestError(FabricError):
    """The chat request could not be serialized."""


class ChatInitiationError(OperationError):
    """The chat request was rejected or never reached the server."""


class FramingError(FabricError):
    """The SSE byte stream violates framing limits."""
