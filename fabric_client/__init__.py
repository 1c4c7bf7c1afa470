"""Async client for the Fabric text-generation REST API."""

from fabric_client.client import FabricClient
from fabric_client.core.errors import (
    ChatInitiationError,
    ChatRequestError,
    FabricError,
    FramingError,
    HTTPError,
    OperationError,
    ResponseDecodeError,
    TransportError,
)
from fabric_client.core.types import (
    AvailableModels,
    ChatOptions,
    ChatRequest,
    CompleteMessage,
    ContentMessage,
    Context,
    EntityType,
    ErrorMessage,
    FabricConfig,
    Pattern,
    PromptRequest,
    Session,
    SessionMessage,
    StreamMessage,
    Strategy,
)
from fabric_client.streaming.consumer import ChatStream, StreamConsumer

__all__ = [
    "FabricClient",
    "ChatStream",
    "StreamConsumer",
    "AvailableModels",
    "ChatOptions",
    "ChatRequest",
    "CompleteMessage",
    "ContentMessage",
    "Context",
    "EntityType",
    "ErrorMessage",
    "FabricConfig",
    "Pattern",
    "PromptRequest",
    "Session",
    "SessionMessage",
    "StreamMessage",
    "Strategy",
    "ChatInitiationError",
    "ChatRequestError",
    "FabricError",
    "FramingError",
    "HTTPError",
    "OperationError",
    "ResponseDecodeError",
    "TransportError",
]
