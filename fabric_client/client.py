"""Fabric API client: entity CRUD, server config, models, strategies and chat."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from fabric_client.core.errors import FabricError, OperationError, ResponseDecodeError
from fabric_client.core.transport import DEFAULT_TIMEOUT, Transport
from fabric_client.core.types import (
    AvailableModels,
    ChatRequest,
    Context,
    EntityType,
    FabricConfig,
    Pattern,
    Session,
    Strategy,
)
from fabric_client.streaming.consumer import ChatStream, Framer, StreamConsumer
from fabric_client.streaming.framer import sse_frames

if TYPE_CHECKING:
    from fabric_client.config.loader import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NAMES = TypeAdapter(Optional[list[str]])
_EXISTS = TypeAdapter(bool)
_STRATEGIES = TypeAdapter(Optional[list[Strategy]])


def _decode(response: httpx.Response, adapter: TypeAdapter, what: str) -> Any:
    try:
        return adapter.validate_json(response.content)
    except ValidationError as e:
        raise ResponseDecodeError(f"failed to decode {what}: {e}") from e


class FabricClient:
    """Async client for one Fabric server.

    Use as ``async with FabricClient(url) as client:`` so the connection pool
    is closed on exit. Every method raises a FabricError subclass on failure;
    HTTP failures surface as OperationError carrying the status code.
    """

    def __init__(
        self,
        host: str,
        *,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
        framer: Framer = sse_frames,
    ) -> None:
        self._transport = Transport(host, api_key=api_key, timeout=timeout, http_client=http_client)
        self._consumer = StreamConsumer(self._transport, framer=framer)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> FabricClient:
        return cls(
            settings.server_url,
            api_key=settings.api_key,
            timeout=settings.timeout,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()

    async def __aenter__(self) -> FabricClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # chat

    async def chat(self, request: ChatRequest) -> ChatStream:
        """Start a chat and return its message stream.

        Raises ChatRequestError or ChatInitiationError if the chat never starts.
        Close the stream (``aclose`` or ``async with``) when stopping early.
        """
        return await self._consumer.start(request)

    @asynccontextmanager
    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStream]:
        """Start a chat whose stream is closed when the block exits."""
        stream = await self._consumer.start(request)
        try:
            yield stream
        finally:
            await stream.aclose()

    # server config, models, strategies

    async def get_config(self) -> FabricConfig:
        response = await self._call("GET", "/config", "get config")
        return _decode(response, TypeAdapter(FabricConfig), "config")

    async def update_config(self, config: FabricConfig) -> None:
        await self._call("PUT", "/config/update", "update config", config.model_dump_json())

    async def list_models(self) -> AvailableModels:
        response = await self._call("GET", "/models/names", "get models")
        return _decode(response, TypeAdapter(AvailableModels), "models")

    async def list_strategies(self) -> list[Strategy]:
        response = await self._call("GET", "/strategies", "get strategies")
        return _decode(response, _STRATEGIES, "strategies") or []

    # contexts

    async def create_context(self, name: str, body: bytes | str | None = None) -> None:
        await self._create(EntityType.CONTEXT, name, body)

    async def delete_context(self, name: str) -> None:
        await self._delete(EntityType.CONTEXT, name)

    async def context_exists(self, name: str) -> bool:
        return await self._exists(EntityType.CONTEXT, name)

    async def get_context_metadata(self, name: str) -> Context:
        return await self._get(EntityType.CONTEXT, name, Context)

    async def list_contexts(self) -> list[str]:
        return await self._list(EntityType.CONTEXT)

    async def rename_context(self, old_name: str, new_name: str) -> None:
        await self._rename(EntityType.CONTEXT, old_name, new_name)

    # patterns

    async def create_pattern(self, name: str, body: bytes | str | None = None) -> None:
        await self._create(EntityType.PATTERN, name, body)

    async def delete_pattern(self, name: str) -> None:
        await self._delete(EntityType.PATTERN, name)

    async def pattern_exists(self, name: str) -> bool:
        return await self._exists(EntityType.PATTERN, name)

    async def get_pattern_metadata(self, name: str) -> Pattern:
        return await self._get(EntityType.PATTERN, name, Pattern)

    async def list_patterns(self) -> list[str]:
        return await self._list(EntityType.PATTERN)

    async def rename_pattern(self, old_name: str, new_name: str) -> None:
        await self._rename(EntityType.PATTERN, old_name, new_name)

    # sessions

    async def create_session(self, name: str, body: bytes | str | None = None) -> None:
        await self._create(EntityType.SESSION, name, body)

    async def delete_session(self, name: str) -> None:
        await self._delete(EntityType.SESSION, name)

    async def session_exists(self, name: str) -> bool:
        return await self._exists(EntityType.SESSION, name)

    async def get_session_metadata(self, name: str) -> Session:
        return await self._get(EntityType.SESSION, name, Session)

    async def list_sessions(self) -> list[str]:
        return await self._list(EntityType.SESSION)

    async def rename_session(self, old_name: str, new_name: str) -> None:
        await self._rename(EntityType.SESSION, old_name, new_name)

    # shared plumbing

    async def _call(
        self,
        method: str,
        path: str,
        operation: str,
        body: bytes | str | None = None,
    ) -> httpx.Response:
        try:
            return await self._transport.send(method, path, body)
        except FabricError as e:
            logger.debug("fabric operation failed", extra={"operation": operation, "error": str(e)})
            raise OperationError(operation, e) from e

    async def _create(self, kind: EntityType, name: str, body: bytes | str | None) -> None:
        await self._call("POST", f"/{kind.collection}/{name}", f"create {kind.value} `{name}`", body)

    async def _delete(self, kind: EntityType, name: str) -> None:
        await self._call("DELETE", f"/{kind.collection}/{name}", f"delete {kind.value} `{name}`")

    async def _exists(self, kind: EntityType, name: str) -> bool:
        response = await self._call(
            "GET", f"/{kind.collection}/exists/{name}", f"check if {kind.value} `{name}` exists"
        )
        return _decode(response, _EXISTS, f"{kind.value} existence check for `{name}`")

    async def _get(self, kind: EntityType, name: str, model: type[T]) -> T:
        response = await self._call("GET", f"/{kind.collection}/{name}", f"get {kind.value} `{name}`")
        return _decode(response, TypeAdapter(model), f"{kind.value} `{name}`")

    async def _list(self, kind: EntityType) -> list[str]:
        response = await self._call("GET", f"/{kind.collection}/names", f"list {kind.collection}")
        return _decode(response, _NAMES, kind.collection) or []

    async def _rename(self, kind: EntityType, old_name: str, new_name: str) -> None:
        await self._call(
            "PUT",
            f"/{kind.collection}/rename/{old_name}/{new_name}",
            f"rename {kind.value} `{old_name}` to `{new_name}`",
        )
