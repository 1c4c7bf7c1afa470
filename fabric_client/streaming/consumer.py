"""Streaming chat consumer.

``StreamConsumer.start`` posts a chat request and, once the server accepts
it, hands back a ``ChatStream``: an async iterator of StreamMessage values fed
by one worker task that reads SSE frames from the response body.

Contract:

- Failures before the stream exists (encoding, connection, non-200 status)
  raise from ``start``.
- Failures after that are delivered in-band as a final ErrorMessage.
- ErrorMessage and CompleteMessage are terminal: the worker stops reading
  after delivering one, and the iterator ends right after it. The upstream
  Go client keeps reading after a server ``error`` message; here it ends the
  stream like ``complete`` does.
- The worker hands messages over through a queue of depth 1, so it never
  runs more than one message ahead of the consumer.
- The response is closed exactly once when the worker exits, for any reason.
- ``aclose()``, leaving ``async with``, cancelling the task that awaits
  the next message, or the task that started the stream finishing cancels
  the worker. A message decoded but not yet taken by the consumer is
  dropped on cancellation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable

import httpx
from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from fabric_client.core.errors import (
    ChatInitiationError,
    ChatRequestError,
    FabricError,
    FramingError,
)
from fabric_client.core.transport import Transport
from fabric_client.core.types import ChatRequest, ErrorMessage, StreamMessage, decode_stream_message
from fabric_client.streaming.framer import SSEFrame, sse_frames

logger = logging.getLogger(__name__)

CHAT_PATH = "/chat"

Framer = Callable[[httpx.Response], AsyncIterator[SSEFrame]]

_END = object()


class ChatStream:
    """One live chat session. Iterate it once, from one task.

    The session is bound to the task that created it: when that task finishes,
    the worker is cancelled even if the stream was never closed.
    """

    def __init__(self, response: httpx.Response, frames: AsyncIterator[SSEFrame]) -> None:
        self._response = response
        self._frames = frames
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._released = False
        self._exhausted = False
        self._cancelling = False
        self._owner = asyncio.current_task()
        self._task = asyncio.create_task(self._run(), name="fabric-chat-stream")
        if self._owner is not None:
            self._owner.add_done_callback(self._on_owner_done)

    @property
    def released(self) -> bool:
        """True once the underlying connection has been closed."""
        return self._released

    def __aiter__(self) -> ChatStream:
        return self

    async def __anext__(self) -> StreamMessage:
        if self._exhausted:
            raise StopAsyncIteration
        try:
            item = await self._queue.get()
        except asyncio.CancelledError:
            self._cancel()
            raise
        if item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        """Stop the session and wait until the connection is released."""
        self._cancel()
        await asyncio.wait({self._task})

    async def __aenter__(self) -> ChatStream:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _cancel(self) -> None:
        self._exhausted = True
        if not self._task.done() and not self._cancelling:
            self._cancelling = True
            self._task.cancel()

    def _on_owner_done(self, task: asyncio.Task) -> None:
        if not self._task.done():
            logger.debug("chat stream owner finished; cancelling session")
            self._cancel()

    async def _run(self) -> None:
        ended = False
        try:
            failure: ErrorMessage | None = None
            try:
                await self._pump()
            except Exception as e:
                logger.exception("chat stream worker failed: %s", e)
                failure = ErrorMessage(content=f"chat stream failed: {e}")
            finally:
                try:
                    await self._release()
                except Exception as e:
                    logger.warning("chat stream release failed: %s", e)
            if failure is not None:
                await self._queue.put(failure)
            await self._queue.put(_END)
            ended = True
        finally:
            if self._owner is not None:
                self._owner.remove_done_callback(self._on_owner_done)
            if not ended:
                logger.debug("chat stream stopped early")
                self._end_now()

    async def _pump(self) -> None:
        while True:
            try:
                frame = await self._frames.__anext__()
            except StopAsyncIteration:
                logger.debug("chat stream ended by server")
                return
            except (httpx.HTTPError, httpx.StreamError, FramingError) as e:
                logger.warning("chat stream read failed: %s", e)
                await self._queue.put(ErrorMessage(content=f"failed to read SSE response: {e}"))
                return

            try:
                message = decode_stream_message(frame.data)
            except ValidationError as e:
                logger.warning("chat stream payload rejected", extra={"event": frame.event})
                await self._queue.put(ErrorMessage(content=f"failed to parse SSE response: {e}"))
                return

            await self._queue.put(message)
            if message.is_terminal:
                logger.debug("chat stream finished", extra={"type": message.type})
                return

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            aclose = getattr(self._frames, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            await self._response.aclose()

    def _end_now(self) -> None:
        """End the sequence without waiting on the consumer, dropping anything pending."""
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_END)


class StreamConsumer:
    """Starts chat sessions against one transport."""

    def __init__(self, transport: Transport, *, framer: Framer = sse_frames) -> None:
        self._transport = transport
        self._framer = framer

    async def start(self, request: ChatRequest) -> ChatStream:
        """Send the chat request; return the live stream once the server accepts it."""
        try:
            body = request.model_dump_json(by_alias=True)
        except (PydanticSerializationError, ValueError) as e:
            raise ChatRequestError(f"failed to encode chat request: {e}") from e

        try:
            response = await self._transport.send("POST", CHAT_PATH, body, stream=True)
        except FabricError as e:
            raise ChatInitiationError("initiate chat", e) from e

        logger.debug("chat stream started", extra={"prompts": len(request.prompts)})
        return ChatStream(response, self._framer(response))
