"""Tests for the streaming chat consumer with a fake transport and scripted frames."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from fabric_client.core.errors import ChatInitiationError, HTTPError, TransportError
from fabric_client.core.types import (
    ChatOptions,
    ChatRequest,
    CompleteMessage,
    ContentMessage,
    ErrorMessage,
    PromptRequest,
)
from fabric_client.streaming.consumer import StreamConsumer
from fabric_client.streaming.framer import SSEFrame


class FakeResponse:
    def __init__(self) -> None:
        self.close_calls = 0

    async def aclose(self) -> None:
        self.close_calls += 1


class FakeTransport:
    def __init__(self, error: Exception | None = None) -> None:
        self.response = FakeResponse()
        self.error = error
        self.calls: list[tuple] = []

    async def send(self, method, path, body=None, *, stream=False):
        self.calls.append((method, path, body, stream))
        if self.error:
            raise self.error
        return self.response


class ScriptedFramer:
    """Yields frames in order; exceptions in the script are raised in place.

    With block=True the stream hangs after the script, like an idle server.
    """

    def __init__(self, *items, block: bool = False) -> None:
        self.items = items
        self.block = block
        self.pulled = 0

    def __call__(self, response):
        async def frames():
            for item in self.items:
                if isinstance(item, BaseException):
                    raise item
                self.pulled += 1
                yield item
            if self.block:
                await asyncio.Event().wait()

        return frames()


def frame(type_: str, content: str = "", format_: str = "markdown") -> SSEFrame:
    return SSEFrame(data=json.dumps({"type": type_, "format": format_, "content": content}))


def make_request() -> ChatRequest:
    return ChatRequest(
        prompts=[
            PromptRequest(
                user_input="A Hacker News clone",
                vendor="Gemini",
                model="gemini-2.5-flash",
                pattern_name="create_prd",
            )
        ],
        language="en",
        chat_options=ChatOptions(temperature=0.7, top_p=0.9, seed=42),
    )


async def start(framer, transport: FakeTransport | None = None):
    transport = transport or FakeTransport()
    stream = await StreamConsumer(transport, framer=framer).start(make_request())
    return transport, stream


@pytest.mark.asyncio
async def test_start_fails_fast_on_http_error():
    """404 from the chat endpoint: start raises with status and body, no stream."""
    transport = FakeTransport(error=HTTPError("http://fabric.test/chat", 404, "not found"))
    consumer = StreamConsumer(transport, framer=ScriptedFramer())
    with pytest.raises(ChatInitiationError) as exc:
        await consumer.start(make_request())
    assert "404" in str(exc.value)
    assert "not found" in str(exc.value)
    assert "http://fabric.test/chat" in str(exc.value)
    assert exc.value.status_code == 404
    assert isinstance(exc.value.__cause__, HTTPError)


@pytest.mark.asyncio
async def test_start_fails_fast_on_transport_error():
    transport = FakeTransport(error=TransportError("failed to execute request: POST x: refused"))
    with pytest.raises(ChatInitiationError, match="failed to initiate chat: .*refused"):
        await StreamConsumer(transport, framer=ScriptedFramer()).start(make_request())


@pytest.mark.asyncio
async def test_start_posts_camel_case_body():
    transport, stream = await start(ScriptedFramer(frame("complete")))
    async with stream:
        [m async for m in stream]
    method, path, body, streaming = transport.calls[0]
    assert (method, path, streaming) == ("POST", "/chat", True)
    payload = json.loads(body)
    assert payload["language"] == "en"
    prompt = payload["prompts"][0]
    assert prompt["userInput"] == "A Hacker News clone"
    assert prompt["patternName"] == "create_prd"
    assert prompt["contextName"] == ""
    assert prompt["strategyName"] == ""
    assert payload["chatOptions"]["topP"] == 0.9
    assert payload["chatOptions"]["seed"] == 42
    assert "modelContextLength" in payload["chatOptions"]


@pytest.mark.asyncio
async def test_content_then_complete():
    """Two content frames then complete: all three delivered, connection closed once."""
    framer = ScriptedFramer(frame("content", "Hel"), frame("content", "lo"), frame("complete"))
    transport, stream = await start(framer)
    messages = [m async for m in stream]
    assert [m.type for m in messages] == ["content", "content", "complete"]
    assert isinstance(messages[-1], CompleteMessage)
    assert "".join(m.content for m in messages) == "Hello"
    await stream.aclose()
    assert transport.response.close_calls == 1
    assert stream.released


@pytest.mark.asyncio
async def test_nothing_read_after_complete():
    framer = ScriptedFramer(frame("content", "a"), frame("complete"), frame("content", "late"))
    transport, stream = await start(framer)
    messages = [m async for m in stream]
    assert [m.type for m in messages] == ["content", "complete"]
    assert framer.pulled == 2
    assert transport.response.close_calls == 1


@pytest.mark.asyncio
async def test_read_error_becomes_terminal_error_message():
    """Content then a read failure: [content, error], connection closed once."""
    framer = ScriptedFramer(frame("content", "partial"), httpx.ReadError("connection reset"))
    transport, stream = await start(framer)
    messages = [m async for m in stream]
    assert [m.type for m in messages] == ["content", "error"]
    err = messages[-1]
    assert isinstance(err, ErrorMessage)
    assert err.format == "plain"
    assert err.content.startswith("failed to read SSE response")
    assert "connection reset" in err.content
    await stream.aclose()
    assert transport.response.close_calls == 1


@pytest.mark.asyncio
async def test_malformed_payload_is_the_only_message():
    framer = ScriptedFramer(SSEFrame(data="not json"), frame("content", "never"))
    transport, stream = await start(framer)
    messages = [m async for m in stream]
    assert len(messages) == 1
    assert isinstance(messages[0], ErrorMessage)
    assert messages[0].content.startswith("failed to parse SSE response")
    assert transport.response.close_calls == 1


@pytest.mark.asyncio
async def test_unknown_message_type_is_rejected():
    transport, stream = await start(ScriptedFramer(frame("thinking", "hmm")))
    messages = [m async for m in stream]
    assert [m.type for m in messages] == ["error"]


@pytest.mark.asyncio
async def test_server_error_message_ends_stream():
    framer = ScriptedFramer(
        frame("content", "a"), frame("error", "vendor quota exceeded", "plain"), frame("content", "b")
    )
    _, stream = await start(framer)
    messages = [m async for m in stream]
    assert [m.type for m in messages] == ["content", "error"]
    assert messages[-1].content == "vendor quota exceeded"


@pytest.mark.asyncio
async def test_end_of_stream_without_complete():
    transport, stream = await start(ScriptedFramer(frame("content", "x")))
    messages = [m async for m in stream]
    assert [m.type for m in messages] == ["content"]
    assert transport.response.close_calls == 1


@pytest.mark.asyncio
async def test_unexpected_worker_failure_is_reported_in_band():
    transport, stream = await start(ScriptedFramer(frame("content", "x"), ValueError("boom")))
    messages = [m async for m in stream]
    assert [m.type for m in messages] == ["content", "error"]
    assert "boom" in messages[-1].content
    assert transport.response.close_calls == 1


@pytest.mark.asyncio
async def test_order_preserved_for_many_frames():
    n = 50
    framer = ScriptedFramer(*[frame("content", str(i)) for i in range(n)])
    _, stream = await start(framer)
    messages = [m async for m in stream]
    assert len(messages) == n
    assert [m.content for m in messages] == [str(i) for i in range(n)]
    assert all(isinstance(m, ContentMessage) for m in messages)


@pytest.mark.asyncio
async def test_worker_stays_at_most_one_message_ahead():
    framer = ScriptedFramer(*[frame("content", str(i)) for i in range(10)])
    _, stream = await start(framer)
    await asyncio.sleep(0.05)
    # one message waiting in the queue, one decoded and blocked on delivery
    assert framer.pulled == 2
    first = await stream.__anext__()
    assert first.content == "0"
    await asyncio.sleep(0.05)
    assert framer.pulled == 3
    await stream.aclose()


@pytest.mark.asyncio
async def test_aclose_while_waiting_for_frames():
    framer = ScriptedFramer(frame("content", "first"), block=True)
    transport, stream = await start(framer)
    first = await asyncio.wait_for(stream.__anext__(), timeout=1.0)
    assert first.content == "first"
    await asyncio.wait_for(stream.aclose(), timeout=1.0)
    assert transport.response.close_calls == 1
    assert [m async for m in stream] == []


@pytest.mark.asyncio
async def test_aclose_drops_undelivered_messages():
    framer = ScriptedFramer(*[frame("content", str(i)) for i in range(5)])
    transport, stream = await start(framer)
    await asyncio.sleep(0.05)
    await asyncio.wait_for(stream.aclose(), timeout=1.0)
    assert [m async for m in stream] == []
    assert transport.response.close_calls == 1


@pytest.mark.asyncio
async def test_cancelling_the_consumer_cancels_the_session():
    framer = ScriptedFramer(block=True)
    transport, stream = await start(framer)
    waiter = asyncio.create_task(stream.__anext__())
    await asyncio.sleep(0.01)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    # aclose after the cancel still releases exactly once
    await asyncio.wait_for(stream.aclose(), timeout=1.0)
    assert transport.response.close_calls == 1
    assert stream.released


@pytest.mark.asyncio
async def test_async_with_closes_stream():
    framer = ScriptedFramer(frame("content", "a"), block=True)
    transport, stream = await start(framer)
    async with stream:
        async for message in stream:
            assert message.content == "a"
            break
    assert transport.response.close_calls == 1


@pytest.mark.asyncio
async def test_sessions_are_independent():
    _, one = await start(ScriptedFramer(frame("content", "1"), frame("complete")))
    _, two = await start(ScriptedFramer(frame("content", "2"), frame("complete")))
    got_two = [m.content async for m in two]
    got_one = [m.content async for m in one]
    assert got_one == ["1", ""]
    assert got_two == ["2", ""]


@pytest.mark.asyncio
async def test_session_released_when_starting_task_returns_without_aclose():
    """Consumer breaks out of the loop and returns: the worker must not keep the connection."""
    framer = ScriptedFramer(*[frame("content", str(i)) for i in range(5)], block=True)
    transport = FakeTransport()

    async def consume():
        _, stream = await start(framer, transport)
        async for message in stream:
            assert message.content == "0"
            break
        return stream

    stream = await asyncio.create_task(consume())
    await asyncio.wait_for(asyncio.wait({stream._task}), timeout=1.0)
    assert stream.released
    assert transport.response.close_calls == 1


class FailingCloseResponse(FakeResponse):
    async def aclose(self) -> None:
        await super().aclose()
        raise RuntimeError("close failed")


@pytest.mark.asyncio
async def test_release_failure_keeps_error_message():
    transport = FakeTransport()
    transport.response = FailingCloseResponse()
    _, stream = await start(ScriptedFramer(frame("content", "x"), ValueError("boom")), transport)
    messages = [m async for m in stream]
    assert [m.type for m in messages] == ["content", "error"]
    assert "boom" in messages[-1].content
    await stream.aclose()
    assert transport.response.close_calls == 1
    assert stream._task.exception() is None
