"""Server-sent events framing over an httpx response body.

Implements the SSE line grammar: records end at a blank line, ``data:``
lines are joined with newlines, lines starting with ``:`` are keep-alive
comments. Records without a data field are never dispatched, and a record
cut off by end of stream is discarded. Lines are split from the decoded body
here rather than by httpx, so an over-long line fails before it is buffered
in full.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Protocol

from fabric_client.core.errors import FramingError

DEFAULT_MAX_LINE_LENGTH = 1024 * 1024

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class SSEFrame:
    """One dispatched SSE record, before application decoding."""

    data: str
    event: str = "message"
    id: str | None = None
    retry: int | None = None


class TextSource(Protocol):
    """Anything that yields the decoded body in chunks (httpx.Response does)."""

    def aiter_text(self) -> AsyncIterator[str]: ...


async def iter_frames(
    lines: AsyncIterable[str],
    *,
    max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
) -> AsyncIterator[SSEFrame]:
    data: list[str] = []
    event = ""
    last_id: str | None = None
    retry: int | None = None
    first = True

    try:
        async for line in lines:
            if first:
                first = False
                line = line.removeprefix("\ufeff")
            if len(line) > max_line_length:
                raise FramingError(f"SSE line exceeds {max_line_length} characters")

            if not line:
                if data:
                    yield SSEFrame(data="\n".join(data), event=event or "message", id=last_id, retry=retry)
                data = []
                event = ""
                continue
            if line.startswith(":"):
                continue

            name, _, value = line.partition(":")
            value = value.removeprefix(" ")
            if name == "data":
                data.append(value)
            elif name == "event":
                event = value
            elif name == "id":
                if "\0" not in value:
                    last_id = value
            elif name == "retry":
                if value.isascii() and value.isdigit():
                    retry = int(value)
    finally:
        aclose = getattr(lines, "aclose", None)
        if aclose is not None:
            await aclose()


async def iter_lines(
    chunks: AsyncIterable[str],
    *,
    max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
) -> AsyncIterator[str]:
    """Split decoded text chunks on CRLF, LF or CR.

    A partial line is never buffered past ``max_line_length`` characters.
    """
    buffer = ""
    skip_lf = False
    try:
        async for chunk in chunks:
            if not chunk:
                continue
            if skip_lf and chunk.startswith("\n"):
                chunk = chunk[1:]
            skip_lf = False
            if not chunk:
                continue
            text = buffer + chunk
            # a trailing CR may be the first half of CRLF
            held_cr = text.endswith("\r")
            if held_cr:
                text = text[:-1]
            *lines, buffer = _LINE_BREAK.split(text)
            if held_cr:
                lines.append(buffer)
                buffer = ""
                skip_lf = True
            for line in lines:
                if len(line) > max_line_length:
                    raise FramingError(f"SSE line exceeds {max_line_length} characters")
                yield line
            if len(buffer) > max_line_length:
                raise FramingError(f"SSE line exceeds {max_line_length} characters")
        if buffer:
            yield buffer
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()


def sse_frames(
    source: TextSource, *, max_line_length: int = DEFAULT_MAX_LINE_LENGTH
) -> AsyncIterator[SSEFrame]:
    """Frame the body of a streaming response."""
    lines = iter_lines(source.aiter_text(), max_line_length=max_line_length)
    return iter_frames(lines, max_line_length=max_line_length)
