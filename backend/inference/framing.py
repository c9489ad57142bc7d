"""
Stream framing shared by the provider adapters.

Chunks from the network can split a line, a UTF-8 sequence or a JSON
object anywhere. ``LineFramer`` buffers until a full line is available;
the helpers below extract content from one complete line.
"""

import codecs
import json
import logging
from typing import AsyncIterator, Optional, Union

from inference.base import ProviderError

logger = logging.getLogger(__name__)

SSE_DONE = "[DONE]"


class LineFramer:
    """Incremental chunk -> complete-lines splitter."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: Union[bytes, str]) -> list[str]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever remains once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer.rstrip("\r"), ""
        return [rest] if rest else []


def sse_data(line: str) -> Optional[str]:
    """Payload of an SSE ``data:`` line, or None for any other line."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[5:]
    if data.startswith(" "):
        data = data[1:]
    return data


def openai_delta(data: str) -> str:
    """Content delta from one OpenAI-style streaming chunk."""
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON SSE payload: %s", data[:100])
        return ""
    if not isinstance(chunk, dict):
        return ""
    if "error" in chunk:
        raise ProviderError(f"Provider stream error: {chunk['error']}")
    choices = chunk.get("choices") or [{}]
    delta = choices[0].get("delta") or {}
    return delta.get("content") or ""


def ndjson_content(line: str) -> tuple[str, bool]:
    """(content, done) from one Ollama NDJSON line."""
    if not line.strip():
        return "", False
    try:
        chunk = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed NDJSON line: %s", line[:100])
        return "", False
    if not isinstance(chunk, dict):
        logger.debug("Skipping non-object NDJSON line: %s", line[:100])
        return "", False
    if "error" in chunk:
        raise ProviderError(f"Provider stream error: {chunk['error']}")
    content = (chunk.get("message") or {}).get("content") or ""
    return content, bool(chunk.get("done", False))


async def iter_lines(resp) -> AsyncIterator[str]:
    """Complete lines from an ``httpx.Response`` body, framed by LineFramer."""
    framer = LineFramer()
    async for chunk in resp.aiter_bytes():
        for line in framer.feed(chunk):
            yield line
    for line in framer.flush():
        yield line
