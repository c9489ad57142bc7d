"""
Reasoning splitter — separates <think>...</think> text from the response.

Some models emit their reasoning inline, wrapped in think tags. The splitter
works on a stream of chunks: tags may be split across chunks, so a trailing
partial tag is held back until the next chunk decides it.

A closing tag seen outside a think block means the model forgot the opening
tag. Everything emitted as response so far is then reclassified as thought;
the segment carrying it has ``retracts`` set so consumers can discard the
response text they already took.
"""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


class SegmentKind(str, Enum):
    THOUGHT = "thought"
    RESPONSE = "response"


@dataclass(frozen=True)
class Segment:
    kind: SegmentKind
    text: str
    retracts: bool = False


def _partial_tag_length(text: str, tags: tuple[str, ...]) -> int:
    """Length of the longest suffix of ``text`` that starts one of ``tags``."""
    longest = 0
    for tag in tags:
        for n in range(min(len(tag) - 1, len(text)), longest, -1):
            if text.endswith(tag[:n]):
                longest = n
                break
    return longest


class ThinkSplitter:
    """Incremental thought/response splitter."""

    def __init__(self):
        self.thinking = False
        self.thoughts = ""
        self.response = ""
        self._buffer = ""

    def _take(self, segments: list[Segment], kind: SegmentKind, text: str,
              retracts: bool = False):
        if not text:
            return
        if kind is SegmentKind.THOUGHT:
            self.thoughts += text
        else:
            self.response += text
        segments.append(Segment(kind, text, retracts))

    def feed(self, chunk: str) -> list[Segment]:
        self._buffer += chunk
        segments: list[Segment] = []

        while True:
            start = self._buffer.find(THINK_OPEN)
            end = self._buffer.find(THINK_CLOSE)
            if self.thinking:
                if end == -1:
                    break
                self._take(segments, SegmentKind.THOUGHT, self._buffer[:end])
                self._buffer = self._buffer[end + len(THINK_CLOSE):]
                self.thinking = False
            elif start != -1 and (end == -1 or start < end):
                self._take(segments, SegmentKind.RESPONSE, self._buffer[:start])
                self._buffer = self._buffer[start + len(THINK_OPEN):]
                self.thinking = True
            elif end != -1:
                logger.debug("Closing %s without an opening tag; "
                             "reclassifying %d chars of response as thought",
                             THINK_CLOSE, len(self.response))
                retracted = self.response + self._buffer[:end]
                self.response = ""
                self._take(segments, SegmentKind.THOUGHT, retracted, retracts=True)
                self._buffer = self._buffer[end + len(THINK_CLOSE):]
            else:
                break

        tags = (THINK_CLOSE,) if self.thinking else (THINK_OPEN, THINK_CLOSE)
        ready = len(self._buffer) - _partial_tag_length(self._buffer, tags)
        kind = SegmentKind.THOUGHT if self.thinking else SegmentKind.RESPONSE
        self._take(segments, kind, self._buffer[:ready])
        self._buffer = self._buffer[ready:]
        return segments

    def finish(self) -> list[Segment]:
        """Flush the held-back remainder once the stream has ended."""
        segments: list[Segment] = []
        if self.thinking:
            logger.warning("Stream ended inside an unterminated %s block", THINK_OPEN)
            self._take(segments, SegmentKind.THOUGHT, self._buffer)
        else:
            self._take(segments, SegmentKind.RESPONSE, self._buffer)
        self._buffer = ""
        return segments


def split_thinking(text: str) -> tuple[str, str]:
    """(thoughts, response) for a complete response text.

    Text without think tags comes back unchanged as the response.
    """
    splitter = ThinkSplitter()
    splitter.feed(text)
    splitter.finish()
    if not splitter.thoughts:
        return "", splitter.response
    return splitter.thoughts.strip(), splitter.response.strip()
