"""
Invocation package — the conversation data model and the marker parser.
"""

from invocation.models import (
    FAILURE_PREFIX, EventType, ExecutionHistoryEntry, Format, Invocation,
    MemoryEntry, Message, Role, StreamEvent,
)
from invocation.parser import (
    DEFAULT_SENTINEL, IncrementalScanner, InvalidMarker, InvalidPayload,
    ParseError, dedupe, find_invocations, parse_one, strip,
)
from invocation.thinking import Segment, SegmentKind, ThinkSplitter, split_thinking

__all__ = [
    "FAILURE_PREFIX",
    "DEFAULT_SENTINEL",
    "EventType",
    "ExecutionHistoryEntry",
    "Format",
    "Invocation",
    "MemoryEntry",
    "Message",
    "Role",
    "StreamEvent",
    "IncrementalScanner",
    "InvalidMarker",
    "InvalidPayload",
    "ParseError",
    "dedupe",
    "find_invocations",
    "parse_one",
    "strip",
    "Segment",
    "SegmentKind",
    "ThinkSplitter",
    "split_thinking",
]
