"""
Conversation data model — messages, invocations and stream events.

Messages are immutable once created. An Invocation is a Message with role
``tool`` that additionally records where it was found in the model's
response text and, after execution, the raw response string.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

# Responses starting with this prefix denote a failed execution.
FAILURE_PREFIX = "Error: "


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Format(str, Enum):
    CODE = "code"
    TYPED_CODE = "typed-code"
    TERMINAL = "terminal"


class EventType(str, Enum):
    THINKING = "thinking"
    ITERATION = "iteration"
    TEXT = "text"
    CODE_FOUND = "code_found"
    CODE_EXECUTING = "code_executing"
    CODE_RESULT = "code_result"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(Role.ASSISTANT, content)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(Role.SYSTEM, content)


@dataclass(frozen=True)
class Invocation(Message):
    """One tool-use request embedded in model output.

    ``start_line``/``end_line`` form an inclusive, 0-based range in the
    source response text covering the marker line through the closing fence.
    """

    id: str = ""
    operation: str = ""
    format: Format = Format.CODE
    request: str = ""
    start_line: int = 0
    end_line: int = 0
    shell: Optional[str] = None
    response: Optional[str] = None
    # Printed output captured alongside the response, if any
    output: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.response) and not self.response.startswith(FAILURE_PREFIX)

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.content,
            "id": self.id,
            "operation": self.operation,
            "format": self.format.value,
            "request": self.request,
            "response": self.response,
            "output": self.output,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }


# Memory entries are a closed union of these two kinds.
MemoryEntry = Union[Message, Invocation]


@dataclass
class ExecutionHistoryEntry:
    id: str
    code: str
    result: Any
    format: Format
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "result": self.result,
            "format": self.format.value,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class StreamEvent:
    type: EventType
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type.value, "data": self.data}
