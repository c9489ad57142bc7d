"""
Abstract base class for execution engines.

An engine runs one payload format against a persistent, mutable context:
a value bound by one payload is visible to the next call on the same
engine instance until the context is cleared.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from invocation.models import Format

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ExecutionError(Exception):
    """Raised when a payload fails to run."""
    pass


class ExecutionTimeout(ExecutionError):
    pass


def format_value(value: Any) -> str:
    """Render an engine return value as a raw response string."""
    if value is None:
        return "None"
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        # JSON spelling keeps booleans coercible by the results tracker.
        return json.dumps(value)
    if isinstance(value, BaseException):
        return f"Error: {value}"
    if callable(value):
        return f"[Function: {getattr(value, '__name__', 'anonymous')}]"
    try:
        return json.dumps(value, indent=2, default=str)
    except (TypeError, ValueError):
        return repr(value)


class ExecutionEngine(ABC):
    """Stateful sandbox for one payload format."""

    format: Format

    def __init__(self, timeout: Optional[float] = DEFAULT_TIMEOUT):
        self.timeout = timeout

    @abstractmethod
    async def execute(self, code: str, context_extension: Optional[dict] = None) -> Any:
        """Run ``code`` and return its result value.

        Raises ExecutionError (or a subclass) when the payload fails.
        """
        ...

    @abstractmethod
    def update_context(self, updates: dict) -> None:
        ...

    @abstractmethod
    def clear_context(self) -> None:
        ...

    @abstractmethod
    def get_context(self) -> dict:
        ...

    def render(self, value: Any) -> str:
        """Turn the value returned by ``execute`` into a response string."""
        return format_value(value)

    @property
    def last_output(self) -> str:
        """Output printed by the most recent call, kept apart from its value."""
        return ""
