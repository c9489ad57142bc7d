"""
Results tracker — typed-value cache and bounded execution history.

Raw engine responses are strings. Successful ones are coerced back into
typed values (JSON, number, or the raw string) so later payloads and
prompts can refer to them by invocation id. Failures are never stored.
"""

import json
import logging
import re
from collections import deque
from typing import Any, Optional

from invocation.models import FAILURE_PREFIX, ExecutionHistoryEntry, Format

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
HISTORY_SURFACE = 5

_NUMERIC_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def coerce_response(raw: str) -> Any:
    """JSON first, then a numeric literal, otherwise the raw string."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        pass
    text = raw.strip()
    if _NUMERIC_RE.match(text):
        try:
            return int(text)
        except ValueError:
            return float(text)
    return raw


class ResultsTracker:
    """Results store plus FIFO execution history for one orchestrator."""

    def __init__(self, history_limit: int = HISTORY_LIMIT,
                 surface: int = HISTORY_SURFACE):
        self._results: dict[str, Any] = {}
        self._history: deque[ExecutionHistoryEntry] = deque(maxlen=history_limit)
        self.surface = surface

    def record(self, invocation_id: str, raw_response: Optional[str],
               code: str = "", format: Format = Format.CODE) -> bool:
        """Record a raw response. Returns False when it was not stored."""
        if raw_response is None or raw_response.startswith(FAILURE_PREFIX):
            logger.debug("Not storing failed result for %s", invocation_id)
            return False
        value = coerce_response(raw_response)
        self._results[invocation_id] = value
        self._history.append(ExecutionHistoryEntry(
            id=invocation_id, code=code, result=value, format=format,
        ))
        return True

    def get(self, invocation_id: str) -> Any:
        return self._results.get(invocation_id)

    def has(self, invocation_id: str) -> bool:
        return invocation_id in self._results

    def history(self) -> list[ExecutionHistoryEntry]:
        return list(self._history)

    def recent(self, n: Optional[int] = None) -> list[ExecutionHistoryEntry]:
        n = self.surface if n is None else n
        if n <= 0:
            return []
        return list(self._history)[-n:]

    def snapshot(self) -> dict[str, Any]:
        return dict(self._results)

    def clear(self):
        self._results.clear()
        self._history.clear()

    def __len__(self) -> int:
        return len(self._results)
