"""
Conversation memory — append-only log of messages and executed invocations.
"""

import logging
from typing import Callable, Optional

from invocation.models import Invocation, MemoryEntry, Message, Role

logger = logging.getLogger(__name__)

MemoryObserver = Callable[[MemoryEntry], None]


class Memory:
    """Ordered conversation entries with an optional append observer.

    ``append`` is the only mutator besides ``reset``. When ``seed_system``
    is set, ``reset`` leaves exactly one system message behind.
    """

    def __init__(self, on_append: Optional[MemoryObserver] = None,
                 seed_system: Optional[str] = None):
        self._entries: list[MemoryEntry] = []
        self.on_append = on_append
        self.seed_system = seed_system
        if seed_system:
            self._entries.append(Message.system(seed_system))

    def append(self, entry: MemoryEntry):
        self._entries.append(entry)
        if self.on_append:
            self.on_append(entry)
        logger.debug("Memory append: %s %s", entry.role.value, entry.content[:100])

    def reset(self):
        self._entries = []
        if self.seed_system:
            self._entries.append(Message.system(self.seed_system))
        logger.debug("Memory reset (%d entries kept)", len(self._entries))

    def window(self, size: int) -> list[MemoryEntry]:
        """The trailing ``size`` non-system entries."""
        entries = [e for e in self._entries if e.role is not Role.SYSTEM]
        if size <= 0:
            return []
        return entries[-size:]

    @property
    def entries(self) -> tuple[MemoryEntry, ...]:
        return tuple(self._entries)

    def invocations(self) -> list[Invocation]:
        return [e for e in self._entries if isinstance(e, Invocation)]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(tuple(self._entries))
