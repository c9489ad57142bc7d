"""
Test fixtures for the doloop test suite.
"""

import os
import sys
from pathlib import Path
from typing import Optional

import pytest

# Add backend to path
BACKEND_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BACKEND_DIR))

# Set up a minimal profile before importing anything that reads config
os.environ["PROFILE_PATH"] = str(BACKEND_DIR.parent / "profile.yaml.example")

from inference.base import Provider, ProviderError  # noqa: E402

SENTINEL = "🪬"


class ScriptedProvider(Provider):
    """Provider that replays canned responses and records every call.

    Each scripted item is either a response string or an exception to raise.
    Streaming splits a response into ``chunk_size`` pieces.
    """

    def __init__(self, responses, chunk_size: Optional[int] = None):
        super().__init__("http://scripted.test")
        self.responses = list(responses)
        self.chunk_size = chunk_size
        self.calls: list[list] = []
        self.closed_streams = 0

    def _next(self, messages):
        self.calls.append(list(messages))
        if not self.responses:
            raise ProviderError("No scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def ask(self, messages, options=None):
        return self._next(messages)

    async def ask_stream(self, messages, options=None):
        text = self._next(messages)
        size = self.chunk_size or max(len(text), 1)
        try:
            for i in range(0, len(text), size):
                yield text[i:i + size]
        finally:
            self.closed_streams += 1


def marker(inv_id: str, fmt: str = "code", verb: str = "exec") -> str:
    return f"> {SENTINEL}{inv_id}/do/{verb}/{fmt}"


@pytest.fixture
def make_provider():
    """Factory for ScriptedProvider instances."""
    return ScriptedProvider


@pytest.fixture
def make_marker():
    return marker


@pytest.fixture
def make_orchestrator():
    """Factory for an Orchestrator wired to a scripted provider."""
    from core.orchestrator import Orchestrator

    def _make(responses, chunk_size=None, **kwargs):
        provider = ScriptedProvider(responses, chunk_size=chunk_size)
        kwargs.setdefault("sentinel", SENTINEL)
        return Orchestrator(provider, **kwargs)

    return _make
