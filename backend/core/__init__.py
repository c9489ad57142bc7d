"""
Core package — conversation orchestration.

Structure:
    orchestrator.py — Orchestrator: bounded loop and streaming variant
    memory.py       — Append-only conversation memory
    results.py      — Results tracker and execution history
    formatting.py   — Result blocks and execution-context messages
    prompts.py      — System prompt assembly

Usage:
    from core import build_orchestrator
    orchestrator = build_orchestrator(get_profile())
    answer = await orchestrator.run("What is 2 + 2?")
"""

import logging
from typing import Optional

from core.memory import Memory
from core.orchestrator import LoopState, Orchestrator
from core.results import ResultsTracker
from engines import build_engines
from inference import Provider, get_provider

logger = logging.getLogger(__name__)


def build_orchestrator(profile, provider: Optional[Provider] = None, **kwargs) -> Orchestrator:
    """Wire an Orchestrator from a Profile.

    ``provider`` overrides the configured backend; remaining keyword
    arguments are passed to the Orchestrator unchanged.
    """
    orch_cfg = profile.orchestrator
    return Orchestrator(
        provider=provider or get_provider(profile),
        engines=build_engines(profile.engines),
        system_prompt=profile.system.system_prompt,
        max_iterations=orch_cfg.max_iterations,
        memory_window=orch_cfg.memory_window,
        tracker=ResultsTracker(
            history_limit=orch_cfg.history_limit,
            surface=orch_cfg.history_surface,
        ),
        sentinel=orch_cfg.sentinel,
        **kwargs,
    )


__all__ = [
    "LoopState",
    "Memory",
    "Orchestrator",
    "ResultsTracker",
    "build_orchestrator",
]
