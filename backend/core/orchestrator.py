"""
Orchestrator — the bounded ask → parse → execute → feed-back loop.

One orchestrator owns one conversation: its memory, results tracker and
engine contexts. Invocations in a response execute one at a time in
document order. ``run`` returns a single final string; ``run_stream``
yields ``StreamEvent``s as the provider output arrives.
"""

import dataclasses
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from core.formatting import format_result_block, execution_context_message, join_sections
from core.memory import Memory, MemoryObserver
from core.prompts import build_system_prompt
from core.results import ResultsTracker
from engines import ExecutionEngine, ExecutionError, build_engines
from inference.base import Provider, ProviderError
from invocation.models import (
    FAILURE_PREFIX, EventType, Format, Invocation, MemoryEntry, Message, Role,
    StreamEvent,
)
from invocation.parser import (
    DEFAULT_SENTINEL, IncrementalScanner, dedupe, find_invocations, strip,
)
from invocation.thinking import THINK_CLOSE, Segment, SegmentKind, ThinkSplitter, split_thinking

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 3
DEFAULT_MEMORY_WINDOW = 10

CONTINUE_PROMPT = (
    "Continue your response based on the execution results. You can execute "
    "more code if needed, but try to provide a complete answer."
)
CANCELLED_RESPONSE = FAILURE_PREFIX + "execution cancelled by user"

Handler = Callable[[Invocation], Awaitable[str]]
ConfirmGate = Callable[[Invocation], Awaitable[bool]]
ChatInput = Union[str, Message, list[Message]]


class LoopState(str, Enum):
    REQUESTING = "requesting"
    PARSING = "parsing"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    DONE = "done"


class Orchestrator:
    """Drives a conversation with a provider and executes embedded invocations.

    ``handler`` replaces engine dispatch entirely when given: it receives
    each invocation and returns the raw response string. ``confirm`` is
    asked before every execution and may deny it.
    """

    def __init__(self, provider: Provider,
                 engines: Optional[dict[Format, ExecutionEngine]] = None,
                 system_prompt: str = "",
                 handler: Optional[Handler] = None,
                 confirm: Optional[ConfirmGate] = None,
                 on_memory: Optional[MemoryObserver] = None,
                 max_iterations: int = DEFAULT_MAX_ITERATIONS,
                 memory_window: int = DEFAULT_MEMORY_WINDOW,
                 tracker: Optional[ResultsTracker] = None,
                 sentinel: str = DEFAULT_SENTINEL):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.provider = provider
        self.engines = build_engines() if engines is None else dict(engines)
        self.system_prompt = system_prompt
        self.handler = handler
        self.confirm = confirm
        self.max_iterations = max_iterations
        self.memory_window = memory_window
        self.tracker = tracker or ResultsTracker()
        self.sentinel = sentinel
        self.memory = Memory(on_append=on_memory, seed_system=system_prompt or None)
        self.state = LoopState.DONE

    # ── Context ──

    @staticmethod
    def _normalize(message: ChatInput) -> list[Message]:
        if isinstance(message, str):
            return [Message.user(message)]
        if isinstance(message, Message):
            return [message]
        return list(message)

    @staticmethod
    def _coerce(entry: MemoryEntry) -> Message:
        """Replay a memory entry as a provider message."""
        if isinstance(entry, Invocation):
            if entry.response:
                return Message.user(execution_context_message(entry))
            return Message(Role.TOOL, entry.content)
        return entry

    def build_context(self, pending: list[Message]) -> list[Message]:
        """System prompt + trailing memory window + pending messages."""
        system = build_system_prompt(
            self.system_prompt, self.engines.keys(), self.sentinel,
            self.tracker.recent(),
        )
        messages = [Message.system(system)]
        messages.extend(self._coerce(e) for e in self.memory.window(self.memory_window))
        messages.extend(pending)
        return messages

    # ── Execution ──

    async def execute(self, invocation: Invocation) -> Invocation:
        """Run one invocation and return a copy carrying its response.

        Successful results are recorded in the tracker. Failures come back
        as ``"Error: ..."`` responses and are not recorded. Printed output
        travels separately in ``output`` so the response stays a value.
        """
        if self.confirm is not None and not await self.confirm(invocation):
            logger.info("Execution of %s cancelled by confirmation gate", invocation.id)
            return dataclasses.replace(invocation, response=CANCELLED_RESPONSE)

        output = None
        try:
            if self.handler is not None:
                raw = await self.handler(invocation)
            else:
                raw, output = await self._run_engine(invocation)
        except ExecutionError as e:
            logger.warning("Invocation %s failed: %s", invocation.id, e)
            raw = f"{FAILURE_PREFIX}{e}"
        except Exception as e:
            logger.exception("Handler raised for invocation %s", invocation.id)
            raw = f"{FAILURE_PREFIX}{e}"

        executed = dataclasses.replace(invocation, response=raw, output=output or None)
        self.tracker.record(invocation.id, raw, code=invocation.request,
                            format=invocation.format)
        return executed

    async def _run_engine(self, invocation: Invocation) -> tuple[str, str]:
        """Returns (response, printed output)."""
        engine = self.engines.get(invocation.format)
        if engine is None:
            raise ExecutionError(
                f"No engine available for format '{invocation.format.value}'"
            )
        engine.update_context({"results": self.tracker.snapshot()})
        logger.info("Executing %s (%s, %d bytes)", invocation.id,
                    invocation.format.value, len(invocation.request))
        if invocation.format is Format.TERMINAL:
            value = await engine.execute(invocation.request, shell=invocation.shell)
        else:
            value = await engine.execute(invocation.request)
        return engine.render(value), engine.last_output

    def _finish_iteration(self, response: str, candidates: list[Invocation],
                          executed: list[Invocation]) -> tuple[str, list[str]]:
        """Record the cleaned response. Returns (section text, result blocks).

        ``candidates`` includes repeated ids so every block is stripped.
        """
        blocks = [format_result_block(inv) for inv in executed if inv.response]
        clean = strip(response, candidates)
        self.memory.append(Message.assistant(clean))
        return join_sections(clean, *blocks), blocks

    # ── Bounded Loop ──

    async def run(self, message: ChatInput) -> str:
        """Ask, execute any invocations, and repeat up to ``max_iterations``."""
        for m in self._normalize(message):
            self.memory.append(m)

        pending: list[Message] = []
        sections: list[str] = []
        iteration = 0
        try:
            while iteration < self.max_iterations:
                iteration += 1
                self.state = LoopState.REQUESTING
                logger.info("Iteration %d/%d", iteration, self.max_iterations)
                try:
                    response = await self.provider.ask(self.build_context(pending))
                except ProviderError as e:
                    if sections:
                        logger.warning("Provider failed in iteration %d (%s); "
                                       "returning partial response", iteration, e)
                        break
                    raise

                self.state = LoopState.PARSING
                thoughts, response = split_thinking(response)
                if thoughts:
                    logger.debug("Dropped %d chars of reasoning in iteration %d",
                                 len(thoughts), iteration)
                candidates = find_invocations(response, self.sentinel, unique=False)
                if not candidates:
                    self.state = LoopState.FINALIZING
                    sections.append(response)
                    self.memory.append(Message.assistant(response))
                    break

                self.state = LoopState.EXECUTING
                executed = []
                for inv in dedupe(candidates):
                    done = await self.execute(inv)
                    self.memory.append(done)
                    executed.append(done)

                self.state = LoopState.FINALIZING
                section, _ = self._finish_iteration(response, candidates, executed)
                sections.append(section)
                pending = [Message.user(CONTINUE_PROMPT)]
        finally:
            self.state = LoopState.DONE

        logger.info("Completed after %d iteration(s)", iteration)
        return join_sections(*sections)

    # ── Streaming ──

    async def run_stream(self, message: ChatInput) -> AsyncIterator[StreamEvent]:
        """Streaming variant of ``run``.

        Invocations execute as soon as their closing fence arrives. Reasoning
        inside <think> tags is reported as ``thinking`` events and kept out of
        the response. Any failure ends the stream with a single ``error`` event.
        """
        for m in self._normalize(message):
            self.memory.append(m)

        pending: list[Message] = []
        sections: list[str] = []
        all_blocks: list[str] = []
        iteration = 0
        try:
            while iteration < self.max_iterations:
                iteration += 1
                self.state = LoopState.REQUESTING
                logger.info("Streaming iteration %d/%d", iteration, self.max_iterations)
                yield StreamEvent(EventType.THINKING, {"iteration": iteration})

                splitter = ThinkSplitter()
                scanner = IncrementalScanner(self.sentinel)
                executed: list[Invocation] = []
                stream = self.provider.ask_stream(self.build_context(pending))
                try:
                    async for delta in stream:
                        for segment in splitter.feed(delta):
                            scanner, event, ready = self._take_segment(segment, scanner, iteration)
                            yield event
                            for inv in ready:
                                for event in self._announce(inv):
                                    yield event
                                done = await self._execute_recorded(inv, executed)
                                yield self._result_event(done)
                finally:
                    aclose = getattr(stream, "aclose", None)
                    if aclose is not None:
                        await aclose()

                for segment in splitter.finish():
                    scanner, event, ready = self._take_segment(segment, scanner, iteration)
                    yield event
                    for inv in ready:
                        for event in self._announce(inv):
                            yield event
                        done = await self._execute_recorded(inv, executed)
                        yield self._result_event(done)

                self.state = LoopState.PARSING
                for inv in scanner.finish():
                    for event in self._announce(inv):
                        yield event
                    done = await self._execute_recorded(inv, executed)
                    yield self._result_event(done)

                self.state = LoopState.FINALIZING
                response = scanner.buffer
                if not scanner.found:
                    if splitter.thoughts:
                        response = response.strip()
                    sections.append(response)
                    self.memory.append(Message.assistant(response))
                    break

                section, blocks = self._finish_iteration(response, scanner.candidates, executed)
                sections.append(section)
                all_blocks.extend(blocks)
                if iteration < self.max_iterations:
                    yield StreamEvent(EventType.ITERATION, {
                        "iteration": iteration + 1,
                        "reason": "Continuing after code execution",
                    })
                    pending = [Message.user(CONTINUE_PROMPT)]

            final = join_sections(*sections)
            logger.info("Stream completed after %d iteration(s)", iteration)
            yield StreamEvent(EventType.COMPLETE, {
                "final_response": final,
                "iterations": iteration,
                "execution_results": all_blocks,
            })
        except Exception as e:
            logger.error("Stream failed in iteration %d: %s", iteration, e)
            yield StreamEvent(EventType.ERROR, {"error": str(e), "iteration": iteration})
        finally:
            self.state = LoopState.DONE

    def _take_segment(self, segment: Segment, scanner: IncrementalScanner,
                      iteration: int) -> tuple[IncrementalScanner, StreamEvent, list[Invocation]]:
        """Route one splitter segment. Returns (scanner, event, ready invocations)."""
        if segment.kind is SegmentKind.THOUGHT:
            if segment.retracts:
                if scanner.found:
                    logger.warning("Unopened %s after executed invocations; "
                                   "keeping streamed response text", THINK_CLOSE)
                else:
                    scanner = IncrementalScanner(self.sentinel)
            event = StreamEvent(EventType.THINKING, {
                "iteration": iteration, "thought": segment.text,
            })
            return scanner, event, []

        ready = scanner.feed(segment.text)
        event = StreamEvent(EventType.TEXT, {
            "delta": segment.text, "accumulated": scanner.buffer,
        })
        return scanner, event, ready

    async def _execute_recorded(self, invocation: Invocation,
                                executed: list[Invocation]) -> Invocation:
        self.state = LoopState.EXECUTING
        done = await self.execute(invocation)
        self.memory.append(done)
        executed.append(done)
        return done

    @staticmethod
    def _announce(invocation: Invocation) -> list[StreamEvent]:
        return [
            StreamEvent(EventType.CODE_FOUND, {
                "id": invocation.id,
                "format": invocation.format.value,
                "code": invocation.request,
            }),
            StreamEvent(EventType.CODE_EXECUTING, {
                "id": invocation.id,
                "format": invocation.format.value,
            }),
        ]

    @staticmethod
    def _result_event(invocation: Invocation) -> StreamEvent:
        data = {
            "id": invocation.id,
            "result": invocation.response,
            "success": invocation.succeeded,
        }
        if invocation.output:
            data["output"] = invocation.output
        return StreamEvent(EventType.CODE_RESULT, data)

    # ── State ──

    def reset(self):
        """Forget the conversation, stored results and engine contexts."""
        self.memory.reset()
        self.tracker.clear()
        for engine in self.engines.values():
            engine.clear_context()
        logger.info("Orchestrator reset")

    def get_result(self, invocation_id: str):
        return self.tracker.get(invocation_id)

    def has_result(self, invocation_id: str) -> bool:
        return self.tracker.has(invocation_id)

    def history(self):
        return self.tracker.history()
