"""
Tests for the bounded orchestration loop (non-streaming).
"""

import pytest

from core import build_orchestrator
from core.orchestrator import CANCELLED_RESPONSE, CONTINUE_PROMPT, LoopState
from engines import PythonEngine
from inference.base import ProviderError
from invocation.models import Format, Invocation, Message, Role
from settings import Profile

S = "🪬"


def _block(inv_id: str, code: str, fmt: str = "code", lang: str = "python") -> str:
    return f"> {S}{inv_id}/do/exec/{fmt}\n```{lang}\n{code}\n```"


async def _echo_four(invocation):
    return "4"


# ── End-to-End ──

class TestRun:
    """Test the ask → execute → continue loop."""

    @pytest.mark.asyncio
    async def test_plain_answer_single_call(self, make_orchestrator):
        orch = make_orchestrator(["Just text."])
        assert await orch.run("hi") == "Just text."
        assert len(orch.provider.calls) == 1
        assert orch.state is LoopState.DONE

    @pytest.mark.asyncio
    async def test_calc_end_to_end(self, make_orchestrator):
        response = f"Calc:\n\n> {S}id1/do/exec/code\n```code\n2+2\n```\n\nDone."
        orch = make_orchestrator([response, "The answer is 4."], handler=_echo_four)

        result = await orch.run("What is 2+2?")

        assert "Calc:" in result
        assert "Done." in result
        assert "2+2" in result
        assert "4" in result
        assert f"> {S}id1/do/exec/code" not in result
        assert result.endswith("The answer is 4.")
        assert orch.get_result("id1") == 4

    @pytest.mark.asyncio
    async def test_result_block_layout(self, make_orchestrator):
        orch = make_orchestrator([_block("calc", "2+2"), "ok"], handler=_echo_four)
        result = await orch.run("go")
        assert "**Code Executed:**\n```python\n2+2\n```" in result
        assert "**Result:**\n```json\n4\n```" in result

    @pytest.mark.asyncio
    async def test_real_python_engine(self, make_orchestrator):
        orch = make_orchestrator(
            [_block("calc", "x = 21\nx * 2"), "Forty-two."],
            engines={Format.CODE: PythonEngine()},
        )
        result = await orch.run("double 21")
        assert "42" in result
        assert orch.get_result("calc") == 42
        assert orch.has_result("calc")

    @pytest.mark.asyncio
    async def test_results_visible_to_later_payloads(self, make_orchestrator):
        orch = make_orchestrator(
            [
                _block("first", "20 + 1"),
                _block("second", "results['first'] * 2"),
                "done",
            ],
            engines={Format.CODE: PythonEngine()},
        )
        await orch.run("go")
        assert orch.get_result("second") == 42

    @pytest.mark.asyncio
    async def test_invocations_run_in_document_order(self, make_orchestrator):
        order = []

        async def handler(invocation):
            order.append(invocation.id)
            return invocation.id

        text = "\n".join([_block("a", "1"), "between", _block("b", "2")])
        orch = make_orchestrator([text, "end"], handler=handler)
        await orch.run("go")
        assert order == ["a", "b"]

    @pytest.mark.asyncio
    async def test_max_iterations_cap(self, make_orchestrator):
        responses = [_block(f"step{i}", str(i)) for i in range(5)]
        orch = make_orchestrator(responses, handler=_echo_four, max_iterations=2)
        await orch.run("loop forever")
        assert len(orch.provider.calls) == 2

    def test_invalid_max_iterations(self, make_orchestrator):
        with pytest.raises(ValueError):
            make_orchestrator([], max_iterations=0)


# ── Failures ──

class TestFailures:
    """Test error handling during execution and inference."""

    @pytest.mark.asyncio
    async def test_runtime_error_becomes_response(self, make_orchestrator):
        orch = make_orchestrator(
            [_block("bad", "1 / 0"), "Oops."],
            engines={Format.CODE: PythonEngine()},
        )
        result = await orch.run("divide")
        assert "Error: ZeroDivisionError" in result
        assert not orch.has_result("bad")
        assert orch.history() == []

    @pytest.mark.asyncio
    async def test_missing_engine(self, make_orchestrator):
        orch = make_orchestrator([_block("t", "1"), "ok"], engines={})
        result = await orch.run("go")
        assert "Error: No engine available for format 'code'" in result

    @pytest.mark.asyncio
    async def test_handler_exception(self, make_orchestrator):
        async def handler(invocation):
            raise RuntimeError("boom")

        orch = make_orchestrator([_block("x", "1"), "ok"], handler=handler)
        result = await orch.run("go")
        assert "Error: boom" in result

    @pytest.mark.asyncio
    async def test_provider_error_on_first_call_raises(self, make_orchestrator):
        orch = make_orchestrator([ProviderError("down")])
        with pytest.raises(ProviderError, match="down"):
            await orch.run("hi")
        assert orch.state is LoopState.DONE

    @pytest.mark.asyncio
    async def test_provider_error_after_progress_returns_partial(self, make_orchestrator):
        orch = make_orchestrator(
            [f"Working.\n{_block('w', '1')}", ProviderError("down")],
            handler=_echo_four,
        )
        result = await orch.run("hi")
        assert result.startswith("Working.")
        assert "**Result:**" in result


# ── Confirmation Gate ──

class TestConfirmGate:
    """Test the optional pre-execution confirmation callback."""

    @pytest.mark.asyncio
    async def test_denied(self, make_orchestrator):
        calls = []

        async def handler(invocation):
            calls.append(invocation.id)
            return "ran"

        async def deny(invocation):
            return False

        orch = make_orchestrator([_block("g", "1"), "ok"], handler=handler, confirm=deny)
        result = await orch.run("go")
        assert calls == []
        assert CANCELLED_RESPONSE in result
        assert not orch.has_result("g")

    @pytest.mark.asyncio
    async def test_allowed(self, make_orchestrator):
        async def allow(invocation):
            return True

        orch = make_orchestrator([_block("g", "1"), "ok"], handler=_echo_four, confirm=allow)
        await orch.run("go")
        assert orch.get_result("g") == 4


# ── Context Building ──

class TestContext:
    """Test what is sent to the provider on each call."""

    @pytest.mark.asyncio
    async def test_first_call_layout(self, make_orchestrator):
        orch = make_orchestrator(["hello"], system_prompt="Be brief.")
        await orch.run("hi")
        messages = orch.provider.calls[0]
        assert messages[0].role is Role.SYSTEM
        assert messages[0].content.startswith("Be brief.")
        assert "## Executing Code" in messages[0].content
        assert messages[-1] == Message.user("hi")

    @pytest.mark.asyncio
    async def test_follow_up_carries_results(self, make_orchestrator):
        orch = make_orchestrator([_block("id1", "2+2"), "four"], handler=_echo_four)
        await orch.run("go")

        second = orch.provider.calls[1]
        assert second[-1] == Message.user(CONTINUE_PROMPT)
        assert "## Recent Executions" in second[0].content
        assert "`id1`" in second[0].content
        replayed = [m for m in second if "Execution result from previous code" in m.content]
        assert len(replayed) == 1
        assert replayed[0].role is Role.USER
        assert "Result: 4" in replayed[0].content

    @pytest.mark.asyncio
    async def test_continue_prompt_not_stored(self, make_orchestrator):
        orch = make_orchestrator([_block("id1", "1"), "fine"], handler=_echo_four)
        await orch.run("go")
        assert all(e.content != CONTINUE_PROMPT for e in orch.memory)

    @pytest.mark.asyncio
    async def test_memory_window(self, make_orchestrator):
        orch = make_orchestrator(["a", "b", "c"], memory_window=2)
        await orch.run("one")
        await orch.run("two")
        await orch.run("three")
        last = orch.provider.calls[-1]
        # system prompt + the two most recent memory entries
        assert [m.content for m in last[1:]] == ["b", "three"]

    def test_unexecuted_invocation_replays_as_tool(self, make_orchestrator):
        orch = make_orchestrator([])
        inv = Invocation(Role.TOOL, "raw block", id="x", request="1")
        assert orch._coerce(inv) == Message(Role.TOOL, "raw block")

    @pytest.mark.asyncio
    async def test_memory_observer(self, make_orchestrator):
        seen = []
        orch = make_orchestrator(
            [_block("m", "1"), "end"], handler=_echo_four, on_memory=seen.append,
        )
        await orch.run("go")
        assert [e.role for e in seen] == [
            Role.USER, Role.TOOL, Role.ASSISTANT, Role.ASSISTANT,
        ]
        assert isinstance(seen[1], Invocation)
        assert seen[1].response == "4"

    @pytest.mark.asyncio
    async def test_stored_assistant_text_is_stripped(self, make_orchestrator):
        orch = make_orchestrator([f"Before\n{_block('s', '1')}\nAfter", "end"],
                                 handler=_echo_four)
        await orch.run("go")
        assistant = [e for e in orch.memory if e.role is Role.ASSISTANT]
        assert assistant[0].content == "Before\nAfter"


# ── Printed Output ──

class TestPrintedOutput:
    """Test that printed output is carried beside the value, not in it."""

    @pytest.mark.asyncio
    async def test_value_survives_print(self, make_orchestrator):
        orch = make_orchestrator(
            [_block("calc", "print('hi')\n42"), "done"],
            engines={Format.CODE: PythonEngine()},
        )
        result = await orch.run("go")
        assert orch.get_result("calc") == 42
        assert "**Result:**\n```json\n42\n```" in result
        assert "**Output:**\n```text\nhi\n```" in result

    @pytest.mark.asyncio
    async def test_output_on_stored_invocation(self, make_orchestrator):
        orch = make_orchestrator(
            [_block("calc", "print('hi')\n42"), "done"],
            engines={Format.CODE: PythonEngine()},
        )
        await orch.run("go")
        stored = orch.memory.invocations()[0]
        assert stored.response == "42"
        assert stored.output == "hi"

    @pytest.mark.asyncio
    async def test_no_output_section_without_print(self, make_orchestrator):
        orch = make_orchestrator(
            [_block("calc", "42"), "done"],
            engines={Format.CODE: PythonEngine()},
        )
        result = await orch.run("go")
        assert "**Output:**" not in result
        assert orch.memory.invocations()[0].output is None


# ── Repeated Ids ──

class TestDuplicateIds:
    """Test responses that reuse an invocation id."""

    @pytest.mark.asyncio
    async def test_repeat_is_stripped_but_not_executed(self, make_orchestrator):
        calls = []

        async def handler(invocation):
            calls.append(invocation.request)
            return "4"

        text = "\n".join([_block("dup", "1"), "middle", _block("dup", "2")])
        orch = make_orchestrator([text, "end"], handler=handler)
        result = await orch.run("go")

        assert calls == ["1"]
        assert f"> {S}dup/do/exec/code" not in result
        assert "middle" in result
        assistant = [e for e in orch.memory if e.role is Role.ASSISTANT]
        assert assistant[0].content == "middle"


# ── Reasoning ──

class TestThinking:
    """Test that <think> reasoning never reaches the response or memory."""

    @pytest.mark.asyncio
    async def test_reasoning_removed(self, make_orchestrator):
        orch = make_orchestrator(["<think>secret reasoning</think>The answer is 4."])
        assert await orch.run("2+2?") == "The answer is 4."
        assistant = [e for e in orch.memory if e.role is Role.ASSISTANT]
        assert assistant[0].content == "The answer is 4."

    @pytest.mark.asyncio
    async def test_markers_inside_reasoning_ignored(self, make_orchestrator):
        calls = []

        async def handler(invocation):
            calls.append(invocation.id)
            return "4"

        text = f"<think>maybe:\n{_block('idea', '1')}\n</think>No code needed."
        orch = make_orchestrator([text], handler=handler)
        assert await orch.run("go") == "No code needed."
        assert calls == []

    @pytest.mark.asyncio
    async def test_missing_open_tag(self, make_orchestrator):
        orch = make_orchestrator(["pondering...</think>\nFinal."])
        assert await orch.run("go") == "Final."


# ── State ──

class TestReset:
    """Test clearing conversation state."""

    @pytest.mark.asyncio
    async def test_reset(self, make_orchestrator):
        engine = PythonEngine()
        orch = make_orchestrator(
            [_block("v", "y = 5\ny"), "ok"],
            engines={Format.CODE: engine}, system_prompt="Seed",
        )
        await orch.run("go")
        assert orch.has_result("v")

        orch.reset()
        assert not orch.has_result("v")
        assert orch.history() == []
        assert "y" not in engine.get_context()
        assert list(orch.memory) == [Message.system("Seed")]


class TestBuildOrchestrator:
    """Test wiring from a profile."""

    def test_profile_values_applied(self, make_provider):
        profile = Profile()
        profile.orchestrator.max_iterations = 5
        profile.orchestrator.memory_window = 4
        profile.engines.terminal.enabled = False
        orch = build_orchestrator(profile, provider=make_provider([]))
        assert orch.max_iterations == 5
        assert orch.memory_window == 4
        assert set(orch.engines) == {Format.CODE, Format.TYPED_CODE}
