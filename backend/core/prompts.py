"""
System prompt templates for the orchestrator.

The system prompt is rebuilt on every provider call: the configured base
prompt, the invocation rules for the enabled engines, and a short list of
recent executions whose results the model may refer to.
"""

import json
from typing import Iterable

from invocation.models import ExecutionHistoryEntry, Format

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. You can run code and shell commands to "
    "compute answers, inspect data, and verify your reasoning."
)

MAX_RESULT_PREVIEW = 200


# ── Invocation Rules ──

_FORMAT_USAGE = {
    Format.CODE: (
        "exec/code", "python",
        "Python. Runs in a persistent namespace shared by later blocks. "
        "Top-level `await` is allowed. The value of the last expression is the result.",
    ),
    Format.TYPED_CODE: (
        "exec/typed-code", "python",
        "Type-annotated Python. Parsed and checked before it runs, then "
        "executed like exec/code in its own namespace.",
    ),
    Format.TERMINAL: (
        "terminal/bash", "bash",
        "A shell command. `bash` may be replaced by `sh`, `zsh` or `cmd`. "
        "Standard output is the result.",
    ),
}


def build_tool_prompt(formats: Iterable[Format], sentinel: str) -> str:
    """Explain the invocation syntax for the given formats."""
    formats = [f for f in Format if f in set(formats)]
    if not formats:
        return ""

    usage = []
    for fmt in formats:
        path, lang, description = _FORMAT_USAGE[fmt]
        usage.append(f"- `{path}` — {description}")

    path, lang, _ = _FORMAT_USAGE[formats[0]]
    return f"""## Executing Code

Only use an execution block when you actually need to run something. For
normal conversation, answer in plain text.

Format:
> {sentinel}<id>/do/{path}
```{lang}
<payload>
```

Rules:
- `<id>` is a short unique name for this execution (no spaces or slashes).
- Put the marker line directly above the fenced block.
- Results come back to you in the next message. Results of earlier
  executions are available to Python payloads as `results["<id>"]`.

Available:
{chr(10).join(usage)}"""


# ── Execution History ──

def _preview(value) -> str:
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, default=str)
    if len(text) > MAX_RESULT_PREVIEW:
        text = text[:MAX_RESULT_PREVIEW] + "..."
    return text.replace("\n", " ")


def build_history_section(entries: Iterable[ExecutionHistoryEntry]) -> str:
    lines = [
        f"- `{e.id}` ({e.format.value}): {_preview(e.result)}"
        for e in entries
    ]
    if not lines:
        return ""
    return "## Recent Executions\n\n" + "\n".join(lines)


def build_system_prompt(base: str, formats: Iterable[Format], sentinel: str,
                        history: Iterable[ExecutionHistoryEntry] = ()) -> str:
    """Assemble the full system prompt for one provider call."""
    sections = [
        base or DEFAULT_SYSTEM_PROMPT,
        build_tool_prompt(formats, sentinel),
        build_history_section(history),
    ]
    return "\n\n".join(s for s in sections if s)
