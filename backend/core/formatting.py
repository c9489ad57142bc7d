"""
Formatting helpers — the "executed code / result" blocks appended to the
final answer and the messages that replay executions to the model.
"""

import json
import re

from invocation.models import Format, Invocation

_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")

_CODE_LANGUAGE = {
    Format.CODE: "python",
    Format.TYPED_CODE: "python",
    Format.TERMINAL: "bash",
}


def result_language(invocation: Invocation, response: str) -> str:
    """Pick a fence language for displaying ``response``."""
    if invocation.format is Format.TERMINAL:
        return "text"
    try:
        json.loads(response)
        return "json"
    except (json.JSONDecodeError, TypeError):
        pass
    text = response.strip()
    if _NUMERIC_RE.match(text) or text in ("True", "False"):
        return "python"
    return "text"


def code_language(invocation: Invocation) -> str:
    return _CODE_LANGUAGE[invocation.format]


def format_result_block(invocation: Invocation) -> str:
    response = invocation.response or ""
    block = (
        "**Code Executed:**\n"
        f"```{code_language(invocation)}\n"
        f"{invocation.request}\n"
        "```\n"
        "\n"
        "**Result:**\n"
        f"```{result_language(invocation, response)}\n"
        f"{response}\n"
        "```"
    )
    if invocation.output:
        block += (
            "\n\n**Output:**\n"
            "```text\n"
            f"{invocation.output}\n"
            "```"
        )
    return block


def execution_context_message(invocation: Invocation) -> str:
    """Synthetic user message describing a previous execution."""
    output = f"Output: {invocation.output}\n" if invocation.output else ""
    return (
        "Execution result from previous code:\n"
        f"Code: {invocation.request}\n"
        f"Result: {invocation.response}\n"
        f"{output}"
        "\n"
        "Please continue your response based on this result."
    )


def join_sections(*parts: str) -> str:
    return "\n\n".join(p for p in parts if p)
