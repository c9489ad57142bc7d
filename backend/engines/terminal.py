"""
Terminal execution engine — runs shell payloads as subprocesses.

Context is a set of environment variables plus a working directory that
persist across calls. Prior invocation results are exported as
``RESULT_<ID>`` variables.
"""

import asyncio
import json
import logging
import os
import re
from typing import Any, Optional

from engines.base import DEFAULT_TIMEOUT, ExecutionEngine, ExecutionError, ExecutionTimeout
from engines.sandbox import make_clean_env, validate_shell
from invocation.models import Format

logger = logging.getLogger(__name__)

MAX_OUTPUT_BYTES = 50_000

_SHELL_COMMANDS = {
    "bash": ["bash", "-c"],
    "sh": ["sh", "-c"],
    "zsh": ["zsh", "-c"],
    "cmd": ["cmd.exe", "/c"],
}

_ENV_NAME_RE = re.compile(r"[^A-Za-z0-9_]")


def _result_env_name(invocation_id: str) -> str:
    return "RESULT_" + _ENV_NAME_RE.sub("_", invocation_id).upper()


def _env_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _truncate(text: str) -> str:
    if len(text) > MAX_OUTPUT_BYTES:
        return text[:MAX_OUTPUT_BYTES] + f"\n[Truncated — output was {len(text)} bytes]"
    return text


class TerminalEngine(ExecutionEngine):
    format = Format.TERMINAL

    def __init__(self, shell: str = "bash", workdir: Optional[str] = None,
                 timeout: Optional[float] = DEFAULT_TIMEOUT, sandbox: bool = True):
        super().__init__(timeout=timeout)
        if shell not in _SHELL_COMMANDS:
            raise ValueError(f"Unsupported shell: {shell}")
        self.shell = shell
        self.sandbox = sandbox
        self._default_cwd = workdir
        self.cwd = workdir
        self.env: dict[str, str] = {}

    def update_context(self, updates: dict):
        for key, value in updates.items():
            if key == "cwd":
                self.cwd = str(value)
            elif key == "results" and isinstance(value, dict):
                for result_id, result in value.items():
                    self.env[_result_env_name(result_id)] = _env_value(result)
            else:
                self.env[str(key)] = _env_value(value)

    def clear_context(self):
        self.env = {}
        self.cwd = self._default_cwd

    def get_context(self) -> dict:
        return {"cwd": self.cwd, "env": dict(self.env)}

    async def execute(self, code: str, context_extension: Optional[dict] = None,
                      shell: Optional[str] = None) -> str:
        if self.sandbox:
            validate_shell(code)
        if context_extension:
            self.update_context(context_extension)

        shell = shell or self.shell
        if shell not in _SHELL_COMMANDS:
            raise ExecutionError(f"Unsupported shell: {shell}")
        cmd = _SHELL_COMMANDS[shell] + [code]

        env = make_clean_env()
        env.update(self.env)
        cwd = self.cwd or os.getcwd()

        logger.info("Running %s payload (%d bytes) in %s", shell, len(code), cwd)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except OSError as e:
            raise ExecutionError(f"Failed to start {shell}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ExecutionTimeout(f"Command timed out after {self.timeout}s")
        except asyncio.CancelledError:
            proc.kill()
            raise

        out = _truncate(stdout.decode(errors="replace")).rstrip("\n")
        err = _truncate(stderr.decode(errors="replace")).rstrip("\n")

        if proc.returncode != 0:
            detail = err or out or "(no output)"
            raise ExecutionError(f"exit code {proc.returncode}: {detail}")

        if err:
            return f"{out}\nSTDERR:\n{err}" if out else f"STDERR:\n{err}"
        return out
