"""
Engines package — stateful execution engines for invocation payloads.

One engine per payload format. Each orchestrator owns its own engine
instances; contexts are never shared between orchestrators.

Quick start:
    from engines import build_engines
    engines = build_engines(get_profile().engines)
    value = await engines[Format.CODE].execute("1 + 1")
"""

import logging
from typing import Optional

from engines.base import ExecutionEngine, ExecutionError, ExecutionTimeout, format_value
from engines.python_exec import PythonEngine
from engines.sandbox import ScriptValidationError
from engines.terminal import TerminalEngine
from engines.typed_exec import TranspileError, TypedCompileOptions, TypedPythonEngine
from invocation.models import Format
from settings import parse_target_version

logger = logging.getLogger(__name__)


def build_engines(config=None) -> dict[Format, ExecutionEngine]:
    """Instantiate the enabled engines from an ``EnginesConfig``.

    With no config every engine is built with its defaults.
    """
    if config is None:
        return {
            Format.CODE: PythonEngine(),
            Format.TYPED_CODE: TypedPythonEngine(),
            Format.TERMINAL: TerminalEngine(),
        }

    engines: dict[Format, ExecutionEngine] = {}
    timeout: Optional[float] = config.timeout or None

    if config.code.enabled:
        engines[Format.CODE] = PythonEngine(timeout=timeout, sandbox=config.sandbox)

    if config.typed_code.enabled:
        options = TypedCompileOptions(
            target_version=parse_target_version(config.typed_code.target_version),
            strict=config.typed_code.strict,
        )
        engines[Format.TYPED_CODE] = TypedPythonEngine(
            timeout=timeout, sandbox=config.sandbox, options=options,
        )

    if config.terminal.enabled:
        engines[Format.TERMINAL] = TerminalEngine(
            shell=config.terminal.shell,
            workdir=config.terminal.workdir or None,
            timeout=timeout,
            sandbox=config.sandbox,
        )

    logger.info("Engines ready: %s (sandbox=%s, timeout=%s)",
                ", ".join(f.value for f in engines), config.sandbox, timeout)
    return engines


__all__ = [
    "ExecutionEngine",
    "ExecutionError",
    "ExecutionTimeout",
    "ScriptValidationError",
    "TranspileError",
    "PythonEngine",
    "TypedPythonEngine",
    "TypedCompileOptions",
    "TerminalEngine",
    "build_engines",
    "format_value",
]
