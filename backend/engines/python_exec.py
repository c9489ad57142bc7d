"""
Python execution engine.

Payloads run in a namespace that persists across calls. Top-level ``await``
is allowed. The value of the final expression statement (or a trailing
top-level ``return``) is the result of the call. ``print`` output is
captured per call and reported alongside the result.
"""

import ast
import asyncio
import builtins
import inspect
import logging
from typing import Any, Optional

from engines.base import (
    DEFAULT_TIMEOUT, ExecutionEngine, ExecutionError, ExecutionTimeout,
)
from engines.sandbox import check_payload_size, validate_python_tree
from invocation.models import Format

logger = logging.getLogger(__name__)

MAX_CAPTURED_OUTPUT = 10_000


def split_last_expression(tree: ast.Module) -> tuple[ast.Module, Optional[ast.Expression]]:
    """Separate the trailing expression (or ``return``) from the body."""
    body = list(tree.body)
    last = None
    if body and isinstance(body[-1], ast.Expr):
        last = body.pop().value
    elif body and isinstance(body[-1], ast.Return):
        ret = body.pop()
        last = ret.value if ret.value is not None else ast.Constant(value=None)

    module = ast.fix_missing_locations(ast.Module(body=body, type_ignores=[]))
    expression = None
    if last is not None:
        expression = ast.fix_missing_locations(ast.Expression(body=last))
    return module, expression


class PythonEngine(ExecutionEngine):
    format = Format.CODE

    filename = "<payload>"

    def __init__(self, initial_context: Optional[dict] = None,
                 timeout: Optional[float] = DEFAULT_TIMEOUT, sandbox: bool = True):
        super().__init__(timeout=timeout)
        self.sandbox = sandbox
        self._initial = dict(initial_context or {})
        self._output: list[str] = []
        self._namespace = self._fresh_namespace()

    # ── Context ──

    def _fresh_namespace(self) -> dict:
        namespace = {
            "__name__": "__payload__",
            "__builtins__": builtins,
            "print": self._capture_print,
        }
        namespace.update(self._initial)
        return namespace

    def update_context(self, updates: dict):
        self._namespace.update(updates)

    def clear_context(self):
        self._namespace = self._fresh_namespace()

    def get_context(self) -> dict:
        return {
            k: v for k, v in self._namespace.items()
            if not k.startswith("__") and k != "print"
        }

    def _capture_print(self, *args, sep=" ", end="\n", **kwargs):
        self._output.append(sep.join(str(a) for a in args) + end)

    @property
    def last_output(self) -> str:
        text = "".join(self._output)
        if len(text) > MAX_CAPTURED_OUTPUT:
            text = text[:MAX_CAPTURED_OUTPUT] + "\n... (output truncated)"
        return text.rstrip("\n")

    # ── Compilation ──

    compile_flags = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT

    def transpile(self, code: str) -> ast.Module:
        """Parse a payload into a module AST ready for execution."""
        try:
            return ast.parse(code, filename=self.filename, mode="exec")
        except SyntaxError as e:
            raise ExecutionError(f"SyntaxError: {e}") from e

    def _compile(self, node: ast.AST, mode: str):
        try:
            return compile(node, self.filename, mode, flags=self.compile_flags)
        except SyntaxError as e:
            raise ExecutionError(f"SyntaxError: {e}") from e

    # ── Execution ──

    async def execute(self, code: str, context_extension: Optional[dict] = None) -> Any:
        self._output = []
        if self.sandbox:
            check_payload_size(code)
        tree = self.transpile(code)
        if self.sandbox:
            validate_python_tree(tree)
        if context_extension:
            self.update_context(context_extension)

        body, last = split_last_expression(tree)
        body_code = self._compile(body, "exec")
        last_code = self._compile(last, "eval") if last is not None else None

        try:
            return await asyncio.wait_for(
                self._run(body_code, last_code), timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ExecutionTimeout(f"Execution timed out after {self.timeout}s")
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(f"{type(e).__name__}: {e}") from e

    async def _run(self, body_code, last_code) -> Any:
        await self._evaluate(body_code)
        if last_code is None:
            return None
        return await self._evaluate(last_code)

    async def _evaluate(self, code) -> Any:
        if code.co_flags & inspect.CO_COROUTINE:
            return await eval(code, self._namespace)
        # Synchronous payloads run off the loop so a timeout can fire.
        return await asyncio.to_thread(eval, code, self._namespace)
