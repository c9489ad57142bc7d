"""
Typed Python execution engine.

Typed payloads are annotated Python. Before running they go through a
transpile step: the source is parsed against a target grammar version,
optionally checked for complete signatures, and lowered by erasing
annotations that would otherwise be evaluated at run time. Class-level
field annotations are kept since dataclasses and similar decorators read
them. Execution then follows the plain Python engine.
"""

import ast
import logging
from dataclasses import dataclass
from typing import Optional

from engines.base import DEFAULT_TIMEOUT, ExecutionError
from engines.python_exec import PythonEngine
from invocation.models import Format

logger = logging.getLogger(__name__)


class TranspileError(ExecutionError):
    """Raised when a typed payload cannot be lowered to runnable code."""
    pass


@dataclass
class TypedCompileOptions:
    target_version: tuple[int, int] = (3, 10)
    strict: bool = False


def _all_params(args: ast.arguments) -> list[ast.arg]:
    params = args.posonlyargs + args.args + args.kwonlyargs
    for extra in (args.vararg, args.kwarg):
        if extra is not None:
            params.append(extra)
    return params


def missing_annotations(tree: ast.AST) -> list[str]:
    """Function parameters and returns that lack annotations."""
    missing = []
    for node in ast.walk(tree):
        if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        for param in _all_params(node.args):
            if param.annotation is None and param.arg not in ("self", "cls"):
                missing.append(f"{node.name}({param.arg})")
        if node.returns is None:
            missing.append(f"{node.name} -> return")
    return missing


class AnnotationEraser(ast.NodeTransformer):
    """Strip signature annotations and non-class variable annotations."""

    def __init__(self):
        self._scopes = ["module"]

    def _visit_function(self, node):
        for param in _all_params(node.args):
            param.annotation = None
        node.returns = None
        self._scopes.append("function")
        self.generic_visit(node)
        self._scopes.pop()
        return node

    visit_FunctionDef = _visit_function
    visit_AsyncFunctionDef = _visit_function

    def visit_ClassDef(self, node):
        self._scopes.append("class")
        self.generic_visit(node)
        self._scopes.pop()
        return node

    def visit_AnnAssign(self, node):
        if self._scopes[-1] == "class":
            return node
        if node.value is None:
            return ast.copy_location(ast.Pass(), node)
        assign = ast.Assign(targets=[node.target], value=self.visit(node.value))
        return ast.copy_location(assign, node)


class TypedPythonEngine(PythonEngine):
    format = Format.TYPED_CODE

    filename = "<typed-payload>"

    def __init__(self, initial_context: Optional[dict] = None,
                 timeout: Optional[float] = DEFAULT_TIMEOUT, sandbox: bool = True,
                 options: Optional[TypedCompileOptions] = None):
        super().__init__(initial_context=initial_context, timeout=timeout, sandbox=sandbox)
        self.options = options or TypedCompileOptions()

    def transpile(self, code: str) -> ast.Module:
        try:
            tree = ast.parse(
                code, filename=self.filename, mode="exec",
                feature_version=self.options.target_version,
            )
        except SyntaxError as e:
            raise TranspileError(f"SyntaxError: {e}") from e

        if self.options.strict:
            missing = missing_annotations(tree)
            if missing:
                raise TranspileError(
                    "Missing type annotations: " + ", ".join(missing)
                )

        lowered = AnnotationEraser().visit(tree)
        logger.debug("Typed payload lowered (%d statements)", len(lowered.body))
        return ast.fix_missing_locations(lowered)
