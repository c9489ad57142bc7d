"""
Payload sandbox — static validation applied before an engine runs code.

Python payloads: AST validation (blocked imports, builtins, dunder access).
Shell payloads: command blocklist and dangerous-pattern checks.
Subprocesses get an environment with secrets stripped.
"""

import ast
import logging
import os
from pathlib import Path

from engines.base import ExecutionError

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 50_000

# ── Python AST Validation ──

# Modules that payloads must never import
_BLOCKED_PYTHON_MODULES = {
    "os", "subprocess", "socket", "shutil", "ctypes",
    "importlib", "sys", "signal", "multiprocessing", "threading",
    "http", "urllib", "requests", "httpx", "ftplib", "smtplib",
    "webbrowser", "code", "codeop", "compileall", "py_compile",
    "pickle", "shelve", "marshal", "builtins",
}

# Builtin names that payloads must never call
_BLOCKED_PYTHON_BUILTINS = {
    "exec", "eval", "__import__", "compile", "globals", "locals",
    "getattr", "setattr", "delattr", "breakpoint", "exit", "quit",
    "open", "input",
}


class ScriptValidationError(ExecutionError):
    """Raised when a payload fails sandbox validation."""
    pass


def check_payload_size(script: str) -> None:
    if not script or not script.strip():
        raise ScriptValidationError("Payload is empty")
    if len(script) > MAX_PAYLOAD_BYTES:
        raise ScriptValidationError("Payload too large (max 50KB)")


def validate_python_tree(tree: ast.AST) -> None:
    """Reject dangerous imports/builtins/dunder access in a parsed payload."""
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                top_module = alias.name.split(".")[0]
                if top_module in _BLOCKED_PYTHON_MODULES:
                    raise ScriptValidationError(
                        f"Blocked import: '{alias.name}' — module '{top_module}' is not allowed"
                    )

        elif isinstance(node, ast.ImportFrom):
            if node.module:
                top_module = node.module.split(".")[0]
                if top_module in _BLOCKED_PYTHON_MODULES:
                    raise ScriptValidationError(
                        f"Blocked import: 'from {node.module}' — module '{top_module}' is not allowed"
                    )

        elif isinstance(node, ast.Call):
            func = node.func
            name = None
            if isinstance(func, ast.Name):
                name = func.id
            elif isinstance(func, ast.Attribute):
                name = func.attr

            if name and name in _BLOCKED_PYTHON_BUILTINS:
                raise ScriptValidationError(
                    f"Blocked builtin: '{name}()' is not allowed in sandboxed payloads"
                )

        # e.g. __class__, __subclasses__
        elif isinstance(node, ast.Attribute):
            if node.attr.startswith("__") and node.attr.endswith("__"):
                raise ScriptValidationError(
                    f"Blocked attribute: '{node.attr}' — dunder access is not allowed"
                )


# ── Shell Validation ──

_BLOCKED_SHELL_COMMANDS = {
    "curl", "wget", "nc", "ncat", "netcat", "socat",
    "rm", "rmdir", "mkfs", "dd", "shred",
    "python", "python3", "node", "ruby", "perl", "php",
    "ssh", "scp", "rsync", "ftp", "sftp", "telnet",
    "sudo", "su", "doas", "pkexec",
    "chmod", "chown", "chgrp",
    "mount", "umount", "diskutil",
    "launchctl", "systemctl", "service",
}

_BLOCKED_SHELL_PATTERNS = [
    "| bash", "| sh", "| zsh",
    "$(", "`",
    "> /dev/", ">> /dev/",
    "eval ", "source ",
    "/etc/passwd", "/etc/shadow",
    "~/.ssh", ".bash_history",
]


def validate_shell(script: str) -> None:
    """Check a shell payload for dangerous commands and patterns."""
    check_payload_size(script)
    lines = script.strip().splitlines()
    for i, line in enumerate(lines, 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        for pattern in _BLOCKED_SHELL_PATTERNS:
            if pattern in stripped:
                raise ScriptValidationError(
                    f"Line {i}: blocked pattern '{pattern}' is not allowed"
                )

        # First token of each command, split on pipes and separators
        for segment in stripped.replace("&&", "|").replace(";", "|").split("|"):
            words = segment.split()
            if not words:
                continue
            base_cmd = Path(words[0]).name
            if base_cmd in _BLOCKED_SHELL_COMMANDS:
                raise ScriptValidationError(
                    f"Line {i}: command '{base_cmd}' is not allowed"
                )


# ── Environment Stripping ──

_SECRET_ENV_PREFIXES = (
    "DOLOOP_API_KEY", "OPENROUTER_API", "OPENAI_API", "ANTHROPIC_API",
    "AWS_SECRET", "AWS_ACCESS", "GITHUB_TOKEN", "HOMEBREW_GITHUB",
)

_SECRET_ENV_NAMES = {
    "PASSWORD", "SECRET", "TOKEN", "CREDENTIAL",
    "PRIVATE_KEY", "API_KEY",
}


def make_clean_env() -> dict[str, str]:
    """Return a copy of the environment with secrets stripped."""
    clean = {}
    for key, val in os.environ.items():
        if any(key.startswith(prefix) for prefix in _SECRET_ENV_PREFIXES):
            continue
        key_upper = key.upper()
        if any(word in key_upper for word in _SECRET_ENV_NAMES):
            continue
        clean[key] = val
    return clean
