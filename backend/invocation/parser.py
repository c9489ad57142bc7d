"""
Invocation parser — finds tool-use markers and their fenced payloads in
free-form model output.

Grammar (one token per line):

    marker      := "> " SENTINEL id "/do/exec/" ("code" | "typed-code")
                 | "> " SENTINEL id "/do/terminal/" shell
    fence_open  := "```" [lang]
    fence_close := "```"
    invocation  := marker *blank fence_open *payload fence_close
                 | terminal_fence_open *payload fence_close

A bare fence tagged as a shell language with no marker line is accepted as
an implicit terminal invocation. Parse errors are local: a malformed
candidate is dropped and the scan continues after it.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from invocation.models import Format, Invocation, Role

logger = logging.getLogger(__name__)

DEFAULT_SENTINEL = "🪬"
FENCE = "```"

SHELLS = {"bash", "sh", "zsh", "cmd"}

# Fence languages that denote an implicit terminal invocation.
_TERMINAL_FENCE_LANGS = {
    "bash": "bash",
    "sh": "sh",
    "zsh": "zsh",
    "shell": "bash",
    "terminal": "bash",
}


class ParseError(Exception):
    """Raised when a candidate block cannot be turned into an Invocation."""
    pass


class InvalidMarker(ParseError):
    pass


class InvalidPayload(ParseError):
    pass


# ── Tokenizer ──

class TokenKind(str, Enum):
    MARKER = "marker"
    FENCE_OPEN = "fence_open"
    FENCE_CLOSE = "fence_close"
    BLANK = "blank"
    TEXT = "text"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    line: str
    lang: str = ""


def classify_line(line: str, sentinel: str = DEFAULT_SENTINEL) -> Token:
    """Classify a single line by shape.

    A bare ``` is reported as FENCE_CLOSE; the parser treats it as an
    opening fence when it is looking for one.
    """
    if line.startswith("> " + sentinel):
        return Token(TokenKind.MARKER, line)
    if line.startswith(FENCE):
        lang = line[len(FENCE):].strip()
        if not lang:
            return Token(TokenKind.FENCE_CLOSE, line)
        return Token(TokenKind.FENCE_OPEN, line, lang.lower())
    if not line.strip():
        return Token(TokenKind.BLANK, line)
    return Token(TokenKind.TEXT, line)


def _marker_regex(sentinel: str) -> re.Pattern:
    return re.compile(
        r"^> " + re.escape(sentinel)
        + r"(?P<id>[^/\s]+)/do/(?P<verb>[^/\s]+)/(?P<arg>\S+)\s*$"
    )


@dataclass(frozen=True)
class _MarkerInfo:
    id: str
    operation: str
    format: Format
    shell: Optional[str] = None


def parse_marker(line: str, sentinel: str = DEFAULT_SENTINEL) -> _MarkerInfo:
    """Parse a marker line into id/operation/format. Raises InvalidMarker."""
    match = _marker_regex(sentinel).match(line.rstrip())
    if not match:
        raise InvalidMarker(f"Not a marker line: {line[:80]!r}")

    marker_id, verb, arg = match.group("id"), match.group("verb"), match.group("arg")
    if verb == "exec":
        if arg not in (Format.CODE.value, Format.TYPED_CODE.value):
            raise InvalidMarker(f"Unknown exec format '{arg}'")
        return _MarkerInfo(marker_id, f"do/exec/{arg}", Format(arg))
    if verb == "terminal":
        if arg not in SHELLS:
            raise InvalidMarker(f"Unknown shell '{arg}'")
        return _MarkerInfo(marker_id, f"do/terminal/{arg}", Format.TERMINAL, shell=arg)
    raise InvalidMarker(f"Unknown verb '{verb}'")


def _terminal_fence_shell(token: Token) -> Optional[str]:
    if token.kind is not TokenKind.FENCE_OPEN:
        return None
    return _TERMINAL_FENCE_LANGS.get(token.lang)


def _generated_terminal_id() -> str:
    return f"terminal_{uuid.uuid4().hex[:12]}"


# ── Block Parsing ──

def _locate_fences(tokens: list[Token], start: int, skip_blanks_only: bool) -> tuple[int, int]:
    """Return (open, close) token indices after ``start``, -1 when missing.

    With ``skip_blanks_only`` the opening fence must follow ``start`` with
    only blank lines in between.
    """
    open_idx = -1
    for j in range(start, len(tokens)):
        kind = tokens[j].kind
        if kind in (TokenKind.FENCE_OPEN, TokenKind.FENCE_CLOSE):
            open_idx = j
            break
        if skip_blanks_only and kind is not TokenKind.BLANK:
            break
    if open_idx == -1:
        return -1, -1
    for k in range(open_idx + 1, len(tokens)):
        if tokens[k].kind is TokenKind.FENCE_CLOSE:
            return open_idx, k
    return open_idx, -1


def _build(lines: list[str], start: int, open_idx: int, close_idx: int,
           info: _MarkerInfo) -> Invocation:
    return Invocation(
        role=Role.TOOL,
        content="\n".join(lines[start:close_idx + 1]),
        id=info.id,
        operation=info.operation,
        format=info.format,
        request="\n".join(lines[open_idx + 1:close_idx]),
        start_line=start,
        end_line=close_idx,
        shell=info.shell,
    )


def parse_one(block: str, sentinel: str = DEFAULT_SENTINEL) -> Invocation:
    """Parse a single marker+fence block.

    Raises InvalidMarker when the first line is neither a marker nor a bare
    terminal fence, and InvalidPayload when a fence is missing. Line numbers
    in the result are relative to the block.
    """
    lines = block.split("\n")
    tokens = [classify_line(line, sentinel) for line in lines]
    first = tokens[0]

    if first.kind is TokenKind.MARKER:
        info = parse_marker(first.line, sentinel)
        open_idx, close_idx = _locate_fences(tokens, 1, skip_blanks_only=True)
        if open_idx == -1:
            raise InvalidPayload(f"No opening fence after marker '{info.id}'")
        if close_idx == -1:
            raise InvalidPayload(f"No closing fence for marker '{info.id}'")
        return _build(lines, 0, open_idx, close_idx, info)

    shell = _terminal_fence_shell(first)
    if shell is None:
        raise InvalidMarker(f"Not a marker line: {first.line[:80]!r}")
    close_idx = _locate_fences(tokens, 0, skip_blanks_only=True)[1]
    if close_idx == -1:
        raise InvalidPayload("No closing fence for terminal block")
    info = _MarkerInfo(_generated_terminal_id(), f"do/terminal/{shell}", Format.TERMINAL, shell)
    return _build(lines, 0, 0, close_idx, info)


# ── Scanning ──

def _scan(lines: list[str], tokens: list[Token], start: int, final: bool,
          sentinel: str) -> tuple[list[Invocation], int]:
    """Scan ``tokens`` from ``start``.

    Returns the invocations found and the index from which a later scan
    should resume. When ``final`` is False an unterminated candidate stops
    the scan so it can be retried once more lines arrive.
    """
    found: list[Invocation] = []
    i = start
    n = len(tokens)
    while i < n:
        token = tokens[i]
        if token.kind is TokenKind.MARKER:
            open_idx, close_idx = _locate_fences(tokens, i + 1, skip_blanks_only=True)
            if close_idx == -1 and not final and _may_complete(tokens, i + 1, open_idx):
                return found, i
            try:
                info = parse_marker(token.line, sentinel)
                if open_idx == -1 or close_idx == -1:
                    raise InvalidPayload(f"Missing fence for marker '{info.id}'")
            except ParseError as e:
                logger.debug("Dropping candidate at line %d: %s", i, e)
                i += 1
                continue
            found.append(_build(lines, i, open_idx, close_idx, info))
            i = close_idx + 1
            continue

        shell = _terminal_fence_shell(token)
        if shell is not None:
            close_idx = _locate_fences(tokens, i, skip_blanks_only=True)[1]
            if close_idx == -1:
                if not final:
                    return found, i
                logger.debug("Dropping unterminated terminal block at line %d", i)
                i += 1
                continue
            info = _MarkerInfo(_generated_terminal_id(), f"do/terminal/{shell}",
                               Format.TERMINAL, shell)
            found.append(_build(lines, i, i, close_idx, info))
            i = close_idx + 1
            continue

        if token.kind is TokenKind.FENCE_OPEN:
            # Skip over ordinary fenced blocks so their bodies are not
            # mistaken for markers.
            close_idx = _locate_fences(tokens, i, skip_blanks_only=True)[1]
            if close_idx == -1:
                if not final:
                    return found, i
                i += 1
                continue
            i = close_idx + 1
            continue

        i += 1
    return found, n


def _may_complete(tokens: list[Token], after: int, open_idx: int) -> bool:
    """True when a marker's block could still be completed by more lines."""
    if open_idx != -1:
        return True
    return all(t.kind is TokenKind.BLANK for t in tokens[after:])


def dedupe(invocations: list[Invocation], seen: Optional[set[str]] = None) -> list[Invocation]:
    """Keep the first invocation for each id. ``seen`` carries ids across calls."""
    seen = set() if seen is None else seen
    unique = []
    for inv in invocations:
        if inv.id in seen:
            logger.warning("Duplicate invocation id '%s' — keeping first occurrence", inv.id)
            continue
        seen.add(inv.id)
        unique.append(inv)
    return unique


def find_invocations(text: str, sentinel: str = DEFAULT_SENTINEL,
                     unique: bool = True) -> list[Invocation]:
    """Return well-formed invocations in ``text`` in document order.

    With ``unique=False`` repeated ids are kept, which is what ``strip``
    needs to remove every block from the text.
    """
    lines = text.split("\n")
    tokens = [classify_line(line, sentinel) for line in lines]
    found, _ = _scan(lines, tokens, 0, final=True, sentinel=sentinel)
    if unique:
        found = dedupe(found)
    logger.debug("Found %d invocation(s)", len(found))
    return found


def strip(text: str, invocations: list[Invocation]) -> str:
    """Remove the line ranges of ``invocations`` from ``text``.

    Overlapping ranges are not detected; their union is removed.
    """
    if not invocations:
        return text
    excluded: set[int] = set()
    for inv in invocations:
        excluded.update(range(inv.start_line, inv.end_line + 1))
    lines = text.split("\n")
    return "\n".join(line for idx, line in enumerate(lines) if idx not in excluded).strip()


class IncrementalScanner:
    """Detect completed invocations in a growing text buffer.

    Lines are classified once, when they complete, and a block becomes
    eligible only once its closing fence has arrived. ``candidates`` holds
    every well-formed block seen; ``found`` only the first per id.
    """

    def __init__(self, sentinel: str = DEFAULT_SENTINEL):
        self.sentinel = sentinel
        self.buffer = ""
        self.found: list[Invocation] = []
        self.candidates: list[Invocation] = []
        self._lines: list[str] = []
        self._tokens: list[Token] = []
        self._tail = ""
        self._cursor = 0
        self._seen: set[str] = set()
        self._finished = False

    def feed(self, delta: str) -> list[Invocation]:
        self.buffer += delta
        self._tail += delta
        if "\n" not in delta:
            return []
        # The last piece is an unterminated line; hold it back.
        *complete, self._tail = self._tail.split("\n")
        self._extend(complete)
        return self._advance(final=False)

    def finish(self) -> list[Invocation]:
        if self._finished:
            return []
        self._finished = True
        self._extend([self._tail])
        self._tail = ""
        return self._advance(final=True)

    def _extend(self, lines: list[str]):
        self._lines.extend(lines)
        self._tokens.extend(classify_line(line, self.sentinel) for line in lines)

    def _advance(self, final: bool) -> list[Invocation]:
        if self._cursor >= len(self._tokens):
            return []
        new, self._cursor = _scan(self._lines, self._tokens, self._cursor, final, self.sentinel)
        self.candidates.extend(new)
        new = dedupe(new, self._seen)
        self.found.extend(new)
        return new
