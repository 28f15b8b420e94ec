"""Instruction parsing — turn a planner reply into ``(capability, input)``.

Grammar of the first reply line::

    <name> <input>  |  <name>:<input>  |  DONE

Replies are sanitized before parsing (non-printables, quotes, trailing
punctuation), and a small safety grammar rejects instructions the loop must
never execute.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DONE = "DONE"

SYNTHETIC_REQUEST = "summarize progress and propose a distinct next step"

_DONE_TOKEN_RE = re.compile(r"\bDONE\b")
_SPLIT_RE = re.compile(r"^(?P<name>[^\s:]+)(?:\s*:\s*|\s+)(?P<input>.*)$", re.DOTALL)
_SELF_INVOKE_RE = re.compile(r"\bworldseed\s+run\b|\bpython3?\s+-m\s+worldseed\b", re.IGNORECASE)
_QUOTES = "\"'`"


@dataclass(frozen=True)
class Instruction:
    name: str
    input: str = ""

    @property
    def text(self) -> str:
        return f"{self.name} {self.input}".strip()

    def __str__(self) -> str:
        return self.text


def synthetic_instruction() -> Instruction:
    """The chat instruction substituted for rejected or unparsable replies."""
    return Instruction("chat", SYNTHETIC_REQUEST)


def strip_nonprintable(text: str) -> str:
    return "".join(ch for ch in text if ch.isprintable() or ch in "\n\t")


def first_line(reply: str) -> str:
    """First non-blank line of ``reply`` after sanitizing."""
    for line in strip_nonprintable(reply).splitlines():
        if line.strip():
            return line.strip()
    return ""


def _strip_wrapping_quotes(text: str) -> str:
    text = text.strip()
    while len(text) >= 2 and text[0] == text[-1] and text[0] in _QUOTES:
        text = text[1:-1].strip()
    return text


def is_done(reply: str) -> bool:
    """``DONE`` as the whole first line (any case) or as a token in it."""
    line = _strip_wrapping_quotes(first_line(reply)).rstrip(".!")
    return line.casefold() == DONE.casefold() or bool(_DONE_TOKEN_RE.search(line))


def clean_line(reply: str) -> str:
    line = _strip_wrapping_quotes(first_line(reply))
    return line.rstrip(".!").strip()


def strip_trailing_comment(text: str) -> str:
    """Drop an unquoted ``# comment`` from a shell command line."""
    quote: str | None = None
    for i, ch in enumerate(text):
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "#" and (i == 0 or text[i - 1].isspace()):
            return text[:i].rstrip()
    return text


def parse_instruction(reply: str) -> Instruction | None:
    """Parse a planner reply. Returns None when nothing usable is left."""
    line = clean_line(reply)
    if not line:
        return None

    m = _SPLIT_RE.match(line)
    if m is None:
        return Instruction(line.strip(_QUOTES))
    name = m.group("name").strip(_QUOTES)
    if not name:
        return None
    return Instruction(name, _strip_wrapping_quotes(m.group("input")))


def prepare_input(instruction: Instruction, shell_class: bool) -> Instruction:
    """Apply per-capability input cleanup (shell comments)."""
    if not shell_class:
        return instruction
    return Instruction(instruction.name, strip_trailing_comment(instruction.input))


def safety_violation(instruction: Instruction, shell_class: bool) -> str | None:
    """Why ``instruction`` must not run, or None when it may."""
    if shell_class and ";" in instruction.input:
        return "statement separator in shell input"
    if _SELF_INVOKE_RE.search(instruction.input):
        return "input invokes the agent runtime"
    return None
