"""Bound and clean capability output before it reaches memory and the log.

Everything a capability returns ends up in a memory entry and, through the
``MEMORY:`` mirror, in a unit's log stream, so every limit here is a
character count. Child process output is also cleaned of terminal escapes
and control bytes so the transcript stays one readable line per line.
"""

from __future__ import annotations

import re

OUTPUT_CHAR_LIMIT = 20_000  # per result; the loop clips memory entries further

TRUNCATED = "... [truncated]"
TRUNCATED_HEAD = "[truncated] ..."

# CSI sequences (colors, cursor movement) and OSC sequences (window titles)
_ESCAPE_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
# C0 except tab/newline/carriage return, DEL, C1, interlinear annotation marks
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufff9-\ufffb]")


def truncate_chars(text: str, limit: int) -> tuple[str, bool]:
    """Cut ``text`` to ``limit`` characters. Returns (text, truncated)."""
    if limit <= 0 or len(text) <= limit:
        return text, False
    return text[:limit], True


def clip(text: str, limit: int) -> str:
    """Keep the first ``limit`` characters, with a trailing marker."""
    clipped, truncated = truncate_chars(text, limit)
    return f"{clipped}{TRUNCATED}" if truncated else clipped


def clip_tail(text: str, limit: int) -> str:
    """Keep the last ``limit`` characters, with a leading marker.

    For build and test logs, where the failure is printed last.
    """
    if limit <= 0 or len(text) <= limit:
        return text
    return f"{TRUNCATED_HEAD}{text[-limit:]}"


def clean_terminal_output(data: bytes) -> str:
    """Decode child process output for the transcript."""
    if not data:
        return ""
    text = data.decode("utf-8", errors="replace")
    return _CONTROL_RE.sub("", _ESCAPE_RE.sub("", text))
