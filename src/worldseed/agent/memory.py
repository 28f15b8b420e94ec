"""Agent memory — the ordered transcript of one loop, plus pressure relief.

Two-tier approach to keep the transcript within its byte ceiling ``C``:

1. **Eviction**: Cheapest. Drop the oldest entries while the transcript is
   larger than ``2C``. The newest entry always survives.

2. **Collapse**: LLM-based. If the transcript is still larger than ``C``,
   ask the planner for a short summary and replace every entry with a
   single ``summary -> ...`` entry.

Every append is mirrored to the log sink as ``MEMORY: <entry>`` so that the
orchestrator can stream a unit's memory separately from its log.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from worldseed.llm.planner import Planner

logger = logging.getLogger(__name__)

MEMORY_PREFIX = "MEMORY: "
SUMMARY_PREFIX = "summary -> "

DEFAULT_CEILING_BYTES = 16_000

SUMMARY_PROMPT_TEMPLATE = """\
Summarize the following agent memory in a few short sentences. \
Keep results, failures and anything needed to finish the goal.

---

{transcript}
"""


class Memory:
    """Append-only entries; insertion order is causal order."""

    def __init__(
        self,
        ceiling_bytes: int = DEFAULT_CEILING_BYTES,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self.ceiling_bytes = ceiling_bytes
        self._log = log
        self._entries: list[str] = []

    @property
    def entries(self) -> list[str]:
        return list(self._entries)

    def bind_log(self, log: Callable[[str], None]) -> None:
        """Mirror appends to ``log`` unless a sink is already bound."""
        if self._log is None:
            self._log = log

    def append(self, entry: str) -> None:
        self._entries.append(entry)
        if self._log is not None:
            self._log(f"{MEMORY_PREFIX}{entry}")

    def transcript(self) -> str:
        return "\n".join(self._entries)

    def size(self) -> int:
        """Byte size of the joined transcript."""
        return len(self.transcript().encode("utf-8"))

    def search(self, query: str, limit: int = 5) -> list[str]:
        """Newest-first entries containing every word of ``query``."""
        words = query.casefold().split()
        hits = [
            entry
            for entry in reversed(self._entries)
            if all(word in entry.casefold() for word in words)
        ]
        return hits[:limit]

    def _replace(self, entries: list[str]) -> None:
        self._entries = list(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))


def evict_oldest(memory: Memory, limit_bytes: int) -> int:
    """Drop oldest entries while larger than ``limit_bytes``.

    Keeps at least one entry. Returns the number dropped.
    """
    entries = memory.entries
    total = memory.size()
    dropped = 0
    while len(entries) > 1 and total > limit_bytes:
        removed = entries.pop(0)
        # joined size loses the entry and its newline separator
        total -= len(removed.encode("utf-8")) + 1
        dropped += 1
    if dropped:
        memory._replace(entries)
    return dropped


async def relieve_pressure(
    memory: Memory,
    planner: Planner,
    log: Callable[[str], None] | None = None,
) -> str | None:
    """Bring ``memory`` under its ceiling before the next plan.

    Returns the summary text when the memory was collapsed, otherwise None.
    """
    ceiling = memory.ceiling_bytes
    if ceiling <= 0 or memory.size() <= ceiling:
        return None

    def _emit(message: str) -> None:
        logger.info(message)
        if log is not None:
            log(message)

    dropped = evict_oldest(memory, 2 * ceiling)
    if dropped:
        _emit(f"Memory over limit, evicted {dropped} oldest entries")

    if memory.size() <= ceiling:
        return None

    reply = await planner.complete(
        SUMMARY_PROMPT_TEMPLATE.format(transcript=memory.transcript())
    )
    summary = " ".join(reply.split())
    memory._replace([])
    memory.append(f"{SUMMARY_PREFIX}{summary}")
    _emit(f"Memory summarized ({len(summary)} chars)")
    return summary
