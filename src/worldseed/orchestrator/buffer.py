"""Append-only log buffer for execution units."""

from __future__ import annotations

import asyncio
import threading
from collections import deque


class LogBuffer:
    """Thread-safe, append-only line buffer addressed by absolute offset.

    Line ``n`` is the n-th line ever appended, whatever the retention bound.
    With ``max_lines`` set, the oldest lines are dropped from storage but
    offsets and consumer cursors keep counting from the first line, so a
    cursor never points at the wrong line.

    Each named consumer owns a cursor; ``read_new()`` returns the lines past
    it and moves it to the end, so a line is delivered to a consumer once.

    An ``asyncio.Event`` is set whenever new data arrives, allowing
    consumers to ``await`` instead of polling. Call ``attach_loop()``
    once from the asyncio thread to enable this.
    """

    def __init__(self, max_lines: int | None = None) -> None:
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._base: int = 0  # Absolute offset of _lines[0]
        self._total_lines: int = 0  # Total lines ever added
        self._cursors: dict[str, int] = {}
        self._closed = False
        self._lock = threading.Lock()
        # Event-based notification (set after attach_loop)
        self._data_event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def attach_loop(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Attach an asyncio event loop so append() can signal waiters.

        Must be called from the asyncio thread (or pass an explicit loop).
        """
        self._loop = loop or asyncio.get_running_loop()
        self._data_event = asyncio.Event()

    def _signal(self) -> None:
        if self._data_event is not None and self._loop is not None:
            try:
                self._loop.call_soon_threadsafe(self._data_event.set)
            except RuntimeError:
                # Loop already closed; nobody is waiting any more.
                pass

    def _append_locked(self, line: str) -> None:
        if self._lines.maxlen is not None and len(self._lines) == self._lines.maxlen:
            self._base += 1
        self._lines.append(line)
        self._total_lines += 1

    def append(self, line: str) -> None:
        with self._lock:
            self._append_locked(line)
        self._signal()

    async def wait_for_data(self, timeout: float | None = None) -> bool:
        """Wait until new data is appended (or timeout).

        Returns True if data arrived, False on timeout.
        """
        if self._data_event is None:
            # Fallback: no loop attached, just sleep briefly
            await asyncio.sleep(0.05)
            return True
        try:
            await asyncio.wait_for(self._data_event.wait(), timeout=timeout)
            self._data_event.clear()
            return True
        except asyncio.TimeoutError:
            return False

    def read_all(self) -> list[str]:
        """Every retained line. Idempotent."""
        with self._lock:
            return list(self._lines)

    def read_new(self, consumer: str = "default") -> list[str]:
        """Lines appended since ``consumer`` last read; advances its cursor."""
        with self._lock:
            cursor = self._cursors.get(consumer, 0)
            start = max(cursor, self._base) - self._base
            lines = list(self._lines)[start:]
            self._cursors[consumer] = self._total_lines
        return lines

    @property
    def total_lines(self) -> int:
        """Total number of lines ever added."""
        with self._lock:
            return self._total_lines

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Mark the producer side finished and wake any waiter."""
        self._closed = True
        self._signal()
