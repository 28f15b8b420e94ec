"""Where a loop's user-visible transcript goes.

A sink is any ``Callable[[str], None]``. Inside an execution unit the
console sink feeds the orchestrator's log stream (stdout is captured), and
the HTTP sink reports each line to the callback address when one is set.
"""

from __future__ import annotations

import logging
import sys
from typing import Callable, TextIO

import httpx

logger = logging.getLogger(__name__)

LogSink = Callable[[str], None]


class ConsoleSink:
    """Write each line to a text stream, flushed immediately."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def __call__(self, line: str) -> None:
        print(line, file=self._stream or sys.stdout, flush=True)


class HttpSink:
    """POST each line as ``{"message": line}`` to ``<base>/api/agent/<id>/logs``."""

    def __init__(
        self,
        base_url: str,
        agent_id: str,
        timeout: float = 2.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}/api/agent/{agent_id}/logs"
        self._client = client or httpx.Client(timeout=timeout)
        self._failed = False

    def __call__(self, line: str) -> None:
        try:
            resp = self._client.post(self.url, json={"message": line})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            # Only the first failure is worth a warning; the callback is optional.
            if not self._failed:
                logger.warning("Log callback to %s failed: %s", self.url, exc)
                self._failed = True
            else:
                logger.debug("Log callback to %s failed: %s", self.url, exc)
            return
        self._failed = False

    def close(self) -> None:
        self._client.close()


class CompositeSink:
    """Fan one line out to several sinks."""

    def __init__(self, *sinks: LogSink) -> None:
        self.sinks = list(sinks)

    def __call__(self, line: str) -> None:
        for sink in self.sinks:
            sink(line)


class ListSink:
    """Collect lines in memory. Handy for embedding a loop in-process."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def __call__(self, line: str) -> None:
        self.lines.append(line)
