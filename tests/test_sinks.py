"""Tests for worldseed.agent.sinks."""

from __future__ import annotations

import io
import json

import httpx

from worldseed.agent.sinks import CompositeSink, ConsoleSink, HttpSink, ListSink


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestHttpSink:
    def test_posts_message(self) -> None:
        seen: list[httpx.Request] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        sink = HttpSink("http://localhost:9000/", "abc", client=_client(_handler))
        sink("--- Loop 1 of 5 ---")

        assert sink.url == "http://localhost:9000/api/agent/abc/logs"
        assert seen[0].method == "POST"
        assert str(seen[0].url) == "http://localhost:9000/api/agent/abc/logs"
        assert json.loads(seen[0].content) == {"message": "--- Loop 1 of 5 ---"}

    def test_failures_do_not_raise(self, caplog) -> None:
        def _down(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        sink = HttpSink("http://localhost:9000", "abc", client=_client(_down))
        with caplog.at_level("DEBUG", logger="worldseed.agent.sinks"):
            sink("one")
            sink("two")

        warnings = [
            r
            for r in caplog.records
            if r.name == "worldseed.agent.sinks" and r.levelname == "WARNING"
        ]
        assert len(warnings) == 1

    def test_error_status_does_not_raise(self) -> None:
        sink = HttpSink("http://localhost:9000", "abc", client=_client(lambda r: httpx.Response(500)))
        sink("line")
        sink.close()


class TestLocalSinks:
    def test_console(self) -> None:
        stream = io.StringIO()
        ConsoleSink(stream)("hello")
        assert stream.getvalue() == "hello\n"

    def test_composite(self) -> None:
        first, second = ListSink(), ListSink()
        sink = CompositeSink(first, second)
        sink("a")
        sink("b")
        assert first.lines == ["a", "b"]
        assert second.lines == ["a", "b"]
