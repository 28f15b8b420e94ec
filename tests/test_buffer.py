"""Tests for worldseed.orchestrator.buffer.LogBuffer."""

from __future__ import annotations

import asyncio
import threading

from worldseed.orchestrator.buffer import LogBuffer


class TestLogBufferBasics:
    def test_empty(self) -> None:
        buf = LogBuffer()
        assert buf.total_lines == 0
        assert buf.read_all() == []
        assert buf.read_new() == []

    def test_read_all_is_idempotent(self) -> None:
        buf = LogBuffer()
        buf.append("a")
        buf.append("b")
        assert buf.read_all() == ["a", "b"]
        assert buf.read_all() == ["a", "b"]


class TestLogBufferConsumers:
    def test_read_new_never_redelivers(self) -> None:
        buf = LogBuffer()
        buf.append("a")
        buf.append("b")
        assert buf.read_new("ui") == ["a", "b"]
        assert buf.read_new("ui") == []
        buf.append("c")
        assert buf.read_new("ui") == ["c"]

    def test_consumers_are_independent(self) -> None:
        buf = LogBuffer()
        buf.append("a")
        assert buf.read_new("ui") == ["a"]
        buf.append("b")
        assert buf.read_new("supervisor") == ["a", "b"]
        assert buf.read_new("ui") == ["b"]

    def test_read_all_does_not_move_cursor(self) -> None:
        buf = LogBuffer()
        buf.append("a")
        buf.read_all()
        assert buf.read_new() == ["a"]


class TestLogBufferRetention:
    def test_oldest_lines_dropped(self) -> None:
        buf = LogBuffer(max_lines=3)
        for i in range(5):
            buf.append(f"line {i}")
        assert buf.read_all() == ["line 2", "line 3", "line 4"]
        assert buf.total_lines == 5

    def test_offsets_stay_absolute(self) -> None:
        buf = LogBuffer(max_lines=3)
        for i in range(3):
            buf.append(f"line {i}")
        assert buf.read_new("early") == ["line 0", "line 1", "line 2"]
        for i in range(3, 5):
            buf.append(f"line {i}")
        assert buf.read_new("early") == ["line 3", "line 4"]
        assert buf.read_new("late") == ["line 2", "line 3", "line 4"]

    def test_cursor_survives_eviction(self) -> None:
        buf = LogBuffer(max_lines=2)
        buf.append("a")
        assert buf.read_new() == ["a"]
        for line in ("b", "c", "d"):
            buf.append(line)
        assert buf.read_new() == ["c", "d"]
        assert buf.read_new() == []


class TestLogBufferConcurrency:
    def test_threaded_appends(self) -> None:
        buf = LogBuffer()

        def _produce(n: int) -> None:
            for i in range(200):
                buf.append(f"{n}:{i}")

        threads = [threading.Thread(target=_produce, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert buf.total_lines == 800
        assert len(buf.read_new()) == 800


class TestLogBufferWaiting:
    async def test_wait_wakes_on_append(self) -> None:
        buf = LogBuffer()
        buf.attach_loop()
        asyncio.get_running_loop().call_later(0.05, buf.append, "late")
        assert await buf.wait_for_data(timeout=2.0)
        assert buf.read_all() == ["late"]

    async def test_wait_times_out(self) -> None:
        buf = LogBuffer()
        buf.attach_loop()
        assert not await buf.wait_for_data(timeout=0.05)

    async def test_close_wakes_waiter(self) -> None:
        buf = LogBuffer()
        buf.attach_loop()
        asyncio.get_running_loop().call_later(0.05, buf.close)
        assert await buf.wait_for_data(timeout=2.0)
        assert buf.closed
