"""
Tests for CorrelationTable.

Tests cover:
- Register and resolve
- Duplicate ids
- Orphan replies and replies for cancelled callers
- Single failures, discard and fail_all
"""

import asyncio
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from linebridge.core.correlation import CorrelationTable
from linebridge.core.errors import DuplicateIdError, WorkerExitedError
from linebridge.core.logging import StructuredLogger, LogEvent
from linebridge.core.metrics import Metrics

from bridge_helpers import LogCollector


class TestRegisterResolve:
    def test_resolve_completes_future(self):
        async def scenario():
            table = CorrelationTable()
            future = asyncio.get_running_loop().create_future()
            table.register("a", future)

            assert "a" in table
            assert len(table) == 1
            assert table.resolve("a", {"y": 1}) is True
            assert await future == {"y": 1}
            assert len(table) == 0

        asyncio.run(scenario())

    def test_out_of_order_resolution(self):
        async def scenario():
            loop = asyncio.get_running_loop()
            table = CorrelationTable()
            futures = {rid: loop.create_future() for rid in ("a", "b", "c")}
            for rid, future in futures.items():
                table.register(rid, future)

            table.resolve("c", 3)
            table.resolve("a", 1)
            table.resolve("b", 2)

            assert [await futures[rid] for rid in ("a", "b", "c")] == [1, 2, 3]

        asyncio.run(scenario())

    def test_pending_ids(self):
        async def scenario():
            loop = asyncio.get_running_loop()
            table = CorrelationTable()
            table.register("a", loop.create_future())
            table.register("b", loop.create_future())
            assert sorted(table.pending_ids()) == ["a", "b"]

        asyncio.run(scenario())


class TestDuplicateIds:
    def test_duplicate_rejected_original_kept(self):
        async def scenario():
            loop = asyncio.get_running_loop()
            logs = LogCollector()
            table = CorrelationTable(logger=StructuredLogger(handler=logs))
            first = loop.create_future()
            second = loop.create_future()

            table.register("a", first)
            with pytest.raises(DuplicateIdError):
                table.register("a", second)

            assert LogEvent.DUPLICATE_ID.value in logs.events()

            # The original caller still gets its reply
            table.resolve("a", "ok")
            assert await first == "ok"
            assert not second.done()

        asyncio.run(scenario())

    def test_id_reusable_after_completion(self):
        async def scenario():
            loop = asyncio.get_running_loop()
            table = CorrelationTable()
            table.register("a", loop.create_future())
            table.resolve("a", 1)
            table.register("a", loop.create_future())
            assert len(table) == 1

        asyncio.run(scenario())


class TestOrphans:
    def test_orphan_reply(self):
        async def scenario():
            logs = LogCollector()
            metrics = Metrics()
            table = CorrelationTable(logger=StructuredLogger(handler=logs), metrics=metrics)

            assert table.resolve("nobody", 1) is False
            assert LogEvent.ORPHAN_REPLY.value in logs.events()
            assert metrics.snapshot().orphan_replies == 1

        asyncio.run(scenario())

    def test_second_reply_is_orphan(self):
        async def scenario():
            table = CorrelationTable()
            future = asyncio.get_running_loop().create_future()
            table.register("a", future)

            assert table.resolve("a", 1) is True
            assert table.resolve("a", 2) is False
            assert await future == 1

        asyncio.run(scenario())

    def test_reply_after_cancel(self):
        async def scenario():
            table = CorrelationTable()
            future = asyncio.get_running_loop().create_future()
            table.register("a", future)
            future.cancel()

            assert table.resolve("a", 1) is False
            assert len(table) == 0

        asyncio.run(scenario())


class TestFailures:
    def test_fail_one(self):
        async def scenario():
            loop = asyncio.get_running_loop()
            table = CorrelationTable()
            a = loop.create_future()
            b = loop.create_future()
            table.register("a", a)
            table.register("b", b)

            assert table.fail("a", ValueError("bad")) is True
            with pytest.raises(ValueError):
                await a
            assert not b.done()
            assert table.fail("missing", ValueError("bad")) is False

        asyncio.run(scenario())

    def test_discard(self):
        async def scenario():
            table = CorrelationTable()
            future = asyncio.get_running_loop().create_future()
            table.register("a", future)

            assert table.discard("a") is True
            assert table.discard("a") is False
            assert not future.done()
            assert table.resolve("a", 1) is False

        asyncio.run(scenario())

    def test_fail_all_exactly_once(self):
        async def scenario():
            loop = asyncio.get_running_loop()
            table = CorrelationTable()
            futures = [loop.create_future() for _ in range(5)]
            for i, future in enumerate(futures):
                table.register(f"r{i}", future)
            futures[0].cancel()

            error = WorkerExitedError("gone", exit_code=3)
            assert table.fail_all(error) == 4
            assert len(table) == 0

            for future in futures[1:]:
                exc = future.exception()
                assert isinstance(exc, WorkerExitedError)
                assert exc.exit_code == 3
                assert str(exc) == "gone"

            # Each caller gets its own error object
            assert len({id(f.exception()) for f in futures[1:]}) == 4

            # Nothing left to fail a second time
            assert table.fail_all(error) == 0

        asyncio.run(scenario())
