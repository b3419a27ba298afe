import asyncio
import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

import fakeredis

from toolflow.config import Settings
from toolflow.errors import StoreUnavailableError
from toolflow.ledger import ExecutionLedger, ExecutionRecordInput
from toolflow.ledger.store import TOOL_EXECUTION_PREFIX, TOOL_EXECUTIONS_BY_TOOL_PREFIX


def record(tool_name="csv_to_json", status="success", time_ms=None, **extra) -> ExecutionRecordInput:
    return ExecutionRecordInput(
        tool_id=tool_name,
        tool_name=tool_name,
        parameters={"csv": "a,b"},
        status=status,
        execution_time_ms=time_ms,
        **extra,
    )


def make_ledger() -> ExecutionLedger:
    return ExecutionLedger(fakeredis.FakeAsyncRedis(decode_responses=True))


class ExecutionLedgerWriteTests(unittest.TestCase):
    def test_log_and_get_round_trip(self):
        original = record(time_ms=12.5, result={"rows": 1}, thread_id="t-1", agent_id="a-1", metadata={"origin": "builtin"})

        async def scenario():
            ledger = make_ledger()
            execution_id = await ledger.log_execution(original)
            return execution_id, await ledger.get_execution(execution_id), await ledger.get_execution("missing")

        execution_id, stored, missing = asyncio.run(scenario())
        self.assertIsNone(missing)
        self.assertEqual(stored.id, execution_id)
        self.assertEqual(stored.model_dump(exclude={"id", "created_at"}), original.model_dump())
        self.assertEqual(stored.tool_name, "csv_to_json")
        self.assertEqual(stored.result, {"rows": 1})
        self.assertEqual(stored.thread_id, "t-1")
        self.assertEqual(stored.metadata, {"origin": "builtin"})
        self.assertIsNotNone(stored.created_at.tzinfo)

    def test_stats_track_counts_and_running_average(self):
        async def scenario():
            ledger = make_ledger()
            await ledger.log_execution(record(time_ms=10.0))
            await ledger.log_execution(record(time_ms=20.0))
            await ledger.log_execution(record(status="error", time_ms=60.0))
            await ledger.log_execution(record(status="error"))
            return await ledger.get_stats("csv_to_json")

        stats = asyncio.run(scenario())
        self.assertEqual(stats.total_executions, 4)
        self.assertEqual(stats.successful_executions, 2)
        self.assertEqual(stats.failed_executions, 2)
        self.assertEqual(stats.execution_time_sample_count, 3)
        self.assertAlmostEqual(stats.avg_execution_time_ms, 30.0)
        self.assertIsNotNone(stats.last_execution_at)

    def test_running_average_matches_incremental_formula(self):
        samples = [3.0, 7.5, 1.25, 40.0, 8.0]

        async def scenario():
            ledger = make_ledger()
            averages = []
            for sample in samples:
                await ledger.log_execution(record(time_ms=sample))
                averages.append((await ledger.get_stats("csv_to_json")).avg_execution_time_ms)
            return averages

        expected, avg = [], 0.0
        for count, sample in enumerate(samples):
            avg = (avg * count + sample) / (count + 1)
            expected.append(avg)

        for got, want in zip(asyncio.run(scenario()), expected):
            self.assertAlmostEqual(got, want)

    def test_concurrent_writers_do_not_lose_updates(self):
        async def scenario():
            ledger = make_ledger()
            await asyncio.gather(*(ledger.log_execution(record(time_ms=5.0)) for _ in range(25)))
            return await ledger.get_stats("csv_to_json")

        stats = asyncio.run(scenario())
        self.assertEqual(stats.total_executions, 25)
        self.assertEqual(stats.execution_time_sample_count, 25)
        self.assertAlmostEqual(stats.avg_execution_time_ms, 5.0)

    def test_unknown_tool_has_zeroed_stats(self):
        stats = asyncio.run(make_ledger().get_stats("never-ran"))
        self.assertEqual(stats.tool_name, "never-ran")
        self.assertEqual(stats.total_executions, 0)
        self.assertEqual(stats.avg_execution_time_ms, 0.0)
        self.assertIsNone(stats.last_execution_at)


class ExecutionLedgerQueryTests(unittest.TestCase):
    def test_lists_are_most_recent_first_with_limit_and_offset(self):
        async def scenario():
            ledger = make_ledger()
            ids = []
            for i in range(5):
                ids.append(await ledger.log_execution(record(time_ms=float(i))))
            first_page = await ledger.list_executions("csv_to_json", limit=2)
            second_page = await ledger.list_executions("csv_to_json", limit=2, offset=2)
            empty = await ledger.list_executions("csv_to_json", limit=0)
            return ids, first_page, second_page, empty

        ids, first_page, second_page, empty = asyncio.run(scenario())
        self.assertEqual([r.id for r in first_page], [ids[4], ids[3]])
        self.assertEqual([r.id for r in second_page], [ids[2], ids[1]])
        self.assertEqual(empty, [])

    def test_records_within_one_millisecond_keep_insertion_order(self):
        frozen = datetime(2024, 5, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)

        async def scenario():
            ledger = make_ledger()
            with mock.patch("toolflow.ledger.store.datetime") as clock:
                clock.now.return_value = frozen
                ids = [await ledger.log_execution(record(time_ms=1.0)) for _ in range(20)]
            return ids, await ledger.list_executions("csv_to_json", limit=2), await ledger.list_recent(limit=20)

        ids, newest, recent = asyncio.run(scenario())
        self.assertEqual([r.id for r in newest], [ids[-1], ids[-2]])
        self.assertEqual([r.id for r in recent], list(reversed(ids)))

    def test_scoped_indices(self):
        async def scenario():
            ledger = make_ledger()
            a = await ledger.log_execution(record("web_fetch", thread_id="t-1", agent_id="researcher"))
            b = await ledger.log_execution(record("csv_to_json", thread_id="t-1"))
            c = await ledger.log_execution(record("csv_to_json", thread_id="t-2", agent_id="researcher"))
            return (
                [a, b, c],
                await ledger.list_recent(),
                await ledger.list_by_thread("t-1"),
                await ledger.list_by_agent("researcher"),
                await ledger.list_executions("web_fetch"),
            )

        (a, b, c), recent, thread, agent, by_tool = asyncio.run(scenario())
        self.assertEqual([r.id for r in recent], [c, b, a])
        self.assertEqual([r.id for r in thread], [b, a])
        self.assertEqual([r.id for r in agent], [c, a])
        self.assertEqual([r.id for r in by_tool], [a])

    def test_malformed_entries_are_skipped(self):
        async def scenario():
            client = fakeredis.FakeAsyncRedis(decode_responses=True)
            ledger = ExecutionLedger(client)
            good = await ledger.log_execution(record())
            await client.set(f"{TOOL_EXECUTION_PREFIX}bad", "{not json")
            await client.zadd(f"{TOOL_EXECUTIONS_BY_TOOL_PREFIX}csv_to_json", {"bad": 9_999_999_999_999})
            await client.zadd(f"{TOOL_EXECUTIONS_BY_TOOL_PREFIX}csv_to_json", {"gone": 9_999_999_999_998})
            return good, await ledger.list_executions("csv_to_json")

        with self.assertLogs("toolflow.ledger.store", level="WARNING"):
            good, listed = asyncio.run(scenario())
        self.assertEqual([r.id for r in listed], [good])

    def test_negative_offset_is_rejected(self):
        with self.assertRaises(ValueError):
            asyncio.run(make_ledger().list_executions("csv_to_json", offset=-1))


class ExecutionLedgerAvailabilityTests(unittest.TestCase):
    def test_unconfigured_ledger_raises_store_unavailable(self):
        ledger = ExecutionLedger.from_settings(Settings(_env_file=None, redis_url=None))
        with self.assertRaises(StoreUnavailableError):
            asyncio.run(ledger.log_execution(record()))
        with self.assertRaises(StoreUnavailableError):
            asyncio.run(ledger.get_stats("csv_to_json"))

    def test_redis_errors_become_store_unavailable(self):
        async def scenario():
            server = fakeredis.FakeServer()
            server.connected = False
            ledger = ExecutionLedger(fakeredis.FakeAsyncRedis(server=server, decode_responses=True))
            with self.assertRaises(StoreUnavailableError):
                await ledger.log_execution(record())
            with self.assertRaises(StoreUnavailableError):
                await ledger.list_recent()

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
