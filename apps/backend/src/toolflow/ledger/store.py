"""Redis-backed append-only ledger of tool executions with running stats.

Key layout:

    tool:execution:<id>                 JSON-encoded ExecutionRecord
    tool:executions                     sorted set, every execution
    tool:executions:tool:<tool_name>    sorted set per tool
    tool:executions:thread:<thread_id>  sorted set per thread
    tool:executions:agent:<agent_id>    sorted set per agent
    tool:stats:<tool_name>              hash of counters

Sorted sets are scored by epoch milliseconds (fractional, strictly increasing
per ledger instance). Every write for one record goes out in a single
MULTI/EXEC block, and the stats are maintained only with increment
commands, so concurrent writers never need a read-modify-write.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from ..errors import StoreUnavailableError
from .schema import ExecutionRecord, ExecutionRecordInput, ToolStats

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

TOOL_EXECUTION_PREFIX = "tool:execution:"
TOOL_EXECUTIONS_INDEX = "tool:executions"
TOOL_EXECUTIONS_BY_TOOL_PREFIX = "tool:executions:tool:"
TOOL_EXECUTIONS_BY_THREAD_PREFIX = "tool:executions:thread:"
TOOL_EXECUTIONS_BY_AGENT_PREFIX = "tool:executions:agent:"
TOOL_STATS_PREFIX = "tool:stats:"


class ExecutionLedger:
    """Durable record of every tool invocation plus per-tool statistics."""

    def __init__(self, client: Optional[redis.Redis]):
        self._redis = client
        self._last_score = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> ExecutionLedger:
        """Build a ledger from ``redis_url``; without one every call raises."""
        if not settings.redis_url:
            return cls(None)
        client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        return cls(client)

    async def aclose(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    def _client(self) -> redis.Redis:
        if self._redis is None:
            raise StoreUnavailableError("Execution ledger is not configured: set TOOLFLOW_REDIS_URL")
        return self._redis

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def log_execution(self, record: ExecutionRecordInput) -> str:
        """Append ``record`` and update its tool's stats atomically. Returns the new id."""
        client = self._client()
        now = datetime.now(timezone.utc)
        score = self._next_score(now)
        stored = ExecutionRecord(**record.model_dump(), id=str(uuid.uuid4()), created_at=now)

        stats_key = f"{TOOL_STATS_PREFIX}{record.tool_name}"
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(f"{TOOL_EXECUTION_PREFIX}{stored.id}", stored.model_dump_json())

                pipe.zadd(TOOL_EXECUTIONS_INDEX, {stored.id: score})
                pipe.zadd(f"{TOOL_EXECUTIONS_BY_TOOL_PREFIX}{record.tool_name}", {stored.id: score})
                if record.thread_id:
                    pipe.zadd(f"{TOOL_EXECUTIONS_BY_THREAD_PREFIX}{record.thread_id}", {stored.id: score})
                if record.agent_id:
                    pipe.zadd(f"{TOOL_EXECUTIONS_BY_AGENT_PREFIX}{record.agent_id}", {stored.id: score})

                pipe.hincrby(stats_key, "total_executions", 1)
                if record.status == "success":
                    pipe.hincrby(stats_key, "successful_executions", 1)
                elif record.status == "error":
                    pipe.hincrby(stats_key, "failed_executions", 1)

                # mean = total / count, i.e. (avg*count + t) / (count + 1) after each sample
                if record.execution_time_ms is not None:
                    pipe.hincrbyfloat(stats_key, "execution_time_total_ms", record.execution_time_ms)
                    pipe.hincrby(stats_key, "execution_time_count", 1)

                pipe.hset(stats_key, "last_execution_at", now.isoformat())
                await pipe.execute()
        except RedisError as e:
            logger.error("Error logging tool execution for %s: %s", record.tool_name, e)
            raise StoreUnavailableError(
                f"Failed to log tool execution for {record.tool_name}: {e}",
                {"tool_name": record.tool_name},
            ) from e

        return stored.id

    def _next_score(self, now: datetime) -> float:
        # strictly increasing, so records logged within one millisecond keep their order
        score = max(now.timestamp() * 1000, self._last_score + 0.001)
        self._last_score = score
        return score

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        client = self._client()
        try:
            raw = await client.get(f"{TOOL_EXECUTION_PREFIX}{execution_id}")
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to get tool execution {execution_id}: {e}") from e

        if raw is None:
            return None
        return _parse_record(execution_id, raw)

    async def list_executions(self, tool_name: str, limit: int = 10, offset: int = 0) -> list[ExecutionRecord]:
        """Executions of ``tool_name``, most recent first."""
        return await self._list_index(f"{TOOL_EXECUTIONS_BY_TOOL_PREFIX}{tool_name}", limit, offset)

    async def list_recent(self, limit: int = 10, offset: int = 0) -> list[ExecutionRecord]:
        """Executions of every tool, most recent first."""
        return await self._list_index(TOOL_EXECUTIONS_INDEX, limit, offset)

    async def list_by_thread(self, thread_id: str, limit: int = 10, offset: int = 0) -> list[ExecutionRecord]:
        return await self._list_index(f"{TOOL_EXECUTIONS_BY_THREAD_PREFIX}{thread_id}", limit, offset)

    async def list_by_agent(self, agent_id: str, limit: int = 10, offset: int = 0) -> list[ExecutionRecord]:
        return await self._list_index(f"{TOOL_EXECUTIONS_BY_AGENT_PREFIX}{agent_id}", limit, offset)

    async def _list_index(self, index_key: str, limit: int, offset: int) -> list[ExecutionRecord]:
        if offset < 0:
            raise ValueError("offset must be >= 0")
        if limit <= 0:
            return []

        client = self._client()
        try:
            ids = await client.zrevrange(index_key, offset, offset + limit - 1)
            if not ids:
                return []
            async with client.pipeline(transaction=False) as pipe:
                for execution_id in ids:
                    pipe.get(f"{TOOL_EXECUTION_PREFIX}{execution_id}")
                raws = await pipe.execute()
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to list executions from {index_key}: {e}") from e

        records: list[ExecutionRecord] = []
        for execution_id, raw in zip(ids, raws):
            if raw is None:
                logger.warning("Execution %s is indexed in %s but has no record", execution_id, index_key)
                continue
            record = _parse_record(execution_id, raw)
            if record is not None:
                records.append(record)
        return records

    async def get_stats(self, tool_name: str) -> ToolStats:
        """Aggregates for ``tool_name``; all zero if it never ran."""
        client = self._client()
        try:
            raw = await client.hgetall(f"{TOOL_STATS_PREFIX}{tool_name}")
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to get tool stats for {tool_name}: {e}") from e

        if not raw:
            return ToolStats(tool_name=tool_name)

        sample_count = int(raw.get("execution_time_count", 0))
        total_time = float(raw.get("execution_time_total_ms", 0.0))
        last = raw.get("last_execution_at")
        return ToolStats(
            tool_name=tool_name,
            total_executions=int(raw.get("total_executions", 0)),
            successful_executions=int(raw.get("successful_executions", 0)),
            failed_executions=int(raw.get("failed_executions", 0)),
            avg_execution_time_ms=total_time / sample_count if sample_count else 0.0,
            execution_time_sample_count=sample_count,
            last_execution_at=datetime.fromisoformat(last) if last else None,
        )


def _parse_record(execution_id: str, raw: str) -> ExecutionRecord | None:
    try:
        return ExecutionRecord.model_validate_json(raw)
    except PydanticValidationError as e:
        logger.warning("Skipping malformed execution record %s: %s", execution_id, e.errors()[:1])
        return None
