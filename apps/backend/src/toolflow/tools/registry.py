"""Tool catalog: one queryable set of tools assembled from every origin.

Origins, merged in this order (later names overwrite earlier ones):

    1. built-in tools          (toolflow.tools.builtin)
    2. custom tools            (toolflow.tools.custom, from persisted config)
    3. integration tools       (toolflow.tools.integrations)

Manual ``register()`` calls are applied on top and survive re-initialization.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Callable, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Protocol

import httpx
from pydantic import BaseModel

from ..errors import ExecutionFailure, InitializationError, StoreUnavailableError, ToolNotFoundError, ValidationError
from ..ledger.schema import ExecutionRecordInput
from ..tracing import HttpTraceSink, TraceSink, emit
from .builtin import create_builtin_tools
from .custom import CustomToolSource, create_tool_source, load_custom_tools
from .integrations import Integration, default_integrations
from .params import schema_to_model
from .schema import ToolDescriptor

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


class InitState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    FAILED = "failed"


class ExecutionRecorder(Protocol):
    """Receives one record per tool invocation (the ExecutionLedger)."""

    async def log_execution(self, record: ExecutionRecordInput) -> str: ...


class ToolCatalog:
    """Registry mapping tool names to descriptors, initialized once on demand."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        include_builtin: bool = True,
        custom_source: Optional[CustomToolSource] = None,
        integrations: Sequence[Integration] = (),
        recorder: Optional[ExecutionRecorder] = None,
        tracer: Optional[TraceSink] = None,
    ) -> None:
        if include_builtin and (settings is None or http_client is None):
            raise ValueError("Built-in tools need settings and an http_client")

        self._settings = settings
        self._http = http_client
        self._include_builtin = include_builtin
        self._custom_source = custom_source
        self._integrations = list(integrations)
        self.recorder = recorder
        self.tracer = tracer

        self._tools: dict[str, ToolDescriptor] = {}
        self._manual: dict[str, ToolDescriptor] = {}
        self._state = InitState.NOT_STARTED
        self._init_task: Optional[asyncio.Task[None]] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        recorder: Optional[ExecutionRecorder] = None,
    ) -> ToolCatalog:
        """Construct a catalog with every origin the settings enable."""
        custom_source = create_tool_source(settings, http_client) if settings.include_custom_tools else None
        integrations = default_integrations(settings, http_client) if settings.include_integration_tools else []
        return cls(
            settings=settings,
            http_client=http_client,
            include_builtin=settings.include_builtin_tools,
            custom_source=custom_source,
            integrations=integrations,
            recorder=recorder,
            tracer=HttpTraceSink.from_settings(settings, http_client),
        )

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    @property
    def state(self) -> InitState:
        return self._state

    async def initialize(self) -> None:
        """Assemble the catalog. Idempotent; concurrent callers share one run.

        Raises ``InitializationError`` when assembly fails. The catalog is then
        left without assembled tools and the next call retries.
        """
        if self._state is InitState.READY:
            return

        if self._init_task is None:
            self._state = InitState.IN_PROGRESS
            self._init_task = asyncio.ensure_future(self._run_initialization())

        await asyncio.shield(self._init_task)

    async def ensure_initialized(self) -> None:
        if self._state is not InitState.READY:
            await self.initialize()

    async def _run_initialization(self) -> None:
        await emit(
            self.tracer,
            "tool_initialization",
            {
                "include_builtin": self._include_builtin,
                "include_custom": self._custom_source is not None,
                "integrations": [i.name for i in self._integrations],
            },
        )
        try:
            assembled, counts = await self._assemble()
        except Exception as e:
            self._tools = dict(self._manual)
            self._state = InitState.FAILED
            logger.error("Error initializing tool catalog: %s", e)
            await emit(self.tracer, "tool_initialization_error", {"level": "error", "error": str(e)})
            if isinstance(e, InitializationError):
                raise
            raise InitializationError(f"Tool catalog failed to initialize: {e}") from e
        else:
            self._tools = {**assembled, **self._manual}
            self._state = InitState.READY
            counts["total"] = len(self._tools)
            logger.info("Tool catalog initialized: %s", counts)
            await emit(self.tracer, "tools_initialized", {"level": "info", **counts})
        finally:
            self._init_task = None

    async def _assemble(self) -> tuple[dict[str, ToolDescriptor], dict[str, Any]]:
        builtin: dict[str, ToolDescriptor] = {}
        if self._include_builtin:
            builtin = create_builtin_tools(self._settings, self._http)  # type: ignore[arg-type]

        custom: dict[str, ToolDescriptor] = {}
        if self._custom_source is not None:
            custom = await load_custom_tools(self._custom_source)

        integration: dict[str, ToolDescriptor] = {}
        for source in self._integrations:
            try:
                contributed = await source.tools()
            except Exception as e:
                raise InitializationError(f"Integration '{source.name}' failed to provide tools: {e}") from e
            for tool in contributed:
                integration[tool.name] = tool

        counts = {"builtin": len(builtin), "custom": len(custom), "integration": len(integration)}
        return {**builtin, **custom, **integration}, counts

    # ------------------------------------------------------------------
    # Registration and lookup
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        description: str,
        parameter_schema: type[BaseModel] | dict[str, Any],
        executor: Callable[[dict[str, Any]], Any],
        *,
        category: str = "custom",
    ) -> ToolDescriptor:
        """Register (or replace) a tool. Last writer wins.

        ``parameter_schema`` is a pydantic model or a JSON-schema object.
        Sync executors are wrapped so every tool exposes the async shape.
        """
        if isinstance(parameter_schema, dict):
            parameter_schema = schema_to_model(parameter_schema, f"{name}_parameters")

        descriptor = ToolDescriptor(
            name=name,
            description=description,
            parameter_schema=parameter_schema,
            category=category,
            executor=_as_async(executor),
            origin="manual",
        )
        self._manual[name] = descriptor
        self._tools[name] = descriptor
        return descriptor

    async def get_tool(self, name: str) -> ToolDescriptor | None:
        await self.ensure_initialized()
        return self._tools.get(name)

    async def has_tool(self, name: str) -> bool:
        await self.ensure_initialized()
        return name in self._tools

    async def get_all_tools(self) -> dict[str, ToolDescriptor]:
        await self.ensure_initialized()
        return dict(self._tools)

    async def get_tools_by_category(self, category: str) -> dict[str, ToolDescriptor]:
        await self.ensure_initialized()
        wanted = category.lower()
        return {name: tool for name, tool in self._tools.items() if tool.category.lower() == wanted}

    async def categories(self) -> list[str]:
        await self.ensure_initialized()
        return sorted({tool.category for tool in self._tools.values()})

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_tool(
        self,
        name: str,
        parameters: Optional[dict[str, Any]] = None,
        *,
        thread_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Run a tool and record the outcome.

        Raises ``ToolNotFoundError`` (nothing recorded), ``ValidationError``
        or ``ExecutionFailure`` (both recorded with status ``error``).
        """
        tool = await self.get_tool(name)
        if tool is None:
            raise ToolNotFoundError(name)

        params = dict(parameters or {})
        trace_meta = {"tool_name": name, "thread_id": thread_id, "agent_id": agent_id}
        started = time.perf_counter()

        try:
            result = await tool.execute(params)
        except ValidationError as e:
            await self._record(tool, params, _elapsed_ms(started), thread_id, agent_id, metadata, error=str(e))
            await emit(self.tracer, "tool_execution_error", {"level": "error", **trace_meta, "error": str(e)})
            raise
        except ExecutionFailure as e:
            cause = str(e.__cause__ or e)
            await self._record(tool, params, _elapsed_ms(started), thread_id, agent_id, metadata, error=cause)
            await emit(self.tracer, "tool_execution_error", {"level": "error", **trace_meta, "error": cause})
            logger.error("Error executing tool '%s': %s", name, cause)
            raise

        await self._record(tool, params, _elapsed_ms(started), thread_id, agent_id, metadata, result=result)
        await emit(self.tracer, "tool_execution_success", {"level": "info", **trace_meta})
        return result

    async def _record(
        self,
        tool: ToolDescriptor,
        params: dict[str, Any],
        elapsed_ms: float,
        thread_id: Optional[str],
        agent_id: Optional[str],
        metadata: Optional[dict[str, Any]],
        *,
        result: Any = None,
        error: Optional[str] = None,
    ) -> None:
        if self.recorder is None:
            return

        record = ExecutionRecordInput(
            tool_id=tool.name,
            tool_name=tool.name,
            parameters=_jsonable(params),
            result=_jsonable(result) if error is None else None,
            error_message=error,
            status="error" if error is not None else "success",
            execution_time_ms=elapsed_ms,
            thread_id=thread_id,
            agent_id=agent_id,
            metadata={"category": tool.category, "origin": tool.origin, **(metadata or {})},
        )
        try:
            await self.recorder.log_execution(record)
        except StoreUnavailableError as e:
            logger.warning("Could not record execution of '%s': %s", tool.name, e)


def _as_async(executor: Callable[[dict[str, Any]], Any]):
    if inspect.iscoroutinefunction(executor):
        return executor

    async def execute(params: dict[str, Any]) -> Any:
        result = executor(params)
        if inspect.isawaitable(result):
            return await result
        return result

    return execute


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))
