"""Composition root: wires settings, the ledger, the catalog and the orchestrator.

Usage:
    from toolflow.runtime import create_runtime, close_runtime

    runtime = create_runtime()
    try:
        runtime.agents.register(FunctionAgent(...))
        await runtime.catalog.execute_tool("csv_to_json", {"csv": "a,b\\n1,2"})
    finally:
        await close_runtime(runtime)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv

from .config import Settings, get_settings
from .ledger import ExecutionLedger
from .logging_config import setup_logging
from .tools import ToolCatalog
from .tracing import HttpTraceSink, TraceSink
from .workflow import AgentRegistry, SqliteMessageStore, WorkflowOrchestrator


@dataclass
class Runtime:
    settings: Settings
    http: httpx.AsyncClient
    ledger: ExecutionLedger
    catalog: ToolCatalog
    messages: SqliteMessageStore
    agents: AgentRegistry
    orchestrator: WorkflowOrchestrator
    tracer: TraceSink


def create_runtime(settings: Optional[Settings] = None) -> Runtime:
    """Build every long-lived object from ``settings`` (environment by default).

    Nothing touches the network here; the catalog assembles lazily on first use.
    """
    if settings is None:
        load_dotenv()
        settings = get_settings()
    setup_logging(settings.log_level)

    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=True)
    ledger = ExecutionLedger.from_settings(settings)
    tracer = HttpTraceSink.from_settings(settings, http)

    catalog = ToolCatalog.from_settings(settings, http, recorder=ledger)
    messages = SqliteMessageStore(Path(settings.thread_db_path))
    agents = AgentRegistry()
    orchestrator = WorkflowOrchestrator(agents, messages, catalog=catalog, tracer=tracer)

    return Runtime(
        settings=settings,
        http=http,
        ledger=ledger,
        catalog=catalog,
        messages=messages,
        agents=agents,
        orchestrator=orchestrator,
        tracer=tracer,
    )


async def close_runtime(runtime: Runtime) -> None:
    """Release the HTTP client, the Redis connection and the thread database."""
    await runtime.http.aclose()
    await runtime.ledger.aclose()
    runtime.messages.close()
