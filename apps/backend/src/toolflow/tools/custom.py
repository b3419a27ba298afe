"""Dynamically defined tools: definitions and bodies come from persisted config.

Two sources ship with ToolFlow:

    DirectoryToolSource  one ``<tool>.json`` file per tool
    SupabaseToolSource   the ``tools``/``apps`` tables over PostgREST

Bodies are compiled by :mod:`toolflow.tools.sandbox`, never executed as code.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

from ..errors import InitializationError
from .params import schema_to_model
from .sandbox import CompiledExpression, compile_expression
from .schema import ToolDescriptor

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


class CustomToolDefinition(BaseModel):
    """A persisted custom tool row."""

    name: str
    description: str = ""
    parameters_schema: dict[str, Any] | str = Field(default_factory=lambda: {"type": "object"})
    implementation: Optional[str] = None
    app_id: Optional[str] = None


class CustomToolSource(Protocol):
    async def fetch_definitions(self) -> list[dict[str, Any]]: ...

    async def fetch_implementation(self, app_id: str) -> Optional[str]: ...


class DirectoryToolSource:
    """Reads ``*.json`` tool definitions from a directory.

    An ``app_id`` resolves to ``apps/<app_id>.expr`` under the same directory.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir

    async def fetch_definitions(self) -> list[dict[str, Any]]:
        if not self.base_dir.exists():
            return []

        rows: list[dict[str, Any]] = []
        for filepath in sorted(self.base_dir.glob("*.json")):
            try:
                data = json.loads(filepath.read_text())
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Skipping unreadable custom tool file %s: %s", filepath.name, e)
                continue
            if isinstance(data, dict):
                data.setdefault("name", filepath.stem)
                rows.append(data)
            else:
                logger.warning("Skipping custom tool file %s: expected a JSON object", filepath.name)
        return rows

    async def fetch_implementation(self, app_id: str) -> Optional[str]:
        path = self.base_dir / "apps" / f"{app_id}.expr"
        if not path.exists():
            return None
        return path.read_text()


class SupabaseToolSource:
    """Reads custom tools from Supabase's REST interface."""

    def __init__(self, base_url: str, api_key: str, http_client: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self.http = http_client
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }

    async def fetch_definitions(self) -> list[dict[str, Any]]:
        resp = await self.http.get(
            f"{self.base_url}/rest/v1/tools",
            params={"type": "eq.custom", "select": "*"},
            headers=self._headers,
        )
        resp.raise_for_status()
        return resp.json()

    async def fetch_implementation(self, app_id: str) -> Optional[str]:
        resp = await self.http.get(
            f"{self.base_url}/rest/v1/apps",
            params={"id": f"eq.{app_id}", "select": "code"},
            headers=self._headers,
        )
        resp.raise_for_status()
        rows = resp.json()
        if not rows:
            return None
        return rows[0].get("code")


def create_tool_source(settings: Settings, http_client: httpx.AsyncClient) -> CustomToolSource | None:
    """Pick the configured source; Supabase wins when both are set."""
    if settings.supabase_url and settings.supabase_key:
        return SupabaseToolSource(settings.supabase_url, settings.supabase_key, http_client)
    if settings.custom_tools_dir:
        return DirectoryToolSource(Path(settings.custom_tools_dir))
    return None


async def load_custom_tools(source: CustomToolSource) -> dict[str, ToolDescriptor]:
    """Fetch and compile every custom tool from ``source``.

    A broken definition is skipped with a warning; an unreachable source
    raises ``InitializationError``.
    """
    try:
        rows = await source.fetch_definitions()
    except (httpx.HTTPError, OSError, ValueError) as e:
        raise InitializationError(f"Failed to fetch custom tools: {e}") from e

    tools: dict[str, ToolDescriptor] = {}
    for row in rows:
        name = row.get("name", "<unnamed>") if isinstance(row, dict) else "<unnamed>"
        try:
            definition = CustomToolDefinition.model_validate(row)
            descriptor = await _build_descriptor(definition, source)
        except Exception as e:
            # one bad row never takes its siblings down
            logger.warning("Skipping custom tool %s: %s", name, e)
            continue
        if descriptor is None:
            logger.warning("Skipping custom tool %s: no implementation", name)
            continue
        tools[descriptor.name] = descriptor

    logger.info("Loaded %d custom tools", len(tools))
    return tools


async def _build_descriptor(
    definition: CustomToolDefinition,
    source: CustomToolSource,
) -> ToolDescriptor | None:
    implementation = definition.implementation
    if not implementation and definition.app_id:
        implementation = await source.fetch_implementation(definition.app_id)
    if not implementation:
        return None

    model = schema_to_model(definition.parameters_schema, f"{definition.name}_parameters")
    compiled = compile_expression(implementation, allowed_names=model.model_fields.keys())

    return ToolDescriptor(
        name=definition.name,
        description=definition.description,
        parameter_schema=model,
        category="custom",
        executor=_expression_executor(compiled),
        origin="custom",
    )


def _expression_executor(compiled: CompiledExpression):
    async def execute(params: dict[str, Any]) -> Any:
        return compiled.evaluate(params)

    return execute
