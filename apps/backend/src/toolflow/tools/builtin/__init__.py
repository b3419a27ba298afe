"""Built-in tools compiled into ToolFlow.

Each tool module registers its handlers with ``@builtin_tool``; importing the
package is enough to populate the registry.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel

from ..schema import ToolDescriptor

if TYPE_CHECKING:
    from ...config import Settings


@dataclass(frozen=True)
class ToolContext:
    """Resources a built-in handler may use."""

    settings: Settings
    http: httpx.AsyncClient


BuiltinHandler = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class BuiltinTool:
    name: str
    description: str
    category: str
    parameters: type[BaseModel]
    handler: BuiltinHandler


# Populated via @builtin_tool
_BUILTIN_REGISTRY: dict[str, BuiltinTool] = {}


def builtin_tool(
    name: str,
    *,
    category: str,
    description: str,
    parameters: type[BaseModel],
) -> Callable[[BuiltinHandler], BuiltinHandler]:
    """Function decorator that registers a handler in the built-in registry."""

    def decorator(handler: BuiltinHandler) -> BuiltinHandler:
        _BUILTIN_REGISTRY[name] = BuiltinTool(
            name=name,
            description=description,
            category=category,
            parameters=parameters,
            handler=handler,
        )
        return handler

    return decorator


def create_builtin_tools(settings: Settings, http_client: httpx.AsyncClient) -> dict[str, ToolDescriptor]:
    """Bind every registered built-in to ``settings`` and ``http_client``."""
    ctx = ToolContext(settings=settings, http=http_client)
    return {
        name: ToolDescriptor(
            name=name,
            description=spec.description,
            parameter_schema=spec.parameters,
            category=spec.category,
            executor=_bind(spec.handler, ctx),
            origin="builtin",
        )
        for name, spec in sorted(_BUILTIN_REGISTRY.items())
    }


def _bind(handler: BuiltinHandler, ctx: ToolContext):
    async def execute(params: dict[str, Any]) -> Any:
        return await handler(params, ctx)

    return execute


# Import all built-in tool modules to trigger @builtin_tool decoration
from . import api, data, files, web  # noqa: E402, F401
