"""The single Tool shape every catalog origin is adapted to."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from ..errors import ExecutionFailure
from .params import validate_parameters

ToolExecutor = Callable[[dict[str, Any]], Awaitable[Any]]
ToolOrigin = Literal["builtin", "custom", "integration", "manual"]


class ToolDescriptor(BaseModel):
    """A registered tool. Immutable; re-registration replaces it wholesale."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str
    parameter_schema: type[BaseModel]
    category: str  # "web" | "data" | "api" | "file" | "custom" | "agentic" | ...
    executor: ToolExecutor
    origin: ToolOrigin = "manual"

    def parse_parameters(self, parameters: dict[str, Any] | None) -> dict[str, Any]:
        """Return ``parameters`` parsed by the schema (defaults applied)."""
        return validate_parameters(self.parameter_schema, parameters or {})

    async def execute(self, parameters: dict[str, Any] | None) -> Any:
        """Validate and run.

        Bad parameters raise ``ValidationError`` before the executor runs;
        whatever the executor raises comes back as ``ExecutionFailure`` with
        the original exception as its cause.
        """
        parsed = self.parse_parameters(parameters)
        try:
            return await self.executor(parsed)
        except Exception as e:
            raise ExecutionFailure(f"Tool '{self.name}' failed: {e}", {"tool": self.name}) from e
