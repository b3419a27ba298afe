"""Error taxonomy shared by the catalog, the ledger and the orchestrator."""

from __future__ import annotations

from typing import Any, Optional


class ToolFlowError(Exception):
    """Base exception for ToolFlow."""

    error_type: str = "toolflow_error"

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class NotFoundError(ToolFlowError):
    """An unknown workflow, tool or agent id was referenced."""

    error_type = "not_found"


class ToolNotFoundError(NotFoundError):
    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' not found", {"tool": name})
        self.name = name


class WorkflowNotFoundError(NotFoundError):
    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow with ID {workflow_id} not found", {"workflow_id": workflow_id})
        self.workflow_id = workflow_id


class AgentNotFoundError(NotFoundError):
    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}", {"agent_id": agent_id})
        self.agent_id = agent_id


class InvalidTransitionError(ToolFlowError):
    """A workflow was asked to move to a state its current status forbids."""

    error_type = "invalid_transition"

    def __init__(self, message: str, current_status: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)
        self.current_status = current_status


class ValidationError(ToolFlowError):
    """Parameters (or a tool definition) failed validation.

    Distinct from ``pydantic.ValidationError``, which is converted into this
    type before it leaves the catalog.
    """

    error_type = "invalid_parameters"

    def __init__(
        self,
        message: str,
        errors: Optional[list[dict[str, Any]]] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.errors = errors or []


class SandboxViolation(ValidationError):
    """A custom tool expression uses a construct outside the allowlist."""

    error_type = "sandbox_violation"


class ExecutionFailure(ToolFlowError):
    """A tool's or agent's own logic raised an error."""

    error_type = "execution_failed"


class StoreUnavailableError(ToolFlowError):
    """The remote key-value store is unreachable or not configured."""

    error_type = "store_unavailable"


class InitializationError(ToolFlowError):
    """The tool catalog failed to assemble."""

    error_type = "initialization_failed"
