"""Multi-agent workflow orchestration."""

from .agents import AgentRegistry, AgentResult, AgentRunContext, AgentToolbox, FunctionAgent
from .orchestrator import WorkflowOrchestrator
from .schema import CommunicationOptions, StepSpec, Workflow, WorkflowStep
from .threads import Message, SqliteMessageStore

__all__ = [
    "AgentRegistry",
    "AgentResult",
    "AgentRunContext",
    "AgentToolbox",
    "CommunicationOptions",
    "FunctionAgent",
    "Message",
    "SqliteMessageStore",
    "StepSpec",
    "Workflow",
    "WorkflowOrchestrator",
    "WorkflowStep",
]
