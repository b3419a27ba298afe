"""Pydantic models for multi-agent workflows."""

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

WorkflowStatus = Literal["pending", "running", "completed", "failed", "paused"]
StepStatus = Literal["pending", "running", "completed", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepSpec(BaseModel):
    """A step as supplied by the caller when creating a workflow."""

    agent_id: str
    input: Optional[str] = None
    thread_id: Optional[str] = None


class WorkflowStep(BaseModel):
    """One agent invocation inside a workflow."""

    id: str = Field(default_factory=new_id)
    agent_id: str
    input: Optional[str] = None
    thread_id: str = Field(default_factory=new_id)
    status: StepStatus = "pending"
    result: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Workflow(BaseModel):
    """An ordered list of agent steps executed as one pausable unit."""

    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    steps: list[WorkflowStep] = []
    current_step_index: int = 0
    status: WorkflowStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def touch(self) -> None:
        self.updated_at = utcnow()


class CommunicationOptions(BaseModel):
    """Options for a direct agent-to-agent exchange."""

    share_full_history: bool = False
    source_thread_id: Optional[str] = None
    message: Optional[str] = Field(None, description="System message injected before the request")
