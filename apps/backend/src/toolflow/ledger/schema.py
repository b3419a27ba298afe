"""Pydantic models for the execution ledger."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ExecutionStatus = Literal["success", "error", "in_progress"]


class ExecutionRecordInput(BaseModel):
    """What a caller hands to ``ExecutionLedger.log_execution``."""

    tool_id: str
    tool_name: str
    parameters: dict[str, Any] = {}
    result: Any = None
    error_message: Optional[str] = None
    status: ExecutionStatus
    execution_time_ms: Optional[float] = Field(None, ge=0)
    thread_id: Optional[str] = None
    agent_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class ExecutionRecord(ExecutionRecordInput):
    """A stored ledger entry. Never edited after it is written."""

    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime


class ToolStats(BaseModel):
    """Running aggregates for one tool name."""

    tool_name: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    avg_execution_time_ms: float = 0.0
    execution_time_sample_count: int = 0
    last_execution_at: Optional[datetime] = None
