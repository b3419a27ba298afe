from .schema import ExecutionRecord, ExecutionRecordInput, ToolStats
from .store import ExecutionLedger

__all__ = [
    "ExecutionLedger",
    "ExecutionRecord",
    "ExecutionRecordInput",
    "ToolStats",
]
