"""Schemas and DTOs for the execution orchestrator."""

from .domain import (
    TERMINAL_STATUSES,
    CheckpointSnapshot,
    CheckpointState,
    ErrorClassification,
    ErrorType,
    ExecutionResult,
    ExecutionResultUpdate,
    ExecutionStatus,
    LogEntry,
    LogLevel,
    Todo,
    ToolOutput,
    TraceEvent,
    TraceType,
)
from .events import StreamEventName
from .execution import ExecutionOutcome, ExecutionPlan, ExecutionRequest, ResumePlan

__all__ = [
    "TERMINAL_STATUSES",
    "CheckpointSnapshot",
    "CheckpointState",
    "ErrorClassification",
    "ErrorType",
    "ExecutionResult",
    "ExecutionResultUpdate",
    "ExecutionStatus",
    "LogEntry",
    "LogLevel",
    "Todo",
    "ToolOutput",
    "TraceEvent",
    "TraceType",
    "StreamEventName",
    "ExecutionOutcome",
    "ExecutionPlan",
    "ExecutionRequest",
    "ResumePlan",
]
