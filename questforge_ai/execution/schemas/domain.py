from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from .base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


TERMINAL_STATUSES = (ExecutionStatus.completed, ExecutionStatus.failed, ExecutionStatus.cancelled)


class LogLevel(str, Enum):
    info = "info"
    warn = "warn"
    error = "error"
    debug = "debug"
    success = "success"


class TraceType(str, Enum):
    tool_start = "tool_start"
    tool_end = "tool_end"
    tool_error = "tool_error"


class ErrorType(str, Enum):
    recursion_limit = "recursion_limit"
    timeout = "timeout"
    transient = "transient"
    permanent = "permanent"
    cancelled = "cancelled"


class ExecutionResult(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    agent_id: str
    checkpoint_id: Optional[str] = None
    quest_id: Optional[str] = None

    result: str = ""
    status: ExecutionStatus = ExecutionStatus.running
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None


class ExecutionResultUpdate(BaseSchema):
    """Partial patch of an ExecutionResult. ``None`` fields are left untouched; metadata keys are merged."""

    result: Optional[str] = None
    status: Optional[ExecutionStatus] = None
    metadata: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None


class LogEntry(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    agent_id: str
    execution_id: str

    level: LogLevel = LogLevel.info
    message: str
    source: str = "orchestrator"
    timestamp: datetime = Field(default_factory=_utc_now)


class TraceEvent(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    agent_id: str
    execution_id: str

    type: TraceType
    content: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    duration: Optional[int] = None
    timestamp: datetime = Field(default_factory=_utc_now)


class ToolOutput(BaseSchema):
    tool_name: str
    input: str = ""
    output: str = ""
    timestamp: datetime = Field(default_factory=_utc_now)
    duration: Optional[int] = None


class CheckpointSnapshot(BaseSchema):
    """The state blob saved for one checkpoint."""

    step: int = 0
    task: str
    partial_results: List[str] = Field(default_factory=list)
    tool_outputs: List[ToolOutput] = Field(default_factory=list)
    agent_state: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CheckpointState(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    agent_id: str
    checkpoint_id: str
    thread_id: Optional[str] = None

    state: CheckpointSnapshot

    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Todo(BaseSchema):
    content: str
    status: str = "pending"


class ErrorClassification(BaseSchema):
    type: ErrorType
    is_recoverable: bool
    suggestions: List[str] = Field(default_factory=list)
