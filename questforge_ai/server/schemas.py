"""
API Schemas.

Request bodies and response envelopes of the HTTP API. Field names are
snake_case in Python and camelCase on the wire.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field

from questforge_ai.execution.schemas.base import BaseSchema
from questforge_ai.execution.schemas.domain import (
    ExecutionResult,
    ExecutionStatus,
    LogEntry,
    TraceEvent,
)
from questforge_ai.execution.schemas.execution import ExecutionRequest


class ApiRequest(BaseSchema):
    """Base of request bodies; unknown fields sent by clients are ignored."""

    model_config = ConfigDict(extra="ignore")


class ExecuteRequest(ApiRequest):
    """
    Schema for starting a fresh execution.

    A missing or blank ``task`` is rejected with 400 by the orchestrator rather
    than with a schema error, so it is optional here.
    """

    agent_id: str = Field(..., description="The agent that runs the task.", examples=["agent-scout"])
    task: Optional[str] = Field(
        default=None,
        description="The task for the agent to accomplish.",
        examples=["Summarize the open issues in the workspace README."],
    )
    checkpoint_id: Optional[str] = Field(
        default=None, description="Checkpoint to save step snapshots under, enabling a later resume."
    )
    quest_id: Optional[str] = Field(default=None, description="Quest the execution belongs to.")
    thread_id: Optional[str] = Field(default=None, description="Conversation thread of the runtime.")
    additional_instructions: Optional[str] = Field(default=None, description="Appended to the task text.")
    estimated_tokens: Optional[int] = Field(default=None, ge=0, description="Token estimate used when the runtime reports none.")
    recursion_limit: Optional[int] = Field(default=None, gt=0, description="Step budget of the run (default 100).")

    def to_execution_request(self) -> ExecutionRequest:
        return ExecutionRequest(
            agent_id=self.agent_id,
            task=self.task,
            checkpoint_id=self.checkpoint_id,
            quest_id=self.quest_id,
            thread_id=self.thread_id,
            additional_instructions=self.additional_instructions,
            estimated_tokens=self.estimated_tokens,
            step_budget=self.recursion_limit,
        )


class ResumeRequest(ApiRequest):
    """Schema for resuming from a saved checkpoint."""

    checkpoint_id: Optional[str] = Field(default=None, description="The checkpoint to resume from.")
    additional_instructions: Optional[str] = Field(default=None, description="Guidance added to the resumed task.")
    quest_id: Optional[str] = Field(default=None)
    estimated_tokens: Optional[int] = Field(default=None, ge=0)
    recursion_limit: Optional[int] = Field(default=None, gt=0)

    def to_execution_request(self, agent_id: str) -> ExecutionRequest:
        return ExecutionRequest(
            agent_id=agent_id,
            checkpoint_id=self.checkpoint_id,
            quest_id=self.quest_id,
            additional_instructions=self.additional_instructions,
            estimated_tokens=self.estimated_tokens,
            step_budget=self.recursion_limit,
            resume=True,
        )


class CancelRequest(ApiRequest):
    """Identifies the run to cancel by execution id, thread id or checkpoint id, in that order."""

    execution_id: Optional[str] = Field(default=None, description="The running execution to cancel.")
    thread_id: Optional[str] = Field(default=None, description="Thread of the running execution.")
    checkpoint_id: Optional[str] = Field(default=None, description="Checkpoint the running execution saves to.")
    reason: Optional[str] = Field(default=None)


class CancelResponse(BaseSchema):
    execution_id: str
    agent_id: str
    thread_id: Optional[str] = None
    checkpoint_id: Optional[str] = None
    result_id: Optional[str] = None
    status: str = "cancelled"
    message: str = "Execution cancelled successfully"
    cancelled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ResultSummary(BaseSchema):
    """An execution result without its result text, for list views."""

    id: str
    agent_id: str
    checkpoint_id: Optional[str] = None
    quest_id: Optional[str] = None
    status: ExecutionStatus
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_result(cls, result: ExecutionResult) -> "ResultSummary":
        return cls.model_validate(result.model_dump(exclude={"result"}))


class ResultListResponse(BaseSchema):
    results: List[ResultSummary]
    total: int
    limit: int
    offset: int
    has_more: bool


class ResultDetailResponse(ExecutionResult):
    """A full execution result, with its logs and traces when requested."""

    logs: Optional[List[LogEntry]] = None
    traces: Optional[List[TraceEvent]] = None


class LogListResponse(BaseSchema):
    logs: List[LogEntry]
    count: int
    total: int
    limit: int
    offset: int


class TraceListResponse(BaseSchema):
    traces: List[TraceEvent]
    count: int
    total: int
    limit: int
    offset: int


class RetentionCounts(BaseSchema):
    results: int
    logs: int
    traces: int
    checkpoints: int


class RetentionResponse(BaseSchema):
    older_than_days: int
    deleted: RetentionCounts
