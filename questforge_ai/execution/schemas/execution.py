"""Inputs and outputs of a single orchestrated execution."""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from .base import BaseSchema
from .domain import CheckpointSnapshot, ErrorClassification, ExecutionStatus


class ExecutionRequest(BaseSchema):
    """
    A request to run a task for an agent.

    Fresh runs carry ``task``. Resumed runs set ``resume`` and carry the
    ``checkpoint_id`` whose saved state is continued; their task text is
    composed from that state.
    """

    agent_id: str
    task: Optional[str] = None
    checkpoint_id: Optional[str] = None
    quest_id: Optional[str] = None
    thread_id: Optional[str] = None
    additional_instructions: Optional[str] = None
    estimated_tokens: Optional[int] = None
    step_budget: Optional[int] = Field(default=None, gt=0)
    resume: bool = False


class ResumePlan(BaseSchema):
    original_task: str
    task: str
    snapshot: CheckpointSnapshot
    previous_steps: int
    thread_id: Optional[str] = None


class ExecutionPlan(BaseSchema):
    """A validated request, ready to run. Produced by ``ExecutionOrchestrator.prepare``."""

    execution_id: str
    request: ExecutionRequest
    task: str
    original_task: str
    snapshot: CheckpointSnapshot
    step_budget: int
    previous_steps: int = 0
    resumed: bool = False


class ExecutionOutcome(BaseSchema):
    execution_id: str
    result_id: Optional[str] = None
    status: ExecutionStatus
    output: str = ""
    steps: int = 0
    error: Optional[ErrorClassification] = None
