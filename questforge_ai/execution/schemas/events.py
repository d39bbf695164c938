"""Payloads of the events written to an execution stream.

Each model serializes (by alias) to the JSON ``data`` line of one frame.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import Field

from .base import BaseSchema
from .domain import ErrorType, Todo


class StreamEventName(str, Enum):
    start = "start"
    thinking = "thinking"
    token = "token"
    tool_start = "tool_start"
    tool_end = "tool_end"
    tool_error = "tool_error"
    warning = "warning"
    retry = "retry"
    complete = "complete"
    error = "error"


TERMINAL_EVENTS = (StreamEventName.complete, StreamEventName.error)


class StartEvent(BaseSchema):
    agent_id: str
    checkpoint_id: Optional[str] = None
    task: str
    execution_id: str
    result_id: str


class ThinkingEvent(BaseSchema):
    message: str


class TokenEvent(BaseSchema):
    token: str


class ToolStartEvent(BaseSchema):
    tool: str
    input: str
    iteration: int


class ToolEndEvent(BaseSchema):
    output: str


class ToolErrorEvent(BaseSchema):
    error: str


class WarningEvent(BaseSchema):
    message: str
    iteration_count: int
    max_recursion: int


class RetryEvent(BaseSchema):
    attempt: int
    error: str
    next_delay: float
    is_transient: bool = True


class CompleteEvent(BaseSchema):
    agent_id: str
    checkpoint_id: Optional[str] = None
    output: str
    tokens: int
    todos: List[Todo] = Field(default_factory=list)
    result_id: str
    total_iterations: int
    new_iterations: Optional[int] = None


class ErrorEvent(BaseSchema):
    error: str
    type: ErrorType
    result_id: Optional[str] = None
    is_recoverable: bool
    suggestions: Optional[List[str]] = None
