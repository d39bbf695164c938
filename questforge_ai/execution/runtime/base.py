"""Agent runtime contract.

The orchestrator treats the agent runtime as a black box: it takes a message,
a step budget and progress callbacks, and returns a final answer or raises.
Runtimes should raise the typed errors below; generic exceptions are still
classified by their message text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from ..errors import (
    AgentRuntimeError,
    RecursionLimitError,
    RuntimeTimeoutError,
    TransientRuntimeError,
)
from ..schemas.domain import Todo


@dataclass(frozen=True)
class StepStart:
    tool_name: str
    input: str
    call_id: Optional[str] = None


@dataclass(frozen=True)
class StepEnd:
    output: str
    tool_name: Optional[str] = None
    call_id: Optional[str] = None


@dataclass(frozen=True)
class StepError:
    error: str
    tool_name: Optional[str] = None
    call_id: Optional[str] = None


@dataclass(frozen=True)
class RuntimeCallbacks:
    """Progress hooks handed to a runtime. Each hook returns once the signal has been handled."""

    on_token: Callable[[str], Awaitable[None]]
    on_step_start: Callable[[StepStart], Awaitable[None]]
    on_step_end: Callable[[StepEnd], Awaitable[None]]
    on_step_error: Callable[[StepError], Awaitable[None]]


@dataclass
class RuntimeRequest:
    message: str
    step_budget: int
    callbacks: RuntimeCallbacks
    agent_id: str
    thread_id: Optional[str] = None
    agent_state: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RuntimeResult:
    final_message: str
    todos: List[Todo] = field(default_factory=list)
    updated_checkpoint_state: Optional[Dict[str, Any]] = None
    tokens: Optional[int] = None


class AgentRuntime(Protocol):
    """A runtime that drives one multi-step agent invocation."""

    async def invoke(self, request: RuntimeRequest) -> RuntimeResult:
        """
        Run the agent until it produces a final answer.

        Args:
            request: The message, budget, callbacks and agent identity.

        Returns:
            The final answer and any state to carry into the checkpoint.

        Raises:
            RecursionLimitError: The step budget ran out.
            RuntimeTimeoutError: A model call or tool exceeded its time limit.
            TransientRuntimeError: An infrastructure failure worth retrying.
        """
        ...


__all__ = [
    "AgentRuntime",
    "AgentRuntimeError",
    "RecursionLimitError",
    "RuntimeCallbacks",
    "RuntimeRequest",
    "RuntimeResult",
    "RuntimeTimeoutError",
    "StepEnd",
    "StepError",
    "StepStart",
    "TransientRuntimeError",
]
