"""Exception hierarchy of the execution orchestrator.

Request-level errors (``InvalidRequestError``, the checkpoint errors and the
execution lookup errors) are raised before a stream is opened and map onto
HTTP status codes in the server layer. Runtime errors are raised by an
``AgentRuntime`` and drive error classification.
"""

from __future__ import annotations


class QuestForgeError(Exception):
    pass


class InvalidRequestError(QuestForgeError):
    """The execution request is malformed (missing task, missing checkpoint id)."""


class CheckpointNotFoundError(QuestForgeError):
    def __init__(self, checkpoint_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint state not found: '{checkpoint_id}'")


class CheckpointOwnershipError(QuestForgeError):
    def __init__(self, checkpoint_id: str, agent_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        self.agent_id = agent_id
        super().__init__(f"Checkpoint '{checkpoint_id}' does not belong to agent '{agent_id}'")


class ExecutionNotFoundError(QuestForgeError):
    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"No active execution: '{execution_id}'")


class ExecutionOwnershipError(QuestForgeError):
    def __init__(self, execution_id: str, agent_id: str) -> None:
        self.execution_id = execution_id
        self.agent_id = agent_id
        super().__init__(f"Execution '{execution_id}' does not belong to agent '{agent_id}'")


class PersistenceError(QuestForgeError):
    """A load-bearing write (result or checkpoint) failed."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class ResultFinalizedError(PersistenceError):
    def __init__(self, result_id: str, status: str) -> None:
        self.result_id = result_id
        self.status = status
        super().__init__("update_result", f"result '{result_id}' is already {status}")


class AgentRuntimeError(QuestForgeError):
    """Base class of the typed errors an agent runtime may raise."""


class RecursionLimitError(AgentRuntimeError):
    """The runtime exhausted its step budget."""

    def __init__(self, step_budget: int, message: str | None = None) -> None:
        self.step_budget = step_budget
        super().__init__(message or f"Recursion limit of {step_budget} reached without a final answer")


class RuntimeTimeoutError(AgentRuntimeError):
    """A model call or tool exceeded its wall-clock limit."""


class TransientRuntimeError(AgentRuntimeError):
    """An infrastructure failure that is likely to succeed on retry."""
