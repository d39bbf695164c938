"""
Execution orchestration core.

Drives one agent task run to a terminal state, streams its progress as
server-sent events, checkpoints every completed tool step and classifies
failures into retry, resume or terminal outcomes.
"""

from .checkpoint import CheckpointManager
from .classification import classify_error, is_transient_error
from .emitter import EventEmitter
from .errors import (
    AgentRuntimeError,
    CheckpointNotFoundError,
    CheckpointOwnershipError,
    ExecutionNotFoundError,
    ExecutionOwnershipError,
    InvalidRequestError,
    PersistenceError,
    QuestForgeError,
    RecursionLimitError,
    ResultFinalizedError,
    RuntimeTimeoutError,
    TransientRuntimeError,
)
from .orchestrator import ExecutionOrchestrator, OrchestratorConfig, OrchestratorDeps
from .persistence import PersistenceService, RetentionReport
from .registry import CancellationToken, ExecutionRegistry
from .retry import RetryOptions, run_with_backoff

__all__ = [
    "AgentRuntimeError",
    "CancellationToken",
    "CheckpointManager",
    "CheckpointNotFoundError",
    "CheckpointOwnershipError",
    "EventEmitter",
    "ExecutionNotFoundError",
    "ExecutionOrchestrator",
    "ExecutionOwnershipError",
    "ExecutionRegistry",
    "InvalidRequestError",
    "OrchestratorConfig",
    "OrchestratorDeps",
    "PersistenceError",
    "PersistenceService",
    "QuestForgeError",
    "RecursionLimitError",
    "ResultFinalizedError",
    "RetentionReport",
    "RetryOptions",
    "RuntimeTimeoutError",
    "TransientRuntimeError",
    "classify_error",
    "is_transient_error",
    "run_with_backoff",
]
