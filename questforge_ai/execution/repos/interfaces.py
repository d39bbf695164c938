from __future__ import annotations

"""Repository interface contracts.

The persistence service depends on these Protocols instead of concrete
storage implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak SQLAlchemy sessions/transactions to callers.
- Log and trace repositories are append-only; rows only leave through
  ``delete_older_than``.
- Checkpoint state saves are upserts keyed by ``checkpoint_id``.
- Results may be patched only while their status is ``running``.
"""

from datetime import datetime
from typing import Optional, Protocol

from ..schemas.domain import (
    CheckpointState,
    ExecutionResult,
    ExecutionResultUpdate,
    ExecutionStatus,
    LogEntry,
    LogLevel,
    TraceEvent,
)


class ResultRepository(Protocol):
    """Persist and query execution results."""

    async def create(self, result: ExecutionResult) -> None:
        """
        Create a new result record.

        Args:
            result: The initial result, normally with status ``running``.
        """
        ...

    async def update(self, result_id: str, patch: ExecutionResultUpdate) -> Optional[ExecutionResult]:
        """
        Apply a partial patch to a running result.

        Args:
            result_id: The ID of the result to update.
            patch: Fields to change; metadata keys are merged.

        Returns:
            The updated result, or None if no such result exists.

        Raises:
            ResultFinalizedError: The result already left ``running``.
        """
        ...

    async def get(self, result_id: str) -> Optional[ExecutionResult]:
        """
        Retrieve a result by its ID.

        Args:
            result_id: The result identifier.

        Returns:
            The ExecutionResult if found, else None.
        """
        ...

    async def list(
        self,
        agent_id: str,
        *,
        status: Optional[ExecutionStatus] = None,
        quest_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ExecutionResult], int]:
        """
        List an agent's results, newest first.

        Returns:
            The requested page and the total number of matching results.
        """
        ...

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete terminal results created before ``cutoff``; running results are kept."""
        ...


class LogRepository(Protocol):
    """Append-only store of execution log lines."""

    async def append(self, entry: LogEntry) -> None: ...

    async def list(
        self,
        *,
        agent_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        level: Optional[LogLevel] = None,
        source: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = False,
    ) -> tuple[list[LogEntry], int]:
        """
        List log lines matching every given filter.

        Returns:
            The requested page and the total number of matching entries.
        """
        ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...


class TraceRepository(Protocol):
    """Append-only store of tool step trace events."""

    async def append(self, event: TraceEvent) -> None: ...

    async def list(
        self,
        *,
        agent_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[TraceEvent], int]:
        """
        List trace events in timeline order.

        Returns:
            The requested page and the total number of matching events.
        """
        ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...


class CheckpointStateRepository(Protocol):
    """Persist resumable checkpoint snapshots."""

    async def upsert(self, state: CheckpointState) -> None:
        """
        Create the state on first save, overwrite it on every later save.

        Args:
            state: The checkpoint state; ``checkpoint_id`` is the key.
        """
        ...

    async def get(self, checkpoint_id: str) -> Optional[CheckpointState]:
        """
        Retrieve the latest saved state of a checkpoint.

        Args:
            checkpoint_id: The checkpoint identifier.

        Returns:
            The CheckpointState if one was saved, else None.
        """
        ...

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete checkpoint states not updated since ``cutoff``."""
        ...
