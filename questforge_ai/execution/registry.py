"""In-flight executions and their cancellation tokens.

The registry is process-local: it lets ``POST /agents/{agentId}/cancel`` reach
a run started by another request on the same server.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from questforge_ai.core.logging_config import get_logger

from .errors import ExecutionNotFoundError, ExecutionOwnershipError

logger = get_logger(__name__)


class CancellationToken:
    """Trips once; cancels every task attached to it."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Task) -> None:
        if self._cancelled:
            task.cancel()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self, reason: str = "cancelled") -> bool:
        """Trip the token. Returns False if it was already tripped."""
        if self._cancelled:
            return False
        self._cancelled = True
        self.reason = reason
        for task in list(self._tasks):
            task.cancel()
        return True


@dataclass
class ActiveExecution:
    execution_id: str
    agent_id: str
    token: CancellationToken
    thread_id: Optional[str] = None
    checkpoint_id: Optional[str] = None
    result_id: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ExecutionRegistry:
    def __init__(self) -> None:
        self._active: Dict[str, ActiveExecution] = {}

    def register(
        self,
        execution_id: str,
        agent_id: str,
        token: CancellationToken,
        *,
        thread_id: Optional[str] = None,
        checkpoint_id: Optional[str] = None,
    ) -> ActiveExecution:
        entry = ActiveExecution(
            execution_id=execution_id,
            agent_id=agent_id,
            token=token,
            thread_id=thread_id,
            checkpoint_id=checkpoint_id,
        )
        self._active[execution_id] = entry
        return entry

    def unregister(self, execution_id: str) -> None:
        self._active.pop(execution_id, None)

    def get(self, execution_id: str) -> Optional[ActiveExecution]:
        return self._active.get(execution_id)

    def find(
        self,
        execution_id: Optional[str] = None,
        *,
        thread_id: Optional[str] = None,
        checkpoint_id: Optional[str] = None,
    ) -> Optional[ActiveExecution]:
        """
        Look up a running execution by the first identifier given.

        ``execution_id`` wins over ``thread_id``, which wins over
        ``checkpoint_id``. Thread and checkpoint lookups return the most
        recently started match.
        """
        if execution_id:
            return self._active.get(execution_id)
        if thread_id:
            matches = [e for e in self._active.values() if e.thread_id == thread_id]
        elif checkpoint_id:
            matches = [e for e in self._active.values() if e.checkpoint_id == checkpoint_id]
        else:
            return None
        return matches[-1] if matches else None

    def list_active(self, agent_id: Optional[str] = None) -> List[ActiveExecution]:
        return [e for e in self._active.values() if agent_id is None or e.agent_id == agent_id]

    def cancel(
        self,
        execution_id: Optional[str],
        agent_id: str,
        reason: str = "cancelled by request",
        *,
        thread_id: Optional[str] = None,
        checkpoint_id: Optional[str] = None,
    ) -> ActiveExecution:
        """
        Cancel a running execution of ``agent_id``.

        The execution is found by ``execution_id``, ``thread_id`` or
        ``checkpoint_id``, in that order.

        Raises:
            ExecutionNotFoundError: No such execution is running on this server.
            ExecutionOwnershipError: The execution belongs to another agent.
        """
        entry = self.find(execution_id, thread_id=thread_id, checkpoint_id=checkpoint_id)
        if entry is None:
            raise ExecutionNotFoundError(execution_id or thread_id or checkpoint_id or "")
        if entry.agent_id != agent_id:
            raise ExecutionOwnershipError(entry.execution_id, agent_id)
        if entry.token.cancel(reason):
            logger.info(f"Cancellation requested for execution {entry.execution_id}: {reason}")
        return entry
