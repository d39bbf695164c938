"""Persistence service for execution results, logs, traces and checkpoints.

Writes follow a two-tier contract:

- Log and trace writes are fire-and-forget. A failure is logged with the
  module logger and swallowed; the write methods return ``False``.
- Result and checkpoint writes are load-bearing. A failure is raised as
  ``PersistenceError`` (``ResultFinalizedError`` for updates of a finished
  result).

Reads propagate storage errors unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from questforge_ai.core.logging_config import get_logger

from .errors import PersistenceError, ResultFinalizedError
from .repos.interfaces import (
    CheckpointStateRepository,
    LogRepository,
    ResultRepository,
    TraceRepository,
)
from .schemas.domain import (
    CheckpointSnapshot,
    CheckpointState,
    ExecutionResult,
    ExecutionResultUpdate,
    ExecutionStatus,
    LogEntry,
    LogLevel,
    TraceEvent,
    TraceType,
)

logger = get_logger(__name__)

DEFAULT_MAX_CONTENT_LENGTH = 1000


def truncate_content(text: str, limit: int = DEFAULT_MAX_CONTENT_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit]


@dataclass
class RetentionReport:
    results: int = 0
    logs: int = 0
    traces: int = 0
    checkpoints: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "results": self.results,
            "logs": self.logs,
            "traces": self.traces,
            "checkpoints": self.checkpoints,
        }


class PersistenceService:
    """Durable record of execution results, log lines, trace events and checkpoint states."""

    def __init__(
        self,
        *,
        results: ResultRepository,
        logs: LogRepository,
        traces: TraceRepository,
        checkpoints: CheckpointStateRepository,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    ) -> None:
        self.results = results
        self.logs = logs
        self.traces = traces
        self.checkpoints = checkpoints
        self.max_content_length = max_content_length

    @classmethod
    def from_bundle(cls, bundle: Any, *, max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH) -> "PersistenceService":
        """Build the service from a ``SqlRepoBundle`` (or any object with the same attributes)."""
        return cls(
            results=bundle.results,
            logs=bundle.logs,
            traces=bundle.traces,
            checkpoints=bundle.checkpoints,
            max_content_length=max_content_length,
        )

    # ------------------------------------------------------------------
    # Load-bearing writes
    # ------------------------------------------------------------------

    async def save_result(self, result: ExecutionResult) -> ExecutionResult:
        try:
            await self.results.create(result)
        except Exception as e:
            logger.error(f"Failed to save result {result.id} for agent {result.agent_id}: {e}")
            raise PersistenceError("save_result", str(e)) from e
        return result

    async def update_result(self, result_id: str, patch: ExecutionResultUpdate) -> ExecutionResult:
        """
        Patch a running result in place.

        Raises:
            ResultFinalizedError: The result is no longer ``running``.
            PersistenceError: The result does not exist or the write failed.
        """
        try:
            updated = await self.results.update(result_id, patch)
        except ResultFinalizedError:
            raise
        except Exception as e:
            logger.error(f"Failed to update result {result_id}: {e}")
            raise PersistenceError("update_result", str(e)) from e
        if updated is None:
            raise PersistenceError("update_result", f"result '{result_id}' not found")
        return updated

    async def save_checkpoint_state(
        self,
        agent_id: str,
        checkpoint_id: str,
        snapshot: CheckpointSnapshot,
        thread_id: Optional[str] = None,
    ) -> CheckpointState:
        state = CheckpointState(
            agent_id=agent_id,
            checkpoint_id=checkpoint_id,
            thread_id=thread_id or checkpoint_id,
            state=snapshot,
        )
        try:
            await self.checkpoints.upsert(state)
        except Exception as e:
            logger.error(f"Failed to save checkpoint state {checkpoint_id}: {e}")
            raise PersistenceError("save_checkpoint_state", str(e)) from e
        logger.debug(f"Saved checkpoint state {checkpoint_id} at step {snapshot.step}")
        return state

    # ------------------------------------------------------------------
    # Fire-and-forget writes
    # ------------------------------------------------------------------

    async def save_log(
        self,
        agent_id: str,
        execution_id: str,
        level: LogLevel,
        message: str,
        source: str = "orchestrator",
    ) -> bool:
        try:
            await self.logs.append(
                LogEntry(agent_id=agent_id, execution_id=execution_id, level=level, message=message, source=source)
            )
            return True
        except Exception as e:
            logger.warning(f"Failed to save log for execution {execution_id}: {e}")
            return False

    async def save_trace(
        self,
        agent_id: str,
        execution_id: str,
        trace_type: TraceType,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        duration: Optional[int] = None,
    ) -> bool:
        try:
            await self.traces.append(
                TraceEvent(
                    agent_id=agent_id,
                    execution_id=execution_id,
                    type=trace_type,
                    content=truncate_content(content, self.max_content_length),
                    metadata=metadata or {},
                    duration=duration,
                )
            )
            return True
        except Exception as e:
            logger.warning(f"Failed to save {trace_type.value} trace for execution {execution_id}: {e}")
            return False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_checkpoint_state(self, checkpoint_id: str) -> Optional[CheckpointState]:
        return await self.checkpoints.get(checkpoint_id)

    async def get_result(self, result_id: str) -> Optional[ExecutionResult]:
        return await self.results.get(result_id)

    async def get_agent_results(
        self,
        agent_id: str,
        *,
        status: Optional[ExecutionStatus] = None,
        quest_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ExecutionResult], int]:
        return await self.results.list(agent_id, status=status, quest_id=quest_id, limit=limit, offset=offset)

    async def get_execution_logs(self, execution_id: str, limit: int = 1000) -> list[LogEntry]:
        entries, _ = await self.logs.list(execution_id=execution_id, limit=limit)
        return entries

    async def get_execution_traces(self, execution_id: str, limit: int = 1000) -> list[TraceEvent]:
        events, _ = await self.traces.list(execution_id=execution_id, limit=limit)
        return events

    async def list_logs(
        self,
        agent_id: str,
        *,
        execution_id: Optional[str] = None,
        level: Optional[LogLevel] = None,
        source: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[LogEntry], int]:
        return await self.logs.list(
            agent_id=agent_id,
            execution_id=execution_id,
            level=level,
            source=source,
            limit=limit,
            offset=offset,
            newest_first=True,
        )

    async def list_traces(
        self,
        agent_id: str,
        *,
        execution_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[TraceEvent], int]:
        return await self.traces.list(
            agent_id=agent_id, execution_id=execution_id, since=since, limit=limit, offset=offset
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    @staticmethod
    def _cutoff(older_than_days: int) -> datetime:
        return datetime.now(timezone.utc) - timedelta(days=older_than_days)

    async def cleanup_old_results(self, older_than_days: int) -> int:
        """Delete completed, failed and cancelled results older than the threshold."""
        count = await self.results.delete_older_than(self._cutoff(older_than_days))
        logger.info(f"Deleted {count} results older than {older_than_days} days")
        return count

    async def cleanup_old_logs(self, older_than_days: int) -> int:
        count = await self.logs.delete_older_than(self._cutoff(older_than_days))
        logger.info(f"Deleted {count} logs older than {older_than_days} days")
        return count

    async def cleanup_old_traces(self, older_than_days: int) -> int:
        count = await self.traces.delete_older_than(self._cutoff(older_than_days))
        logger.info(f"Deleted {count} traces older than {older_than_days} days")
        return count

    async def cleanup_old_checkpoints(self, older_than_days: int) -> int:
        count = await self.checkpoints.delete_older_than(self._cutoff(older_than_days))
        logger.info(f"Deleted {count} checkpoint states older than {older_than_days} days")
        return count

    async def cleanup_all(self, older_than_days: int) -> RetentionReport:
        return RetentionReport(
            results=await self.cleanup_old_results(older_than_days),
            logs=await self.cleanup_old_logs(older_than_days),
            traces=await self.cleanup_old_traces(older_than_days),
            checkpoints=await self.cleanup_old_checkpoints(older_than_days),
        )
