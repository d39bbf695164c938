from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides the SQL persistence implementation for the repository
interfaces defined in ``questforge_ai.execution.repos.interfaces``. It runs on
Postgres (asyncpg) in production and on SQLite (aiosqlite) in tests.

Usage
-----

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits, so every persisted artifact is durable when the method returns.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..errors import ResultFinalizedError
from ..schemas.domain import (
    TERMINAL_STATUSES,
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
from .interfaces import (
    CheckpointStateRepository,
    LogRepository,
    ResultRepository,
    TraceRepository,
)
from .models import (
    Base,
    CheckpointStateRow,
    ExecutionLogRow,
    ExecutionResultRow,
    ExecutionTraceRow,
)


def create_engine(db_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes Postgres URLs to ensure the async driver is used.
    For example, it rewrites ``postgresql://`` and other variants to
    ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _result_from_row(row: ExecutionResultRow) -> ExecutionResult:
    return ExecutionResult(
        id=row.id,
        agent_id=row.agent_id,
        checkpoint_id=row.checkpoint_id,
        quest_id=row.quest_id,
        result=row.result or "",
        status=ExecutionStatus(row.status),
        metadata=dict(row.metadata_ or {}),
        created_at=_as_utc(row.created_at),
        completed_at=_as_utc(row.completed_at),
    )


@dataclass(frozen=True)
class SqlResultRepository(ResultRepository):
    """SQL implementation of ``ResultRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, result: ExecutionResult) -> None:
        async with self.session_factory() as s:
            s.add(
                ExecutionResultRow(
                    id=result.id,
                    agent_id=result.agent_id,
                    checkpoint_id=result.checkpoint_id,
                    quest_id=result.quest_id,
                    result=result.result,
                    status=_enum_value(result.status),
                    metadata_=dict(result.metadata),
                    created_at=result.created_at,
                    completed_at=result.completed_at,
                )
            )
            await s.commit()

    async def update(self, result_id: str, patch: ExecutionResultUpdate) -> Optional[ExecutionResult]:
        """
        Apply a partial patch to a running result.

        Args:
            result_id: The ID of the result to update.
            patch: Fields to change. Metadata keys are merged into the stored metadata.

        Returns:
            The updated result, or None for an unknown ID.
        """
        async with self.session_factory() as s:
            row = await s.get(ExecutionResultRow, result_id)
            if row is None:
                return None
            if row.status != ExecutionStatus.running.value:
                raise ResultFinalizedError(result_id, row.status)
            if patch.result is not None:
                row.result = patch.result
            if patch.status is not None:
                row.status = _enum_value(patch.status)
            if patch.metadata is not None:
                row.metadata_ = {**(row.metadata_ or {}), **patch.metadata}
            if patch.completed_at is not None:
                row.completed_at = patch.completed_at
            elif patch.status is not None and patch.status in TERMINAL_STATUSES:
                row.completed_at = _utc_now()
            await s.commit()
            return _result_from_row(row)

    async def get(self, result_id: str) -> Optional[ExecutionResult]:
        async with self.session_factory() as s:
            row = await s.get(ExecutionResultRow, result_id)
            if row is None:
                return None
            return _result_from_row(row)

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

        Args:
            agent_id: The owning agent.
            status: Optional status filter.
            quest_id: Optional quest filter.
            limit: Max number of records to return.
            offset: Pagination offset.

        Returns:
            The page of results and the total matching count.
        """
        async with self.session_factory() as s:
            conditions = [ExecutionResultRow.agent_id == agent_id]
            if status is not None:
                conditions.append(ExecutionResultRow.status == _enum_value(status))
            if quest_id:
                conditions.append(ExecutionResultRow.quest_id == quest_id)

            total = await s.scalar(select(func.count()).select_from(ExecutionResultRow).where(*conditions))
            stmt = (
                select(ExecutionResultRow)
                .where(*conditions)
                .order_by(ExecutionResultRow.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            rows = (await s.execute(stmt)).scalars().all()
            return [_result_from_row(r) for r in rows], int(total or 0)

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self.session_factory() as s:
            stmt = delete(ExecutionResultRow).where(
                ExecutionResultRow.created_at < cutoff,
                ExecutionResultRow.status.in_([st.value for st in TERMINAL_STATUSES]),
            )
            res = await s.execute(stmt)
            await s.commit()
            return res.rowcount or 0


@dataclass(frozen=True)
class SqlLogRepository(LogRepository):
    """SQL implementation of ``LogRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, entry: LogEntry) -> None:
        async with self.session_factory() as s:
            s.add(
                ExecutionLogRow(
                    id=entry.id,
                    agent_id=entry.agent_id,
                    execution_id=entry.execution_id,
                    level=_enum_value(entry.level),
                    message=entry.message,
                    source=entry.source,
                    timestamp=entry.timestamp,
                )
            )
            await s.commit()

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
        async with self.session_factory() as s:
            conditions = []
            if agent_id:
                conditions.append(ExecutionLogRow.agent_id == agent_id)
            if execution_id:
                conditions.append(ExecutionLogRow.execution_id == execution_id)
            if level is not None:
                conditions.append(ExecutionLogRow.level == _enum_value(level))
            if source:
                conditions.append(ExecutionLogRow.source == source)

            total = await s.scalar(select(func.count()).select_from(ExecutionLogRow).where(*conditions))
            order = ExecutionLogRow.timestamp.desc() if newest_first else ExecutionLogRow.timestamp.asc()
            stmt = select(ExecutionLogRow).where(*conditions).order_by(order).offset(offset).limit(limit)
            rows = (await s.execute(stmt)).scalars().all()
            return [
                LogEntry(
                    id=r.id,
                    agent_id=r.agent_id,
                    execution_id=r.execution_id,
                    level=LogLevel(r.level),
                    message=r.message,
                    source=r.source,
                    timestamp=_as_utc(r.timestamp),
                )
                for r in rows
            ], int(total or 0)

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self.session_factory() as s:
            res = await s.execute(delete(ExecutionLogRow).where(ExecutionLogRow.timestamp < cutoff))
            await s.commit()
            return res.rowcount or 0


@dataclass(frozen=True)
class SqlTraceRepository(TraceRepository):
    """SQL implementation of ``TraceRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, event: TraceEvent) -> None:
        async with self.session_factory() as s:
            s.add(
                ExecutionTraceRow(
                    id=event.id,
                    agent_id=event.agent_id,
                    execution_id=event.execution_id,
                    type=_enum_value(event.type),
                    content=event.content,
                    metadata_=dict(event.metadata),
                    duration=event.duration,
                    timestamp=event.timestamp,
                )
            )
            await s.commit()

    async def list(
        self,
        *,
        agent_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[TraceEvent], int]:
        async with self.session_factory() as s:
            conditions = []
            if agent_id:
                conditions.append(ExecutionTraceRow.agent_id == agent_id)
            if execution_id:
                conditions.append(ExecutionTraceRow.execution_id == execution_id)
            if since is not None:
                conditions.append(ExecutionTraceRow.timestamp >= since)

            total = await s.scalar(select(func.count()).select_from(ExecutionTraceRow).where(*conditions))
            stmt = (
                select(ExecutionTraceRow)
                .where(*conditions)
                .order_by(ExecutionTraceRow.timestamp.asc())
                .offset(offset)
                .limit(limit)
            )
            rows = (await s.execute(stmt)).scalars().all()
            return [
                TraceEvent(
                    id=r.id,
                    agent_id=r.agent_id,
                    execution_id=r.execution_id,
                    type=TraceType(r.type),
                    content=r.content or "",
                    metadata=dict(r.metadata_ or {}),
                    duration=r.duration,
                    timestamp=_as_utc(r.timestamp),
                )
                for r in rows
            ], int(total or 0)

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self.session_factory() as s:
            res = await s.execute(delete(ExecutionTraceRow).where(ExecutionTraceRow.timestamp < cutoff))
            await s.commit()
            return res.rowcount or 0


@dataclass(frozen=True)
class SqlCheckpointStateRepository(CheckpointStateRepository):
    """SQL implementation of ``CheckpointStateRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def upsert(self, state: CheckpointState) -> None:
        blob = state.state.model_dump(mode="json", by_alias=True)
        async with self.session_factory() as s:
            stmt = select(CheckpointStateRow).where(CheckpointStateRow.checkpoint_id == state.checkpoint_id)
            row = (await s.execute(stmt)).scalar_one_or_none()
            if row is None:
                s.add(
                    CheckpointStateRow(
                        id=state.id,
                        agent_id=state.agent_id,
                        checkpoint_id=state.checkpoint_id,
                        thread_id=state.thread_id,
                        state=blob,
                        created_at=state.created_at,
                        updated_at=_utc_now(),
                    )
                )
            else:
                row.agent_id = state.agent_id
                row.thread_id = state.thread_id
                row.state = blob
                row.updated_at = _utc_now()
            await s.commit()

    async def get(self, checkpoint_id: str) -> Optional[CheckpointState]:
        async with self.session_factory() as s:
            stmt = select(CheckpointStateRow).where(CheckpointStateRow.checkpoint_id == checkpoint_id)
            row = (await s.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            return CheckpointState(
                id=row.id,
                agent_id=row.agent_id,
                checkpoint_id=row.checkpoint_id,
                thread_id=row.thread_id,
                state=CheckpointSnapshot.model_validate(row.state),
                created_at=_as_utc(row.created_at),
                updated_at=_as_utc(row.updated_at),
            )

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self.session_factory() as s:
            res = await s.execute(delete(CheckpointStateRow).where(CheckpointStateRow.updated_at < cutoff))
            await s.commit()
            return res.rowcount or 0


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    results: SqlResultRepository
    logs: SqlLogRepository
    traces: SqlTraceRepository
    checkpoints: SqlCheckpointStateRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        results=SqlResultRepository(session_factory=session_factory),
        logs=SqlLogRepository(session_factory=session_factory),
        traces=SqlTraceRepository(session_factory=session_factory),
        checkpoints=SqlCheckpointStateRepository(session_factory=session_factory),
    )
