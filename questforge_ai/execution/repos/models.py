from __future__ import annotations

"""SQLAlchemy ORM models for execution persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``questforge_ai.execution.repos.sql``.

Design
------

- Results hold one row per execution, patched in place while ``running``.
- Logs and traces are append-only and only removed by retention cleanup.
- Checkpoint states are keyed by a unique ``checkpoint_id`` and upserted.

JSON columns use JSONB on Postgres and plain JSON elsewhere (SQLite in tests).
Table names are prefixed with ``qf_`` to avoid collisions in shared databases.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class ExecutionResultRow(Base):
    """Row model for ``qf_execution_results``.

    Key fields:

    - ``status``: running/completed/failed/cancelled. Rows are frozen once
      the status leaves ``running``.
    - ``result``: final answer, or the partial results of a failed run.
    - ``metadata``: task text, execution id, step counts, error classification.
    """

    __tablename__ = "qf_execution_results"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(128), index=True)
    checkpoint_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    quest_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    result: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(32), index=True)
    metadata_: Mapped[Dict[str, Any]] = mapped_column("metadata", JsonType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ExecutionLogRow(Base):
    """Row model for ``qf_execution_logs``. Append-only."""

    __tablename__ = "qf_execution_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(128), index=True)
    execution_id: Mapped[str] = mapped_column(String(128), index=True)

    level: Mapped[str] = mapped_column(String(16))
    message: Mapped[str] = mapped_column(Text)
    source: Mapped[str] = mapped_column(String(64))

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class ExecutionTraceRow(Base):
    """Row model for ``qf_execution_traces``.

    One row per tool step event; ``content`` is truncated before insert.
    """

    __tablename__ = "qf_execution_traces"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(128), index=True)
    execution_id: Mapped[str] = mapped_column(String(128), index=True)

    type: Mapped[str] = mapped_column(String(32))
    content: Mapped[str] = mapped_column(Text, default="")
    metadata_: Mapped[Dict[str, Any]] = mapped_column("metadata", JsonType, default=dict)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class CheckpointStateRow(Base):
    """Row model for ``qf_checkpoint_states``.

    ``state`` holds the serialized checkpoint snapshot (camelCase keys).
    """

    __tablename__ = "qf_checkpoint_states"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(128), index=True)
    checkpoint_id: Mapped[str] = mapped_column(String(128), unique=True)
    thread_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    state: Mapped[Dict[str, Any]] = mapped_column(JsonType)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
