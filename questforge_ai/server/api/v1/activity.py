"""
Execution Activity API Endpoints.

Read the log lines and trace events written during an agent's executions, as
JSON or as CSV/plain-text downloads.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse

from questforge_ai.execution.errors import InvalidRequestError
from questforge_ai.execution.schemas.domain import LogLevel
from questforge_ai.server.formatters import logs_to_csv, logs_to_text, traces_to_csv
from questforge_ai.server.schemas import LogListResponse, TraceListResponse
from questforge_ai.server.services.deps import ExecutionServiceDep

router = APIRouter()

LOG_FORMATS = ("json", "csv", "text")
TRACE_FORMATS = ("json", "csv")


def _download(body: str, media_type: str, filename: str) -> PlainTextResponse:
    return PlainTextResponse(
        body, media_type=media_type, headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.get(
    "/{agent_id}/logs",
    response_model=LogListResponse,
    summary="List Execution Logs",
    description="Retrieve an agent's log lines, newest first. Supports json, csv and text formats.",
    responses={400: {"description": "Unsupported format"}},
)
async def list_logs(
    agent_id: str,
    service: ExecutionServiceDep,
    execution_id: Optional[str] = Query(default=None, alias="executionId"),
    level: Optional[LogLevel] = None,
    source: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    format: str = "json",
):
    if format not in LOG_FORMATS:
        raise InvalidRequestError(f"Invalid format '{format}'. Supported formats: {', '.join(LOG_FORMATS)}")

    logs, total = await service.persistence.list_logs(
        agent_id, execution_id=execution_id, level=level, source=source, limit=limit, offset=offset
    )
    if format == "csv":
        return _download(logs_to_csv(logs), "text/csv", f"logs-{agent_id}.csv")
    if format == "text":
        return _download(logs_to_text(logs), "text/plain", f"logs-{agent_id}.txt")
    return LogListResponse(logs=logs, count=len(logs), total=total, limit=limit, offset=offset)


@router.get(
    "/{agent_id}/traces",
    response_model=TraceListResponse,
    summary="List Execution Traces",
    description="Retrieve an agent's tool trace events in the order they were recorded.",
    responses={400: {"description": "Unsupported format"}},
)
async def list_traces(
    agent_id: str,
    service: ExecutionServiceDep,
    execution_id: Optional[str] = Query(default=None, alias="executionId"),
    since: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    format: str = "json",
):
    if format not in TRACE_FORMATS:
        raise InvalidRequestError(f"Invalid format '{format}'. Supported formats: {', '.join(TRACE_FORMATS)}")

    traces, total = await service.persistence.list_traces(
        agent_id, execution_id=execution_id, since=since, limit=limit, offset=offset
    )
    if format == "csv":
        return _download(traces_to_csv(traces), "text/csv", f"traces-{agent_id}.csv")
    return TraceListResponse(traces=traces, count=len(traces), total=total, limit=limit, offset=offset)
