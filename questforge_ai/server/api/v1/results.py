"""
Execution Results API Endpoints.

List an agent's execution results and fetch one result, optionally with the
logs and traces of its execution.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from questforge_ai.core.logging_config import get_logger
from questforge_ai.execution.schemas.domain import ExecutionStatus
from questforge_ai.server.schemas import (
    ResultDetailResponse,
    ResultListResponse,
    ResultSummary,
)
from questforge_ai.server.services.deps import ExecutionServiceDep

logger = get_logger(__name__)
router = APIRouter()


@router.get(
    "/{agent_id}/results",
    response_model=ResultListResponse,
    summary="List Execution Results",
    description="Retrieve an agent's execution results, newest first, without their result text.",
)
async def list_results(
    agent_id: str,
    service: ExecutionServiceDep,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status: Optional[ExecutionStatus] = None,
    quest_id: Optional[str] = Query(default=None, alias="questId"),
):
    results, total = await service.persistence.get_agent_results(
        agent_id, status=status, quest_id=quest_id, limit=limit, offset=offset
    )
    return ResultListResponse(
        results=[ResultSummary.from_result(r) for r in results],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + limit < total,
    )


@router.get(
    "/{agent_id}/results/{result_id}",
    response_model=ResultDetailResponse,
    response_model_exclude_none=True,
    summary="Get Execution Result",
    description="Retrieve one execution result of an agent.",
    responses={403: {"description": "Result belongs to another agent"}, 404: {"description": "Result not found"}},
)
async def get_result(
    agent_id: str,
    result_id: str,
    service: ExecutionServiceDep,
    include_logs: bool = Query(default=False, alias="includeLogs"),
    include_traces: bool = Query(default=False, alias="includeTraces"),
):
    """
    Get one result.

    Logs and traces are those of the execution recorded in the result's
    ``executionId`` metadata, oldest first.
    """
    result = await service.persistence.get_result(result_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Result not found")
    if result.agent_id != agent_id:
        raise HTTPException(status_code=403, detail="Result does not belong to this agent")

    detail = ResultDetailResponse.model_validate(result.model_dump())
    execution_id = result.metadata.get("executionId")
    if include_logs:
        detail.logs = await service.persistence.get_execution_logs(execution_id) if execution_id else []
    if include_traces:
        detail.traces = await service.persistence.get_execution_traces(execution_id) if execution_id else []
    return detail
