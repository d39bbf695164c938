"""
Maintenance API Endpoints.

Retention sweep over results, logs, traces and checkpoint states.
"""

from fastapi import APIRouter, Query

from questforge_ai.core.logging_config import get_logger
from questforge_ai.server.schemas import RetentionCounts, RetentionResponse
from questforge_ai.server.services.deps import ExecutionServiceDep

logger = get_logger(__name__)
router = APIRouter()


@router.delete(
    "/retention",
    response_model=RetentionResponse,
    summary="Apply Retention",
    description="Delete records older than the given number of days. Running results are never deleted.",
)
async def apply_retention(
    service: ExecutionServiceDep,
    older_than_days: int = Query(..., alias="olderThanDays", ge=0),
):
    report = await service.persistence.cleanup_all(older_than_days)
    logger.info(f"Retention sweep ({older_than_days} days) deleted {report.as_dict()}")
    return RetentionResponse(older_than_days=older_than_days, deleted=RetentionCounts(**report.as_dict()))
