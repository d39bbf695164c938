"""
Health Check Endpoints.

Basic status endpoints used for monitoring and deployment verification.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from questforge_ai.core.logging_config import get_logger
from questforge_ai.server.core.database import get_session

logger = get_logger(__name__)
router = APIRouter()


@router.get(
    "/health",
    summary="Health Check",
    description="Check the operational status of the API server and its database.",
    response_description="Status object.",
)
async def health_check(session: AsyncSession = Depends(get_session)):
    """
    Health check endpoint.

    Reports ``ok`` when the database answers, ``degraded`` otherwise.
    """
    try:
        await session.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        database = "unavailable"
    return {"status": "ok" if database == "ok" else "degraded", "database": database}


@router.get(
    "/version",
    summary="Get Version",
    description="Retrieve version information for the API server.",
    response_description="Version object.",
)
async def version():
    return {"version": "0.1.0", "schema_version": "v1"}
