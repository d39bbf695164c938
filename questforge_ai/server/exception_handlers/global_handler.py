"""
Exception Handlers for the FastAPI Application.

``QuestForgeError`` subclasses raised by request handlers become 4xx responses
with the error message as ``detail``. Anything else is logged with an error id
and full request context and answered with a 500 carrying that id.
"""

import traceback
from typing import Dict, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from questforge_ai.core.logging_config import get_logger
from questforge_ai.execution.errors import (
    CheckpointNotFoundError,
    CheckpointOwnershipError,
    ExecutionNotFoundError,
    ExecutionOwnershipError,
    InvalidRequestError,
    PersistenceError,
    QuestForgeError,
    ResultFinalizedError,
)

logger = get_logger(__name__)

ERROR_STATUS_CODES: Dict[Type[QuestForgeError], int] = {
    InvalidRequestError: 400,
    CheckpointNotFoundError: 404,
    ExecutionNotFoundError: 404,
    CheckpointOwnershipError: 403,
    ExecutionOwnershipError: 403,
    ResultFinalizedError: 409,
    PersistenceError: 503,
}


def status_code_for(exc: QuestForgeError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_type]
    return 500


async def questforge_exception_handler(request: Request, exc: QuestForgeError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} in {request.method} {request.url.path}: {exc}")
    else:
        logger.info(f"Rejected {request.method} {request.url.path} with {status_code}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Log an unhandled exception and answer with a 500.

    The response carries an error id that is also in the log line, so clients
    can reference the failure when reporting it.

    Args:
        request: The HTTP request that caused the exception
        exc: The exception that was raised

    Returns:
        JSONResponse with error details and error ID
    """
    error_id = id(exc)

    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {str(exc)}",
        exc_info=True,
        extra={
            "error_id": error_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client": request.client.host if request.client else "unknown",
            "error_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the package-error and catch-all handlers on ``app``."""
    app.add_exception_handler(QuestForgeError, questforge_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
