"""
Monitoring and Tracing Configuration Module.

This module wires Pydantic Logfire into the execution service:
- Execution start/completion events with step counts and durations
- Tool step failures and classified execution errors
- Automatic instrumentation of pydantic-ai, SQLAlchemy, HTTPX and FastAPI

Every helper is best effort: when Logfire is not configured or the call
fails, the event is dropped with a debug log line.
"""

import logging
import os
from typing import Optional

from fastapi import FastAPI

logger = logging.getLogger(__name__)

LOGFIRE_ENABLED = os.getenv("LOGFIRE_ENABLED", "false").lower() in ("true", "1", "yes")
LOGFIRE_TOKEN = os.getenv("LOGFIRE_TOKEN", "")
LOGFIRE_PROJECT_NAME = os.getenv("LOGFIRE_PROJECT_NAME", "questforge-ai")
LOGFIRE_ENVIRONMENT = os.getenv("LOGFIRE_ENVIRONMENT", "development")
LOGFIRE_SERVICE_NAME = os.getenv("LOGFIRE_SERVICE_NAME", "questforge-ai-server")
LOGFIRE_SERVICE_VERSION = os.getenv("LOGFIRE_SERVICE_VERSION", "0.1.0")

LOGFIRE_SAMPLE_RATE = float(os.getenv("LOGFIRE_SAMPLE_RATE", "1.0"))

LOGFIRE_TRACE_PYDANTIC_AI = os.getenv("LOGFIRE_TRACE_PYDANTIC_AI", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_SQLALCHEMY = os.getenv("LOGFIRE_TRACE_SQLALCHEMY", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_HTTPX = os.getenv("LOGFIRE_TRACE_HTTPX", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_FASTAPI = os.getenv("LOGFIRE_TRACE_FASTAPI", "true").lower() in ("true", "1", "yes")


def _instrument(name: str, enabled: bool, fn, **kwargs) -> None:
    if not enabled:
        return
    try:
        fn(**kwargs)
        logger.info(f"Logfire: {name} instrumentation enabled")
    except Exception as e:
        logger.warning(f"Failed to instrument {name}: {e}")


def initialize_logfire(app: FastAPI | None = None) -> bool:
    """
    Initialize Pydantic Logfire for monitoring and tracing.

    Args:
        app: FastAPI application instance. When given, its endpoints are traced.

    Returns:
        True when Logfire was configured, False when it is disabled or failed.
    """
    if not LOGFIRE_ENABLED:
        logger.info("Logfire monitoring is disabled. Set LOGFIRE_ENABLED=true to enable.")
        return False

    if not LOGFIRE_TOKEN:
        logger.warning(
            "Logfire is enabled but LOGFIRE_TOKEN is not set. "
            "Monitoring will not work. Set LOGFIRE_TOKEN to enable Logfire."
        )
        return False

    try:
        import logfire
        from logfire import SamplingOptions

        logfire.configure(
            token=LOGFIRE_TOKEN,
            service_name=LOGFIRE_SERVICE_NAME,
            service_version=LOGFIRE_SERVICE_VERSION,
            environment=LOGFIRE_ENVIRONMENT,
            sampling=SamplingOptions(head=LOGFIRE_SAMPLE_RATE),
        )

        _instrument("Pydantic AI", LOGFIRE_TRACE_PYDANTIC_AI, logfire.instrument_pydantic_ai)
        _instrument("SQLAlchemy", LOGFIRE_TRACE_SQLALCHEMY, logfire.instrument_sqlalchemy)
        _instrument("HTTPX", LOGFIRE_TRACE_HTTPX, logfire.instrument_httpx)
        if app is not None:
            _instrument("FastAPI", LOGFIRE_TRACE_FASTAPI, logfire.instrument_fastapi, app=app)
        else:
            logger.debug("FastAPI app instance not provided, skipping FastAPI instrumentation")

        logger.info(
            f"Logfire monitoring initialized: "
            f"project={LOGFIRE_PROJECT_NAME}, "
            f"environment={LOGFIRE_ENVIRONMENT}, "
            f"service={LOGFIRE_SERVICE_NAME}"
        )
        return True
    except Exception as e:
        logger.error(f"Failed to initialize Logfire: {e}", exc_info=True)
        return False


def log_execution_start(execution_id: str, agent_id: str, task: str, resumed: bool = False) -> None:
    """
    Log the start of a task execution.

    Args:
        execution_id: The execution identifier (``exec_*`` or ``resume_*``)
        agent_id: The agent running the task
        task: The resolved task text
        resumed: Whether the run continues from a checkpoint
    """
    try:
        import logfire

        logfire.info(
            "Execution started",
            execution_id=execution_id,
            agent_id=agent_id,
            task=task[:200],
            resumed=resumed,
        )
    except Exception:
        logger.debug(f"Could not log execution start to Logfire: execution_id={execution_id}")


def log_execution_completion(execution_id: str, status: str, steps: int, duration_ms: float) -> None:
    """
    Log the terminal state of a task execution.

    Args:
        execution_id: The execution identifier
        status: completed, failed or cancelled
        steps: Number of tool steps taken in this run
        duration_ms: Wall time of the run in milliseconds
    """
    try:
        import logfire

        logfire.info(
            "Execution finished",
            execution_id=execution_id,
            status=status,
            steps=steps,
            duration_ms=duration_ms,
        )
    except Exception:
        logger.debug(f"Could not log execution completion to Logfire: execution_id={execution_id}")


def log_tool_error(execution_id: str, tool_name: str, error: str) -> None:
    try:
        import logfire

        logfire.warn("Tool step failed", execution_id=execution_id, tool_name=tool_name, error=error)
    except Exception:
        logger.debug(f"Could not log tool error to Logfire: {tool_name}")


def log_error(error_type: str, error_message: str, context: Optional[dict] = None) -> None:
    """
    Log an error with context for debugging.

    Args:
        error_type: Type of error (e.g. the error classification)
        error_message: Error message
        context: Additional context dictionary
    """
    try:
        import logfire

        logfire.error(
            f"{error_type}: {error_message}",
            **(context or {}),
        )
    except Exception:
        logger.debug(f"Could not log error to Logfire: {error_type}")
