"""Failure classification of agent runs.

Typed runtime errors decide first. Runtimes that only raise generic
exceptions are classified by matching their message text, in the order
recursion limit, timeout, transient, permanent.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from .errors import RecursionLimitError, RuntimeTimeoutError, TransientRuntimeError
from .schemas.domain import ErrorClassification, ErrorType

RECURSION_MARKERS = ("recursion limit", "usage limit", "request_limit")

TIMEOUT_MARKERS = ("timed out", "timeout", "deadline exceeded")

TRANSIENT_MARKERS = (
    "econnrefused",
    "enotfound",
    "etimedout",
    "econnreset",
    "network",
    "socket",
    "rate limit",
    "too many requests",
    "429",
    "502",
    "503",
    "504",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
    "overloaded",
    "capacity",
    "temporarily unavailable",
    "connection reset",
    "connection refused",
)


def _message(exc: BaseException) -> str:
    return str(exc).lower()


def _classify_type(exc: BaseException) -> ErrorType:
    if isinstance(exc, RecursionLimitError):
        return ErrorType.recursion_limit
    if isinstance(exc, (RuntimeTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return ErrorType.timeout
    if isinstance(exc, (TransientRuntimeError, ConnectionError)):
        return ErrorType.transient
    # Interpreter stack overflow, not the agent step budget
    if isinstance(exc, RecursionError):
        return ErrorType.permanent

    text = _message(exc)
    if any(marker in text for marker in RECURSION_MARKERS):
        return ErrorType.recursion_limit
    # Transient markers that also mention a timeout ("etimedout", "gateway timeout")
    # are infrastructure failures rather than step timeouts.
    if any(marker in text for marker in ("etimedout", "gateway timeout", "504")):
        return ErrorType.transient
    if any(marker in text for marker in TIMEOUT_MARKERS):
        return ErrorType.timeout
    if any(marker in text for marker in TRANSIENT_MARKERS):
        return ErrorType.transient
    return ErrorType.permanent


def _suggestions(error_type: ErrorType, checkpoint_id: Optional[str]) -> list[str]:
    if error_type is ErrorType.recursion_limit:
        suggestions = [
            "The task may be too complex - try breaking it into smaller checkpoints",
            "The agent may be stuck in a loop - rephrase the task more specifically",
            "Increase recursionLimit in the request (current default: 100, try: 150 or 200)",
            "Check the execution traces for repeated tool calls",
        ]
    elif error_type is ErrorType.timeout:
        suggestions = [
            "A model call or tool took too long - try again",
            "Narrow the task so each step does less work",
        ]
    elif error_type is ErrorType.transient:
        suggestions = [
            "A temporary infrastructure error persisted after automatic retries - try again shortly",
        ]
    else:
        return []

    if checkpoint_id:
        suggestions.append(f"Resume from checkpoint '{checkpoint_id}' to keep the progress already saved")
    return suggestions


def classify_error(exc: BaseException, checkpoint_id: Optional[str] = None) -> ErrorClassification:
    """
    Classify a failed run.

    Args:
        exc: The exception raised by the runtime (after retries).
        checkpoint_id: The checkpoint of the run, used to point suggestions at a resume.

    Returns:
        The error type, whether the run can be resumed, and remediation suggestions.
    """
    error_type = _classify_type(exc)
    return ErrorClassification(
        type=error_type,
        is_recoverable=error_type is not ErrorType.permanent,
        suggestions=_suggestions(error_type, checkpoint_id),
    )


def is_transient_error(exc: BaseException) -> bool:
    return _classify_type(exc) is ErrorType.transient
