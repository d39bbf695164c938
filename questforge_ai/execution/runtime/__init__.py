"""Agent runtime contract and implementations."""

from .base import (
    AgentRuntime,
    RuntimeCallbacks,
    RuntimeRequest,
    RuntimeResult,
    StepEnd,
    StepError,
    StepStart,
)

__all__ = [
    "AgentRuntime",
    "RuntimeCallbacks",
    "RuntimeRequest",
    "RuntimeResult",
    "StepEnd",
    "StepError",
    "StepStart",
]
