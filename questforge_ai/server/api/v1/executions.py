"""
Execution API Endpoints.

Start, resume and cancel agent executions. Execute and resume answer with a
Server-Sent Events stream of the run's progress. Request errors (missing task,
unknown or foreign checkpoint) are answered with a plain HTTP error before the
stream opens.

The run itself is a background task. When the client disconnects, the run's
cancellation token is tripped and the result is recorded ``cancelled``.
"""

import asyncio
from typing import Set

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from questforge_ai.core.logging_config import get_logger
from questforge_ai.execution.emitter import EventEmitter
from questforge_ai.execution.errors import InvalidRequestError
from questforge_ai.execution.registry import CancellationToken
from questforge_ai.execution.schemas.execution import ExecutionPlan
from questforge_ai.server.schemas import (
    CancelRequest,
    CancelResponse,
    ExecuteRequest,
    ResumeRequest,
)
from questforge_ai.server.services.deps import ExecutionServiceDep
from questforge_ai.server.services.execution import ExecutionService

logger = get_logger(__name__)
router = APIRouter()

_SSE_RESPONSES = {
    200: {
        "description": "SSE stream established",
        "content": {"text/event-stream": {"example": 'event: start\ndata: {"agentId": "agent-scout"}\n\n'}},
    },
    400: {"description": "Invalid request"},
}

# Strong references to in-flight runs
_runs: Set[asyncio.Task] = set()


def _stream_execution(service: ExecutionService, plan: ExecutionPlan) -> EventSourceResponse:
    emitter = EventEmitter(maxsize=service.stream_queue_size)
    token = CancellationToken()
    run_task = asyncio.create_task(service.orchestrator.run(plan, emitter, token))
    _runs.add(run_task)
    run_task.add_done_callback(_runs.discard)

    async def event_generator():
        try:
            async for event in emitter.events():
                yield event
        finally:
            emitter.detach()
            if not run_task.done() and token.cancel("client disconnected"):
                logger.info(f"Client disconnected from execution {plan.execution_id}")

    return EventSourceResponse(event_generator(), sep="\n")


@router.post(
    "/execute",
    summary="Execute Task",
    description="Run a task for an agent and stream its progress as Server-Sent Events.",
    responses=_SSE_RESPONSES,
)
async def execute(body: ExecuteRequest, service: ExecutionServiceDep):
    """
    Start a fresh execution.

    - **agentId**: The agent that runs the task.
    - **task**: The task text (required, non-blank).
    - **checkpointId**: Save step snapshots under this id so the run can be resumed.
    - **recursionLimit**: Step budget of the run.
    """
    plan = await service.orchestrator.prepare(body.to_execution_request())
    logger.info(f"Streaming execution {plan.execution_id} for agent {body.agent_id}")
    return _stream_execution(service, plan)


@router.post(
    "/{agent_id}/resume",
    summary="Resume Execution",
    description="Continue an agent's work from its last saved checkpoint.",
    responses={**_SSE_RESPONSES, 403: {"description": "Checkpoint belongs to another agent"}, 404: {"description": "Checkpoint not found"}},
)
async def resume(agent_id: str, body: ResumeRequest, service: ExecutionServiceDep):
    """
    Resume from a checkpoint.

    The resumed task is the checkpoint's original task followed by its partial
    results, a digest of its tool calls and the additional instructions.
    """
    plan = await service.orchestrator.prepare(body.to_execution_request(agent_id))
    logger.info(f"Streaming resumed execution {plan.execution_id} from checkpoint {body.checkpoint_id}")
    return _stream_execution(service, plan)


@router.post(
    "/{agent_id}/cancel",
    response_model=CancelResponse,
    summary="Cancel Execution",
    description="Cancel a running execution of an agent.",
    responses={
        400: {"description": "executionId, threadId and checkpointId all missing"},
        403: {"description": "Execution belongs to another agent"},
        404: {"description": "Execution not running"},
    },
)
async def cancel(agent_id: str, body: CancelRequest, service: ExecutionServiceDep):
    """
    Cancel a running execution.

    The execution is looked up by **executionId**, then **threadId**, then
    **checkpointId**. An attached stream ends with an ``error`` event of type
    ``cancelled``.
    """
    if not (body.execution_id or body.thread_id or body.checkpoint_id):
        raise InvalidRequestError("Either executionId, threadId, or checkpointId is required")
    entry = service.registry.cancel(
        body.execution_id,
        agent_id,
        reason=body.reason or "cancelled by request",
        thread_id=body.thread_id,
        checkpoint_id=body.checkpoint_id,
    )
    return CancelResponse(
        execution_id=entry.execution_id,
        agent_id=entry.agent_id,
        thread_id=entry.thread_id,
        checkpoint_id=entry.checkpoint_id,
        result_id=entry.result_id,
    )
