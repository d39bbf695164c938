"""Execution orchestrator.

``ExecutionOrchestrator`` drives one task run through the agent runtime and
produces exactly one terminal outcome.

Lifecycle
---------

1. ``prepare`` validates the request and, for resumes, loads the checkpoint.
   It raises before anything is emitted, so request errors become plain HTTP
   errors.
2. ``run`` creates the ``running`` result, emits ``start`` and invokes the
   runtime inside the retry controller.
3. Runtime callbacks publish onto a ``ProgressChannel``. A drain loop turns
   each signal into stream events, traces, logs and checkpoint saves. Step
   callbacks wait for their signal to be handled, so each step's snapshot is
   saved before the next step runs.
4. On success the runtime's checkpoint state is saved, the result is marked
   ``completed`` and ``complete`` is emitted. On failure the error is
   classified, the result is marked ``failed`` and ``error`` is emitted. A
   tripped ``CancellationToken`` marks the result ``cancelled`` and emits
   ``error`` with type ``cancelled``.
5. The stream is closed exactly once, after the final writes.

Step counting
-------------

``iteration`` counts tool steps started in this run (across retries) and
drives the single budget warning, since the runtime applies the step budget
per invocation. Streamed iteration numbers add the steps of earlier runs, so a
resume from step 3 reports its first tool call as iteration 4.
``snapshot.step`` counts completed steps of the checkpoint, including those of
earlier runs.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from questforge_ai.core import monitoring
from questforge_ai.core.logging_config import get_logger

from .channel import ProgressChannel, RetryNotice, Signal
from .checkpoint import CheckpointManager
from .classification import classify_error, is_transient_error
from .emitter import EventEmitter
from .errors import InvalidRequestError
from .persistence import PersistenceService
from .registry import CancellationToken, ExecutionRegistry
from .retry import RetryOptions, run_with_backoff
from .runtime.base import AgentRuntime, RuntimeRequest, RuntimeResult, StepEnd, StepError, StepStart
from .schemas.domain import (
    ExecutionResult,
    ExecutionResultUpdate,
    ErrorType,
    ExecutionStatus,
    LogLevel,
    ToolOutput,
    TraceType,
)
from .schemas.events import (
    CompleteEvent,
    ErrorEvent,
    RetryEvent,
    StartEvent,
    StreamEventName,
    ThinkingEvent,
    TokenEvent,
    ToolEndEvent,
    ToolErrorEvent,
    ToolStartEvent,
    WarningEvent,
)
from .schemas.execution import ExecutionOutcome, ExecutionPlan, ExecutionRequest

logger = get_logger(__name__)


@dataclass
class OrchestratorConfig:
    default_step_budget: int = 100
    warning_ratio: float = 0.8
    max_retries: int = 2
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    progress_channel_size: int = 64

    @classmethod
    def from_settings(cls, cfg: Any) -> "OrchestratorConfig":
        """Build from an ``ExecutionConfig`` settings group."""
        return cls(
            default_step_budget=cfg.default_step_budget,
            warning_ratio=cfg.warning_ratio,
            max_retries=cfg.max_retries,
            retry_base_delay=cfg.retry_base_delay,
            retry_max_delay=cfg.retry_max_delay,
            progress_channel_size=cfg.progress_channel_size,
        )


@dataclass
class OrchestratorDeps:
    persistence: PersistenceService
    runtime: AgentRuntime
    checkpoints: Optional[CheckpointManager] = None
    registry: ExecutionRegistry = field(default_factory=ExecutionRegistry)
    sleep: Callable[[float], Any] = asyncio.sleep


@dataclass
class _PendingStep:
    tool_name: str
    input: str
    started_at: float


@dataclass
class _RunState:
    """Mutable state of one run, owned by that run's drain loop."""

    plan: ExecutionPlan
    token: CancellationToken
    result_id: Optional[str] = None
    iteration: int = 0
    warned: bool = False
    pending: Dict[str, _PendingStep] = field(default_factory=dict)
    token_buffer: List[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)
    _anonymous: int = 0

    @property
    def request(self) -> ExecutionRequest:
        return self.plan.request

    @property
    def agent_id(self) -> str:
        return self.plan.request.agent_id

    @property
    def execution_id(self) -> str:
        return self.plan.execution_id

    @property
    def new_steps(self) -> int:
        return self.plan.snapshot.step - self.plan.previous_steps

    @property
    def total_iterations(self) -> int:
        return self.plan.previous_steps + self.iteration

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000

    def start_step(self, step: StepStart) -> None:
        key = step.call_id
        if key is None:
            self._anonymous += 1
            key = f"anonymous-{self._anonymous}"
        self.pending[key] = _PendingStep(tool_name=step.tool_name, input=step.input, started_at=time.monotonic())

    def finish_step(self, call_id: Optional[str]) -> Optional[_PendingStep]:
        """Pop the start matching ``call_id``, or the most recent unmatched start."""
        if call_id is not None and call_id in self.pending:
            return self.pending.pop(call_id)
        if self.pending:
            return self.pending.pop(next(reversed(self.pending)))
        return None


class ExecutionOrchestrator:
    """Drive task executions to a terminal state while streaming progress."""

    def __init__(self, *, deps: OrchestratorDeps, config: Optional[OrchestratorConfig] = None) -> None:
        """
        Initialize the orchestrator.

        Args:
            deps: Persistence, runtime, checkpoint manager and execution registry.
            config: Step budget, warning ratio, retry and channel tuning.
        """
        self._deps = deps
        self._config = config or OrchestratorConfig()
        self._persistence = deps.persistence
        self._checkpoints = deps.checkpoints or CheckpointManager(
            deps.persistence, max_content_length=deps.persistence.max_content_length
        )

    @property
    def registry(self) -> ExecutionRegistry:
        return self._deps.registry

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    async def prepare(self, request: ExecutionRequest) -> ExecutionPlan:
        """
        Validate a request and resolve its task text.

        Raises:
            InvalidRequestError: A fresh run without task, or a resume without checkpoint id.
            CheckpointNotFoundError: Resume of a checkpoint that was never saved.
            CheckpointOwnershipError: Resume of another agent's checkpoint.
        """
        budget = request.step_budget or self._config.default_step_budget

        if request.resume:
            checkpoint_id = (request.checkpoint_id or "").strip()
            if not checkpoint_id:
                raise InvalidRequestError("checkpointId is required to resume an execution")
            resume = await self._checkpoints.load_for_resume(
                checkpoint_id, request.agent_id, request.additional_instructions
            )
            execution_id = f"resume_{uuid4().hex}"
            return ExecutionPlan(
                execution_id=execution_id,
                request=request.model_copy(update={"thread_id": request.thread_id or resume.thread_id}),
                task=resume.task,
                original_task=resume.original_task,
                snapshot=self._checkpoints.build_snapshot(resume.original_task, execution_id, prior=resume.snapshot),
                step_budget=budget,
                previous_steps=resume.previous_steps,
                resumed=True,
            )

        task = (request.task or "").strip()
        if not task:
            raise InvalidRequestError("task is required")
        resolved = task
        if request.additional_instructions and request.additional_instructions.strip():
            resolved = f"{task}\n\nAdditional instructions: {request.additional_instructions.strip()}"
        execution_id = f"exec_{uuid4().hex}"
        return ExecutionPlan(
            execution_id=execution_id,
            request=request,
            task=resolved,
            original_task=task,
            snapshot=self._checkpoints.build_snapshot(task, execution_id),
            step_budget=budget,
        )

    async def execute(
        self,
        request: ExecutionRequest,
        emitter: EventEmitter,
        token: Optional[CancellationToken] = None,
    ) -> ExecutionOutcome:
        """Prepare and run a request. Request errors are raised before anything is emitted."""
        plan = await self.prepare(request)
        return await self.run(plan, emitter, token)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        plan: ExecutionPlan,
        emitter: EventEmitter,
        token: Optional[CancellationToken] = None,
    ) -> ExecutionOutcome:
        """
        Run a prepared plan to its terminal state.

        Args:
            plan: The output of ``prepare``.
            emitter: The stream to write events to; it is closed on return.
            token: Trips cancellation of the runtime invocation.

        Returns:
            The terminal outcome. Runtime and persistence failures are reported
            through the outcome and the ``error`` event, not raised.
        """
        state = _RunState(plan=plan, token=token or CancellationToken())
        entry = self.registry.register(
            state.execution_id,
            state.agent_id,
            state.token,
            thread_id=plan.request.thread_id or plan.request.checkpoint_id,
            checkpoint_id=plan.request.checkpoint_id,
        )
        try:
            result = await self._persistence.save_result(
                ExecutionResult(
                    agent_id=state.agent_id,
                    checkpoint_id=plan.request.checkpoint_id,
                    quest_id=plan.request.quest_id,
                    status=ExecutionStatus.running,
                    metadata=self._start_metadata(plan),
                )
            )
            state.result_id = entry.result_id = result.id

            await emitter.emit(
                StreamEventName.start,
                StartEvent(
                    agent_id=state.agent_id,
                    checkpoint_id=plan.request.checkpoint_id,
                    task=plan.task,
                    execution_id=state.execution_id,
                    result_id=result.id,
                ),
            )
            if plan.resumed:
                await emitter.emit(
                    StreamEventName.thinking,
                    ThinkingEvent(
                        message=f"Resuming from step {plan.previous_steps} "
                        f"with {len(plan.snapshot.tool_outputs)} previous tool calls"
                    ),
                )
            await self._log(state, LogLevel.info, f"Starting execution {state.execution_id}: {plan.original_task[:200]}")
            monitoring.log_execution_start(state.execution_id, state.agent_id, plan.task, resumed=plan.resumed)

            runtime_result = await self._invoke(state, emitter)
            return await self._complete(state, emitter, runtime_result)
        except asyncio.CancelledError:
            if not state.token.cancelled:
                await self._cancel(state)
                raise
            return await self._cancel(state, emitter)
        except Exception as e:
            return await self._fail(state, emitter, e)
        finally:
            self.registry.unregister(state.execution_id)
            await emitter.close()

    def _start_metadata(self, plan: ExecutionPlan) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "task": plan.original_task,
            "executionId": plan.execution_id,
            "stepBudget": plan.step_budget,
        }
        if plan.resumed:
            metadata.update(
                {
                    "resumedFrom": plan.request.checkpoint_id,
                    "originalTask": plan.original_task,
                    "additionalInstructions": plan.request.additional_instructions,
                    "previousSteps": plan.previous_steps,
                }
            )
        if plan.request.estimated_tokens is not None:
            metadata["estimatedTokens"] = plan.request.estimated_tokens
        return metadata

    async def _invoke(self, state: _RunState, emitter: EventEmitter) -> RuntimeResult:
        channel = ProgressChannel(self._config.progress_channel_size)
        drain_task = asyncio.create_task(self._drain(state, channel, emitter))

        async def on_retry(attempt: int, exc: BaseException, next_delay: float) -> None:
            await channel.publish(RetryNotice(attempt=attempt, error=str(exc), next_delay=next_delay), wait=True)

        runtime_request = RuntimeRequest(
            message=state.plan.task,
            step_budget=state.plan.step_budget,
            callbacks=channel.callbacks(),
            agent_id=state.agent_id,
            thread_id=state.request.thread_id or state.request.checkpoint_id,
            agent_state=dict(state.plan.snapshot.agent_state),
        )
        options = RetryOptions(
            max_retries=self._config.max_retries,
            base_delay=self._config.retry_base_delay,
            max_delay=self._config.retry_max_delay,
            is_transient=is_transient_error,
            on_retry=on_retry,
            sleep=self._deps.sleep,
        )
        invoke_task = asyncio.create_task(run_with_backoff(lambda: self._deps.runtime.invoke(runtime_request), options))
        state.token.attach(invoke_task)
        try:
            return await invoke_task
        finally:
            await channel.close()
            await drain_task

    # ------------------------------------------------------------------
    # Drain loop
    # ------------------------------------------------------------------

    async def _drain(self, state: _RunState, channel: ProgressChannel, emitter: EventEmitter) -> None:
        async for signal in channel.signals():
            try:
                await self._handle(state, signal, emitter)
            except Exception:
                logger.exception(f"Failed to handle progress signal for execution {state.execution_id}")
            finally:
                signal.ack()

    async def _handle(self, state: _RunState, signal: Signal, emitter: EventEmitter) -> None:
        payload = signal.payload
        if isinstance(payload, str):
            state.token_buffer.append(payload)
            await emitter.emit(StreamEventName.token, TokenEvent(token=payload))
        elif isinstance(payload, StepStart):
            await self._on_step_start(state, payload, emitter)
        elif isinstance(payload, StepEnd):
            await self._on_step_end(state, payload, emitter)
        elif isinstance(payload, StepError):
            await self._on_step_error(state, payload, emitter)
        elif isinstance(payload, RetryNotice):
            self._flush_tokens(state)
            await self._log(state, LogLevel.warn, f"Retrying after transient error (attempt {payload.attempt}): {payload.error}")
            await emitter.emit(
                StreamEventName.retry,
                RetryEvent(attempt=payload.attempt, error=payload.error, next_delay=payload.next_delay, is_transient=True),
            )

    async def _on_step_start(self, state: _RunState, step: StepStart, emitter: EventEmitter) -> None:
        self._flush_tokens(state)
        state.iteration += 1
        budget = state.plan.step_budget

        if not state.warned and state.iteration >= math.ceil(budget * self._config.warning_ratio):
            state.warned = True
            message = f"Agent approaching iteration limit ({state.iteration}/{budget})"
            await self._log(state, LogLevel.warn, message)
            await emitter.emit(
                StreamEventName.warning,
                WarningEvent(message=message, iteration_count=state.iteration, max_recursion=budget),
            )

        state.start_step(step)
        await self._persistence.save_trace(
            state.agent_id,
            state.execution_id,
            TraceType.tool_start,
            step.input,
            metadata={"tool": step.tool_name, "iteration": state.total_iterations, "callId": step.call_id},
        )
        await emitter.emit(
            StreamEventName.tool_start,
            ToolStartEvent(tool=step.tool_name, input=step.input, iteration=state.total_iterations),
        )

    async def _on_step_end(self, state: _RunState, step: StepEnd, emitter: EventEmitter) -> None:
        pending = state.finish_step(step.call_id)
        duration = int((time.monotonic() - pending.started_at) * 1000) if pending else None
        tool_name = step.tool_name or (pending.tool_name if pending else "unknown")

        snapshot = state.plan.snapshot
        self._checkpoints.record_step(
            snapshot,
            ToolOutput(tool_name=tool_name, input=pending.input if pending else "", output=step.output, duration=duration),
        )
        if state.request.checkpoint_id:
            await self._checkpoints.persist(state.agent_id, state.request.checkpoint_id, state.request.thread_id, snapshot)

        await self._persistence.save_trace(
            state.agent_id,
            state.execution_id,
            TraceType.tool_end,
            step.output,
            metadata={"tool": tool_name, "callId": step.call_id, "step": snapshot.step},
            duration=duration,
        )
        await emitter.emit(StreamEventName.tool_end, ToolEndEvent(output=step.output))

    async def _on_step_error(self, state: _RunState, step: StepError, emitter: EventEmitter) -> None:
        pending = state.finish_step(step.call_id)
        tool_name = step.tool_name or (pending.tool_name if pending else "unknown")
        await self._log(state, LogLevel.error, f"Tool {tool_name} failed: {step.error}")
        monitoring.log_tool_error(state.execution_id, tool_name, step.error)
        await self._persistence.save_trace(
            state.agent_id,
            state.execution_id,
            TraceType.tool_error,
            step.error,
            metadata={"tool": tool_name, "callId": step.call_id},
        )
        await emitter.emit(StreamEventName.tool_error, ToolErrorEvent(error=step.error))

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def _flush_tokens(self, state: _RunState) -> None:
        if state.token_buffer:
            self._checkpoints.record_partial_result(state.plan.snapshot, "".join(state.token_buffer))
            state.token_buffer.clear()

    async def _complete(self, state: _RunState, emitter: EventEmitter, runtime_result: RuntimeResult) -> ExecutionOutcome:
        snapshot = state.plan.snapshot
        self._flush_tokens(state)
        checkpoint_id = state.request.checkpoint_id

        if runtime_result.updated_checkpoint_state is not None:
            snapshot.agent_state.update(runtime_result.updated_checkpoint_state)
            if checkpoint_id:
                await self._persistence.save_checkpoint_state(
                    state.agent_id, checkpoint_id, snapshot, thread_id=state.request.thread_id
                )
        elif checkpoint_id:
            await self._checkpoints.persist(state.agent_id, checkpoint_id, state.request.thread_id, snapshot)

        output = runtime_result.final_message.strip() or "\n".join(snapshot.partial_results) or "Task completed without a final message."
        tokens = runtime_result.tokens or state.request.estimated_tokens or 0
        todos = list(runtime_result.todos)

        await self._persistence.update_result(
            state.result_id,
            ExecutionResultUpdate(
                result=output,
                status=ExecutionStatus.completed,
                metadata={
                    "totalSteps": snapshot.step,
                    "newSteps": state.new_steps,
                    "previousSteps": state.plan.previous_steps,
                    "iterations": state.iteration,
                    "todos": [t.model_dump(by_alias=True) for t in todos],
                    "tokens": tokens,
                    "durationMs": round(state.elapsed_ms()),
                },
            ),
        )
        await self._log(state, LogLevel.success, f"Execution {state.execution_id} completed after {state.iteration} steps")
        monitoring.log_execution_completion(state.execution_id, ExecutionStatus.completed.value, state.iteration, state.elapsed_ms())

        await emitter.emit(
            StreamEventName.complete,
            CompleteEvent(
                agent_id=state.agent_id,
                checkpoint_id=checkpoint_id,
                output=output,
                tokens=tokens,
                todos=todos,
                result_id=state.result_id,
                total_iterations=state.total_iterations,
                new_iterations=state.iteration,
            ),
        )
        return ExecutionOutcome(
            execution_id=state.execution_id,
            result_id=state.result_id,
            status=ExecutionStatus.completed,
            output=output,
            steps=state.iteration,
        )

    async def _fail(self, state: _RunState, emitter: EventEmitter, exc: Exception) -> ExecutionOutcome:
        classification = classify_error(exc, state.request.checkpoint_id)
        message = str(exc) or exc.__class__.__name__
        logger.error(f"Execution {state.execution_id} failed ({classification.type.value}): {message}")

        partial = await self._record_partial_progress(state)
        if state.result_id is not None:
            await self._finalize(
                state,
                ExecutionStatus.failed,
                partial,
                {
                    "error": message,
                    "errorType": classification.type.value,
                    "isRecoverable": classification.is_recoverable,
                    "suggestions": classification.suggestions,
                    "stepsCompleted": state.new_steps,
                    "totalSteps": state.plan.snapshot.step,
                    "iterations": state.iteration,
                },
            )
            await self._log(state, LogLevel.error, f"Execution {state.execution_id} failed: {message}")
        monitoring.log_error(
            classification.type.value,
            message,
            {"execution_id": state.execution_id, "agent_id": state.agent_id},
        )
        monitoring.log_execution_completion(state.execution_id, ExecutionStatus.failed.value, state.iteration, state.elapsed_ms())

        await emitter.emit(
            StreamEventName.error,
            ErrorEvent(
                error=message,
                type=classification.type,
                result_id=state.result_id,
                is_recoverable=classification.is_recoverable,
                suggestions=classification.suggestions or None,
            ),
        )
        return ExecutionOutcome(
            execution_id=state.execution_id,
            result_id=state.result_id,
            status=ExecutionStatus.failed,
            output=partial,
            steps=state.iteration,
            error=classification,
        )

    async def _cancel(self, state: _RunState, emitter: Optional[EventEmitter] = None) -> ExecutionOutcome:
        """Record a cancelled run. With ``emitter``, a still-attached reader gets a ``cancelled`` error event."""
        reason = state.token.reason or "cancelled"
        logger.info(f"Execution {state.execution_id} cancelled: {reason}")
        partial = await self._record_partial_progress(state)
        if state.result_id is not None:
            await self._finalize(
                state,
                ExecutionStatus.cancelled,
                partial,
                {"cancelReason": reason, "stepsCompleted": state.new_steps, "totalSteps": state.plan.snapshot.step},
            )
            await self._log(state, LogLevel.warn, f"Execution {state.execution_id} cancelled: {reason}")
        monitoring.log_execution_completion(state.execution_id, ExecutionStatus.cancelled.value, state.iteration, state.elapsed_ms())
        if emitter is not None:
            await emitter.emit(
                StreamEventName.error,
                ErrorEvent(
                    error=f"Execution cancelled: {reason}",
                    type=ErrorType.cancelled,
                    result_id=state.result_id,
                    is_recoverable=True,
                    suggestions=self._cancel_suggestions(state) or None,
                ),
            )
        return ExecutionOutcome(
            execution_id=state.execution_id,
            result_id=state.result_id,
            status=ExecutionStatus.cancelled,
            output=partial,
            steps=state.iteration,
        )

    @staticmethod
    def _cancel_suggestions(state: _RunState) -> List[str]:
        checkpoint_id = state.request.checkpoint_id
        if checkpoint_id and state.plan.snapshot.step:
            return [f"Resume from checkpoint '{checkpoint_id}' to continue where the run stopped"]
        return []

    async def _record_partial_progress(self, state: _RunState) -> str:
        self._flush_tokens(state)
        snapshot = state.plan.snapshot
        if state.request.checkpoint_id and (snapshot.step or snapshot.partial_results):
            await self._checkpoints.persist(state.agent_id, state.request.checkpoint_id, state.request.thread_id, snapshot)
        return "\n".join(snapshot.partial_results)

    async def _finalize(self, state: _RunState, status: ExecutionStatus, text: str, metadata: Dict[str, Any]) -> None:
        try:
            await self._persistence.update_result(
                state.result_id, ExecutionResultUpdate(result=text, status=status, metadata=metadata)
            )
        except Exception as e:
            logger.error(f"Could not record {status.value} state of execution {state.execution_id}: {e}")

    async def _log(self, state: _RunState, level: LogLevel, message: str) -> None:
        await self._persistence.save_log(state.agent_id, state.execution_id, level, message)

