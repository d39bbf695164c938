from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from execution_fakes import ScriptedRuntime, answer, names, run_and_collect, tool_step
from questforge_ai.execution.emitter import EventEmitter
from questforge_ai.execution.errors import (
    CheckpointNotFoundError,
    CheckpointOwnershipError,
    InvalidRequestError,
    PersistenceError,
    RecursionLimitError,
    TransientRuntimeError,
)
from questforge_ai.execution.registry import CancellationToken
from questforge_ai.execution.runtime.base import RuntimeRequest, RuntimeResult, StepError, StepStart
from questforge_ai.execution.schemas.domain import (
    CheckpointSnapshot,
    CheckpointState,
    ExecutionStatus,
    LogLevel,
    Todo,
    ToolOutput,
    TraceType,
)
from questforge_ai.execution.schemas.execution import ExecutionRequest


def _update(persistence: MagicMock, index: int = -1):
    result_id, patch = persistence.update_result.await_args_list[index].args
    return result_id, patch


# ----------------------------------------------------------------------
# Preparation
# ----------------------------------------------------------------------


async def test_fresh_run_requires_a_task(make_orchestrator) -> None:
    runtime = ScriptedRuntime(answer("never"))
    orchestrator = make_orchestrator(runtime)
    emitter = EventEmitter()

    with pytest.raises(InvalidRequestError):
        await orchestrator.execute(ExecutionRequest(agent_id="agent-1", task="   "), emitter)

    assert runtime.requests == []
    assert emitter.closed is False


async def test_resume_requires_a_checkpoint_id(make_orchestrator) -> None:
    with pytest.raises(InvalidRequestError):
        await make_orchestrator(ScriptedRuntime()).prepare(ExecutionRequest(agent_id="agent-1", resume=True))


async def test_resume_of_unknown_checkpoint(make_orchestrator) -> None:
    with pytest.raises(CheckpointNotFoundError):
        await make_orchestrator(ScriptedRuntime()).prepare(
            ExecutionRequest(agent_id="agent-1", checkpoint_id="cp-missing", resume=True)
        )


async def test_resume_of_another_agents_checkpoint_fails_before_start(make_orchestrator, persistence) -> None:
    persistence.get_checkpoint_state.return_value = CheckpointState(
        agent_id="agent-2",
        checkpoint_id="cp-1",
        thread_id="cp-1",
        state=CheckpointSnapshot(
            step=3,
            task="Chart the caves",
            tool_outputs=[ToolOutput(tool_name="a", output="1"), ToolOutput(tool_name="b", output="2")],
        ),
    )
    runtime = ScriptedRuntime(answer("never"))
    emitter = EventEmitter()

    with pytest.raises(CheckpointOwnershipError):
        await make_orchestrator(runtime).execute(
            ExecutionRequest(agent_id="agent-1", checkpoint_id="cp-1", resume=True), emitter
        )

    assert runtime.requests == []
    persistence.save_result.assert_not_awaited()


async def test_fresh_run_appends_additional_instructions(make_orchestrator) -> None:
    plan = await make_orchestrator(ScriptedRuntime()).prepare(
        ExecutionRequest(agent_id="agent-1", task="Build a map", additional_instructions="Use ASCII", step_budget=5)
    )

    assert plan.execution_id.startswith("exec_")
    assert plan.task == "Build a map\n\nAdditional instructions: Use ASCII"
    assert plan.snapshot.task == "Build a map"
    assert plan.step_budget == 5


# ----------------------------------------------------------------------
# Successful runs
# ----------------------------------------------------------------------


async def test_zero_tool_run_emits_start_then_complete(make_orchestrator, persistence) -> None:
    orchestrator = make_orchestrator(ScriptedRuntime(answer("Hello, adventurer.")))

    outcome, events = await run_and_collect(orchestrator, ExecutionRequest(agent_id="agent-1", task="Say hello"))

    assert names(events) == ["start", "complete"]
    start, complete = events[0][1], events[1][1]
    assert start["agentId"] == "agent-1"
    assert start["task"] == "Say hello"
    assert start["executionId"] == outcome.execution_id
    assert complete["output"] == "Hello, adventurer."
    assert complete["resultId"] == start["resultId"] == outcome.result_id
    assert complete["totalIterations"] == 0
    assert complete["tokens"] == 0
    assert complete["todos"] == []

    assert outcome.status is ExecutionStatus.completed
    created = persistence.save_result.await_args.args[0]
    assert created.status is ExecutionStatus.running
    assert created.metadata["task"] == "Say hello"
    result_id, patch = _update(persistence)
    assert result_id == outcome.result_id
    assert patch.status is ExecutionStatus.completed
    assert patch.result == "Hello, adventurer."
    assert patch.metadata["totalSteps"] == 0
    assert persistence.update_result.await_count == 1


async def test_tool_steps_are_streamed_traced_and_checkpointed(make_orchestrator, persistence) -> None:
    async def script(request: RuntimeRequest) -> RuntimeResult:
        await request.callbacks.on_token("Looking ")
        await request.callbacks.on_token("around.")
        await tool_step(request, "list_files", "a.txt", call_id="c1")
        await tool_step(request, "read_file", "contents of a", call_id="c2")
        return RuntimeResult(final_message="Done reading.", tokens=321)

    orchestrator = make_orchestrator(ScriptedRuntime(script))
    outcome, events = await run_and_collect(
        orchestrator, ExecutionRequest(agent_id="agent-1", task="Read a.txt", checkpoint_id="cp-1")
    )

    assert names(events) == ["start", "token", "token", "tool_start", "tool_end", "tool_start", "tool_end", "complete"]
    assert events[3][1] == {"tool": "list_files", "input": '{"arg": 1}', "iteration": 1}
    assert events[4][1] == {"output": "a.txt"}
    assert events[5][1]["iteration"] == 2
    assert events[-1][1]["tokens"] == 321
    assert events[-1][1]["totalIterations"] == 2

    # One snapshot per completed step, then the final one
    assert [s.step for s in persistence.saved_snapshots] == [1, 2, 2]
    assert persistence.saved_snapshots[0].partial_results == ["Looking around."]
    assert [o.tool_name for o in persistence.saved_snapshots[-1].tool_outputs] == ["list_files", "read_file"]

    trace_types = [c.args[2] for c in persistence.save_trace.await_args_list]
    assert trace_types == [TraceType.tool_start, TraceType.tool_end, TraceType.tool_start, TraceType.tool_end]
    assert persistence.save_trace.await_args_list[1].kwargs["duration"] is not None

    _, patch = _update(persistence)
    assert patch.metadata["totalSteps"] == 2
    assert patch.metadata["newSteps"] == 2
    assert outcome.steps == 2


async def test_snapshot_is_saved_before_the_next_step_runs(make_orchestrator, persistence) -> None:
    seen_before_second_step = []

    async def script(request: RuntimeRequest) -> RuntimeResult:
        await tool_step(request, "write_file", "ok", call_id="c1")
        seen_before_second_step.append(len(persistence.saved_snapshots))
        await tool_step(request, "write_file", "ok", call_id="c2")
        return RuntimeResult(final_message="done")

    await run_and_collect(
        make_orchestrator(ScriptedRuntime(script)),
        ExecutionRequest(agent_id="agent-1", task="Write files", checkpoint_id="cp-1"),
    )

    assert seen_before_second_step == [1]


async def test_no_checkpoint_writes_without_checkpoint_id(make_orchestrator, persistence) -> None:
    async def script(request: RuntimeRequest) -> RuntimeResult:
        await tool_step(request, "list_files", "x")
        return RuntimeResult(final_message="done", updated_checkpoint_state={"todos": []})

    await run_and_collect(make_orchestrator(ScriptedRuntime(script)), ExecutionRequest(agent_id="a", task="t"))

    persistence.save_checkpoint_state.assert_not_awaited()


async def test_todos_and_runtime_state_are_recorded(make_orchestrator, persistence) -> None:
    todos = [Todo(content="Scout", status="completed")]
    runtime = ScriptedRuntime(
        answer("Scouted.", todos=todos, updated_checkpoint_state={"todos": [t.model_dump() for t in todos]})
    )

    _, events = await run_and_collect(
        make_orchestrator(runtime), ExecutionRequest(agent_id="agent-1", task="Scout", checkpoint_id="cp-9")
    )

    assert events[-1][1]["todos"] == [{"content": "Scout", "status": "completed"}]
    assert persistence.saved_snapshots[-1].agent_state == {"todos": [{"content": "Scout", "status": "completed"}]}


async def test_estimated_tokens_used_when_runtime_reports_none(make_orchestrator) -> None:
    _, events = await run_and_collect(
        make_orchestrator(ScriptedRuntime(answer("ok"))),
        ExecutionRequest(agent_id="agent-1", task="t", estimated_tokens=1500),
    )

    assert events[-1][1]["tokens"] == 1500


async def test_empty_final_message_falls_back_to_partial_results(make_orchestrator) -> None:
    async def script(request: RuntimeRequest) -> RuntimeResult:
        await request.callbacks.on_token("Partial answer")
        return RuntimeResult(final_message="  ")

    _, events = await run_and_collect(
        make_orchestrator(ScriptedRuntime(script)), ExecutionRequest(agent_id="a", task="t")
    )

    assert events[-1][1]["output"] == "Partial answer"


async def test_single_warning_at_eighty_percent_of_budget(make_orchestrator, persistence) -> None:
    async def script(request: RuntimeRequest) -> RuntimeResult:
        for i in range(81):
            await tool_step(request, "run_command", f"step {i}", call_id=f"c{i}")
        return RuntimeResult(final_message="Finished the grind.")

    _, events = await run_and_collect(
        make_orchestrator(ScriptedRuntime(script)),
        ExecutionRequest(agent_id="agent-1", task="Grind", step_budget=100),
    )

    warnings = [(i, data) for i, (name, data) in enumerate(events) if name == "warning"]
    assert len(warnings) == 1
    index, warning = warnings[0]
    assert warning["iterationCount"] == 80
    assert warning["maxRecursion"] == 100
    assert events[index + 1] == ("tool_start", {"tool": "run_command", "input": '{"arg": 1}', "iteration": 80})
    assert names(events)[-1] == "complete"
    warn_logs = [c for c in persistence.save_log.await_args_list if c.args[2] is LogLevel.warn]
    assert len(warn_logs) == 1


async def test_step_errors_do_not_abort_the_run(make_orchestrator, persistence) -> None:
    async def script(request: RuntimeRequest) -> RuntimeResult:
        await request.callbacks.on_step_start(StepStart(tool_name="read_file", input="{}", call_id="c1"))
        await request.callbacks.on_step_error(StepError(error="File not found", tool_name="read_file", call_id="c1"))
        await tool_step(request, "list_files", "b.txt", call_id="c2")
        return RuntimeResult(final_message="Recovered.")

    outcome, events = await run_and_collect(
        make_orchestrator(ScriptedRuntime(script)), ExecutionRequest(agent_id="a", task="t")
    )

    assert names(events) == ["start", "tool_start", "tool_error", "tool_start", "tool_end", "complete"]
    assert events[2][1] == {"error": "File not found"}
    assert outcome.status is ExecutionStatus.completed
    assert any(c.args[2] is LogLevel.error for c in persistence.save_log.await_args_list)


async def test_log_and_trace_failures_do_not_change_the_outcome(make_orchestrator, persistence) -> None:
    persistence.save_log.return_value = False
    persistence.save_trace.return_value = False

    async def script(request: RuntimeRequest) -> RuntimeResult:
        await tool_step(request, "list_files", "x")
        return RuntimeResult(final_message="fine")

    outcome, events = await run_and_collect(
        make_orchestrator(ScriptedRuntime(script)), ExecutionRequest(agent_id="a", task="t")
    )

    assert outcome.status is ExecutionStatus.completed
    assert names(events)[-1] == "complete"


# ----------------------------------------------------------------------
# Retries and failures
# ----------------------------------------------------------------------


async def test_transient_failure_is_retried_with_retry_event(make_orchestrator) -> None:
    async def flaky(request: RuntimeRequest) -> RuntimeResult:
        await tool_step(request, "list_files", "x", call_id="c1")
        raise TransientRuntimeError("503 Service Unavailable")

    runtime = ScriptedRuntime(flaky, answer("Second time lucky."))
    outcome, events = await run_and_collect(
        make_orchestrator(runtime, retry_base_delay=1.0), ExecutionRequest(agent_id="a", task="t")
    )

    assert names(events) == ["start", "tool_start", "tool_end", "retry", "complete"]
    assert events[3][1] == {"attempt": 1, "error": "503 Service Unavailable", "nextDelay": 1.0, "isTransient": True}
    assert len(runtime.requests) == 2
    assert outcome.status is ExecutionStatus.completed
    assert events[-1][1]["totalIterations"] == 1


async def test_transient_failures_exhaust_retries(make_orchestrator, persistence) -> None:
    async def failing(request: RuntimeRequest) -> RuntimeResult:
        raise TransientRuntimeError("ECONNRESET")

    runtime = ScriptedRuntime(failing)
    outcome, events = await run_and_collect(
        make_orchestrator(runtime, max_retries=2), ExecutionRequest(agent_id="a", task="t")
    )

    assert names(events) == ["start", "retry", "retry", "error"]
    assert [data["attempt"] for name, data in events if name == "retry"] == [1, 2]
    assert events[-1][1]["type"] == "transient"
    assert len(runtime.requests) == 3
    assert outcome.status is ExecutionStatus.failed


async def test_recursion_limit_fails_with_classification(make_orchestrator, persistence) -> None:
    async def looping(request: RuntimeRequest) -> RuntimeResult:
        await request.callbacks.on_token("Still searching")
        await tool_step(request, "list_files", "x")
        raise RecursionLimitError(request.step_budget)

    runtime = ScriptedRuntime(looping)
    outcome, events = await run_and_collect(
        make_orchestrator(runtime),
        ExecutionRequest(agent_id="agent-1", task="Find the exit", checkpoint_id="cp-3", step_budget=10),
    )

    assert names(events)[-1] == "error"
    error = events[-1][1]
    assert error["type"] == "recursion_limit"
    assert error["isRecoverable"] is True
    assert error["resultId"] == outcome.result_id
    assert any("cp-3" in s for s in error["suggestions"])
    assert len(runtime.requests) == 1

    _, patch = _update(persistence)
    assert patch.status is ExecutionStatus.failed
    assert patch.result == "Still searching"
    assert patch.metadata["errorType"] == "recursion_limit"
    assert patch.metadata["stepsCompleted"] == 1
    assert persistence.update_result.await_count == 1
    assert persistence.saved_snapshots[-1].step == 1


async def test_permanent_error_is_not_recoverable(make_orchestrator) -> None:
    async def broken(request: RuntimeRequest) -> RuntimeResult:
        raise ValueError("Invalid tool schema")

    outcome, events = await run_and_collect(
        make_orchestrator(ScriptedRuntime(broken)), ExecutionRequest(agent_id="a", task="t")
    )

    error = events[-1][1]
    assert error["type"] == "permanent"
    assert error["isRecoverable"] is False
    assert "suggestions" not in error
    assert outcome.error is not None and outcome.error.is_recoverable is False


async def test_result_creation_failure_still_emits_error(make_orchestrator, persistence) -> None:
    persistence.save_result.side_effect = PersistenceError("save_result", "database unavailable")
    runtime = ScriptedRuntime(answer("never"))

    outcome, events = await run_and_collect(make_orchestrator(runtime), ExecutionRequest(agent_id="a", task="t"))

    assert names(events) == ["error"]
    assert "database unavailable" in events[0][1]["error"]
    assert runtime.requests == []
    assert outcome.status is ExecutionStatus.failed
    persistence.update_result.assert_not_awaited()


async def test_final_result_write_failure_emits_error(make_orchestrator, persistence) -> None:
    persistence.update_result.side_effect = [PersistenceError("update_result", "lost connection"), None]

    outcome, events = await run_and_collect(
        make_orchestrator(ScriptedRuntime(answer("done"))), ExecutionRequest(agent_id="a", task="t")
    )

    assert names(events) == ["start", "error"]
    assert outcome.status is ExecutionStatus.failed


# ----------------------------------------------------------------------
# Resume and cancellation
# ----------------------------------------------------------------------


async def test_resume_continues_from_saved_step(make_orchestrator, persistence) -> None:
    persistence.get_checkpoint_state.return_value = CheckpointState(
        agent_id="agent-1",
        checkpoint_id="cp-1",
        thread_id="thread-1",
        state=CheckpointSnapshot(
            step=3,
            task="Chart the caves",
            partial_results=["North cave charted."],
            tool_outputs=[ToolOutput(tool_name="write_file", output="ok") for _ in range(3)],
        ),
    )

    async def script(request: RuntimeRequest) -> RuntimeResult:
        await tool_step(request, "write_file", "ok")
        return RuntimeResult(final_message="All caves charted.")

    runtime = ScriptedRuntime(script)
    outcome, events = await run_and_collect(
        make_orchestrator(runtime),
        ExecutionRequest(agent_id="agent-1", checkpoint_id="cp-1", resume=True, additional_instructions="South next"),
    )

    assert outcome.execution_id.startswith("resume_")
    assert names(events) == ["start", "thinking", "tool_start", "tool_end", "complete"]
    assert "Resuming from step 3" in events[1][1]["message"]
    message = runtime.requests[0].message
    assert message.startswith("Chart the caves\n\nPrevious progress:\nNorth cave charted.")
    assert message.endswith("Additional instructions: South next")
    assert runtime.requests[0].thread_id == "thread-1"
    assert events[2][1]["iteration"] == 4
    assert events[-1][1]["totalIterations"] == 4
    assert events[-1][1]["newIterations"] == 1

    assert persistence.saved_snapshots[0].step == 4
    _, patch = _update(persistence)
    assert patch.metadata["totalSteps"] == 4
    assert patch.metadata["newSteps"] == 1
    assert patch.metadata["previousSteps"] == 3
    created = persistence.save_result.await_args.args[0]
    assert created.metadata["resumedFrom"] == "cp-1"


async def test_cancellation_records_cancelled_and_closes_stream(make_orchestrator, persistence) -> None:
    started = asyncio.Event()

    async def endless(request: RuntimeRequest) -> RuntimeResult:
        await request.callbacks.on_step_start(StepStart(tool_name="run_command", input="sleep", call_id="c1"))
        started.set()
        await asyncio.Event().wait()
        return RuntimeResult(final_message="unreachable")

    orchestrator = make_orchestrator(ScriptedRuntime(endless))
    token = CancellationToken()
    collecting = asyncio.create_task(
        run_and_collect(orchestrator, ExecutionRequest(agent_id="agent-1", task="Wait forever"), token)
    )
    await started.wait()
    assert len(orchestrator.registry.list_active("agent-1")) == 1

    token.cancel("user stopped")
    outcome, events = await collecting

    assert outcome.status is ExecutionStatus.cancelled
    assert names(events) == ["start", "tool_start", "error"]
    assert events[-1][1]["type"] == "cancelled"
    assert events[-1][1]["error"] == "Execution cancelled: user stopped"
    assert events[-1][1]["isRecoverable"] is True
    _, patch = _update(persistence)
    assert patch.status is ExecutionStatus.cancelled
    assert patch.metadata["cancelReason"] == "user stopped"
    assert orchestrator.registry.list_active() == []


async def test_registry_cancel_reaches_running_execution(make_orchestrator) -> None:
    started = asyncio.Event()

    async def endless(request: RuntimeRequest) -> RuntimeResult:
        started.set()
        await asyncio.Event().wait()
        return RuntimeResult(final_message="unreachable")

    orchestrator = make_orchestrator(ScriptedRuntime(endless))
    collecting = asyncio.create_task(run_and_collect(orchestrator, ExecutionRequest(agent_id="agent-1", task="t")))
    await started.wait()

    (entry,) = orchestrator.registry.list_active("agent-1")
    orchestrator.registry.cancel(entry.execution_id, "agent-1")
    outcome, events = await collecting

    assert outcome.status is ExecutionStatus.cancelled
    assert names(events) == ["start", "error"]
    assert events[-1][1]["type"] == "cancelled"


async def test_cancel_by_checkpoint_points_at_resume(make_orchestrator) -> None:
    stepped = asyncio.Event()

    async def endless(request: RuntimeRequest) -> RuntimeResult:
        await tool_step(request, "write_file", "ok")
        stepped.set()
        await asyncio.Event().wait()
        return RuntimeResult(final_message="unreachable")

    orchestrator = make_orchestrator(ScriptedRuntime(endless))
    collecting = asyncio.create_task(
        run_and_collect(orchestrator, ExecutionRequest(agent_id="agent-1", task="t", checkpoint_id="cp-9"))
    )
    await stepped.wait()

    entry = orchestrator.registry.cancel(None, "agent-1", checkpoint_id="cp-9")
    outcome, events = await collecting

    assert entry.checkpoint_id == "cp-9"
    assert entry.thread_id == "cp-9"
    assert outcome.status is ExecutionStatus.cancelled
    assert names(events)[-1] == "error"
    assert events[-1][1]["suggestions"] == ["Resume from checkpoint 'cp-9' to continue where the run stopped"]


async def test_cancel_after_reader_left_does_not_block(make_orchestrator, persistence) -> None:
    started = asyncio.Event()

    async def endless(request: RuntimeRequest) -> RuntimeResult:
        started.set()
        await asyncio.Event().wait()
        return RuntimeResult(final_message="unreachable")

    orchestrator = make_orchestrator(ScriptedRuntime(endless))
    plan = await orchestrator.prepare(ExecutionRequest(agent_id="agent-1", task="t"))
    emitter = EventEmitter(maxsize=1)
    token = CancellationToken()
    run = asyncio.create_task(orchestrator.run(plan, emitter, token))
    await started.wait()

    emitter.detach()
    token.cancel("client disconnected")
    outcome = await asyncio.wait_for(run, timeout=5)

    assert outcome.status is ExecutionStatus.cancelled
    _, patch = _update(persistence)
    assert patch.metadata["cancelReason"] == "client disconnected"
