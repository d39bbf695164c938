from __future__ import annotations

from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic_ai.exceptions import ModelHTTPError, UsageLimitExceeded
from pydantic_ai.models.test import TestModel

from questforge_ai.execution.errors import RecursionLimitError, RuntimeTimeoutError, TransientRuntimeError
from questforge_ai.execution.runtime.base import RuntimeCallbacks, RuntimeRequest, StepEnd, StepError, StepStart
from questforge_ai.execution.runtime.pydantic_ai import DEFAULT_SYSTEM_PROMPT, PydanticAIRuntime


class _Collector:
    def __init__(self) -> None:
        self.tokens: List[str] = []
        self.starts: List[StepStart] = []
        self.ends: List[StepEnd] = []
        self.errors: List[StepError] = []

    def callbacks(self) -> RuntimeCallbacks:
        async def on_token(token: str) -> None:
            self.tokens.append(token)

        async def on_step_start(step: StepStart) -> None:
            self.starts.append(step)

        async def on_step_end(step: StepEnd) -> None:
            self.ends.append(step)

        async def on_step_error(step: StepError) -> None:
            self.errors.append(step)

        return RuntimeCallbacks(on_token, on_step_start, on_step_end, on_step_error)


def _request(collector: _Collector, budget: int = 10, **kw) -> RuntimeRequest:
    return RuntimeRequest(
        message="Write a plan file",
        step_budget=budget,
        callbacks=collector.callbacks(),
        agent_id="agent-1",
        **kw,
    )


def test_default_system_prompt_is_used() -> None:
    assert PydanticAIRuntime("test").system_prompt == DEFAULT_SYSTEM_PROMPT
    assert PydanticAIRuntime("test", system_prompt="Be brief").system_prompt == "Be brief"


async def test_invoke_streams_tool_steps_and_tokens(tmp_path: Path) -> None:
    runtime = PydanticAIRuntime(
        TestModel(call_tools=["write_file"], custom_output_text="All done"),
        workspace_root=str(tmp_path),
    )
    collector = _Collector()

    result = await runtime.invoke(_request(collector))

    assert result.final_message == "All done"
    assert "".join(collector.tokens) == "All done"
    assert [s.tool_name for s in collector.starts] == ["write_file"]
    assert len(collector.ends) == 1
    assert collector.ends[0].call_id == collector.starts[0].call_id
    assert '"success":true' in collector.ends[0].output
    assert result.tokens is not None and result.tokens > 0
    assert any((tmp_path / "agent-1").iterdir())


async def test_invoke_carries_todos_through_checkpoint_state(tmp_path: Path) -> None:
    runtime = PydanticAIRuntime(TestModel(call_tools=[], custom_output_text="ok"), workspace_root=str(tmp_path))
    todos = [{"content": "Draft outline", "status": "completed"}]

    result = await runtime.invoke(_request(_Collector(), agent_state={"todos": todos}))

    assert [t.content for t in result.todos] == ["Draft outline"]
    assert result.updated_checkpoint_state == {"todos": todos}


async def test_usage_limit_becomes_recursion_error(tmp_path: Path) -> None:
    runtime = PydanticAIRuntime(TestModel(call_tools=["list_files"]), workspace_root=str(tmp_path))

    with pytest.raises(RecursionLimitError) as exc_info:
        await runtime.invoke(_request(_Collector(), budget=1))
    assert exc_info.value.step_budget == 1


def _failing_runtime(tmp_path: Path, error: Exception) -> PydanticAIRuntime:
    runtime = PydanticAIRuntime("test", workspace_root=str(tmp_path))
    agent = MagicMock()
    agent.run = AsyncMock(side_effect=error)
    runtime.build_agent = MagicMock(return_value=agent)  # type: ignore[method-assign]
    return runtime


@pytest.mark.parametrize("status_code", [429, 503, 529])
async def test_retryable_http_errors_become_transient(tmp_path: Path, status_code: int) -> None:
    runtime = _failing_runtime(tmp_path, ModelHTTPError(status_code=status_code, model_name="gpt-test"))

    with pytest.raises(TransientRuntimeError):
        await runtime.invoke(_request(_Collector()))


async def test_client_http_errors_propagate_unchanged(tmp_path: Path) -> None:
    runtime = _failing_runtime(tmp_path, ModelHTTPError(status_code=401, model_name="gpt-test"))

    with pytest.raises(ModelHTTPError):
        await runtime.invoke(_request(_Collector()))


async def test_timeouts_and_network_errors(tmp_path: Path) -> None:
    with pytest.raises(RuntimeTimeoutError):
        await _failing_runtime(tmp_path, httpx.ReadTimeout("read timed out")).invoke(_request(_Collector()))
    with pytest.raises(TransientRuntimeError):
        await _failing_runtime(tmp_path, httpx.ConnectError("refused")).invoke(_request(_Collector()))


async def test_usage_limit_exceeded_mapping(tmp_path: Path) -> None:
    runtime = _failing_runtime(tmp_path, UsageLimitExceeded("The next request would exceed the request_limit of 3"))

    with pytest.raises(RecursionLimitError):
        await runtime.invoke(_request(_Collector(), budget=3))


async def test_tool_free_run_reports_token_usage(tmp_path: Path) -> None:
    runtime = PydanticAIRuntime(TestModel(call_tools=[], custom_output_text="Nothing to do"), workspace_root=str(tmp_path))
    collector = _Collector()

    result = await runtime.invoke(_request(collector))

    assert result.final_message == "Nothing to do"
    assert collector.starts == []
    assert collector.ends == []
    assert result.tokens is not None and result.tokens > 0
