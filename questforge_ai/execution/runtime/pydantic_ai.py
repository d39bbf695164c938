"""Pydantic AI backed agent runtime.

Builds a pydantic-ai ``Agent`` per invocation with the agent's workspace tools
and a todo-list tool, streams its events into the runtime callbacks, and maps
pydantic-ai failures onto the typed runtime errors:

- ``UsageLimitExceeded`` (request limit = step budget) -> ``RecursionLimitError``
- HTTP 408/429/5xx from the model provider, connection errors -> ``TransientRuntimeError``
- timeouts -> ``RuntimeTimeoutError``
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterable, Dict, List, Optional, Union

import httpx
from pydantic_ai import Agent, RunContext, Tool
from pydantic_ai.exceptions import ModelHTTPError, UsageLimitExceeded
from pydantic_ai.messages import (
    AgentStreamEvent,
    FunctionToolCallEvent,
    FunctionToolResultEvent,
    PartDeltaEvent,
    PartStartEvent,
    RetryPromptPart,
    TextPart,
    TextPartDelta,
)
from pydantic_ai.models import Model
from pydantic_ai.usage import UsageLimits

from questforge_ai.core.logging_config import get_logger

from ..schemas.domain import Todo
from .base import (
    RecursionLimitError,
    RuntimeCallbacks,
    RuntimeRequest,
    RuntimeResult,
    RuntimeTimeoutError,
    StepEnd,
    StepError,
    StepStart,
    TransientRuntimeError,
)
from .tools import (
    CommandRunInput,
    FileReadInput,
    FileWriteInput,
    ListFilesInput,
    Workspace,
    build_workspace_tools,
)

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = """You are an AI agent executing a software development task. Be concise and practical.

Break the task into steps and execute each step methodically. Keep your todo list current with write_todos.

Save your work as files in the workspace with write_file; files persist across checkpoints of the same agent,
so check what already exists with list_files before starting.

Once the task is complete, give a clear final answer. Do not repeat the same tool call with the same inputs;
if a tool fails, try a different approach or explain the limitation."""

TRANSIENT_STATUS_CODES = {408, 429}


def _workspace_tools(workspace: Workspace, todos: List[Todo]) -> List[Tool]:
    read_handler, write_handler, list_handler, command_handler = build_workspace_tools(workspace)

    async def read_file(path: str) -> str:
        """Read a text file from the workspace.

        Args:
            path: File path relative to the workspace.
        """
        return (await read_handler(FileReadInput(path=path))).model_dump_json(exclude_none=True)

    async def write_file(path: str, content: str) -> str:
        """Write a text file in the workspace, creating parent directories as needed.

        Args:
            path: File path relative to the workspace.
            content: Full file content.
        """
        return (await write_handler(FileWriteInput(path=path, content=content))).model_dump_json(exclude_none=True)

    async def list_files(path: str = ".") -> str:
        """List the entries of a workspace directory.

        Args:
            path: Directory relative to the workspace.
        """
        return (await list_handler(ListFilesInput(path=path))).model_dump_json(exclude_none=True)

    async def run_command(command: str, timeout: float = 60.0) -> str:
        """Run a shell command with the workspace as working directory.

        Args:
            command: The shell command.
            timeout: Seconds before the command is killed.
        """
        return (await command_handler(CommandRunInput(command=command, timeout=timeout))).model_dump_json(
            exclude_none=True
        )

    async def write_todos(items: List[Todo]) -> str:
        """Replace the task's todo list.

        Args:
            items: Every todo with its status (pending, in_progress, completed).
        """
        todos[:] = items
        return f"Todo list updated ({len(items)} items)"

    return [
        Tool(read_file, takes_ctx=False),
        Tool(write_file, takes_ctx=False),
        Tool(list_files, takes_ctx=False),
        Tool(run_command, takes_ctx=False),
        Tool(write_todos, takes_ctx=False),
    ]


def _event_stream_handler(callbacks: RuntimeCallbacks):
    async def handle(ctx: RunContext[Any], events: AsyncIterable[AgentStreamEvent]) -> None:
        async for event in events:
            if isinstance(event, PartStartEvent) and isinstance(event.part, TextPart):
                if event.part.content:
                    await callbacks.on_token(event.part.content)
            elif isinstance(event, PartDeltaEvent) and isinstance(event.delta, TextPartDelta):
                if event.delta.content_delta:
                    await callbacks.on_token(event.delta.content_delta)
            elif isinstance(event, FunctionToolCallEvent):
                await callbacks.on_step_start(
                    StepStart(
                        tool_name=event.part.tool_name,
                        input=event.part.args_as_json_str(),
                        call_id=event.part.tool_call_id,
                    )
                )
            elif isinstance(event, FunctionToolResultEvent):
                result = event.result
                if isinstance(result, RetryPromptPart):
                    await callbacks.on_step_error(
                        StepError(error=result.model_response(), tool_name=result.tool_name, call_id=result.tool_call_id)
                    )
                else:
                    await callbacks.on_step_end(
                        StepEnd(output=result.model_response_str(), tool_name=result.tool_name, call_id=result.tool_call_id)
                    )

    return handle


class PydanticAIRuntime:
    """``AgentRuntime`` implementation on top of pydantic-ai."""

    def __init__(
        self,
        model: Union[str, Model],
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        workspace_root: str = "workspaces",
    ) -> None:
        self.model = model
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.temperature = temperature
        self.workspace_root = workspace_root

    def build_agent(self, workspace: Workspace, todos: List[Todo]) -> Agent:
        kwargs: Dict[str, Any] = {
            "system_prompt": self.system_prompt,
            "tools": _workspace_tools(workspace, todos),
            "defer_model_check": True,
        }
        if self.temperature is not None:
            kwargs["model_settings"] = {"temperature": self.temperature}
        return Agent(self.model, **kwargs)

    async def invoke(self, request: RuntimeRequest) -> RuntimeResult:
        todos = [Todo.model_validate(t) for t in request.agent_state.get("todos", [])]
        workspace = Workspace.for_agent(self.workspace_root, request.agent_id)
        agent = self.build_agent(workspace, todos)

        logger.debug(f"Invoking pydantic-ai agent for {request.agent_id} (step budget {request.step_budget})")
        try:
            result = await agent.run(
                request.message,
                usage_limits=UsageLimits(request_limit=request.step_budget),
                event_stream_handler=_event_stream_handler(request.callbacks),
            )
        except UsageLimitExceeded as e:
            raise RecursionLimitError(request.step_budget, f"Recursion limit of {request.step_budget} reached: {e}") from e
        except ModelHTTPError as e:
            if e.status_code in TRANSIENT_STATUS_CODES or e.status_code >= 500:
                raise TransientRuntimeError(str(e)) from e
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RuntimeTimeoutError(f"Model call timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientRuntimeError(f"Network error: {e}") from e

        usage = result.usage()
        return RuntimeResult(
            final_message=str(result.output),
            todos=list(todos),
            updated_checkpoint_state={"todos": [t.model_dump(by_alias=True) for t in todos]},
            tokens=usage.total_tokens or None,
        )
