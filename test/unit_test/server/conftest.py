import asyncio
from typing import AsyncGenerator, Awaitable, Callable, List

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sse_starlette.sse import AppStatus

from questforge_ai.execution.orchestrator import ExecutionOrchestrator, OrchestratorConfig, OrchestratorDeps
from questforge_ai.execution.persistence import PersistenceService
from questforge_ai.execution.registry import ExecutionRegistry
from questforge_ai.execution.repos.sql import create_sessionmaker
from questforge_ai.execution.runtime.base import RuntimeRequest, RuntimeResult, StepEnd, StepStart

ApiScript = Callable[[RuntimeRequest], Awaitable[RuntimeResult]]


class FakeRuntime:
    """Plays ``script`` for every invocation. The default answers after one ``list_files`` step."""

    def __init__(self) -> None:
        self.script: ApiScript = self._default
        self.requests: List[RuntimeRequest] = []

    async def _default(self, request: RuntimeRequest) -> RuntimeResult:
        await request.callbacks.on_token("Checking the workspace.")
        await request.callbacks.on_step_start(StepStart(tool_name="list_files", input="{}", call_id="call-1"))
        await request.callbacks.on_step_end(StepEnd(output="README.md", tool_name="list_files", call_id="call-1"))
        return RuntimeResult(final_message="The workspace holds a README.", tokens=42)

    async def invoke(self, request: RuntimeRequest) -> RuntimeResult:
        self.requests.append(request)
        return await self.script(request)


class FakeExecutionService:
    """The collaborators of ``ExecutionService``, wired to a test database and a fake runtime."""

    def __init__(self, persistence: PersistenceService, runtime: FakeRuntime) -> None:
        self.persistence = persistence
        self.registry = ExecutionRegistry()
        self.runtime = runtime
        self.orchestrator = ExecutionOrchestrator(
            deps=OrchestratorDeps(
                persistence=persistence,
                runtime=runtime,
                registry=self.registry,
                sleep=lambda _: asyncio.sleep(0),
            ),
            config=OrchestratorConfig(),
        )
        self.stream_queue_size = 64


@pytest.fixture(autouse=True)
def _reset_sse_app_status():
    # sse-starlette keeps a process-wide exit event bound to the loop that created it
    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def execution_service(sql_persistence: PersistenceService, fake_runtime: FakeRuntime) -> FakeExecutionService:
    return FakeExecutionService(sql_persistence, fake_runtime)


@pytest_asyncio.fixture(name="client")
async def client_fixture(
    sqlite_engine: AsyncEngine, execution_service: FakeExecutionService
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with the database and execution service overridden."""
    from questforge_ai.server.core.database import get_session
    from questforge_ai.server.main import app
    from questforge_ai.server.services.execution import get_execution_service

    session_maker = create_sessionmaker(sqlite_engine)

    async def get_session_override() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_execution_service] = lambda: execution_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
