from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from execution_fakes import ScriptedRuntime
from questforge_ai.execution.orchestrator import ExecutionOrchestrator, OrchestratorConfig, OrchestratorDeps


@pytest.fixture
def persistence() -> MagicMock:
    """A persistence service double that records every write."""
    p = MagicMock()
    p.max_content_length = 1000
    p.saved_snapshots = []

    async def save_result(result):
        return result

    async def save_checkpoint_state(agent_id, checkpoint_id, snapshot, thread_id=None):
        p.saved_snapshots.append(snapshot.model_copy(deep=True))

    p.save_result = AsyncMock(side_effect=save_result)
    p.update_result = AsyncMock()
    p.save_checkpoint_state = AsyncMock(side_effect=save_checkpoint_state)
    p.save_log = AsyncMock(return_value=True)
    p.save_trace = AsyncMock(return_value=True)
    p.get_checkpoint_state = AsyncMock(return_value=None)
    return p


@pytest.fixture
def make_orchestrator(persistence: MagicMock):
    def build(runtime: ScriptedRuntime, **config: Any) -> ExecutionOrchestrator:
        deps = OrchestratorDeps(persistence=persistence, runtime=runtime, sleep=AsyncMock())
        return ExecutionOrchestrator(deps=deps, config=OrchestratorConfig(**config))

    return build
