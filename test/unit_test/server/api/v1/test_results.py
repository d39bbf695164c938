import pytest
from httpx import AsyncClient

from questforge_ai.execution.schemas.domain import (
    ExecutionResult,
    ExecutionResultUpdate,
    ExecutionStatus,
    LogLevel,
    TraceType,
)

pytestmark = pytest.mark.asyncio


async def _seed_result(persistence, agent_id="agent-1", status=ExecutionStatus.completed, quest_id=None, execution_id="exec_1"):
    result = await persistence.save_result(
        ExecutionResult(agent_id=agent_id, quest_id=quest_id, metadata={"executionId": execution_id, "task": "Scout"})
    )
    if status is not ExecutionStatus.running:
        await persistence.update_result(result.id, ExecutionResultUpdate(result="Scouted the area.", status=status))
    return result


class TestListResults:
    async def test_lists_without_result_text(self, client: AsyncClient, execution_service):
        await _seed_result(execution_service.persistence)
        await _seed_result(execution_service.persistence, agent_id="agent-2")

        response = await client.get("/api/v1/agents/agent-1/results")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["hasMore"] is False
        assert "result" not in body["results"][0]
        assert body["results"][0]["agentId"] == "agent-1"

    async def test_filters_and_paginates(self, client: AsyncClient, execution_service):
        persistence = execution_service.persistence
        for _ in range(3):
            await _seed_result(persistence, quest_id="quest-a")
        await _seed_result(persistence, status=ExecutionStatus.failed)

        response = await client.get("/api/v1/agents/agent-1/results", params={"questId": "quest-a", "limit": 2})
        body = response.json()
        assert body["total"] == 3
        assert len(body["results"]) == 2
        assert body["hasMore"] is True

        failed = await client.get("/api/v1/agents/agent-1/results", params={"status": "failed"})
        assert [r["status"] for r in failed.json()["results"]] == ["failed"]

    @pytest.mark.parametrize("limit", [0, 101])
    async def test_limit_bounds(self, client: AsyncClient, limit):
        response = await client.get("/api/v1/agents/agent-1/results", params={"limit": limit})
        assert response.status_code == 422


class TestGetResult:
    async def test_returns_full_result(self, client: AsyncClient, execution_service):
        result = await _seed_result(execution_service.persistence)

        response = await client.get(f"/api/v1/agents/agent-1/results/{result.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["result"] == "Scouted the area."
        assert body["status"] == "completed"
        assert body["completedAt"] is not None
        assert "logs" not in body and "traces" not in body

    async def test_includes_logs_and_traces_of_the_execution(self, client: AsyncClient, execution_service):
        persistence = execution_service.persistence
        result = await _seed_result(persistence, execution_id="exec_42")
        await persistence.save_log("agent-1", "exec_42", LogLevel.info, "Starting")
        await persistence.save_log("agent-1", "exec_other", LogLevel.info, "Elsewhere")
        await persistence.save_trace("agent-1", "exec_42", TraceType.tool_start, "{}", metadata={"tool": "list_files"})

        response = await client.get(
            f"/api/v1/agents/agent-1/results/{result.id}", params={"includeLogs": True, "includeTraces": True}
        )

        body = response.json()
        assert [log["message"] for log in body["logs"]] == ["Starting"]
        assert body["traces"][0]["type"] == "tool_start"
        assert body["traces"][0]["metadata"] == {"tool": "list_files"}

    async def test_unknown_result(self, client: AsyncClient):
        response = await client.get("/api/v1/agents/agent-1/results/nope")
        assert response.status_code == 404

    async def test_result_of_another_agent(self, client: AsyncClient, execution_service):
        result = await _seed_result(execution_service.persistence, agent_id="agent-2")

        response = await client.get(f"/api/v1/agents/agent-1/results/{result.id}")
        assert response.status_code == 403
