"""
Execution Service.

Builds the process-wide orchestrator: SQL repositories over the global session
factory, the persistence service, the checkpoint manager, the pydantic-ai
runtime and the registry of in-flight executions.
"""

from __future__ import annotations

from typing import Optional

from questforge_ai.core.logging_config import get_logger
from questforge_ai.execution.checkpoint import CheckpointManager
from questforge_ai.execution.orchestrator import (
    ExecutionOrchestrator,
    OrchestratorConfig,
    OrchestratorDeps,
)
from questforge_ai.execution.persistence import PersistenceService
from questforge_ai.execution.registry import ExecutionRegistry
from questforge_ai.execution.repos.sql import build_sql_repos
from questforge_ai.execution.runtime.pydantic_ai import PydanticAIRuntime
from questforge_ai.server.core.config import settings
from questforge_ai.server.core.database import async_session_maker

logger = get_logger(__name__)


class ExecutionService:
    """Holds the shared orchestrator and the collaborators the API reads from."""

    def __init__(self) -> None:
        execution_cfg = settings.execution
        model_cfg = settings.agent_model

        self.persistence = PersistenceService.from_bundle(
            build_sql_repos(session_factory=async_session_maker),
            max_content_length=execution_cfg.max_content_length,
        )
        self.registry = ExecutionRegistry()
        self.runtime = PydanticAIRuntime(
            model_cfg.model,
            system_prompt=model_cfg.system_prompt,
            temperature=model_cfg.temperature,
            workspace_root=execution_cfg.workspace_root,
        )
        self.orchestrator = ExecutionOrchestrator(
            deps=OrchestratorDeps(
                persistence=self.persistence,
                runtime=self.runtime,
                checkpoints=CheckpointManager(
                    self.persistence, max_content_length=execution_cfg.max_content_length
                ),
                registry=self.registry,
            ),
            config=OrchestratorConfig.from_settings(execution_cfg),
        )
        self.stream_queue_size = execution_cfg.stream_queue_size
        logger.info(f"Execution service ready (model={model_cfg.model}, step budget={execution_cfg.default_step_budget})")


_execution_service: Optional[ExecutionService] = None


def get_execution_service() -> ExecutionService:
    global _execution_service
    if _execution_service is None:
        _execution_service = ExecutionService()
    return _execution_service
