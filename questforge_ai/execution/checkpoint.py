"""Checkpoint snapshots: build, record, persist, and resume.

A snapshot grows by one ``ToolOutput`` per completed tool step and is saved
after every step, so a crash loses at most the step in flight. Resuming folds
the saved progress into the first message of the new run instead of replaying
tool calls.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from questforge_ai.core.logging_config import get_logger

from .errors import CheckpointNotFoundError, CheckpointOwnershipError
from .persistence import DEFAULT_MAX_CONTENT_LENGTH, PersistenceService, truncate_content
from .schemas.domain import CheckpointSnapshot, ToolOutput
from .schemas.execution import ResumePlan

logger = get_logger(__name__)

DIGEST_OUTPUT_LENGTH = 100


class CheckpointManager:
    """Owns the snapshot lifecycle of checkpointed runs."""

    def __init__(self, persistence: PersistenceService, *, max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH) -> None:
        self.persistence = persistence
        self.max_content_length = max_content_length

    def build_snapshot(
        self,
        task: str,
        execution_id: str,
        prior: Optional[CheckpointSnapshot] = None,
    ) -> CheckpointSnapshot:
        """
        Start the snapshot of a run.

        Args:
            task: The task text the snapshot belongs to.
            execution_id: The run the snapshot is built for.
            prior: A saved snapshot to continue from (resume). Its step count,
                partial results and tool outputs carry over.

        Returns:
            A new snapshot; ``prior`` is not modified.
        """
        if prior is None:
            return CheckpointSnapshot(task=task, metadata={"executionId": execution_id})
        return CheckpointSnapshot(
            step=prior.step,
            task=prior.task,
            partial_results=list(prior.partial_results),
            tool_outputs=[o.model_copy() for o in prior.tool_outputs],
            agent_state=dict(prior.agent_state),
            metadata={**prior.metadata, "executionId": execution_id, "resumedFromStep": prior.step},
        )

    def record_step(self, snapshot: CheckpointSnapshot, tool_output: ToolOutput) -> CheckpointSnapshot:
        """Append a tool output (output truncated) and advance the step counter."""
        snapshot.tool_outputs.append(
            tool_output.model_copy(update={"output": truncate_content(tool_output.output, self.max_content_length)})
        )
        snapshot.step += 1
        snapshot.timestamp = datetime.now(timezone.utc)
        return snapshot

    def record_partial_result(self, snapshot: CheckpointSnapshot, text: str) -> CheckpointSnapshot:
        text = text.strip()
        if text:
            snapshot.partial_results.append(truncate_content(text, self.max_content_length))
            snapshot.timestamp = datetime.now(timezone.utc)
        return snapshot

    async def persist(
        self,
        agent_id: str,
        checkpoint_id: str,
        thread_id: Optional[str],
        snapshot: CheckpointSnapshot,
    ) -> bool:
        """
        Save the snapshot of a step.

        A failed save is logged and reported as ``False``; losing one per-step
        snapshot only means that step is redone on resume.
        """
        try:
            await self.persistence.save_checkpoint_state(agent_id, checkpoint_id, snapshot, thread_id=thread_id)
            return True
        except Exception as e:
            logger.warning(f"Checkpoint {checkpoint_id} not saved at step {snapshot.step}: {e}")
            return False

    async def load_for_resume(
        self,
        checkpoint_id: str,
        agent_id: str,
        additional_instructions: Optional[str] = None,
    ) -> ResumePlan:
        """
        Load a saved checkpoint and compose the resumed task.

        Raises:
            CheckpointNotFoundError: Nothing was saved for ``checkpoint_id``.
            CheckpointOwnershipError: The checkpoint belongs to another agent.
        """
        state = await self.persistence.get_checkpoint_state(checkpoint_id)
        if state is None:
            raise CheckpointNotFoundError(checkpoint_id)
        if state.agent_id != agent_id:
            raise CheckpointOwnershipError(checkpoint_id, agent_id)

        snapshot = state.state
        logger.info(
            f"Resuming checkpoint {checkpoint_id} for agent {agent_id} from step {snapshot.step} "
            f"({len(snapshot.tool_outputs)} tool outputs)"
        )
        return ResumePlan(
            original_task=snapshot.task,
            task=self.compose_resume_task(snapshot, additional_instructions),
            snapshot=snapshot,
            previous_steps=snapshot.step,
            thread_id=state.thread_id,
        )

    @staticmethod
    def compose_resume_task(snapshot: CheckpointSnapshot, additional_instructions: Optional[str] = None) -> str:
        sections = [snapshot.task]
        if snapshot.partial_results:
            sections.append("Previous progress:\n" + "\n".join(snapshot.partial_results))
        if snapshot.tool_outputs:
            digest = [
                f"- {o.tool_name}: {o.output[:DIGEST_OUTPUT_LENGTH]}..." for o in snapshot.tool_outputs
            ]
            sections.append(f"Previous tool calls ({len(snapshot.tool_outputs)}):\n" + "\n".join(digest))
        if additional_instructions and additional_instructions.strip():
            sections.append(f"Additional instructions: {additional_instructions.strip()}")
        return "\n\n".join(sections)
