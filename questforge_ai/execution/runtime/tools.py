"""Workspace tools for agent runs.

Every agent gets its own workspace directory that persists across its
checkpoints, so files written in one checkpoint are still there in the next.
Paths given to the tools are resolved inside that directory; anything that
would escape it is rejected.

Handlers never raise on tool failures: they return an output model with
``success=False`` and an error message, which the model sees as the tool
result.
"""

import asyncio
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from questforge_ai.core.logging_config import get_logger

logger = get_logger(__name__)

InputType = TypeVar("InputType")
OutputType = TypeVar("OutputType")


class FileReadInput(BaseModel):
    path: str = Field(..., description="File path relative to the workspace")
    encoding: str = Field(default="utf-8", description="File encoding (default: utf-8)")


class FileReadOutput(BaseModel):
    success: bool = Field(..., description="Whether the operation succeeded")
    path: str = Field(..., description="Path of the file read")
    content: Optional[str] = Field(None, description="File content if successful")
    size_bytes: Optional[int] = Field(None, description="Size of file in bytes")
    error: Optional[str] = Field(None, description="Error message if failed")


class FileWriteInput(BaseModel):
    path: str = Field(..., description="File path relative to the workspace")
    content: str = Field(..., description="Content to write to the file")
    encoding: str = Field(default="utf-8", description="File encoding (default: utf-8)")


class FileWriteOutput(BaseModel):
    success: bool = Field(..., description="Whether the operation succeeded")
    path: str = Field(..., description="Path of the file written")
    bytes_written: Optional[int] = Field(None, description="Number of characters written")
    error: Optional[str] = Field(None, description="Error message if failed")


class ListFilesInput(BaseModel):
    path: str = Field(default=".", description="Directory relative to the workspace")


class ListFilesOutput(BaseModel):
    success: bool = Field(..., description="Whether the operation succeeded")
    path: str = Field(..., description="Directory listed")
    entries: List[str] = Field(default_factory=list, description="Entries; directories end with '/'")
    error: Optional[str] = Field(None, description="Error message if failed")


class CommandRunInput(BaseModel):
    command: str = Field(..., description="Shell command to run inside the workspace")
    timeout: float = Field(default=60.0, description="Timeout in seconds (default: 60)")


class CommandRunOutput(BaseModel):
    success: bool = Field(..., description="Whether the command exited with status 0")
    command: str = Field(..., description="Command that was executed")
    exit_code: Optional[int] = Field(None, description="Command exit code")
    stdout: Optional[str] = Field(None, description="Standard output")
    stderr: Optional[str] = Field(None, description="Standard error")
    error: Optional[str] = Field(None, description="Error message if execution failed")
    duration_seconds: Optional[float] = Field(None, description="Execution duration in seconds")


class Workspace:
    """A directory an agent's tools are confined to."""

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    @classmethod
    def for_agent(cls, base_dir: str, agent_id: str) -> "Workspace":
        safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", agent_id) or "agent"
        workspace = cls(Path(base_dir) / safe_id)
        workspace.root.mkdir(parents=True, exist_ok=True)
        return workspace

    def resolve(self, path: str) -> Path:
        """Resolve ``path`` inside the workspace.

        Raises:
            ValueError: The path points outside the workspace.
        """
        candidate = (self.root / path).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValueError(f"Path escapes the workspace: {path}")
        return candidate

    def relative(self, path: Path) -> str:
        return str(path.relative_to(self.root)) if path != self.root else "."


class ToolHandler(ABC, Generic[InputType, OutputType]):
    """Abstract base class for workspace tool handlers."""

    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name exposed to the model."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description exposed to the model."""

    @abstractmethod
    async def execute(self, input_data: InputType) -> OutputType:
        """Execute the tool operation."""

    async def __call__(self, input_data: InputType) -> OutputType:
        return await self.execute(input_data)


class FileReadHandler(ToolHandler[FileReadInput, FileReadOutput]):
    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read a text file from the workspace."

    async def execute(self, input_data: FileReadInput) -> FileReadOutput:
        try:
            file_path = self.workspace.resolve(input_data.path)
            if not file_path.exists():
                return FileReadOutput(success=False, path=input_data.path, error=f"File not found: {input_data.path}")
            if not file_path.is_file():
                return FileReadOutput(success=False, path=input_data.path, error=f"Path is not a file: {input_data.path}")

            content = file_path.read_text(encoding=input_data.encoding)
            size_bytes = file_path.stat().st_size
            logger.debug(f"Read {file_path} ({size_bytes} bytes)")
            return FileReadOutput(success=True, path=input_data.path, content=content, size_bytes=size_bytes)
        except Exception as e:
            error_msg = f"Error reading file {input_data.path}: {e}"
            logger.warning(error_msg)
            return FileReadOutput(success=False, path=input_data.path, error=error_msg)


class FileWriteHandler(ToolHandler[FileWriteInput, FileWriteOutput]):
    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write a text file in the workspace, creating parent directories as needed."

    async def execute(self, input_data: FileWriteInput) -> FileWriteOutput:
        try:
            file_path = self.workspace.resolve(input_data.path)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            written = file_path.write_text(input_data.content, encoding=input_data.encoding)
            logger.debug(f"Wrote {file_path} ({written} chars)")
            return FileWriteOutput(success=True, path=input_data.path, bytes_written=written)
        except Exception as e:
            error_msg = f"Error writing file {input_data.path}: {e}"
            logger.warning(error_msg)
            return FileWriteOutput(success=False, path=input_data.path, error=error_msg)


class ListFilesHandler(ToolHandler[ListFilesInput, ListFilesOutput]):
    @property
    def name(self) -> str:
        return "list_files"

    @property
    def description(self) -> str:
        return "List the files in a workspace directory."

    async def execute(self, input_data: ListFilesInput) -> ListFilesOutput:
        try:
            directory = self.workspace.resolve(input_data.path)
            if not directory.is_dir():
                return ListFilesOutput(success=False, path=input_data.path, error=f"Not a directory: {input_data.path}")
            entries = sorted(p.name + ("/" if p.is_dir() else "") for p in directory.iterdir())
            return ListFilesOutput(success=True, path=input_data.path, entries=entries)
        except Exception as e:
            error_msg = f"Error listing {input_data.path}: {e}"
            logger.warning(error_msg)
            return ListFilesOutput(success=False, path=input_data.path, error=error_msg)


class CommandRunHandler(ToolHandler[CommandRunInput, CommandRunOutput]):
    @property
    def name(self) -> str:
        return "run_command"

    @property
    def description(self) -> str:
        return "Run a shell command with the workspace as working directory."

    async def execute(self, input_data: CommandRunInput) -> CommandRunOutput:
        start_time = time.time()
        cmd = input_data.command
        try:
            logger.info(f"Executing command: {cmd} (cwd={self.workspace.root})")
            process = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.workspace.root),
            )
            try:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=input_data.timeout)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                error_msg = f"Command execution timeout after {input_data.timeout} seconds"
                logger.warning(error_msg)
                return CommandRunOutput(
                    success=False, command=cmd, error=error_msg, duration_seconds=time.time() - start_time
                )

            stdout = stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""
            stderr = stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else ""
            duration = time.time() - start_time
            logger.info(f"Command completed with exit code {process.returncode} (duration: {duration:.2f}s)")
            return CommandRunOutput(
                success=process.returncode == 0,
                command=cmd,
                exit_code=process.returncode,
                stdout=stdout or None,
                stderr=stderr or None,
                duration_seconds=duration,
            )
        except Exception as e:
            error_msg = f"Error executing command: {e}"
            logger.warning(error_msg)
            return CommandRunOutput(
                success=False, command=cmd, error=error_msg, duration_seconds=time.time() - start_time
            )


def build_workspace_tools(workspace: Workspace) -> List[ToolHandler[Any, Any]]:
    return [
        FileReadHandler(workspace),
        FileWriteHandler(workspace),
        ListFilesHandler(workspace),
        CommandRunHandler(workspace),
    ]
