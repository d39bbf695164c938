"""
Configuration Settings.

This module defines the application configuration using Pydantic's BaseSettings.
It automatically loads all configuration from environment variables and .env file
without explicit dotenv loading.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =====================================================================
# Grouped Configuration Models
# =====================================================================


class ExecutionConfig(BaseModel):
    """Tuning knobs for the execution orchestrator."""

    default_step_budget: int = Field(
        default=100, alias="EXECUTION_STEP_BUDGET", description="Default maximum number of agent steps per run"
    )
    warning_ratio: float = Field(
        default=0.8,
        alias="EXECUTION_WARNING_RATIO",
        description="Fraction of the step budget at which a single warning event is emitted",
    )
    max_retries: int = Field(
        default=2, alias="EXECUTION_MAX_RETRIES", description="Retries of the agent run on transient errors"
    )
    retry_base_delay: float = Field(
        default=1.0, alias="EXECUTION_RETRY_BASE_DELAY", description="First retry delay in seconds"
    )
    retry_max_delay: float = Field(
        default=10.0, alias="EXECUTION_RETRY_MAX_DELAY", description="Upper bound of a single retry delay in seconds"
    )
    max_content_length: int = Field(
        default=1000,
        alias="EXECUTION_MAX_CONTENT_LENGTH",
        description="Truncation length for trace content and checkpointed tool output",
    )
    progress_channel_size: int = Field(
        default=64, alias="EXECUTION_PROGRESS_CHANNEL_SIZE", description="Capacity of the runtime progress channel"
    )
    stream_queue_size: int = Field(
        default=256, alias="EXECUTION_STREAM_QUEUE_SIZE", description="Capacity of the outbound SSE frame queue"
    )
    workspace_root: str = Field(
        default="workspaces", alias="EXECUTION_WORKSPACE_ROOT", description="Root directory of per-agent workspaces"
    )

    model_config = {"populate_by_name": True}


class AgentModelConfig(BaseModel):
    """Model settings of the pydantic-ai backed agent runtime."""

    model: str = Field(
        default="openai:gpt-4o", alias="AGENT_MODEL", description="pydantic-ai model identifier (provider:model)"
    )
    temperature: float = Field(default=0.2, alias="AGENT_TEMPERATURE", description="Sampling temperature")
    system_prompt: Optional[str] = Field(
        default=None, alias="AGENT_SYSTEM_PROMPT", description="Override of the default agent system prompt"
    )

    model_config = {"populate_by_name": True}


class CORSConfig(BaseModel):
    """CORS configuration."""

    origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS", description="Allowed CORS origins (use * for all)")
    allow_credentials: bool = Field(
        default=True, alias="CORS_ALLOW_CREDENTIALS", description="Allow credentials in CORS requests"
    )
    allow_methods: list[str] = Field(
        default=["*"], alias="CORS_ALLOW_METHODS", description="Allowed HTTP methods (use * for all)"
    )
    allow_headers: list[str] = Field(
        default=["*"], alias="CORS_ALLOW_HEADERS", description="Allowed HTTP headers (use * for all)"
    )

    @field_validator("origins", "allow_methods", "allow_headers", mode="before")
    @classmethod
    def _split_csv(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    model_config = {"populate_by_name": True}


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Application settings model.

    All properties are automatically bound from environment variables and .env file.
    Grouped configurations are validated on access from the .env extras and the
    process environment, the environment taking precedence.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
        case_sensitive=True,
    )

    # =====================================================================
    # QuestForge-AI Server Configuration
    # =====================================================================
    server_host: str = Field(
        default="0.0.0.0",
        description="QuestForge-AI server host address to bind to",
        alias="QUESTFORGE_AI_SERVER_HOST",
    )
    server_port: int = Field(
        default=8000,
        description="QuestForge-AI server port number",
        alias="QUESTFORGE_AI_SERVER_PORT",
    )
    log_level: str = Field(
        default="INFO",
        description="QuestForge-AI logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="QUESTFORGE_AI_LOG_LEVEL",
    )
    log_format: str = Field(default="detailed", description="Log line format (simple, detailed, json)", alias="LOG_FORMAT")
    log_file_dir: str = Field(default="logs", description="Directory of the log file", alias="LOG_FILE_DIR")
    enable_file_logging: bool = Field(
        default=False, description="Also write logs to a file", alias="ENABLE_FILE_LOGGING"
    )

    # =====================================================================
    # Database Configuration
    # =====================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./questforge.db",
        description="Async SQLAlchemy connection URL (postgresql+asyncpg or sqlite+aiosqlite)",
        alias="DATABASE_URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements", alias="DATABASE_ECHO")

    def _grouped(self, model_cls):
        return model_cls.model_validate({**self.model_dump(by_alias=True), **os.environ})

    # =====================================================================
    # Computed Properties (Grouped Configurations)
    # =====================================================================

    @property
    def execution(self) -> ExecutionConfig:
        """Get execution tuning from environment variables."""
        return self._grouped(ExecutionConfig)

    @property
    def agent_model(self) -> AgentModelConfig:
        """Get agent model configuration from environment variables."""
        return self._grouped(AgentModelConfig)

    @property
    def cors(self) -> CORSConfig:
        """Get CORS configuration from environment variables."""
        return self._grouped(CORSConfig)


settings = Settings()
