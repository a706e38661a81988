"""Bot configuration using pydantic-settings.

This module defines the AutoPRSettings class that reads configuration from
environment variables. Variable names carry no prefix so that values injected
by the hosting platform (GITHUB_TOKEN, OPENAI_API_KEY, STATUS_TABLE_NAME,
AWS_LAMBDA_FUNCTION_NAME) map directly onto fields.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_STATUS_TABLE_NAME = "auto-pr-bot-status"


class DispatchMode(str, Enum):
    """How the accept phase hands a task to the process phase.

    Attributes:
        BACKGROUND: Run the pipeline as an asyncio task in this process.
        LAMBDA: Re-invoke the hosting Lambda function asynchronously.
    """

    BACKGROUND = "background"
    LAMBDA = "lambda"


class AutoPRSettings(BaseSettings):
    """Auto PR Bot configuration from environment variables.

    Required fields (must be set via environment variables):
    - github_token: Token for the bot account that owns the forks
    - openai_api_key: API key for the language-model service
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    github_token: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    github_timeout_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    openai_api_key: str

    llm_model: str = "gpt-5-mini"

    # Optional OpenAI-compatible endpoint; None targets api.openai.com
    llm_base_url: Optional[str] = None

    llm_timeout_seconds: float = 60.0

    llm_max_attempts: int = 3

    # -------------------------------------------------------------------------
    # Storage Configuration
    # -------------------------------------------------------------------------
    status_table_name: str = DEFAULT_STATUS_TABLE_NAME

    aws_region: Optional[str] = None

    # -------------------------------------------------------------------------
    # Dispatch Configuration
    # -------------------------------------------------------------------------
    # Set by the Lambda runtime; used to self-trigger the process phase
    aws_lambda_function_name: Optional[str] = None

    dispatch_mode: Optional[DispatchMode] = None

    # In-flight limit for background dispatch
    max_concurrent_runs: int = 4

    rate_limit_per_hour: int = 5

    # -------------------------------------------------------------------------
    # Workspace Configuration
    # -------------------------------------------------------------------------
    workspace_base_path: str = "/tmp"

    # Age after which a leftover workspace from a crashed run is swept
    workspace_retention_hours: int = 6

    git_author_name: str = "Auto PR Bot"

    git_author_email: str = "auto-pr-bot@users.noreply.github.com"

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    server_host: str = "0.0.0.0"

    server_port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_token")
    @classmethod
    def validate_github_token(cls, v: str) -> str:
        """Validate that GitHub token is not empty."""
        if not v or not v.strip():
            raise ValueError("github_token cannot be empty")
        return v

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, v: str) -> str:
        """Validate that the LLM API key is not empty."""
        if not v or not v.strip():
            raise ValueError("openai_api_key cannot be empty")
        return v

    @field_validator("status_table_name")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        """Fall back to the default table when the variable is blank."""
        if not v or not v.strip():
            return DEFAULT_STATUS_TABLE_NAME
        return v

    @field_validator("llm_base_url")
    @classmethod
    def validate_llm_base_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that a custom LLM URL is an http(s) URL."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("llm_base_url must start with http:// or https://")
        return v

    @field_validator("workspace_base_path")
    @classmethod
    def validate_workspace_path(cls, v: str) -> str:
        """Validate that workspace base path is an absolute path."""
        if not Path(v).is_absolute():
            raise ValueError("workspace_base_path must be an absolute path")
        return v

    @field_validator(
        "llm_max_attempts",
        "max_concurrent_runs",
        "rate_limit_per_hour",
        "workspace_retention_hours",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that counters and limits are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("server_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @model_validator(mode="after")
    def resolve_dispatch_mode(self) -> "AutoPRSettings":
        """Default to Lambda dispatch when running inside Lambda."""
        if self.dispatch_mode is None:
            self.dispatch_mode = (
                DispatchMode.LAMBDA
                if self.aws_lambda_function_name
                else DispatchMode.BACKGROUND
            )
        if (
            self.dispatch_mode == DispatchMode.LAMBDA
            and not self.aws_lambda_function_name
        ):
            raise ValueError(
                "aws_lambda_function_name is required for lambda dispatch"
            )
        return self


def get_settings() -> AutoPRSettings:
    """Create and return an AutoPRSettings instance.

    Returns:
        AutoPRSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return AutoPRSettings()
