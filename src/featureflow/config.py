"""Service configuration using pydantic-settings.

This module defines the FeatureFlowSettings class that reads configuration
from environment variables with the FEATUREFLOW_ prefix. Required fields
must be set for the service to start.
"""

from pathlib import Path
from typing import Dict, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_REPOSITORIES: Dict[str, str] = {
    "gisbot": "/app/mnt/repos/gisbot",
    "gembot": "/app/mnt/repos/GemBot",
}


class FeatureFlowSettings(BaseSettings):
    """Feature request workflow configuration from environment variables.

    All environment variables are prefixed with FEATUREFLOW_
    (e.g., FEATUREFLOW_SLACK_BOT_TOKEN).

    Required fields:
    - slack_bot_token: Bot token used for chat.postMessage and users.info
    - database_url: PostgreSQL connection string for the durable store
    """

    model_config = SettingsConfigDict(
        env_prefix="FEATUREFLOW_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Slack Configuration
    # -------------------------------------------------------------------------
    slack_bot_token: str

    # Signing secret for verifying Events API requests; unset skips the check
    slack_signing_secret: Optional[str] = None

    # Bot user id, used to drop plain messages that are also delivered as
    # app_mention events
    slack_bot_user_id: Optional[str] = None

    slack_base_url: str = "https://slack.com/api"

    # Mention text that starts a new workflow
    trigger_phrase: str = "feature request"

    # -------------------------------------------------------------------------
    # Repositories
    # -------------------------------------------------------------------------
    # JSON object of repository name to checkout path
    repositories: Dict[str, str] = DEFAULT_REPOSITORIES

    # -------------------------------------------------------------------------
    # External Commands
    # -------------------------------------------------------------------------
    agent_command: str = "gemini"

    gh_cli_path: str = "gh"

    pr_poll_interval_seconds: int = 300

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    database_url: str

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("slack_bot_token")
    @classmethod
    def validate_bot_token(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("slack_bot_token cannot be empty")
        return v

    @field_validator("trigger_phrase")
    @classmethod
    def validate_trigger_phrase(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("trigger_phrase cannot be empty")
        return v.strip().lower()

    @field_validator("repositories")
    @classmethod
    def validate_repositories(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Normalize names to lower case and require absolute paths."""
        if not v:
            raise ValueError("repositories cannot be empty")
        normalized = {}
        for name, path in v.items():
            key = name.strip().lower()
            if not key:
                raise ValueError("repository names cannot be empty")
            if key in normalized:
                raise ValueError(f"duplicate repository name: {key}")
            if not Path(path).is_absolute():
                raise ValueError(f"repository path for {key} must be absolute")
            normalized[key] = path
        return normalized

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("database_url cannot be empty")
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with postgresql:// or postgres://"
            )
        return v

    @field_validator("pr_poll_interval_seconds")
    @classmethod
    def validate_poll_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("pr_poll_interval_seconds must be at least 1")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v


def get_settings() -> FeatureFlowSettings:
    """Create and return a FeatureFlowSettings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return FeatureFlowSettings()
