"""
Configuration management for the Artifact Approval engine.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = Field(default="Artifact Approval")
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # Database
    database_url: str = Field(default="sqlite:///./artifact_approval.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Pagination
    default_page_size: int = Field(default=10, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    # Workflow policy
    archivable_states: str = Field(
        default="approved",
        description="Comma-separated list of states from which an artifact may be "
        "archived. Only 'approved', 'draft' and 'rejected' are accepted.",
    )
    sla_warning_threshold: int = Field(default=75, ge=0, le=100)

    # Auto-approve defaults for projects without stored settings
    auto_approve_enabled: bool = Field(default=True)
    auto_approve_max_risk: str = Field(default="low")
    auto_approve_min_confidence: float = Field(default=90, ge=0, le=100)


def parse_state_list(raw: str) -> List[str]:
    """
    Parse a comma-separated list of state names.

    Examples:
        "approved,rejected" -> ["approved", "rejected"]
        " approved , draft " -> ["approved", "draft"]
        "" -> []
    """
    if not raw or not raw.strip():
        return []

    states = [state.strip().lower() for state in raw.split(",")]
    return [s for s in states if s]


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
