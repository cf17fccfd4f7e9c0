from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Current"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./current.db"

    # Slack (defaults used when a connect request carries no tokens)
    slack_bot_token: str = ""
    slack_app_token: str = ""

    # GitHub knowledge base (destination store)
    github_token: str = ""
    github_repo_owner: str = ""
    github_repo_name: str = ""
    github_default_branch: str = "main"

    # LLM (Extractor / Validator via gen_ai_hub proxy)
    # No API key needed - uses gen_ai_hub proxy
    extractor_model: str = "gpt-5"
    validator_model: str = "gpt-5"
    temperature: float = 0.0
    ai_timeout_seconds: float = 60.0

    # Job queue
    worker_count: int = 5
    lease_batch_size: int = 1
    lease_seconds: int = 300
    job_timeout_seconds: float = 240.0  # Must stay below lease_seconds
    max_attempts: int = 5
    retry_base_seconds: float = 1.0
    retry_cap_seconds: float = 300.0
    max_jobs_per_team: int = 2
    poll_interval_seconds: float = 1.0
    completed_job_retention_days: int = 7
    housekeeping_interval_seconds: float = 3600.0

    # Connections
    reconnect_base_seconds: float = 1.0
    reconnect_cap_seconds: float = 300.0
    max_reconnect_attempts: int = 10
    idle_after_seconds: float = 3600.0
    staged_startup_batch: int = 5
    staged_startup_delay_seconds: float = 2.0

    # Pipeline
    dedup_window_hours: int = 72
    default_suggestions_limit: int = 20
    min_event_length: int = 20
    auto_approve_threshold: Optional[int] = None  # Disabled unless configured

    # Processing Configuration
    dry_run: bool = False  # Write approved content to an in-memory store

    model_config = ConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
