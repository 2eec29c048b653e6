"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=3001, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    cors_origins: List[str] = Field(default=["http://localhost:5173"], env="CORS_ORIGINS")

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/automations.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    database_pool_size: int = Field(default=20, env="DATABASE_POOL_SIZE", ge=5, le=100)
    database_max_overflow: int = Field(default=30, env="DATABASE_MAX_OVERFLOW", ge=10, le=100)

    # Basics gateway (email, AI, search, Slack, Gmail)
    basicos_api_url: str = Field(default="https://api.basics.so", env="BASICOS_API_URL")
    action_timeout: float = Field(default=30.0, env="ACTION_TIMEOUT", ge=1.0, le=600.0)
    ai_default_model: str = Field(default="claude-sonnet-4-5-20251001", env="AI_DEFAULT_MODEL")
    ai_agent_default_model: str = Field(default="basics-chat-smart", env="AI_AGENT_DEFAULT_MODEL")

    # Automation Engine
    automation_concurrency: int = Field(default=3, env="AUTOMATION_CONCURRENCY", ge=1, le=64)
    job_max_attempts: int = Field(default=3, env="JOB_MAX_ATTEMPTS", ge=1, le=10)
    job_retry_delay: float = Field(default=1.0, env="JOB_RETRY_DELAY", ge=0.0, le=60.0)
    run_timeout_seconds: float = Field(default=300.0, env="RUN_TIMEOUT_SECONDS", ge=0.0)
    scheduler_timezone: str = Field(default="UTC", env="SCHEDULER_TIMEZONE")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("basicos_api_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def run_timeout(self) -> Optional[float]:
        """Per-run timeout in seconds, None when disabled."""
        return self.run_timeout_seconds or None

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
