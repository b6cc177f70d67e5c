from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "logpipe"
    db_username: str = "logpipe"
    db_password: str = "secret"

    staging_root: str = "/app/staging"
    staging_file_prefix: str = "events"
    stage_batch_size: int = Field(default=1000, ge=1)

    loader_max_workers: int = Field(default=4, ge=1)
    max_file_attempts: int = Field(default=3, ge=1)
    curation_batch_size: int = Field(default=500, ge=1)
    poll_interval_seconds: int = 5

    ai_provider: str = "openai"
    ai_api_key: str = ""
    ai_model_name: str = ""
    ai_base_url: str = ""
    ai_timeout_seconds: int = 30
    ai_temperature: float = 0.0
    ai_max_workers: int = Field(default=4, ge=1)
    ai_call_timeout_seconds: float = Field(default=45.0, gt=0)
    ai_max_attempts: int = Field(default=3, ge=1)
    ai_backoff_initial_seconds: float = 0.5
    ai_backoff_max_seconds: float = 8.0
    ai_summary_chunk_chars: int = Field(default=12000, ge=200)
