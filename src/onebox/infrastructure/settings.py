"""Application settings using Pydantic Settings for configuration management."""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from onebox.domain.models import EmailAccount


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Onebox Sync"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    app_base_url: str | None = None

    # Mailboxes (JSON list)
    email_accounts: list[EmailAccount] = Field(default_factory=list)

    # IMAP synchronization
    imap_initial_sync_limit: int = Field(default=10, ge=1)
    imap_keepalive_interval_seconds: float = Field(default=29 * 60, gt=0)
    imap_idle_poll_seconds: float = Field(default=5.0, gt=0)
    imap_timeout_seconds: float = Field(default=30.0, gt=0)
    imap_reconnect_base_delay_seconds: float = Field(default=5.0, gt=0)
    imap_reconnect_max_delay_seconds: float = Field(default=60.0, gt=0)
    imap_max_reconnect_attempts: int = Field(default=10, ge=0)

    # Pipeline
    pipeline_max_concurrency: int = Field(default=5, ge=1)
    shutdown_drain_timeout_seconds: float = Field(default=10.0, ge=0)
    dedup_fail_open: bool = False

    # Durable index
    sqlite_db_path: str = "data/onebox.db"

    # LLM Configuration
    llm_provider: Literal["groq", "openai", "anthropic", "local", "none"] = "groq"
    llm_model: str | None = None
    groq_api_key: SecretStr | None = None
    openai_api_key: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None
    vllm_base_url: str = "http://localhost:8000/v1"
    vllm_model_name: str = "gpt-oss-20b"
    classification_timeout_seconds: float = Field(default=30.0, gt=0)
    classification_body_limit: int = Field(default=4000, ge=0)
    reply_timeout_seconds: float = Field(default=60.0, gt=0)
    reply_max_tokens: int = Field(default=512, ge=1)

    # Webhooks
    webhook_slack_url: str | None = None
    webhook_generic_url: str | None = None
    webhook_interested_urls: Annotated[list[str], NoDecode] = Field(default_factory=list)
    webhook_timeout_seconds: float = Field(default=5.0, gt=0)

    @field_validator("webhook_interested_urls", mode="before")
    @classmethod
    def _split_urls(cls, v):
        if isinstance(v, str):
            return [u.strip() for u in v.split(",") if u.strip()]
        return v

    @model_validator(mode="after")
    def _unique_account_ids(self) -> "Settings":
        ids = [a.id for a in self.email_accounts]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"Duplicate account ids in EMAIL_ACCOUNTS: {dupes}")
        return self

    @computed_field
    @property
    def base_url(self) -> str:
        """Base for deep links into the web UI."""
        return (self.app_base_url or f"http://localhost:{self.api_port}").rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
