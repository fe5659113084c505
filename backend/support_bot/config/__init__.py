"""
Application configuration.
Loads settings from environment variables and an optional .env file.

Version: 1.0.0
"""
import logging
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_KNOWLEDGE_BASE_PATH = str(
    Path(__file__).resolve().parent.parent / "data" / "knowledge_base.md"
)


class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class StateStoreType(str, Enum):
    """Chat state store backend."""
    IN_MEMORY = "in_memory"
    REDIS = "redis"


class Settings(BaseSettings):
    """
    Application settings.

    Secrets for the chat platform and the LLM live in
    ``config.integration_settings`` so they can be loaded from
    indirect sources; everything else is configured here.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================
    # Application
    # ===========================

    app_name: str = Field(default="PM-Next Support Bot")
    app_version: str = Field(default="1.0.0")
    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # ===========================
    # API
    # ===========================

    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_workers: int = Field(default=1, ge=1)
    cors_origins: Union[List[str], str] = Field(default_factory=lambda: ["*"])
    cors_allow_credentials: bool = Field(default=False)
    enable_telemetry: bool = Field(
        default=True,
        description="Expose Prometheus metrics on /metrics"
    )

    # ===========================
    # Database
    # ===========================

    database_url: str = Field(default="sqlite:///./data/support_bot.db")
    database_echo: bool = Field(default=False)
    database_pool_size: int = Field(default=5, ge=1)
    database_pool_overflow: int = Field(default=10, ge=0)
    database_pool_timeout: int = Field(default=30, ge=1)
    database_pool_recycle: int = Field(default=3600, ge=60)

    # ===========================
    # Chat State
    # ===========================

    state_store_type: StateStoreType = Field(default=StateStoreType.IN_MEMORY)
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_state_key_prefix: str = Field(default="chat_state:")
    state_max_chats: int = Field(default=10000, ge=10)
    chat_state_ttl_seconds: int = Field(
        default=86400,
        ge=60,
        description="Idle chats are forgotten after this many seconds"
    )
    state_cleanup_interval_seconds: int = Field(default=300, ge=10)
    menu_timeout_seconds: int = Field(
        default=600,
        ge=10,
        description="Pending menu selections older than this are ignored"
    )
    context_max_turns: int = Field(default=20, ge=2, le=200)
    context_history_turns: int = Field(
        default=6,
        ge=0,
        description="Context turns sent to the LLM with each question"
    )
    dedupe_max_events: int = Field(default=1000, ge=10)
    dedupe_trim_to: int = Field(default=500, ge=1)

    # ===========================
    # Knowledge
    # ===========================

    knowledge_base_path: str = Field(default=DEFAULT_KNOWLEDGE_BASE_PATH)
    response_cache_ttl_seconds: int = Field(default=86400, ge=1)
    knowledge_confidence_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    ticket_lookback_days: int = Field(
        default=7,
        ge=1,
        description="Thread replies fall back to the chat's newest open ticket within this window"
    )

    # ===========================
    # Support contacts
    # ===========================

    support_email: str = Field(default="support@pm-next.com")
    support_chat_link: str = Field(
        default=(
            "https://applink.larksuite.com/client/chat/chatter/add_by_link"
            "?link_token=3ddsabad-9efa-4856-ad86-a3974dk05ek2"
        )
    )

    # ===========================
    # Validators
    # ===========================

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v):
        """Accept common spellings such as 'prod' or 'dev'."""
        if isinstance(v, str):
            aliases = {"prod": "production", "dev": "development", "test": "testing"}
            v = v.strip().lower()
            return aliases.get(v, v)
        return v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse comma-separated origins."""
        if isinstance(v, str):
            if v.startswith("["):
                import json
                return json.loads(v)
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_dedupe_bounds(self) -> "Settings":
        if self.dedupe_trim_to > self.dedupe_max_events:
            raise ValueError("dedupe_trim_to must not exceed dedupe_max_events")
        return self

    # ===========================
    # Helpers
    # ===========================

    @property
    def database_is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def database_is_postgresql(self) -> bool:
        return self.database_url.startswith(("postgresql", "postgres"))

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def version(self) -> str:
        return self.app_version


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

__all__ = [
    'Settings',
    'Environment',
    'StateStoreType',
    'get_settings',
    'settings',
]
