"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-triage", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Triage Decision ==========
    auto_close_enabled: bool = Field(
        default=True,
        description="Allow high-confidence tickets to be resolved without review"
    )
    confidence_threshold: float = Field(
        default=0.8,
        description="Minimum classification confidence for auto-close",
        ge=0.0,
        le=1.0
    )
    triage_config_path: Path = Field(
        default=Path("triage_config.yaml"),
        description="Path to the hot-reloadable triage decision config"
    )
    triage_config_cache_ttl_seconds: float = Field(
        default=10.0,
        description="Max staleness of cached triage decision config",
        ge=0.0
    )

    # ========== Triage Workflow ==========
    kb_top_k: int = Field(
        default=3,
        description="Number of knowledge base articles retrieved per ticket",
        ge=1,
        le=20
    )
    triage_run_timeout_seconds: float = Field(
        default=60.0,
        description="Upper bound on the wall-clock time of one triage run",
        gt=0
    )
    triage_sweep_interval_seconds: int = Field(
        default=0,
        description="Seconds between sweeps for untriaged open tickets (0 disables)",
        ge=0
    )
    triage_batch_size: int = Field(
        default=5,
        description="Tickets triaged concurrently per batch",
        ge=1
    )

    # ========== Text Generation ==========
    llm_provider: str = Field(
        default="stub",
        description="Text generation provider: 'stub' (offline heuristics) or 'llm'"
    )
    stub_mode: bool = Field(
        default=False,
        description="Force the offline provider regardless of llm_provider"
    )
    llm_backend: str = Field(
        default="zai",
        description="Chat completion backend for the 'llm' provider: zai, openai or groq"
    )
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key for GLM")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    groq_api_key: Optional[str] = Field(default=None, description="Groq API key")
    llm_model: str = Field(
        default="glm-4.7",
        description="Model used for classification and drafting"
    )
    llm_temperature: float = Field(
        default=0.3,
        description="Default temperature for LLM",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=1000,
        description="Default max tokens for LLM generation",
        ge=1,
        le=8000
    )
    prompt_version: str = Field(default="v1", description="Prompt template version")

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook that relays user notifications (log-only when unset)"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Ensure provider is one of the two supported variants."""
        v = v.lower()
        if v not in {"stub", "llm"}:
            raise ValueError("llm_provider must be 'stub' or 'llm'")
        return v

    @field_validator("llm_backend")
    @classmethod
    def validate_llm_backend(cls, v: str) -> str:
        """Ensure backend is a supported chat completion API."""
        v = v.lower()
        if v not in {"zai", "openai", "groq"}:
            raise ValueError("llm_backend must be one of zai, openai, groq")
        return v

    @property
    def use_stub_provider(self) -> bool:
        """True when the offline provider is selected."""
        return self.stub_mode or self.llm_provider == "stub"


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketCategory(str):
    """Categories a ticket can be triaged into."""
    BILLING = "billing"
    TECH = "tech"
    SHIPPING = "shipping"
    OTHER = "other"


class TicketStatus(str):
    """Ticket lifecycle statuses, in forward order."""
    OPEN = "open"
    TRIAGED = "triaged"
    WAITING_HUMAN = "waiting_human"
    RESOLVED = "resolved"
    CLOSED = "closed"


class AuthorType(str):
    """Who wrote a ticket reply."""
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class ActorType(str):
    """Who performed an audited action."""
    SYSTEM = "system"
    AGENT = "agent"
    USER = "user"


class ArticleStatus(str):
    """Knowledge base article publication states."""
    DRAFT = "draft"
    PUBLISHED = "published"


class NotificationEvent(str):
    """Events pushed to users by the triage workflow."""
    TICKET_STATUS = "ticket_status"
    TICKET_ASSIGNED = "ticket_assigned"


# ========== Lists for validation ==========

VALID_CATEGORIES = [
    TicketCategory.BILLING, TicketCategory.TECH,
    TicketCategory.SHIPPING, TicketCategory.OTHER
]
# Index is the forward rank used for transition checks.
STATUS_ORDER = [
    TicketStatus.OPEN, TicketStatus.TRIAGED, TicketStatus.WAITING_HUMAN,
    TicketStatus.RESOLVED, TicketStatus.CLOSED
]
