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
    app_name: str = Field(default="helpdesk-sla", description="Application name")
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

    # ========== SLA Engine ==========
    sla_sweep_interval_seconds: int = Field(
        default=120,
        description="Seconds between SLA sweeps (0 disables the scheduler)",
        ge=0
    )
    sla_sweep_concurrency: int = Field(
        default=4,
        description="Timers recomputed in parallel during a sweep",
        ge=1,
        le=64
    )
    sla_notification_min_interval_minutes: int = Field(
        default=60,
        description="Minimum minutes between at-risk notifications for one ticket/metric",
        ge=0
    )
    sla_admin_user_ids: List[str] = Field(
        default_factory=list,
        description="Users notified when a ticket is unassigned or breached"
    )
    sla_policy_file: Path = Field(
        default=Path("sla_policies.yaml"),
        description="YAML file with SLA policies synced on startup"
    )
    sla_policy_watch: bool = Field(
        default=True,
        description="Reload the policy file when it changes"
    )

    # ========== Dispatch ==========
    notification_service_url: Optional[str] = Field(
        default=None,
        description="Endpoint receiving user notifications"
    )
    webhook_service_url: Optional[str] = Field(
        default=None,
        description="Endpoint receiving outbound webhook events"
    )
    dispatch_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification/webhook calls",
        ge=0.1,
        le=30
    )
    dispatch_max_retries: int = Field(
        default=3,
        description="Attempts per notification/webhook call",
        ge=1,
        le=10
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
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
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str):
    """Ticket lifecycle statuses as reported by the workflow layer."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    WAITING = "waiting"
    ON_HOLD = "on_hold"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REOPENED = "reopened"


class SLAMetric(str):
    """Types of SLA clocks."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class TimerStatus(str):
    """SLA timer states."""
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RiskLevel(str):
    """How close a timer is to its target."""
    NONE = "none"
    LEVEL1 = "level1"
    LEVEL2 = "level2"
    BREACHED = "breached"


class WebhookEvent(str):
    """Outbound webhook event names."""
    AT_RISK = "sla.at_risk"
    BREACHED = "sla.breached"


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.LOW, Priority.MEDIUM,
    Priority.HIGH, Priority.URGENT
]
VALID_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS,
    TicketStatus.PENDING, TicketStatus.WAITING, TicketStatus.ON_HOLD,
    TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.REOPENED
]
TERMINAL_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
WAITING_STATUSES = [TicketStatus.PENDING, TicketStatus.WAITING]
VALID_METRICS = [SLAMetric.RESPONSE, SLAMetric.RESOLUTION]
ACTIVE_TIMER_STATUSES = [TimerStatus.RUNNING, TimerStatus.PAUSED]
TERMINAL_TIMER_STATUSES = [TimerStatus.COMPLETED, TimerStatus.CANCELLED]

# Ordered from least to most severe
RISK_LEVELS = [RiskLevel.NONE, RiskLevel.LEVEL1, RiskLevel.LEVEL2, RiskLevel.BREACHED]
ESCALATION_LEVELS = [RiskLevel.LEVEL1, RiskLevel.LEVEL2, RiskLevel.BREACHED]
