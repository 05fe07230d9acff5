"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="civic-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/issues",
        description="Issue store connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Policy ==========
    sla_policy_path: Path = Field(
        default=Path("sla_policy.yaml"),
        description="Path to SLA policy table YAML file"
    )
    sla_policy_hot_reload: bool = Field(
        default=False,
        description="Watch the policy file and reload it on change"
    )

    # ========== Escalation Monitor ==========
    sla_sweep_interval_seconds: int = Field(
        default=60,
        description="Seconds between escalation sweeps (0 disables the scheduler)",
        ge=0
    )
    sla_warning_cooldown_hours: float = Field(
        default=4.0,
        description="Minimum hours between warning notifications per issue",
        gt=0
    )
    sla_critical_warning_cooldown_hours: float = Field(
        default=4.0,
        description="Minimum hours between critical-priority warnings per issue",
        gt=0
    )
    sla_reminder_cooldown_hours: float = Field(
        default=1.0,
        description="Minimum hours between breach reminders per issue",
        gt=0
    )
    sla_store_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single issue store call",
        gt=0
    )
    sla_dispatch_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single notification dispatch",
        gt=0
    )
    sla_transition_max_retries: int = Field(
        default=3,
        description="Attempts for the escalation status write",
        ge=1
    )
    sla_retry_base_delay_seconds: float = Field(
        default=0.5,
        description="Base delay of the exponential backoff between write attempts",
        ge=0
    )
    sla_store_alert_after_sweeps: int = Field(
        default=3,
        description="Consecutive failed sweeps before the store is reported degraded",
        ge=1
    )
    sla_max_concurrency: int = Field(
        default=10,
        description="Issues evaluated in parallel within one sweep",
        ge=1
    )
    sla_auto_escalation: bool = Field(
        default=True,
        description="Move breached issues to escalated automatically; when off, breaches only trigger reminders"
    )

    # ========== Notification Dispatch ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL receiving SLA notifications"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )
    notification_max_retries: int = Field(
        default=3,
        description="Webhook delivery attempts per notification",
        ge=1
    )
    issue_url_template: str = Field(
        default="https://city.example.gov/issues/{issue_id}",
        description="Link to an issue included in notifications"
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
        allowed = {"development", "staging", "production", "test"}
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

class IssueCategory(str, Enum):
    """Municipal issue categories."""
    POTHOLE = "pothole"
    STREET_LIGHT = "street_light"
    WATER_LEAK = "water_leak"
    TRAFFIC_SIGNAL = "traffic_signal"
    SIDEWALK = "sidewalk"
    DRAINAGE = "drainage"
    DEBRIS = "debris"
    OTHER = "other"


class IssuePriority(str, Enum):
    """Issue priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IssueStatus(str, Enum):
    """Issue lifecycle statuses."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    CLOSED = "closed"


class SLAStatus(str, Enum):
    """Live SLA classification of an issue."""
    COMPLIANT = "compliant"
    WARNING = "warning"
    CRITICAL = "critical"
    BREACHED = "breached"
    SETTLED = "settled"


class NotificationKind(str, Enum):
    """Outbound notification kinds emitted by the escalation monitor."""
    WARNING = "warning"
    CRITICAL_WARNING = "critical_warning"
    ESCALATION = "escalation"
    REMINDER = "reminder"


class RecipientRole(str, Enum):
    """Roles that receive SLA notifications."""
    FIELD_SUPERVISOR = "field_supervisor"
    CITY_ENGINEER = "city_engineer"
    SUPER_ADMIN = "super_admin"
    AUDITOR = "auditor"


# ========== Status groups ==========

TERMINAL_STATUSES = [IssueStatus.RESOLVED, IssueStatus.CLOSED]
OPEN_STATUSES = [IssueStatus.PENDING, IssueStatus.IN_PROGRESS, IssueStatus.ESCALATED]
