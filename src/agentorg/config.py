"""Service configuration using pydantic-settings.

This module defines the AgentOrgSettings class that reads configuration
from environment variables with the AGENTORG_ prefix. Every field has a
default, so the service starts without any environment configured.
"""

from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.agentorg.events.emitter import EventSinkType


class AgentOrgSettings(BaseSettings):
    """Pipeline execution service configuration from environment variables.

    All environment variables are prefixed with AGENTORG_ (e.g.,
    AGENTORG_EXECUTION_URL). List values such as ``event_sinks`` are given
    as JSON (AGENTORG_EVENT_SINKS='["logging"]').
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTORG_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Remote Execution
    # -------------------------------------------------------------------------
    # Endpoint that runs one stage and streams its progress back
    execution_url: str = "http://localhost:3000/api/tasks/execute"

    # Optional long-lived event stream (task and agent updates)
    events_url: Optional[str] = None

    # Fixed delay before the event subscription reconnects
    reconnect_delay_seconds: float = 3.0

    # HTTP connection timeout for both endpoints
    connect_timeout_seconds: float = 10.0

    # Per-read timeout on a stage stream; unset waits forever
    execution_timeout_seconds: Optional[float] = None

    # -------------------------------------------------------------------------
    # Pipeline Pacing
    # -------------------------------------------------------------------------
    # Pause between a completed stage and the next one
    stage_advance_delay_seconds: float = 1.0

    # Delay before re-entering a stage after skip or restart
    control_delay_seconds: float = 0.5

    # How long an agent shows "completed" before going idle
    agent_idle_delay_seconds: float = 1.5

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------
    event_sinks: List[EventSinkType] = [
        EventSinkType.LOGGING,
        EventSinkType.METRICS,
        EventSinkType.MEMORY,
    ]

    # Number of events kept for GET /events
    event_log_size: int = 100

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("execution_url")
    @classmethod
    def validate_execution_url(cls, v: str) -> str:
        """Validate that the execution URL is an http(s) URL."""
        if not v or not v.strip():
            raise ValueError("execution_url cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError("execution_url must start with http:// or https://")
        return v

    @field_validator("events_url")
    @classmethod
    def validate_events_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("events_url must start with http:// or https://")
        return v

    @field_validator(
        "reconnect_delay_seconds",
        "stage_advance_delay_seconds",
        "control_delay_seconds",
        "agent_idle_delay_seconds",
    )
    @classmethod
    def validate_delay(cls, v: float) -> float:
        """Validate that delays are not negative."""
        if v < 0:
            raise ValueError("delays cannot be negative")
        return v

    @field_validator("connect_timeout_seconds")
    @classmethod
    def validate_connect_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("connect_timeout_seconds must be positive")
        return v

    @field_validator("execution_timeout_seconds")
    @classmethod
    def validate_execution_timeout(cls, v: Optional[float]) -> Optional[float]:
        """Validate that the execution timeout, when set, is positive."""
        if v is not None and v <= 0:
            raise ValueError("execution_timeout_seconds must be positive")
        return v

    @field_validator("event_log_size")
    @classmethod
    def validate_event_log_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("event_log_size must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log_level: {v}")
        return level

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v


def get_settings() -> AgentOrgSettings:
    """Create and return an AgentOrgSettings instance.

    A new instance is built on every call, so environment changes are
    picked up.

    Raises:
        pydantic.ValidationError: If a configured value is invalid.
    """
    return AgentOrgSettings()
