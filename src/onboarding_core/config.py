"""Runtime configuration for the task-execution core."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class ReasoningSettings:
    """Bounds and timeouts for the reasoning loop."""

    max_iterations: int = 10
    repeat_threshold: int = 3
    tool_timeout_seconds: float = 30.0
    tool_workers: int = 4


@dataclass(slots=True)
class EventLogSettings:
    """Event log append policy."""

    append_max_retries: int = 20


@dataclass(slots=True)
class RecoverySettings:
    """Orphaned-task recovery sweep settings."""

    enabled: bool = True
    interval_seconds: float = 300.0


@dataclass(slots=True)
class AgentSettings:
    """External agent command used by `tasks run` and `recover`."""

    command_template: str | None = None
    agent_id: str = "onboarding_agent"
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class BusinessContextSettings:
    """Tenant context used for tasks created from the CLI."""

    business_id: str = "default_business"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".onboarding_core.db")
    sqlite_busy_timeout_ms: int = 5_000
    reasoning: ReasoningSettings = field(default_factory=ReasoningSettings)
    event_log: EventLogSettings = field(default_factory=EventLogSettings)
    recovery: RecoverySettings = field(default_factory=RecoverySettings)
    business_context: BusinessContextSettings = field(default_factory=BusinessContextSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        settings = cls(
            db_path=db_path or Path(os.getenv("ONBOARDING_CORE_DB_PATH", ".onboarding_core.db")),
            sqlite_busy_timeout_ms=int(
                os.getenv("ONBOARDING_CORE_SQLITE_BUSY_TIMEOUT_MS", "5000"),
            ),
            reasoning=ReasoningSettings(
                max_iterations=int(os.getenv("ONBOARDING_CORE_MAX_ITERATIONS", "10")),
                repeat_threshold=int(os.getenv("ONBOARDING_CORE_REPEAT_THRESHOLD", "3")),
                tool_timeout_seconds=float(
                    os.getenv("ONBOARDING_CORE_TOOL_TIMEOUT_SECONDS", "30.0"),
                ),
                tool_workers=int(os.getenv("ONBOARDING_CORE_TOOL_WORKERS", "4")),
            ),
            event_log=EventLogSettings(
                append_max_retries=int(os.getenv("ONBOARDING_CORE_APPEND_MAX_RETRIES", "20")),
            ),
            recovery=RecoverySettings(
                enabled=_env_bool("ONBOARDING_CORE_RECOVERY_ENABLED", default=True),
                interval_seconds=float(
                    os.getenv("ONBOARDING_CORE_RECOVERY_INTERVAL_SECONDS", "300"),
                ),
            ),
            business_context=BusinessContextSettings(
                business_id=os.getenv("ONBOARDING_CORE_BUSINESS_ID", "default_business"),
            ),
            agent=AgentSettings(
                command_template=os.getenv("ONBOARDING_CORE_AGENT_COMMAND", "").strip() or None,
                agent_id=os.getenv("ONBOARDING_CORE_AGENT_ID", "onboarding_agent"),
                timeout_seconds=float(
                    os.getenv("ONBOARDING_CORE_AGENT_TIMEOUT_SECONDS", "120"),
                ),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error if any bound is out of range."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("ONBOARDING_CORE_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.reasoning.max_iterations <= 0:
            raise ValueError("ONBOARDING_CORE_MAX_ITERATIONS must be > 0.")
        if self.reasoning.repeat_threshold < 2:
            raise ValueError("ONBOARDING_CORE_REPEAT_THRESHOLD must be >= 2.")
        if self.reasoning.tool_timeout_seconds <= 0:
            raise ValueError("ONBOARDING_CORE_TOOL_TIMEOUT_SECONDS must be > 0.")
        if self.reasoning.tool_workers <= 0:
            raise ValueError("ONBOARDING_CORE_TOOL_WORKERS must be > 0.")
        if self.event_log.append_max_retries <= 0:
            raise ValueError("ONBOARDING_CORE_APPEND_MAX_RETRIES must be > 0.")
        if self.recovery.interval_seconds <= 0:
            raise ValueError("ONBOARDING_CORE_RECOVERY_INTERVAL_SECONDS must be > 0.")
        if not self.business_context.business_id.strip():
            raise ValueError("ONBOARDING_CORE_BUSINESS_ID must not be empty.")
        if not self.agent.agent_id.strip():
            raise ValueError("ONBOARDING_CORE_AGENT_ID must not be empty.")
        if self.agent.timeout_seconds <= 0:
            raise ValueError("ONBOARDING_CORE_AGENT_TIMEOUT_SECONDS must be > 0.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
