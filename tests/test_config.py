from __future__ import annotations

from pathlib import Path

import allure
import pytest

from onboarding_core.config import AgentSettings, ReasoningSettings, Settings

pytestmark = [
    allure.epic("Task Execution Core"),
    allure.feature("Configuration"),
]

_ENV_VARS = (
    "ONBOARDING_CORE_DB_PATH",
    "ONBOARDING_CORE_SQLITE_BUSY_TIMEOUT_MS",
    "ONBOARDING_CORE_MAX_ITERATIONS",
    "ONBOARDING_CORE_REPEAT_THRESHOLD",
    "ONBOARDING_CORE_TOOL_TIMEOUT_SECONDS",
    "ONBOARDING_CORE_TOOL_WORKERS",
    "ONBOARDING_CORE_APPEND_MAX_RETRIES",
    "ONBOARDING_CORE_RECOVERY_ENABLED",
    "ONBOARDING_CORE_RECOVERY_INTERVAL_SECONDS",
    "ONBOARDING_CORE_BUSINESS_ID",
    "ONBOARDING_CORE_AGENT_COMMAND",
    "ONBOARDING_CORE_AGENT_ID",
    "ONBOARDING_CORE_AGENT_TIMEOUT_SECONDS",
)


@pytest.fixture()
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_without_environment(clean_env) -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".onboarding_core.db")
    assert settings.reasoning.max_iterations == 10
    assert settings.reasoning.repeat_threshold == 3
    assert settings.reasoning.tool_timeout_seconds == 30.0
    assert settings.event_log.append_max_retries == 20
    assert settings.recovery.enabled is True
    assert settings.business_context.business_id == "default_business"


def test_environment_overrides(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("ONBOARDING_CORE_DB_PATH", str(tmp_path / "env.db"))
    clean_env.setenv("ONBOARDING_CORE_MAX_ITERATIONS", "4")
    clean_env.setenv("ONBOARDING_CORE_TOOL_TIMEOUT_SECONDS", "2.5")
    clean_env.setenv("ONBOARDING_CORE_RECOVERY_ENABLED", "off")
    clean_env.setenv("ONBOARDING_CORE_BUSINESS_ID", "biz-9")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.reasoning.max_iterations == 4
    assert settings.reasoning.tool_timeout_seconds == 2.5
    assert settings.recovery.enabled is False
    assert settings.business_context.business_id == "biz-9"


def test_explicit_db_path_wins_over_environment(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("ONBOARDING_CORE_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(db_path=tmp_path / "cli.db")

    assert settings.db_path == tmp_path / "cli.db"


def test_invalid_boolean_is_rejected(clean_env) -> None:
    clean_env.setenv("ONBOARDING_CORE_RECOVERY_ENABLED", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("reasoning", "message"),
    [
        (ReasoningSettings(max_iterations=0), "MAX_ITERATIONS"),
        (ReasoningSettings(repeat_threshold=1), "REPEAT_THRESHOLD"),
        (ReasoningSettings(tool_timeout_seconds=0), "TOOL_TIMEOUT_SECONDS"),
        (ReasoningSettings(tool_workers=0), "TOOL_WORKERS"),
    ],
)
def test_validate_rejects_out_of_range_reasoning_bounds(
    reasoning: ReasoningSettings,
    message: str,
) -> None:
    with pytest.raises(ValueError, match=message):
        Settings(reasoning=reasoning).validate()


def test_agent_command_from_environment(clean_env) -> None:
    assert Settings.from_env().agent.command_template is None

    clean_env.setenv("ONBOARDING_CORE_AGENT_COMMAND", "  agent-cli exec {prompt}  ")
    clean_env.setenv("ONBOARDING_CORE_AGENT_ID", "kyb_agent")
    clean_env.setenv("ONBOARDING_CORE_AGENT_TIMEOUT_SECONDS", "45")

    agent = Settings.from_env().agent

    assert agent.command_template == "agent-cli exec {prompt}"
    assert agent.agent_id == "kyb_agent"
    assert agent.timeout_seconds == 45.0


def test_validate_rejects_non_positive_agent_timeout() -> None:
    with pytest.raises(ValueError, match="AGENT_TIMEOUT_SECONDS"):
        Settings(agent=AgentSettings(timeout_seconds=0)).validate()
