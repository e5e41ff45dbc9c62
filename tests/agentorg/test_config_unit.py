"""Unit tests for AgentOrgSettings."""

import pytest
from pydantic import ValidationError

from src.agentorg.config import AgentOrgSettings, get_settings
from src.agentorg.events import EventSinkType


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    import os

    for key in list(os.environ):
        if key.upper().startswith("AGENTORG_"):
            monkeypatch.delenv(key, raising=False)


class TestDefaults:
    def test_defaults_without_environment(self):
        settings = get_settings()

        assert settings.execution_url == "http://localhost:3000/api/tasks/execute"
        assert settings.events_url is None
        assert settings.reconnect_delay_seconds == 3.0
        assert settings.execution_timeout_seconds is None
        assert settings.stage_advance_delay_seconds == 1.0
        assert settings.control_delay_seconds == 0.5
        assert settings.agent_idle_delay_seconds == 1.5
        assert settings.event_sinks == [
            EventSinkType.LOGGING,
            EventSinkType.METRICS,
            EventSinkType.MEMORY,
        ]
        assert settings.log_level == "INFO"
        assert settings.port == 8080


class TestEnvironment:
    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("AGENTORG_EXECUTION_URL", "https://agents.example.com/execute")
        monkeypatch.setenv("AGENTORG_EVENTS_URL", "https://agents.example.com/events")
        monkeypatch.setenv("AGENTORG_EXECUTION_TIMEOUT_SECONDS", "120")
        monkeypatch.setenv("AGENTORG_EVENT_SINKS", '["logging"]')
        monkeypatch.setenv("AGENTORG_LOG_LEVEL", "debug")

        settings = AgentOrgSettings()

        assert settings.execution_url == "https://agents.example.com/execute"
        assert settings.events_url == "https://agents.example.com/events"
        assert settings.execution_timeout_seconds == 120.0
        assert settings.event_sinks == [EventSinkType.LOGGING]
        assert settings.log_level == "DEBUG"

    def test_blank_events_url_is_none(self, monkeypatch):
        monkeypatch.setenv("AGENTORG_EVENTS_URL", "  ")
        assert AgentOrgSettings().events_url is None


class TestValidation:
    @pytest.mark.parametrize(
        "name,value",
        [
            ("AGENTORG_EXECUTION_URL", "ftp://agents"),
            ("AGENTORG_EXECUTION_URL", " "),
            ("AGENTORG_EVENTS_URL", "agents:3000/events"),
            ("AGENTORG_RECONNECT_DELAY_SECONDS", "-1"),
            ("AGENTORG_STAGE_ADVANCE_DELAY_SECONDS", "-0.5"),
            ("AGENTORG_CONNECT_TIMEOUT_SECONDS", "0"),
            ("AGENTORG_EXECUTION_TIMEOUT_SECONDS", "0"),
            ("AGENTORG_EVENT_LOG_SIZE", "0"),
            ("AGENTORG_EVENT_SINKS", '["pagerduty"]'),
            ("AGENTORG_LOG_LEVEL", "verbose"),
            ("AGENTORG_PORT", "70000"),
        ],
    )
    def test_invalid_values_rejected(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValidationError):
            AgentOrgSettings()

    def test_zero_delays_allowed(self, monkeypatch):
        monkeypatch.setenv("AGENTORG_STAGE_ADVANCE_DELAY_SECONDS", "0")
        monkeypatch.setenv("AGENTORG_CONTROL_DELAY_SECONDS", "0")
        monkeypatch.setenv("AGENTORG_AGENT_IDLE_DELAY_SECONDS", "0")

        settings = AgentOrgSettings()

        assert settings.stage_advance_delay_seconds == 0
        assert settings.control_delay_seconds == 0
        assert settings.agent_idle_delay_seconds == 0
