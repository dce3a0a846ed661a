from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest

from agentcli.config import (
    SUPPORTED_TOOLS,
    ApiSettings,
    GraphSettings,
    LoggingSettings,
    Settings,
    ToolsSettings,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def _clear_env(monkeypatch) -> None:
    for name in ("AGENTCLI_API_KEY", "OPENAI_API_KEY", "AGENTCLI_MODEL", "AGENTCLI_TOOLS_ENABLED"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_environment_is_empty(monkeypatch) -> None:
    _clear_env(monkeypatch)

    settings = Settings.from_env()

    assert settings.api.base_url == "https://api.openai.com/v1"
    assert settings.api.model == "gpt-4o-mini"
    assert settings.tools.enabled == SUPPORTED_TOOLS
    assert settings.graph.parallel_nodes == 4
    assert settings.graph.max_depth == 10
    assert settings.logging.log_dir == Path("logs")


def test_from_env_reads_overrides(monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("OPENAI_API_KEY", "fallback-key")
    monkeypatch.setenv("AGENTCLI_MODEL", "o4-mini")
    monkeypatch.setenv("AGENTCLI_TOOLS_ENABLED", "read_file, read_file ,execute_command")
    monkeypatch.setenv("AGENTCLI_GRAPH_VERBOSE", "yes")
    monkeypatch.setenv("AGENTCLI_GRAPH_PARALLEL_NODES", "2")
    monkeypatch.setenv("AGENTCLI_LOG_LEVEL", "debug")
    monkeypatch.setenv("AGENTCLI_HISTORY_DIR", "/tmp/agent-history")

    settings = Settings.from_env()

    assert settings.api.api_key == "fallback-key"
    assert settings.api.model == "o4-mini"
    assert settings.tools.enabled == ("read_file", "execute_command")
    assert settings.graph.verbose is True
    assert settings.graph.parallel_nodes == 2
    assert settings.logging.level == "DEBUG"
    assert settings.history_dir == Path("/tmp/agent-history")


def test_primary_api_key_wins_over_fallback(monkeypatch) -> None:
    monkeypatch.setenv("AGENTCLI_API_KEY", "primary")
    monkeypatch.setenv("OPENAI_API_KEY", "fallback")

    assert Settings.from_env().api.api_key == "primary"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("AGENTCLI_GRAPH_VERBOSE", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value for AGENTCLI_GRAPH_VERBOSE"):
        Settings.from_env()


def test_validate_requires_api_key() -> None:
    with pytest.raises(ValueError, match="No API key configured"):
        Settings().validate()


def test_validate_accepts_test_settings(settings: Settings) -> None:
    settings.validate()


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"api": ApiSettings(api_key="k", base_url="ftp://x")}, "Invalid AGENTCLI_BASE_URL"),
        ({"api": ApiSettings(api_key="k", model="")}, "AGENTCLI_MODEL"),
        ({"tools": ToolsSettings(enabled=("fly",))}, "Unsupported tools"),
        ({"tools": ToolsSettings(command_timeout_seconds=0)}, "COMMAND_TIMEOUT"),
        ({"graph": GraphSettings(parallel_nodes=0)}, "PARALLEL_NODES"),
        ({"graph": GraphSettings(max_depth=-1)}, "MAX_DEPTH"),
        ({"logging": LoggingSettings(level="LOUD")}, "AGENTCLI_LOG_LEVEL"),
        ({"user_id": "a/b"}, "Invalid AGENTCLI_USER_ID"),
        ({"user_id": ".."}, "Invalid AGENTCLI_USER_ID"),
    ],
)
def test_validate_rejects_invalid_values(settings: Settings, overrides: dict, message: str) -> None:
    broken = replace(settings, **overrides)

    with pytest.raises(ValueError, match=message):
        broken.validate()
