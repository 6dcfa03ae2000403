"""Tests for configuration loading and skill state persistence."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from opspilot.config import Config, SkillsConfig, _substitute_env_vars, generate_default_config, load_config
from opspilot.factory import create_registry
from opspilot.providers.base import ProviderKind
from opspilot.skills.state import YamlSkillStateStore
from opspilot.utils import JSONFormatter, TextFormatter, setup_logging


class TestEnvSubstitution:
    def test_plain_variable(self, monkeypatch):
        monkeypatch.setenv("OPSPILOT_KEY", "sk-123")
        assert _substitute_env_vars("${OPSPILOT_KEY}") == "sk-123"

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("OPSPILOT_UNSET", raising=False)
        assert _substitute_env_vars("${OPSPILOT_UNSET:-fallback}") == "fallback"
        assert _substitute_env_vars("${OPSPILOT_UNSET}") == ""

    def test_nested(self, monkeypatch):
        monkeypatch.setenv("OPSPILOT_HOOK", "https://hooks.example.com/x")
        value = {"a": ["${OPSPILOT_HOOK}", 3], "b": {"c": "pre-${OPSPILOT_HOOK}"}}
        assert _substitute_env_vars(value) == {
            "a": ["https://hooks.example.com/x", 3],
            "b": {"c": "pre-https://hooks.example.com/x"},
        }


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path: Path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.provider.type == ProviderKind.OPENAI
        assert config.agent.max_tool_rounds == 15
        assert config.agent.max_retries_per_tool == 1
        assert config.skills.builtin == ["shell", "file_ops", "notification"]

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path).agent.loop_block_threshold == 5

    def test_values_and_env(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("OPSPILOT_ANTHROPIC_KEY", "ak-1")
        path = tmp_path / "config.yaml"
        path.write_text(
            "provider:\n"
            "  type: anthropic\n"
            "  api_key: ${OPSPILOT_ANTHROPIC_KEY}\n"
            "  model: claude-sonnet-4-20250514\n"
            "agent:\n"
            "  max_tool_rounds: 4\n"
            "skills:\n"
            "  builtin: [file_ops]\n"
            "  notification_webhooks:\n"
            "    feishu: https://hooks.example.com/f\n"
        )

        config = load_config(path)

        assert config.provider.type == ProviderKind.ANTHROPIC
        assert config.provider.api_key == "ak-1"
        assert config.agent.max_tool_rounds == 4
        assert config.skills.builtin == ["file_ops"]
        assert config.skills.notification_webhooks == {"feishu": "https://hooks.example.com/f"}

    def test_unknown_provider_type_rejected(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("provider:\n  type: carrier-pigeon\n")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_generated_default_loads(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        path = tmp_path / "config.yaml"
        generate_default_config(path)

        config = load_config(path)

        assert isinstance(config, Config)
        assert config.provider.api_key == "sk-test"
        assert config.provider.base_url == ""
        assert config.skills.state_file == "skill_states.yaml"
        assert config.skills.reject_on_critical is True


class TestYamlSkillStateStore:
    def test_missing_file(self, tmp_path: Path):
        assert YamlSkillStateStore(tmp_path / "states.yaml").load() == {}

    def test_save_and_load(self, tmp_path: Path):
        store = YamlSkillStateStore(tmp_path / "nested" / "states.yaml")
        store.save({"skill-shell": False, "skill-file-ops": True})
        assert store.load() == {"skill-shell": False, "skill-file-ops": True}

    def test_garbage_ignored(self, tmp_path: Path):
        path = tmp_path / "states.yaml"
        path.write_text("- just\n- a list\n")
        assert YamlSkillStateStore(path).load() == {}

    def test_invalid_yaml_ignored(self, tmp_path: Path):
        path = tmp_path / "states.yaml"
        path.write_text("skill-shell: [unclosed\n")
        assert YamlSkillStateStore(path).load() == {}


class TestSetupLogging:
    def test_level_and_handler(self):
        setup_logging(level="DEBUG", format_type="text")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)
        assert logging.getLogger("openai").level == logging.WARNING
        setup_logging(level="WARNING")

    def test_json_includes_extra_fields(self):
        record = logging.LogRecord("opspilot.core.agent", logging.INFO, __file__, 1, "Tool done", None, None)
        record.turn_id = "t-1"
        record.tool = "read_file"

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Tool done"
        assert data["turn_id"] == "t-1"
        assert data["tool"] == "read_file"

    def test_text_appends_extra_fields(self):
        record = logging.LogRecord("opspilot.core.agent", logging.INFO, __file__, 1, "Tool done", None, None)
        record.turn_id = "t-1"

        line = TextFormatter().format(record)

        assert "| INFO     | opspilot.core.agent | Tool done" in line
        assert line.endswith("| turn_id=t-1")


class TestCreateRegistry:
    def test_shell_uses_its_own_timeout(self):
        config = Config(skills=SkillsConfig(
            builtin=["shell"],
            shell_timeout_seconds=5,
            script_timeout_seconds=90,
        ))

        registry = create_registry(config)

        shell = registry.find_tool("run_command").execute.__self__
        assert shell.timeout_seconds == 5
