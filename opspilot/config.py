"""Configuration management for OpsPilot."""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from opspilot.providers.base import ProviderKind


def _substitute_env_vars(value: Any) -> Any:
    """Recursively substitute environment variables in config values.

    Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.
    """
    if isinstance(value, str):
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            default = match.group(2) if match.group(2) is not None else ""
            return os.environ.get(var_name, default)

        return re.sub(pattern, replacer, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(v) for v in value]
    return value


class ProviderConfig(BaseModel):
    """LLM provider endpoint configuration."""
    type: ProviderKind = ProviderKind.OPENAI
    base_url: str = ""
    api_key: str = ""
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_seconds: float = 120


class AgentConfig(BaseModel):
    """Agent loop configuration."""
    name: str = "OpsPilot"
    max_tool_rounds: int = 15
    max_retries_per_tool: int = 1
    loop_history_size: int = 30
    loop_warning_threshold: int = 3
    loop_block_threshold: int = 5
    max_skills_prompt_chars: int = 30_000
    max_prompt_skills: int = 150
    custom_instructions: str = ""


class SkillsConfig(BaseModel):
    """Skills configuration."""
    builtin: list[str] = Field(default_factory=lambda: ["shell", "file_ops", "notification"])
    custom_file: str | None = None
    state_file: str | None = None
    skill_dirs: list[str] = Field(default_factory=list)
    project_dir: str | None = None
    reject_on_critical: bool = True
    script_timeout_seconds: float = 30
    shell_working_directory: str | None = None
    shell_timeout_seconds: float = 30
    file_ops_base_path: str = "."
    notification_webhooks: dict[str, str] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"


class Config(BaseSettings):
    """Main OpsPilot configuration."""
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    skills: SkillsConfig = Field(default_factory=SkillsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: str | Path = "config.yaml") -> Config:
    """Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Loaded and validated Config object.
    """
    config_path = Path(config_path)

    if not config_path.exists():
        return Config()

    with open(config_path, encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        return Config()

    config_data = _substitute_env_vars(raw_config)

    return Config(**config_data)


def generate_default_config(path: str | Path = "config.yaml") -> None:
    """Generate a default configuration file.

    Args:
        path: Path to write the configuration file.
    """
    default_config = """\
# OpsPilot Configuration
# Environment variables can be substituted with ${VAR_NAME} syntax

provider:
  type: "openai"          # openai | anthropic | ollama | custom
  base_url: "${OPENAI_BASE_URL:-}"
  api_key: "${OPENAI_API_KEY}"
  model: "gpt-4o"
  temperature: 0.7
  max_tokens: 4096
  timeout_seconds: 120

agent:
  name: "OpsPilot"
  max_tool_rounds: 15
  max_retries_per_tool: 1
  loop_history_size: 30
  loop_warning_threshold: 3
  loop_block_threshold: 5
  max_skills_prompt_chars: 30000
  max_prompt_skills: 150
  custom_instructions: ""

skills:
  builtin:
    - shell
    - file_ops
    - notification
  custom_file: null         # YAML list of custom skill definitions
  state_file: "skill_states.yaml"
  skill_dirs: []            # directories holding <name>/SKILL.md
  project_dir: null
  reject_on_critical: true  # refuse custom skills with critical scan findings
  script_timeout_seconds: 30
  shell_timeout_seconds: 30
  file_ops_base_path: "."
  notification_webhooks: {}
  #   feishu: "${FEISHU_WEBHOOK}"

logging:
  level: "INFO"
  format: "json"
"""

    path = Path(path)
    path.write_text(default_config, encoding="utf-8")
