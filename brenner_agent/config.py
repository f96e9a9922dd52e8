"""Configuration loading for brenner-agent."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from .domain.artifact import Section
from .retry import RetryConfig

DEFAULT_BASE_URL = "http://127.0.0.1:8765"
DEFAULT_PATH = "/mcp/"
DEFAULT_TIMEOUT_SECONDS = 30.0

# Environment overrides, keyed by dotted config field.
ENV_OVERRIDES = {
    "agent_mail.base_url": "AGENT_MAIL_BASE_URL",
    "agent_mail.path": "AGENT_MAIL_PATH",
    "agent_mail.bearer_token": "AGENT_MAIL_BEARER_TOKEN",
    "project_key": "AGENT_MAIL_PROJECT_KEY",
    "agent_name": "AGENT_NAME",
}


@dataclass
class AgentMailSettings:
    base_url: str = DEFAULT_BASE_URL
    path: str = DEFAULT_PATH
    bearer_token: str = ""
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


@dataclass
class BrennerConfig:
    """Resolved runtime configuration."""

    agent_mail: AgentMailSettings = field(default_factory=AgentMailSettings)
    project_key: str = ""
    agent_name: str = ""
    retry: RetryConfig = field(default_factory=RetryConfig)
    section_limits: Dict[Section, int] = field(default_factory=lambda: {Section.HYPOTHESIS_SLATE: 6})


def resolve_placeholder(value: Any) -> Any:
    """Resolve a ``${VAR}`` string from the environment; other values pass through."""
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.environ.get(value[2:-1], "")
    return value


def load_raw_config(config_path: str = "config/config.local.yaml") -> dict:
    """Load raw configuration dictionary from YAML file.

    Priority order:
    1. config.local.yaml (user's local config with secrets)
    2. config.yaml (template/defaults)
    """
    repo_root = Path(__file__).resolve().parents[1]

    def _resolve(candidate: str) -> Path:
        path = Path(candidate)
        if path.exists():
            return path
        alt = repo_root / candidate
        if alt.exists():
            return alt
        return path

    def _load_yaml(path: Path) -> dict:
        if not path.exists():
            return {}
        with open(path) as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file must be a mapping: {path}")
            return data

    target = _resolve(config_path)
    is_local_default = Path(config_path).name == "config.local.yaml"

    if is_local_default:
        base = _load_yaml(_resolve("config/config.yaml"))
        local = _load_yaml(target)
        merged = deep_merge(base, local)
        if not merged:
            raise FileNotFoundError(f"Config file not found: {config_path} (also missing fallback config/config.yaml)")
        return merged

    data = _load_yaml(target)
    if not data:
        raise FileNotFoundError(f"Config file not found: {config_path}")
    return data


def deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = deep_merge(base_value, value)
        else:
            merged[key] = value
    return merged


def config_from_dict(data: Dict[str, Any]) -> BrennerConfig:
    """Build a :class:`BrennerConfig` from raw YAML data plus env overrides."""
    mail = data.get("agent_mail", {}) or {}

    def _setting(dotted: str, raw: Any, default: Any) -> Any:
        env_value = os.environ.get(ENV_OVERRIDES[dotted], "")
        if env_value:
            return env_value
        resolved = resolve_placeholder(raw)
        return default if resolved in (None, "") else resolved

    limits: Dict[Section, int] = {}
    raw_limits = ((data.get("merge", {}) or {}).get("section_limits")) or {Section.HYPOTHESIS_SLATE.value: 6}
    for key, value in raw_limits.items():
        limits[Section(key)] = int(value)

    return BrennerConfig(
        agent_mail=AgentMailSettings(
            base_url=str(_setting("agent_mail.base_url", mail.get("base_url"), DEFAULT_BASE_URL)),
            path=str(_setting("agent_mail.path", mail.get("path"), DEFAULT_PATH)),
            bearer_token=str(_setting("agent_mail.bearer_token", mail.get("bearer_token"), "")),
            timeout_seconds=float(mail.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
        ),
        project_key=str(_setting("project_key", data.get("project_key"), "")),
        agent_name=str(_setting("agent_name", data.get("agent_name"), "")),
        retry=RetryConfig.from_dict(data.get("retry", {}) or {}),
        section_limits=limits,
    )


def load_config(config_path: str = "config/config.local.yaml") -> BrennerConfig:
    """Load configuration from YAML file."""
    return config_from_dict(load_raw_config(config_path))
