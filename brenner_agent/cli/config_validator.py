"""Configuration validator for brenner-agent startup checks."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

from brenner_agent.config import ENV_OVERRIDES
from brenner_agent.domain.artifact import Section


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ConfigError:
    """A single configuration issue."""

    field: str
    message: str
    severity: Severity


def validate_config(
    raw_config: Dict[str, Any],
    workspace_dir: str = ".",
    require_mail: bool = False,
) -> List[ConfigError]:
    """Validate raw configuration and return a list of issues.

    Args:
        raw_config: Raw config dict from YAML
        workspace_dir: Workspace directory to validate
        require_mail: Whether the command talks to Agent Mail (project key needed)

    Returns:
        List of ConfigError (empty = valid)
    """
    errors: List[ConfigError] = []

    # --- Agent Mail ---
    mail = raw_config.get("agent_mail", {}) or {}
    if not isinstance(mail, dict):
        errors.append(ConfigError("agent_mail", "agent_mail must be a mapping", Severity.ERROR))
        mail = {}

    base_url = _resolve_value(mail.get("base_url", ""), ENV_OVERRIDES["agent_mail.base_url"])
    if base_url and not (base_url.startswith("http://") or base_url.startswith("https://")):
        errors.append(
            ConfigError(
                field="agent_mail.base_url",
                message=f"agent_mail.base_url must start with http:// or https://, got {base_url!r}",
                severity=Severity.ERROR,
            )
        )

    path = mail.get("path", "/mcp/")
    if not isinstance(path, str) or not path.strip():
        errors.append(ConfigError("agent_mail.path", "agent_mail.path must be a non-empty string", Severity.ERROR))

    timeout = mail.get("timeout_seconds", 30)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        errors.append(
            ConfigError(
                field="agent_mail.timeout_seconds",
                message=f"agent_mail.timeout_seconds must be a positive number, got {timeout}",
                severity=Severity.ERROR,
            )
        )

    token = mail.get("bearer_token", "")
    if isinstance(token, str) and token.startswith("${") and not _resolve_value(
        token, ENV_OVERRIDES["agent_mail.bearer_token"]
    ):
        errors.append(
            ConfigError(
                field="agent_mail.bearer_token",
                message=f"{token[2:-1]} is not set; requests will be sent without a bearer token",
                severity=Severity.WARNING,
            )
        )

    # --- Project / agent identity ---
    if require_mail:
        project_key = _resolve_value(raw_config.get("project_key", ""), ENV_OVERRIDES["project_key"])
        if not project_key:
            errors.append(
                ConfigError(
                    field="project_key",
                    message="project_key not set. Pass --project-key or add project_key to config/config.local.yaml",
                    severity=Severity.ERROR,
                )
            )

    # --- Retry ---
    retry = raw_config.get("retry", {}) or {}
    max_attempts = retry.get("max_attempts", 3)
    if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts <= 0:
        errors.append(
            ConfigError(
                field="retry.max_attempts",
                message=f"retry.max_attempts must be a positive integer, got {max_attempts}",
                severity=Severity.ERROR,
            )
        )
    for key in ("base_delay", "max_delay"):
        value = retry.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            errors.append(
                ConfigError(
                    field=f"retry.{key}",
                    message=f"retry.{key} must be a non-negative number, got {value}",
                    severity=Severity.ERROR,
                )
            )

    # --- Merge limits ---
    limits = (raw_config.get("merge", {}) or {}).get("section_limits", {}) or {}
    valid_sections = {s.value for s in Section}
    for section, limit in limits.items():
        if section not in valid_sections:
            errors.append(
                ConfigError(
                    field=f"merge.section_limits.{section}",
                    message=f"Unknown section '{section}'. Expected one of: {', '.join(sorted(valid_sections))}",
                    severity=Severity.ERROR,
                )
            )
        elif isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            errors.append(
                ConfigError(
                    field=f"merge.section_limits.{section}",
                    message=f"Section limit must be a positive integer, got {limit}",
                    severity=Severity.ERROR,
                )
            )

    # --- Workspace ---
    ws = Path(workspace_dir)
    if not ws.exists():
        errors.append(
            ConfigError(
                field="workspace_dir",
                message=f"Workspace directory does not exist: {workspace_dir}",
                severity=Severity.WARNING,
            )
        )

    return errors


def _resolve_value(config_value: Any, env_key: str = "") -> str:
    """Resolve a value from env or config without side effects.

    Returns the resolved string, or empty string if unresolvable.
    """
    if env_key:
        env_value = os.environ.get(env_key, "")
        if env_value:
            return env_value

    if not config_value or not isinstance(config_value, str):
        return ""

    if not config_value.startswith("${"):
        return config_value

    if config_value.endswith("}"):
        return os.environ.get(config_value[2:-1], "")

    return ""


def has_errors(issues: List[ConfigError]) -> bool:
    """Check if any issues are errors (not just warnings)."""
    return any(e.severity == Severity.ERROR for e in issues)
