"""YAML configuration loader.

Loads a single YAML file layered on top of the CODEX_VAULT_* env vars.
When no YAML is provided, env vars work exactly as before.

Example YAML:
    runtime:
      data_dir: ~/.codex-vault
      vault_dir: ~/Notes
      sandbox_mode: workspace-write
      approval_policy: never
      login_status_timeout: 10
      max_messages: 150
      log_level: DEBUG

    codex:
      path: ${HOME}/.local/bin/codex
      extra_dir: ~/.codex-vault/bin
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .config import RuntimeConfig

logger = logging.getLogger(__name__)


@dataclass
class CodexConfig:
    """Executable hints from YAML."""
    path: str | None = None
    # Extra directory offered as a candidate (e.g. a bundled bin dir).
    extra_dir: str | None = None


@dataclass
class CodexVaultConfig:
    """Complete parsed YAML configuration."""
    runtime: RuntimeConfig
    codex: CodexConfig = field(default_factory=CodexConfig)


def _expand(value):
    """Expand ${VAR} and ~ in string values, recursively."""
    if isinstance(value, str):
        return os.path.expanduser(os.path.expandvars(value))
    if isinstance(value, dict):
        return {k: _expand(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(v) for v in value]
    return value


def load_yaml_config(path: str | Path) -> CodexVaultConfig:
    """Load and parse a YAML config file.

    Starts from RuntimeConfig.from_env() so env vars act as defaults
    and explicit YAML keys win.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path)
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        logger.warning(
            "load_yaml_config: %s does not contain a mapping; ignoring", path
        )
        raw = {}
    raw = _expand(raw)

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s: sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    # ── Runtime ────────────────────────────────────────────────
    runtime = RuntimeConfig.from_env()
    runtime_raw = raw.get("runtime", {}) or {}
    if "data_dir" in runtime_raw:
        runtime.data_dir = Path(runtime_raw["data_dir"])
    if "vault_dir" in runtime_raw:
        runtime.vault_dir = Path(runtime_raw["vault_dir"])
        runtime.vault_name = runtime.vault_dir.name
    if "vault_name" in runtime_raw:
        runtime.vault_name = str(runtime_raw["vault_name"])
    runtime.sandbox_mode = str(
        runtime_raw.get("sandbox_mode", runtime.sandbox_mode)
    )
    runtime.approval_policy = str(
        runtime_raw.get("approval_policy", runtime.approval_policy)
    )
    runtime.skip_git_repo_check = bool(
        runtime_raw.get("skip_git_repo_check", runtime.skip_git_repo_check)
    )
    runtime.login_status_timeout = float(
        runtime_raw.get("login_status_timeout", runtime.login_status_timeout)
    )
    max_messages = int(runtime_raw.get("max_messages", runtime.max_messages))
    if max_messages > 0:
        runtime.max_messages = max_messages
    runtime.log_level = str(
        runtime_raw.get("log_level", runtime.log_level)
    ).upper()
    if "log_dir" in runtime_raw:
        runtime.log_dir = Path(runtime_raw["log_dir"])

    # ── Codex executable ───────────────────────────────────────
    codex_raw = raw.get("codex", {}) or {}
    codex = CodexConfig(
        path=codex_raw.get("path") or None,
        extra_dir=codex_raw.get("extra_dir") or None,
    )

    return CodexVaultConfig(runtime=runtime, codex=codex)
