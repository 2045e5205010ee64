"""Runtime configuration loaded from environment variables.

All settings have sensible defaults. Override via CODEX_VAULT_* env vars
or a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".codex-vault"
MAX_MESSAGES = 150


@dataclass
class RuntimeConfig:
    """Process-level configuration for the session engine."""

    # Where data.json and chats/ live.
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    # Vault directory handed to codex as its working directory.
    vault_dir: Path | None = None
    vault_name: str = ""

    # Thread options passed to every `codex exec` call.
    sandbox_mode: str = "workspace-write"
    approval_policy: str = "never"
    skip_git_repo_check: bool = True

    # Seconds to wait for `codex login status` before falling back
    # to the auth file check. 0 disables the timeout.
    login_status_timeout: float = 10.0

    # Retention cap for a single chat's message log.
    max_messages: int = MAX_MESSAGES

    # Logging
    log_level: str = "INFO"
    log_dir: Path | None = None

    @classmethod
    def from_env(cls) -> RuntimeConfig:
        """Build config from CODEX_VAULT_* environment variables."""
        config = cls()

        data_dir = os.getenv("CODEX_VAULT_DATA_DIR")
        if data_dir:
            config.data_dir = Path(data_dir).expanduser()

        vault_dir = os.getenv("CODEX_VAULT_DIR")
        if vault_dir:
            config.vault_dir = Path(vault_dir).expanduser()
            config.vault_name = config.vault_dir.name

        vault_name = os.getenv("CODEX_VAULT_NAME")
        if vault_name:
            config.vault_name = vault_name

        config.sandbox_mode = os.getenv(
            "CODEX_VAULT_SANDBOX", config.sandbox_mode
        )
        config.approval_policy = os.getenv(
            "CODEX_VAULT_APPROVAL_POLICY", config.approval_policy
        )
        config.skip_git_repo_check = _env_bool(
            "CODEX_VAULT_SKIP_GIT_CHECK", config.skip_git_repo_check
        )
        config.login_status_timeout = _env_float(
            "CODEX_VAULT_LOGIN_TIMEOUT", config.login_status_timeout
        )
        config.max_messages = _env_int(
            "CODEX_VAULT_MAX_MESSAGES", config.max_messages
        )
        config.log_level = os.getenv(
            "CODEX_VAULT_LOG_LEVEL", config.log_level
        ).upper()

        log_dir = os.getenv("CODEX_VAULT_LOG_DIR")
        if log_dir:
            config.log_dir = Path(log_dir).expanduser()

        return config

    @property
    def resolved_log_dir(self) -> Path:
        return self.log_dir or (self.data_dir / "logs")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r", name, raw)
        return default
    return value
