from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from codex_vault.engine.config import MAX_MESSAGES, RuntimeConfig
from codex_vault.engine.yaml_config import load_yaml_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CODEX_VAULT_DATA_DIR",
        "CODEX_VAULT_DIR",
        "CODEX_VAULT_NAME",
        "CODEX_VAULT_SANDBOX",
        "CODEX_VAULT_APPROVAL_POLICY",
        "CODEX_VAULT_SKIP_GIT_CHECK",
        "CODEX_VAULT_LOGIN_TIMEOUT",
        "CODEX_VAULT_MAX_MESSAGES",
        "CODEX_VAULT_LOG_LEVEL",
        "CODEX_VAULT_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CODEX_VAULT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CODEX_VAULT_DIR", str(tmp_path / "Notes"))
    monkeypatch.setenv("CODEX_VAULT_SKIP_GIT_CHECK", "no")
    monkeypatch.setenv("CODEX_VAULT_LOGIN_TIMEOUT", "2.5")
    monkeypatch.setenv("CODEX_VAULT_LOG_LEVEL", "debug")

    config = RuntimeConfig.from_env()

    assert config.data_dir == tmp_path / "data"
    assert config.vault_name == "Notes"
    assert config.skip_git_repo_check is False
    assert config.login_status_timeout == 2.5
    assert config.log_level == "DEBUG"
    assert config.resolved_log_dir == tmp_path / "data" / "logs"


def test_bad_env_numbers_keep_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CODEX_VAULT_LOGIN_TIMEOUT", "soon")
    monkeypatch.setenv("CODEX_VAULT_MAX_MESSAGES", "-3")

    config = RuntimeConfig.from_env()

    assert config.login_status_timeout == 10.0
    assert config.max_messages == MAX_MESSAGES


def test_yaml_overrides_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CODEX_VAULT_SANDBOX", "read-only")
    monkeypatch.setenv("FAKE_HOME", str(tmp_path))
    config_file = tmp_path / "codex-vault.yaml"
    config_file.write_text(
        "runtime:\n"
        "  data_dir: ${FAKE_HOME}/state\n"
        "  vault_dir: ${FAKE_HOME}/Vault\n"
        "  max_messages: 40\n"
        "  log_level: warning\n"
        "codex:\n"
        "  path: ${FAKE_HOME}/bin/codex\n",
        encoding="utf-8",
    )

    config = load_yaml_config(config_file)

    assert config.runtime.data_dir == tmp_path / "state"
    assert config.runtime.vault_dir == tmp_path / "Vault"
    assert config.runtime.vault_name == "Vault"
    assert config.runtime.sandbox_mode == "read-only"
    assert config.runtime.max_messages == 40
    assert config.runtime.log_level == "WARNING"
    assert config.codex.path == f"{tmp_path}/bin/codex"
    assert config.codex.extra_dir is None


def test_empty_or_scalar_yaml_uses_defaults(tmp_path: Path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just a string\n", encoding="utf-8")

    for path in (empty, scalar):
        config = load_yaml_config(path)
        assert config.runtime.max_messages == MAX_MESSAGES
        assert config.codex.path is None


def test_missing_and_invalid_yaml_raise(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "nope.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("runtime: [unclosed\n", encoding="utf-8")
    with pytest.raises(yaml.YAMLError):
        load_yaml_config(broken)
