"""Codex session engine: executable lookup, streamed turns, error taxonomy."""
from .config import RuntimeConfig
from .errors import (
    AuthRequiredError,
    CodexVaultError,
    FailureKind,
    NotInstalledError,
    PathNotFoundError,
    PersistenceError,
    ProcessSpawnError,
    PromptContextError,
    StreamProtocolError,
    TurnCancelledError,
    TurnInProgressError,
    classify_failure,
)

__all__ = [
    # Config
    "RuntimeConfig",
    # YAML config (lazy import)
    "CodexVaultConfig",
    "load_yaml_config",
    # Runtime (lazy import)
    "SessionRuntime",
    "TurnOutcome",
    "TurnStatus",
    "AuthStatus",
    "TurnRunner",
    # Errors
    "AuthRequiredError",
    "CodexVaultError",
    "FailureKind",
    "NotInstalledError",
    "PathNotFoundError",
    "PersistenceError",
    "ProcessSpawnError",
    "PromptContextError",
    "StreamProtocolError",
    "TurnCancelledError",
    "TurnInProgressError",
    "classify_failure",
]


def __getattr__(name: str):
    if name in ("CodexVaultConfig", "load_yaml_config"):
        from . import yaml_config
        return getattr(yaml_config, name)
    if name in ("SessionRuntime", "TurnOutcome", "TurnStatus", "AuthStatus"):
        from . import session_runtime
        return getattr(session_runtime, name)
    if name == "TurnRunner":
        from .turn import TurnRunner
        return TurnRunner
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
