"""Exception hierarchy for the Codex session engine.

Specific exceptions for each failure mode, plus the one function
that turns raw CLI error text into a FailureKind.
"""
from __future__ import annotations

from enum import Enum


class CodexVaultError(Exception):
    """Base exception for all codex-vault errors."""


class PathNotFoundError(CodexVaultError):
    """The Codex executable could not be located."""
    def __init__(self, preferred: str | None = None):
        self.preferred = preferred
        if preferred:
            super().__init__(f"Codex executable not found at {preferred}")
        else:
            super().__init__("Codex executable not found")


class ProcessSpawnError(CodexVaultError):
    """The OS refused to start the Codex process."""
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to spawn {command}: {reason}")


class NotInstalledError(ProcessSpawnError):
    """Spawn failed because the executable does not exist."""


class AuthRequiredError(CodexVaultError):
    """Codex reports that the user is not logged in."""


class TurnCancelledError(CodexVaultError):
    """A turn was cancelled by the caller. Not a failure."""


class StreamProtocolError(CodexVaultError):
    """Codex reported a turn-level or stream-level error."""
    def __init__(self, message: str, *, event_type: str = "error"):
        self.event_type = event_type
        super().__init__(message)


class PersistenceError(CodexVaultError):
    """Disk I/O failed while reading or writing chat state."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Persistence failure for {path}: {reason}")


class PromptContextError(CodexVaultError):
    """A note-scoped prompt was requested without a note reference."""


class TurnInProgressError(CodexVaultError):
    """run_streamed() was called while another turn is still running."""


class FailureKind(Enum):
    AUTH = "auth"
    NOT_INSTALLED = "not-installed"
    UNEXPECTED = "unexpected"


_AUTH_KEYWORDS = (
    "login",
    "not logged in",
    "authentication",
    "unauthorized",
    "unauthenticated",
    "not authorized",
    "api key",
    "credential",
)
_NOT_INSTALLED_KEYWORDS = (
    "not found",
    "enoent",
    "no such file",
    "spawn",
    "executable",
)


def classify_failure(error: BaseException | str) -> FailureKind:
    """Map a raw failure to the recovery action the caller should offer.

    Auth keywords win over not-installed keywords. Not-installed also
    requires the message to mention codex, so unrelated "not found"
    errors from the agent itself stay UNEXPECTED.
    """
    if isinstance(error, AuthRequiredError):
        return FailureKind.AUTH
    if isinstance(error, (NotInstalledError, PathNotFoundError)):
        return FailureKind.NOT_INSTALLED

    message = str(error)
    normalized = message.lower()

    if any(keyword in normalized for keyword in _AUTH_KEYWORDS):
        return FailureKind.AUTH

    if "codex" in normalized and any(
        keyword in normalized for keyword in _NOT_INSTALLED_KEYWORDS
    ):
        return FailureKind.NOT_INSTALLED

    return FailureKind.UNEXPECTED
