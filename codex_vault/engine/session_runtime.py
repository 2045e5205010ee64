"""One resumable Codex conversation.

State machine:
    UNINITIALIZED -> BOUND      first run binds a thread handle
                                (resume known thread_id, else start fresh)
    BOUND -> STREAMING -> BOUND one turn's event stream
    any -> UNINITIALIZED        options/executable changed; the next run
                                rebinds with the same thread_id

A runtime is not reentrant: callers serialize turns.
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
import logging
import os
from pathlib import Path

from codex_vault.shared.models.chat import Usage
from codex_vault.shared.models.settings import Settings
from codex_vault.shared.services.prompt import AUTH_CHECK_PROMPT

from .agent_process import CodexExec, LoginResult, ThreadOptions
from .codex_path import build_environment
from .config import RuntimeConfig
from .errors import (
    CodexVaultError,
    FailureKind,
    TurnCancelledError,
    TurnInProgressError,
    classify_failure,
)
from .events import (
    ITEM_COMPLETED,
    ITEM_UPDATED,
    ItemEvent,
    StreamError,
    ThreadEvent,
    ThreadStarted,
    TurnCompleted,
    TurnFailed,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[ThreadEvent], None]
ThreadStartedCallback = Callable[[str], None]
ClientFactory = Callable[[str, dict[str, str]], CodexExec]


class RuntimeState(Enum):
    UNINITIALIZED = "uninitialized"
    BOUND = "bound"
    STREAMING = "streaming"


class TurnStatus(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class AuthStatus(Enum):
    UNKNOWN = "unknown"
    LOGGED_IN = "logged-in"
    NOT_LOGGED_IN = "not-logged-in"


@dataclass(frozen=True)
class TurnOutcome:
    """How a turn ended, typed so callers never parse CLI error text."""
    status: TurnStatus
    thread_id: str | None = None
    usage: Usage | None = None
    final_text: str | None = None
    error: str | None = None
    failure: FailureKind | None = None

    @property
    def ok(self) -> bool:
        return self.status is TurnStatus.COMPLETED


@dataclass(frozen=True)
class AuthCheckResult:
    status: AuthStatus
    installed: bool
    error_message: str | None = None


@dataclass
class _BoundThread:
    thread_id: str | None
    options: ThreadOptions


def default_auth_file() -> Path:
    codex_home = os.environ.get("CODEX_HOME")
    base = Path(codex_home) if codex_home else Path.home() / ".codex"
    return base / "auth.json"


def thread_options_for(settings: Settings, config: RuntimeConfig) -> ThreadOptions:
    return ThreadOptions(
        model=settings.model,
        reasoning_effort=settings.reasoning,
        sandbox_mode=config.sandbox_mode,
        approval_policy=config.approval_policy,
        working_directory=str(config.vault_dir) if config.vault_dir else None,
        skip_git_repo_check=config.skip_git_repo_check,
        network_access=settings.internet_access,
        web_search=settings.web_search,
    )


class SessionRuntime:
    """Runs streamed turns against one Codex thread."""

    def __init__(
        self,
        *,
        executable: str | None,
        settings: Settings,
        thread_id: str | None = None,
        config: RuntimeConfig | None = None,
        client_factory: ClientFactory = CodexExec,
        auth_file: Path | None = None,
    ) -> None:
        self._config = config or RuntimeConfig()
        self._client_factory = client_factory
        self._auth_file = auth_file or default_auth_file()
        self._settings = settings
        self._options = thread_options_for(settings, self._config)
        self._thread_id = thread_id
        self._handle: _BoundThread | None = None
        self._running = False
        self._executable: str | None = None
        self._client: CodexExec | None = None
        self._set_executable(executable)

    # ── Introspection ──────────────────────────────────────────

    @property
    def installed(self) -> bool:
        return self._executable is not None

    @property
    def executable(self) -> str | None:
        return self._executable

    @property
    def thread_id(self) -> str | None:
        return self._thread_id

    @property
    def options(self) -> ThreadOptions:
        return self._options

    @property
    def state(self) -> RuntimeState:
        if self._running:
            return RuntimeState.STREAMING
        if self._handle is not None:
            return RuntimeState.BOUND
        return RuntimeState.UNINITIALIZED

    # ── Configuration ──────────────────────────────────────────

    def _set_executable(self, executable: str | None) -> None:
        self._executable = executable
        if executable is None:
            self._client = None
            return
        self._client = self._client_factory(executable, build_environment(executable))

    def update_settings(self, settings: Settings) -> None:
        """Apply new model/reasoning/network flags; rebinds on next turn."""
        self._settings = settings
        self._options = thread_options_for(settings, self._config)
        self._handle = None

    def update_executable(self, executable: str | None) -> None:
        self._set_executable(executable)
        self._handle = None

    def reset_thread(self, thread_id: str | None) -> None:
        """Point the runtime at another chat's thread."""
        if self._running:
            raise TurnInProgressError("Cannot change thread while a turn is running")
        self._thread_id = thread_id
        self._handle = None

    def _bind(self) -> _BoundThread:
        if self._handle is None:
            self._handle = _BoundThread(thread_id=self._thread_id, options=self._options)
            if self._thread_id:
                logger.debug("Resuming codex thread %s", self._thread_id)
            else:
                logger.debug("Starting new codex thread")
        return self._handle

    # ── Turns ──────────────────────────────────────────────────

    async def run_streamed(
        self,
        input: str,
        *,
        cancel_event: asyncio.Event | None = None,
        on_event: EventCallback | None = None,
        on_thread_started: ThreadStartedCallback | None = None,
    ) -> TurnOutcome:
        """Run one turn on the bound thread, streaming events to *on_event*.

        on_thread_started fires once, for the first thread.started event.
        A thread id learned before cancellation is kept for later turns.
        """
        if self._running:
            raise TurnInProgressError("A turn is already running on this runtime")
        if self._client is None:
            return TurnOutcome(
                status=TurnStatus.FAILED,
                thread_id=self._thread_id,
                error="Codex executable not found",
                failure=FailureKind.NOT_INSTALLED,
            )

        handle = self._bind()
        self._running = True
        try:
            return await self._consume(
                input,
                handle,
                cancel_event=cancel_event,
                on_event=on_event,
                on_thread_started=on_thread_started,
                keep_thread=True,
            )
        finally:
            self._running = False

    async def check_auth(self) -> TurnOutcome:
        """Probe authentication with a tiny turn on a throwaway thread."""
        if self._running:
            raise TurnInProgressError("A turn is already running on this runtime")
        if self._client is None:
            return TurnOutcome(
                status=TurnStatus.FAILED,
                error="Codex executable not found",
                failure=FailureKind.NOT_INSTALLED,
            )
        self._running = True
        try:
            return await self._consume(
                AUTH_CHECK_PROMPT,
                _BoundThread(thread_id=None, options=self._options),
                keep_thread=False,
            )
        finally:
            self._running = False

    async def _consume(
        self,
        payload: str,
        handle: _BoundThread,
        *,
        cancel_event: asyncio.Event | None = None,
        on_event: EventCallback | None = None,
        on_thread_started: ThreadStartedCallback | None = None,
        keep_thread: bool,
    ) -> TurnOutcome:
        assert self._client is not None
        failure_message: str | None = None
        failure_source: BaseException | str = ""
        final_text: str | None = None
        usage: Usage | None = None
        thread_notified = False
        cancelled = False

        try:
            events = self._client.run(
                payload,
                handle.options,
                thread_id=handle.thread_id,
                cancel_event=cancel_event,
            )
            async with aclosing(events):
                async for event in events:
                    if cancel_event is not None and cancel_event.is_set():
                        cancelled = True
                        break

                    if isinstance(event, ThreadStarted) and event.thread_id and not thread_notified:
                        thread_notified = True
                        handle.thread_id = event.thread_id
                        if keep_thread:
                            self._thread_id = event.thread_id
                            if on_thread_started is not None:
                                on_thread_started(event.thread_id)

                    if failure_message is not None:
                        continue

                    if isinstance(event, (TurnFailed, StreamError)):
                        failure_message = event.message
                        failure_source = event.message
                        logger.warning("Codex %s: %s", event.type, event.message)
                    elif isinstance(event, TurnCompleted):
                        usage = event.usage
                    elif (
                        isinstance(event, ItemEvent)
                        and event.item.is_agent_message
                        and event.type in (ITEM_UPDATED, ITEM_COMPLETED)
                    ):
                        final_text = event.item.text

                    if on_event is not None:
                        on_event(event)
        except TurnCancelledError:
            cancelled = True
        except CodexVaultError as exc:
            logger.error("Codex turn failed: %s", exc)
            if failure_message is None:
                failure_message = str(exc)
                failure_source = exc

        if cancelled or (cancel_event is not None and cancel_event.is_set()):
            logger.info("Codex turn cancelled (thread=%s)", handle.thread_id)
            return TurnOutcome(
                status=TurnStatus.CANCELLED,
                thread_id=handle.thread_id,
                usage=usage,
                final_text=final_text,
            )

        if failure_message is not None:
            return TurnOutcome(
                status=TurnStatus.FAILED,
                thread_id=handle.thread_id,
                usage=usage,
                final_text=final_text,
                error=failure_message,
                failure=classify_failure(failure_source),
            )

        return TurnOutcome(
            status=TurnStatus.COMPLETED,
            thread_id=handle.thread_id,
            usage=usage,
            final_text=final_text,
        )

    # ── Auth / liveness ────────────────────────────────────────

    async def check_auth_status(self) -> AuthCheckResult:
        """Ask `codex login status`; fall back to the credential file."""
        if self._client is None:
            return AuthCheckResult(status=AuthStatus.UNKNOWN, installed=False)

        result = await self._client.run_status(
            "login", "status", timeout=self._config.login_status_timeout,
        )
        if result.ok:
            return AuthCheckResult(status=AuthStatus.LOGGED_IN, installed=True)

        if result.error:
            logger.warning("codex login status failed: %s", result.error)
        else:
            logger.info("codex login status exited with %s", result.exit_code)

        if self._has_auth_file():
            return AuthCheckResult(status=AuthStatus.LOGGED_IN, installed=True)
        return AuthCheckResult(
            status=AuthStatus.NOT_LOGGED_IN,
            installed=True,
            error_message=result.error,
        )

    def _has_auth_file(self) -> bool:
        try:
            return self._auth_file.is_file()
        except OSError:
            return False

    async def start_login_flow(
        self, on_url: Callable[[str], None] | None = None,
    ) -> LoginResult:
        """Run `codex login` and surface its browser URL."""
        if self._client is None:
            return LoginResult(url=None, exit_code=None, error="Codex executable not found")
        return await self._client.login(on_url)
