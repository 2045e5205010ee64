"""Process-level client for the Codex CLI.

Turns run through `codex exec --experimental-json`, which prints one
JSON event per stdout line and reads the prompt from stdin. Liveness
and login use `codex login status` / `codex login`.

All subprocesses are started with asyncio.create_subprocess_exec
(argument array, no shell).
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
import logging
import re

from .errors import (
    NotInstalledError,
    ProcessSpawnError,
    StreamProtocolError,
    TurnCancelledError,
)
from .events import ThreadEvent, decode_line

logger = logging.getLogger(__name__)

_LOGIN_URL_RE = re.compile(r"https://\S+")


async def read_line_unbounded(stream: asyncio.StreamReader) -> bytes:
    """Read one line from *stream* regardless of the reader's size limit.

    A single JSONL event (a long agent message, a tool result with a big
    listing) can exceed the 64 KiB StreamReader limit that readline()
    enforces. Returns b"" at EOF, or the trailing partial line.
    """
    chunks: list[bytes] = []
    while True:
        try:
            chunks.append(await stream.readuntil(b"\n"))
            return b"".join(chunks)
        except asyncio.LimitOverrunError as exc:
            # Buffer full without a newline; drain it and keep going.
            chunks.append(await stream.read(exc.consumed))
        except asyncio.IncompleteReadError as exc:
            chunks.append(exc.partial)
            return b"".join(chunks)


@dataclass(frozen=True)
class ThreadOptions:
    """Per-thread options mapped onto `codex exec` flags."""
    model: str | None = None
    reasoning_effort: str | None = None
    sandbox_mode: str | None = "workspace-write"
    approval_policy: str | None = "never"
    working_directory: str | None = None
    skip_git_repo_check: bool = True
    network_access: bool = False
    web_search: bool = False


@dataclass(frozen=True)
class SpawnResult:
    """Outcome of a short-lived helper process."""
    exit_code: int | None
    error: str | None = None
    timed_out: bool = False
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class LoginResult:
    url: str | None
    exit_code: int | None
    error: str | None = None


def build_exec_args(options: ThreadOptions, thread_id: str | None = None) -> list[str]:
    """Arguments (after the executable) for one streamed turn."""
    args = ["exec", "--experimental-json"]
    if options.model:
        args.extend(["--model", options.model])
    if options.sandbox_mode:
        args.extend(["--sandbox", options.sandbox_mode])
    if options.working_directory:
        args.extend(["--cd", options.working_directory])
    if options.skip_git_repo_check:
        args.append("--skip-git-repo-check")
    if options.reasoning_effort:
        args.extend(["--config", f'model_reasoning_effort="{options.reasoning_effort}"'])
    args.extend([
        "--config",
        f"sandbox_workspace_write.network_access={str(options.network_access).lower()}",
    ])
    args.extend([
        "--config",
        f"features.web_search_request={str(options.web_search).lower()}",
    ])
    if options.approval_policy:
        args.extend(["--config", f'approval_policy="{options.approval_policy}"'])
    if thread_id:
        args.extend(["resume", thread_id])
    return args


class CodexExec:
    """Spawns the Codex executable with a prepared environment."""

    def __init__(self, executable: str, env: dict[str, str] | None = None) -> None:
        self._executable = executable
        self._env = env

    @property
    def executable(self) -> str:
        return self._executable

    async def _spawn(self, *args: str, **kwargs) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                self._executable, *args, env=self._env, **kwargs,
            )
        except FileNotFoundError as exc:
            raise NotInstalledError(self._executable, str(exc)) from exc
        except OSError as exc:
            raise ProcessSpawnError(self._executable, str(exc)) from exc

    async def run(
        self,
        payload: str,
        options: ThreadOptions,
        *,
        thread_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[ThreadEvent]:
        """Run one turn, yielding events as codex prints them.

        Raises TurnCancelledError once *cancel_event* is set (the process
        is killed), StreamProtocolError if codex exits non-zero.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise TurnCancelledError("Turn cancelled before start")

        proc = await self._spawn(
            *build_exec_args(options, thread_id),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.debug("codex exec started (pid=%s, resume=%s)", proc.pid, thread_id)

        stderr_task = asyncio.ensure_future(proc.stderr.read())
        cancel_task = (
            asyncio.ensure_future(cancel_event.wait())
            if cancel_event is not None else None
        )
        try:
            try:
                proc.stdin.write(payload.encode("utf-8"))
                await proc.stdin.drain()
                proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                # Exited before reading the prompt; stderr says why.
                logger.debug("codex exec closed stdin early (pid=%s)", proc.pid)

            while True:
                read_task = asyncio.ensure_future(read_line_unbounded(proc.stdout))
                if cancel_task is not None:
                    await asyncio.wait(
                        {read_task, cancel_task},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    if cancel_task.done():
                        read_task.cancel()
                        raise TurnCancelledError("Turn cancelled")
                line = await read_task
                if not line:
                    break
                event = decode_line(line)
                if event is not None:
                    yield event

            returncode = await proc.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
            if returncode != 0:
                raise StreamProtocolError(
                    f"Codex exited with code {returncode}: {stderr}",
                    event_type="exit",
                )
        finally:
            if cancel_task is not None:
                cancel_task.cancel()
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
                logger.debug("codex exec killed (pid=%s)", proc.pid)
            if not stderr_task.done():
                stderr_task.cancel()

    async def run_status(self, *args: str, timeout: float | None = None) -> SpawnResult:
        """Run a short command and collect its exit code.

        Spawn failures and timeouts are reported in the result, never raised.
        """
        try:
            proc = await self._spawn(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except ProcessSpawnError as exc:
            return SpawnResult(exit_code=None, error=str(exc))

        try:
            if timeout and timeout > 0:
                stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            else:
                stdout, _ = await proc.communicate()
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            return SpawnResult(exit_code=None, timed_out=True, error="timed out")

        return SpawnResult(
            exit_code=proc.returncode,
            output=(stdout or b"").decode("utf-8", errors="replace"),
        )

    async def login(self, on_url: Callable[[str], None] | None = None) -> LoginResult:
        """Run `codex login`, reporting the first browser URL it prints."""
        try:
            proc = await self._spawn(
                "login",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except ProcessSpawnError as exc:
            return LoginResult(url=None, exit_code=None, error=str(exc))

        url: str | None = None
        while True:
            line = await read_line_unbounded(proc.stdout)
            if not line:
                break
            if url is not None:
                continue
            match = _LOGIN_URL_RE.search(line.decode("utf-8", errors="replace"))
            if match:
                url = match.group(0)
                logger.info("codex login URL detected")
                if on_url is not None:
                    on_url(url)

        returncode = await proc.wait()
        return LoginResult(url=url, exit_code=returncode)
