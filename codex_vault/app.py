"""codex-vault command-line entry point.

Usage:
    codex-vault status
    codex-vault candidates --extra-dir ~/.codex-vault/bin
    codex-vault chats
    codex-vault new
    codex-vault switch chat-1a2b3c4d5e6f
    codex-vault context current-note
    codex-vault ask "Which notes mention the Q3 roadmap?"
    codex-vault ask --note Projects/roadmap.md "Summarize this"
    codex-vault settings --model gpt-5.2-codex --internet on
    codex-vault login
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import signal
import sys

from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.table import Table

from codex_vault.engine.codex_path import (
    executable_for_settings,
    list_candidates,
    resolve_executable_path,
)
from codex_vault.engine.config import RuntimeConfig
from codex_vault.engine.session_runtime import AuthStatus, SessionRuntime
from codex_vault.engine.turn import TurnRunner
from codex_vault.engine.yaml_config import CodexConfig, CodexVaultConfig, load_yaml_config
from codex_vault.shared.models.chat import ContextScope
from codex_vault.shared.models.settings import (
    MODEL_OPTIONS,
    REASONING_OPTIONS,
    Settings,
)
from codex_vault.shared.services.chat_store import ChatStore
from codex_vault.shared.services.prompt import NoteReference
from codex_vault.shared.services.vault_instructions import ensure_vault_instructions

logger = logging.getLogger(__name__)
console = Console()


def _configure_logging(config: RuntimeConfig, verbose: bool) -> Path | None:
    """Rotating file log under the data dir plus stderr for warnings."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.addHandler(stream_handler)

    log_dir = config.resolved_log_dir
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning("Cannot create log dir %s: %s", log_dir, exc)
        return None
    log_file = log_dir / "codex-vault.log"
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    return log_file


def _load_config(args: argparse.Namespace) -> CodexVaultConfig:
    if args.config:
        config = load_yaml_config(args.config)
    else:
        config = CodexVaultConfig(runtime=RuntimeConfig.from_env(), codex=CodexConfig())
    if args.data_dir:
        config.runtime.data_dir = Path(args.data_dir).expanduser()
    if args.vault:
        config.runtime.vault_dir = Path(args.vault).expanduser().resolve()
        config.runtime.vault_name = config.runtime.vault_dir.name
    if config.runtime.vault_dir is None:
        config.runtime.vault_dir = Path.cwd()
        config.runtime.vault_name = config.runtime.vault_name or Path.cwd().name
    return config


def _resolve_executable(settings: Settings, codex: CodexConfig) -> str | None:
    if codex.path:
        return resolve_executable_path(codex.path)
    if settings.codex_path_mode == "unset":
        # The CLI has no setup screen; search like "auto".
        logger.debug("codex path mode unset; using automatic lookup")
        return resolve_executable_path()
    return executable_for_settings(settings.codex_path_mode, settings.codex_path)


def _build_runtime(store: ChatStore, config: CodexVaultConfig) -> SessionRuntime:
    settings = store.get_settings()
    return SessionRuntime(
        executable=_resolve_executable(settings, config.codex),
        settings=settings,
        thread_id=store.get_active_chat().thread_id,
        config=config.runtime,
    )


# ── Commands ───────────────────────────────────────────────────


async def _cmd_status(store: ChatStore, config: CodexVaultConfig, args) -> int:
    runtime = _build_runtime(store, config)
    result = await runtime.check_auth_status()
    if not result.installed:
        console.print("[red]Codex CLI not found.[/red] Run `codex-vault candidates`.")
        return 1
    console.print(f"Codex: [bold]{runtime.executable}[/bold]")
    if result.status is AuthStatus.LOGGED_IN:
        console.print("Auth: [green]logged in[/green]")
        return 0
    console.print("Auth: [yellow]not logged in[/yellow] (run `codex-vault login`)")
    return 1


async def _cmd_candidates(store: ChatStore, config: CodexVaultConfig, args) -> int:
    extra_dir = args.extra_dir or config.codex.extra_dir
    candidates = list_candidates(extra_dir)
    if not candidates:
        console.print("[red]No Codex installations found.[/red]")
        return 1
    table = Table(title="Codex installations")
    table.add_column("#", justify="right")
    table.add_column("Source")
    table.add_column("Path")
    for index, candidate in enumerate(candidates, start=1):
        source = candidate.label.split(":", 1)[0]
        table.add_row(str(index), source, candidate.path)
    console.print(table)
    return 0


async def _cmd_chats(store: ChatStore, config: CodexVaultConfig, args) -> int:
    table = Table(title=f"Chats ({store.vault_name})")
    table.add_column("")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Scope")
    table.add_column("Tokens", justify="right")
    for chat in store.get_chats():
        marker = "*" if chat.id == store.active_chat_id else ""
        table.add_row(
            marker, chat.id, chat.title, chat.context_scope.value,
            str(chat.usage.total_tokens),
        )
    console.print(table)
    return 0


async def _cmd_new(store: ChatStore, config: CodexVaultConfig, args) -> int:
    await store.save()
    chat, _ = await store.create_chat()
    console.print(f"Created [bold]{chat.title}[/bold] ({chat.id})")
    return 0


async def _cmd_switch(store: ChatStore, config: CodexVaultConfig, args) -> int:
    result = await store.switch_chat(args.chat_id)
    if result is None:
        console.print(f"[red]Could not switch to[/red] {args.chat_id} (unknown id or save failed)")
        return 1
    chat, messages = result
    console.print(f"Active: [bold]{chat.title}[/bold] ({len(messages)} messages)")
    return 0


async def _cmd_context(store: ChatStore, config: CodexVaultConfig, args) -> int:
    store.update_chat_context(args.scope)
    await store.save_meta()
    console.print(f"Context scope: {args.scope}")
    return 0


async def _cmd_settings(store: ChatStore, config: CodexVaultConfig, args) -> int:
    changes: dict = {}
    if args.model:
        changes["model"] = args.model
    if args.reasoning:
        changes["reasoning"] = args.reasoning
    if args.codex_path:
        if args.codex_path in ("auto", "unset"):
            changes["codex_path_mode"] = args.codex_path
            changes["codex_path"] = None
        else:
            changes["codex_path_mode"] = "custom"
            changes["codex_path"] = args.codex_path
    if args.internet:
        changes["internet_access"] = args.internet == "on"
    if args.web_search:
        changes["web_search"] = args.web_search == "on"

    if changes:
        store.update_settings(**changes)
        await store.save_meta()

    table = Table(title="Settings")
    table.add_column("Key")
    table.add_column("Value")
    for key, value in store.get_settings().to_dict().items():
        table.add_row(key, str(value))
    console.print(table)
    return 0


async def _cmd_login(store: ChatStore, config: CodexVaultConfig, args) -> int:
    runtime = _build_runtime(store, config)
    result = await runtime.start_login_flow(
        on_url=lambda url: console.print(f"Open this URL to log in: {url}")
    )
    if result.error:
        console.print(f"[red]{result.error}[/red]")
        return 1
    if not result.url:
        console.print("Login URL was not detected. Run `codex login` in your terminal.")
    return 0 if result.exit_code == 0 else 1


async def _cmd_ask(store: ChatStore, config: CodexVaultConfig, args) -> int:
    if config.runtime.vault_dir is not None:
        ensure_vault_instructions(config.runtime.vault_dir)

    runtime = _build_runtime(store, config)
    runner = TurnRunner(store, runtime)

    reference = None
    if args.note:
        store.update_chat_context(ContextScope.CURRENT_NOTE)
        note_path = Path(args.note)
        reference = NoteReference(name=note_path.name, path=args.note)

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        # Windows event loops do not support signal handlers.
        pass

    try:
        with Live(Markdown(""), console=console, refresh_per_second=8) as live:
            report = await runner.send(
                args.text,
                reference=reference,
                cancel_event=cancel_event,
                on_text=lambda text: live.update(Markdown(text)),
            )
            live.update(Markdown(report.text))
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    return 0 if report.outcome is not None and report.outcome.ok else 1


_COMMANDS = {
    "status": _cmd_status,
    "candidates": _cmd_candidates,
    "chats": _cmd_chats,
    "new": _cmd_new,
    "switch": _cmd_switch,
    "context": _cmd_context,
    "settings": _cmd_settings,
    "login": _cmd_login,
    "ask": _cmd_ask,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codex-vault",
        description="Resumable Codex CLI chats about an Obsidian vault",
    )
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--data-dir", default=None, help="Chat storage directory")
    parser.add_argument("--vault", default=None, help="Vault directory (default: cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show Codex install and login state")
    candidates = sub.add_parser("candidates", help="List discoverable Codex installs")
    candidates.add_argument("--extra-dir", default=None)
    sub.add_parser("chats", help="List chats")
    sub.add_parser("new", help="Start a new chat")
    switch = sub.add_parser("switch", help="Switch the active chat")
    switch.add_argument("chat_id")
    context = sub.add_parser("context", help="Set the active chat's context scope")
    context.add_argument("scope", choices=[s.value for s in ContextScope])
    settings = sub.add_parser("settings", help="Show or change settings")
    settings.add_argument("--model", choices=MODEL_OPTIONS)
    settings.add_argument("--reasoning", choices=REASONING_OPTIONS)
    settings.add_argument("--codex-path", help="Executable path, 'auto' or 'unset'")
    settings.add_argument("--internet", choices=("on", "off"))
    settings.add_argument("--web-search", choices=("on", "off"))
    sub.add_parser("login", help="Log in to Codex through the browser")
    ask = sub.add_parser("ask", help="Send a message in the active chat")
    ask.add_argument("text")
    ask.add_argument("--note", default=None, help="Vault-relative note path")
    return parser


async def _run(args: argparse.Namespace, config: CodexVaultConfig) -> int:
    store = ChatStore(config.runtime.data_dir, max_messages=config.runtime.max_messages)
    await store.load(config.runtime.vault_name)
    try:
        return await _COMMANDS[args.command](store, config, args)
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = _load_config(args)
    log_file = _configure_logging(config.runtime, args.verbose)
    logger.info(
        "codex-vault %s data_dir=%s vault=%s log=%s",
        args.command, config.runtime.data_dir, config.runtime.vault_dir, log_file,
    )
    sys.exit(asyncio.run(_run(args, config)))


if __name__ == "__main__":
    main()
