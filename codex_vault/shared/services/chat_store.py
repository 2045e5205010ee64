"""Chat persistence: chat index, active message log and settings.

Storage layout:
    {data_dir}/data.json              index of chats + settings
    {data_dir}/chats/{chat_id}.json   message log for one chat

Only the active chat's messages live in memory. Every other chat's log
is on disk and is current as of the last time that chat was active,
because switch_chat() flushes the outgoing chat before activating the
next one.

Disk failures never propagate: reads fall back to defaults, writes are
skipped, and both are logged. In-memory state stays authoritative until
the next successful save.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
import logging
from pathlib import Path
import re
from typing import Any

from codex_vault.engine.config import MAX_MESSAGES
from codex_vault.engine.errors import PersistenceError
from codex_vault.shared.models.chat import (
    ChatFile,
    ChatMeta,
    ContextScope,
    Message,
    PluginData,
    Usage,
    default_chat_title,
    now_ms,
    trim_messages,
)
from codex_vault.shared.models.settings import Settings, normalize_settings
from codex_vault.shared.services.durable_write import atomic_write_json, read_json

logger = logging.getLogger(__name__)

INDEX_FILENAME = "data.json"
CHATS_DIRNAME = "chats"

SettingsListener = Callable[[Settings], None]

_MISSING = object()
_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _normalize_data(raw: Any, vault_name: str) -> tuple[PluginData, ChatFile | None]:
    """Turn whatever was on disk into PluginData.

    Also returns the message log of the legacy single-chat layout
    ({"chat": {...}}) so load() can migrate it into the first chat.
    """
    if not isinstance(raw, dict):
        return PluginData(vault_name=vault_name), None

    chats: list[ChatMeta] = []
    seen: set[str] = set()
    raw_chats = raw.get("chats")
    if isinstance(raw_chats, list):
        for entry in raw_chats:
            chat = ChatMeta.from_dict(entry)
            if chat is None or chat.id in seen:
                continue
            seen.add(chat.id)
            chats.append(chat)

    active_chat_id = raw.get("activeChatId")
    data = PluginData(
        vault_name=vault_name,
        active_chat_id=active_chat_id if isinstance(active_chat_id, str) else "",
        chats=chats,
        settings=normalize_settings(raw.get("settings")),
    )

    legacy = raw.get("chat")
    if chats or not isinstance(legacy, dict):
        return data, None

    legacy_file = ChatFile.from_dict(legacy)
    thread_id = legacy.get("threadId")
    chat = ChatMeta(
        title=default_chat_title(0),
        thread_id=thread_id if isinstance(thread_id, str) and thread_id else None,
    )
    data.chats.append(chat)
    data.active_chat_id = chat.id
    logger.info(
        "Migrating legacy single-chat data (%d messages) into %s",
        len(legacy_file.messages), chat.id,
    )
    return data, legacy_file


class ChatStore:
    """Single source of truth for chats, the active log and settings.

    Lifecycle: construct, ``await load(vault_name)``, use, ``await close()``.
    """

    def __init__(self, data_dir: Path, *, max_messages: int = MAX_MESSAGES) -> None:
        self._data_dir = Path(data_dir)
        self._index_path = self._data_dir / INDEX_FILENAME
        self._chats_dir = self._data_dir / CHATS_DIRNAME
        self._max_messages = max_messages
        self._data = PluginData()
        self._messages: list[Message] = []
        self._listeners: list[SettingsListener] = []

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def index_path(self) -> Path:
        return self._index_path

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def chat_file_path(self, chat_id: str) -> Path:
        """Deterministic per-chat file under the chats directory."""
        safe = _UNSAFE_ID_CHARS.sub("_", chat_id)
        return self._chats_dir / f"{safe}.json"

    # ── Lifecycle ──────────────────────────────────────────────

    async def load(self, vault_name: str) -> None:
        """Read persisted state, repairing anything missing or stale."""
        raw = await self._read(self._index_path)
        data, legacy = _normalize_data(None if raw is _MISSING else raw, vault_name)
        await self._ensure_chats_dir()

        repaired = legacy is not None
        if not data.chats:
            chat = ChatMeta(title=default_chat_title(0))
            data.chats.append(chat)
            data.active_chat_id = chat.id
            repaired = True
            logger.info("No chats found; created %s", chat.id)

        if data.find_chat(data.active_chat_id) is None:
            logger.info(
                "Active chat %r not found; falling back to %s",
                data.active_chat_id, data.chats[0].id,
            )
            data.active_chat_id = data.chats[0].id
            repaired = True

        self._data = data
        if legacy is not None:
            self._messages = trim_messages(legacy.messages, self._max_messages)
            await self._write_chat_file(data.active_chat_id)
        else:
            self._messages = await self._load_chat_messages(data.active_chat_id)

        if repaired:
            await self._write_index()

    async def close(self) -> None:
        """Flush everything and drop settings listeners."""
        await self.save()
        self._listeners.clear()

    # ── Chats ──────────────────────────────────────────────────

    def _active(self) -> ChatMeta:
        chat = self._data.find_chat(self._data.active_chat_id)
        if chat is not None:
            return chat
        if not self._data.chats:
            raise RuntimeError("ChatStore has no chats; call load() first")
        self._data.active_chat_id = self._data.chats[0].id
        return self._data.chats[0]

    def get_active_chat(self) -> ChatMeta:
        return replace(self._active())

    def get_chats(self) -> list[ChatMeta]:
        return [replace(chat) for chat in self._data.chats]

    @property
    def active_chat_id(self) -> str:
        return self._data.active_chat_id

    @property
    def vault_name(self) -> str:
        return self._data.vault_name

    def get_messages(self) -> list[Message]:
        return list(self._messages)

    def set_messages(self, messages: list[Message]) -> None:
        self._messages = trim_messages(messages, self._max_messages)
        self._active().touch()

    def append_message(self, message: Message) -> None:
        self.set_messages([*self._messages, message])

    def update_message(self, message_id: str, text: str) -> None:
        """Replace the text of one message in the active log."""
        self.set_messages([
            m.with_text(text) if m.id == message_id else m
            for m in self._messages
        ])

    def set_thread_id(self, thread_id: str | None) -> None:
        chat = self._active()
        chat.thread_id = thread_id
        chat.touch()

    def update_chat_usage(self, usage: Usage) -> None:
        chat = self._active()
        chat.usage = usage
        chat.touch()

    def update_chat_context(self, scope: ContextScope | str) -> None:
        chat = self._active()
        chat.context_scope = ContextScope.parse(scope)
        chat.touch()

    async def create_chat(self) -> tuple[ChatMeta, list[Message]]:
        """Start a new chat and make it active.

        Does not flush the previous chat's messages; call save() first
        if they have unsaved changes.
        """
        chat = ChatMeta(title=default_chat_title(len(self._data.chats)))
        self._data.chats.append(chat)
        self._data.active_chat_id = chat.id
        self._messages = []
        await self._write_chat_file(chat.id)
        await self._write_index()
        logger.info("Created chat %s (%s)", chat.id, chat.title)
        return replace(chat), []

    async def switch_chat(self, chat_id: str) -> tuple[ChatMeta, list[Message]] | None:
        """Activate *chat_id*, flushing the current chat first.

        Returns None (and touches nothing) when *chat_id* is unknown.
        Also returns None, keeping the current chat and its log active,
        when the outgoing chat cannot be flushed.
        """
        current = self._active()
        if chat_id == current.id:
            return replace(current), list(self._messages)

        target = self._data.find_chat(chat_id)
        if target is None:
            logger.warning("switch_chat: unknown chat id %r", chat_id)
            return None

        if not await self.save():
            logger.warning(
                "switch_chat: could not flush %s; staying on it", current.id,
            )
            return None

        self._data.active_chat_id = target.id
        self._messages = await self._load_chat_messages(target.id)
        await self._write_index()
        logger.debug("Switched chat %s -> %s", current.id, target.id)
        return replace(target), list(self._messages)

    async def save(self) -> bool:
        """Persist the index and the active chat's log together."""
        index_ok = await self._write_index()
        chat_ok = await self._write_chat_file(self._active().id)
        return index_ok and chat_ok

    async def save_meta(self) -> bool:
        """Persist only the index (settings or chat metadata changes)."""
        return await self._write_index()

    # ── Settings ───────────────────────────────────────────────

    def get_settings(self) -> Settings:
        return self._data.settings

    def set_settings(self, settings: Settings) -> None:
        self._data.settings = normalize_settings(settings)
        self._notify_settings()

    def update_settings(self, **partial: Any) -> Settings:
        """Merge snake_case overrides into the settings and normalize."""
        self.set_settings(self._data.settings.merged(**partial))
        return self._data.settings

    def on_settings_change(self, listener: SettingsListener) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify_settings(self) -> None:
        settings = self._data.settings
        for listener in list(self._listeners):
            try:
                listener(settings)
            except Exception:
                logger.exception("Settings listener %r failed", listener)

    # ── Disk I/O ───────────────────────────────────────────────

    async def _ensure_chats_dir(self) -> None:
        try:
            await asyncio.to_thread(self._chats_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Failed to create chats dir %s: %s", self._chats_dir, exc)

    async def _read(self, path: Path) -> Any:
        """JSON content of *path*, _MISSING if absent, None if unreadable."""
        try:
            return await asyncio.to_thread(read_json, path)
        except FileNotFoundError:
            logger.debug("No file at %s", path)
            return _MISSING
        except (OSError, ValueError) as exc:
            error = PersistenceError(str(path), f"read failed: {exc}")
            logger.warning("%s; using defaults", error)
            return None

    async def _write(self, path: Path, payload: dict[str, Any]) -> bool:
        try:
            await asyncio.to_thread(atomic_write_json, path, payload)
        except (OSError, TypeError, ValueError) as exc:
            error = PersistenceError(str(path), f"write failed: {exc}")
            logger.warning("%s; skipping", error)
            return False
        return True

    async def _write_index(self) -> bool:
        return await self._write(self._index_path, self._data.to_dict())

    async def _write_chat_file(self, chat_id: str) -> bool:
        chat_file = ChatFile(messages=list(self._messages), updated_at=now_ms())
        return await self._write(self.chat_file_path(chat_id), chat_file.to_dict())

    async def _load_chat_messages(self, chat_id: str) -> list[Message]:
        path = self.chat_file_path(chat_id)
        raw = await self._read(path)
        if raw is _MISSING:
            await self._write(path, ChatFile().to_dict())
            return []
        chat_file = ChatFile.from_dict(raw)
        return trim_messages(chat_file.messages, self._max_messages)
