"""Chat metadata, messages and the persisted plugin data shapes.

Field names are snake_case in Python; to_dict()/from_dict() convert
to the camelCase JSON layout used on disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import time
from typing import Any
import uuid

from codex_vault.shared.models.settings import Settings


def now_ms() -> int:
    return int(time.time() * 1000)


def gen_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


DEFAULT_TITLE_PREFIX = "Chat"


def default_chat_title(existing_count: int) -> str:
    return f"{DEFAULT_TITLE_PREFIX} {existing_count + 1}"


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ContextScope(Enum):
    VAULT = "vault"
    CURRENT_NOTE = "current-note"

    @classmethod
    def parse(cls, value: Any) -> ContextScope:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.VAULT


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


@dataclass(frozen=True)
class Usage:
    """Cumulative token accounting for one chat."""
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, delta: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + delta.input_tokens,
            cached_input_tokens=self.cached_input_tokens + delta.cached_input_tokens,
            output_tokens=self.output_tokens + delta.output_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "cachedInputTokens": self.cached_input_tokens,
            "outputTokens": self.output_tokens,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Usage:
        if not isinstance(data, dict):
            return cls()
        return cls(
            input_tokens=_int(data.get("inputTokens")),
            cached_input_tokens=_int(data.get("cachedInputTokens")),
            output_tokens=_int(data.get("outputTokens")),
        )

    @classmethod
    def from_event(cls, data: Any) -> Usage:
        """Parse the snake_case usage block of a turn.completed event."""
        if not isinstance(data, dict):
            return cls()
        return cls(
            input_tokens=_int(data.get("input_tokens")),
            cached_input_tokens=_int(data.get("cached_input_tokens")),
            output_tokens=_int(data.get("output_tokens")),
        )


@dataclass(frozen=True)
class MessageMeta:
    note_name: str | None = None
    note_path: str | None = None
    chars: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.note_name is not None:
            data["noteName"] = self.note_name
        if self.note_path is not None:
            data["notePath"] = self.note_path
        if self.chars is not None:
            data["chars"] = self.chars
        return data

    @classmethod
    def from_dict(cls, data: Any) -> MessageMeta | None:
        if not isinstance(data, dict):
            return None
        chars = data.get("chars")
        return cls(
            note_name=data.get("noteName"),
            note_path=data.get("notePath"),
            chars=chars if isinstance(chars, int) else None,
        )


@dataclass(frozen=True)
class Message:
    role: MessageRole
    text: str
    id: str = ""
    ts: int = field(default_factory=now_ms)
    meta: MessageMeta | None = None

    def __post_init__(self) -> None:
        if not self.id:
            object.__setattr__(self, "id", gen_id(self.role.value))

    def with_text(self, text: str) -> Message:
        return Message(role=self.role, text=text, id=self.id, ts=self.ts, meta=self.meta)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "ts": self.ts,
        }
        if self.meta is not None:
            data["meta"] = self.meta.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Message | None:
        """Parse one stored message; malformed entries return None."""
        if not isinstance(data, dict):
            return None
        try:
            role = MessageRole(data.get("role"))
        except ValueError:
            return None
        text = data.get("text")
        if not isinstance(text, str):
            return None
        ts = data.get("ts")
        return cls(
            role=role,
            text=text,
            id=str(data.get("id") or ""),
            ts=ts if isinstance(ts, int) else now_ms(),
            meta=MessageMeta.from_dict(data.get("meta")),
        )


def trim_messages(messages: list[Message], limit: int) -> list[Message]:
    """Keep only the most recent *limit* messages, in order."""
    if len(messages) <= limit:
        return list(messages)
    return list(messages[len(messages) - limit:])


@dataclass
class ChatMeta:
    """Index entry for one chat session."""
    id: str = field(default_factory=lambda: gen_id("chat"))
    title: str = ""
    thread_id: str | None = None
    context_scope: ContextScope = ContextScope.VAULT
    usage: Usage = field(default_factory=Usage)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def touch(self) -> None:
        self.updated_at = now_ms()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "threadId": self.thread_id,
            "contextScope": self.context_scope.value,
            "usage": self.usage.to_dict(),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> ChatMeta | None:
        if not isinstance(data, dict):
            return None
        chat_id = data.get("id")
        if not isinstance(chat_id, str) or not chat_id:
            return None
        thread_id = data.get("threadId")
        created_at = data.get("createdAt")
        updated_at = data.get("updatedAt")
        now = now_ms()
        return cls(
            id=chat_id,
            title=str(data.get("title") or ""),
            thread_id=thread_id if isinstance(thread_id, str) and thread_id else None,
            context_scope=ContextScope.parse(data.get("contextScope")),
            usage=Usage.from_dict(data.get("usage")),
            created_at=created_at if isinstance(created_at, int) else now,
            updated_at=updated_at if isinstance(updated_at, int) else now,
        )


@dataclass
class ChatFile:
    """On-disk message log for one chat."""
    messages: list[Message] = field(default_factory=list)
    updated_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> ChatFile:
        if not isinstance(data, dict):
            return cls()
        raw_messages = data.get("messages")
        messages: list[Message] = []
        if isinstance(raw_messages, list):
            for raw in raw_messages:
                msg = Message.from_dict(raw)
                if msg is not None:
                    messages.append(msg)
        updated_at = data.get("updatedAt")
        return cls(
            messages=messages,
            updated_at=updated_at if isinstance(updated_at, int) else now_ms(),
        )


@dataclass
class PluginData:
    """Top-level persisted state: chat index plus global settings."""
    vault_name: str = ""
    active_chat_id: str = ""
    chats: list[ChatMeta] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)

    def find_chat(self, chat_id: str) -> ChatMeta | None:
        for chat in self.chats:
            if chat.id == chat_id:
                return chat
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "vaultName": self.vault_name,
            "activeChatId": self.active_chat_id,
            "chats": [c.to_dict() for c in self.chats],
            "settings": self.settings.to_dict(),
        }
