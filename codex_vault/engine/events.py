"""Typed view of the JSONL events `codex exec --experimental-json` emits.

Payloads are interpreted, never altered: every event keeps its raw dict.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Union

from codex_vault.shared.models.chat import Usage

logger = logging.getLogger(__name__)

AGENT_MESSAGE_ITEM = "agent_message"

ITEM_STARTED = "item.started"
ITEM_UPDATED = "item.updated"
ITEM_COMPLETED = "item.completed"


@dataclass(frozen=True)
class ThreadStarted:
    thread_id: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
    type: str = "thread.started"


@dataclass(frozen=True)
class TurnStarted:
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
    type: str = "turn.started"


@dataclass(frozen=True)
class TurnCompleted:
    usage: Usage
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
    type: str = "turn.completed"


@dataclass(frozen=True)
class TurnFailed:
    message: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
    type: str = "turn.failed"


@dataclass(frozen=True)
class AgentItem:
    """A thread item. Only agent_message text reaches the chat log."""
    id: str
    item_type: str
    text: str = ""

    @property
    def is_agent_message(self) -> bool:
        return self.item_type == AGENT_MESSAGE_ITEM


@dataclass(frozen=True)
class ItemEvent:
    type: str  # item.started / item.updated / item.completed
    item: AgentItem
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class StreamError:
    message: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
    type: str = "error"


@dataclass(frozen=True)
class UnknownEvent:
    type: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


ThreadEvent = Union[
    ThreadStarted,
    TurnStarted,
    TurnCompleted,
    TurnFailed,
    ItemEvent,
    StreamError,
    UnknownEvent,
]


def parse_event(data: dict[str, Any]) -> ThreadEvent:
    """Convert one decoded JSON event into its typed form."""
    event_type = str(data.get("type") or "")

    if event_type == "thread.started":
        return ThreadStarted(thread_id=str(data.get("thread_id") or ""), raw=data)
    if event_type == "turn.started":
        return TurnStarted(raw=data)
    if event_type == "turn.completed":
        return TurnCompleted(usage=Usage.from_event(data.get("usage")), raw=data)
    if event_type == "turn.failed":
        error = data.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        return TurnFailed(message=str(message or "Turn failed"), raw=data)
    if event_type in (ITEM_STARTED, ITEM_UPDATED, ITEM_COMPLETED):
        item = data.get("item")
        if not isinstance(item, dict):
            item = {}
        text = item.get("text")
        return ItemEvent(
            type=event_type,
            item=AgentItem(
                id=str(item.get("id") or ""),
                item_type=str(item.get("type") or ""),
                text=text if isinstance(text, str) else "",
            ),
            raw=data,
        )
    if event_type == "error":
        return StreamError(message=str(data.get("message") or "Stream error"), raw=data)
    return UnknownEvent(type=event_type, raw=data)


def decode_line(line: bytes | str) -> ThreadEvent | None:
    """Parse one stdout line; blank or non-JSON lines yield None."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON line from codex: %.200s", line)
        return None
    if not isinstance(data, dict):
        return None
    return parse_event(data)
