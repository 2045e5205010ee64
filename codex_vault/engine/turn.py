"""Apply one streamed Codex turn to the active chat.

TurnRunner ties ChatStore, build_prompt and SessionRuntime together:
append the user message and an assistant placeholder, stream agent text
into the placeholder, accumulate usage, remember the thread id, and
finish the placeholder with a terminal text for every outcome.
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging

from codex_vault.shared.models.chat import (
    ContextScope,
    Message,
    MessageMeta,
    MessageRole,
)
from codex_vault.shared.services.chat_store import ChatStore
from codex_vault.shared.services.prompt import NoteReference, build_prompt

from .errors import FailureKind
from .events import ITEM_COMPLETED, ITEM_UPDATED, ItemEvent, ThreadEvent, TurnCompleted
from .session_runtime import SessionRuntime, TurnOutcome, TurnStatus

logger = logging.getLogger(__name__)

THINKING_TEXT = "Thinking..."
CANCELLED_TEXT = "Cancelled"
NO_RESPONSE_TEXT = "No response"
NO_NOTE_TEXT = "Open a note first"

FAILURE_TEXT = {
    FailureKind.AUTH: "Needs login. Run codex login in terminal.",
    FailureKind.NOT_INSTALLED: "Codex unavailable",
    FailureKind.UNEXPECTED: "Unexpected error",
}


@dataclass(frozen=True)
class TurnReport:
    """What send() did to the chat log."""
    outcome: TurnOutcome | None
    assistant_message_id: str | None
    text: str


class TurnRunner:
    """Runs user turns for whichever chat is active in *store*."""

    def __init__(self, store: ChatStore, runtime: SessionRuntime) -> None:
        self._store = store
        self._runtime = runtime
        self._pending_saves: list[asyncio.Task] = []

    @property
    def runtime(self) -> SessionRuntime:
        return self._runtime

    async def send(
        self,
        user_text: str,
        *,
        reference: NoteReference | None = None,
        cancel_event: asyncio.Event | None = None,
        on_text: Callable[[str], None] | None = None,
    ) -> TurnReport:
        text = user_text.strip()
        if not text:
            raise ValueError("Cannot send an empty message")

        chat = self._store.get_active_chat()
        if self._runtime.thread_id != chat.thread_id:
            self._runtime.reset_thread(chat.thread_id)

        self._store.append_message(Message(role=MessageRole.USER, text=text))

        if chat.context_scope is ContextScope.CURRENT_NOTE and reference is None:
            self._store.append_message(Message(role=MessageRole.SYSTEM, text=NO_NOTE_TEXT))
            await self._store.save()
            return TurnReport(outcome=None, assistant_message_id=None, text=NO_NOTE_TEXT)

        payload = build_prompt(text, chat.context_scope, reference)
        assistant = Message(
            role=MessageRole.ASSISTANT,
            text=THINKING_TEXT,
            meta=MessageMeta(note_name=reference.name, note_path=reference.path)
            if reference is not None else None,
        )
        self._store.append_message(assistant)

        def on_event(event: ThreadEvent) -> None:
            if cancel_event is not None and cancel_event.is_set():
                return
            if isinstance(event, TurnCompleted):
                usage = self._store.get_active_chat().usage.add(event.usage)
                self._store.update_chat_usage(usage)
                logger.info(
                    "Turn completed: in=%d cached=%d out=%d",
                    event.usage.input_tokens,
                    event.usage.cached_input_tokens,
                    event.usage.output_tokens,
                )
            elif (
                isinstance(event, ItemEvent)
                and event.item.is_agent_message
                and event.type in (ITEM_UPDATED, ITEM_COMPLETED)
            ):
                self._store.update_message(assistant.id, event.item.text)
                if on_text is not None:
                    on_text(event.item.text)

        def on_thread_started(thread_id: str) -> None:
            self._store.set_thread_id(thread_id)
            self._pending_saves.append(asyncio.ensure_future(self._store.save_meta()))

        try:
            outcome = await self._runtime.run_streamed(
                payload,
                cancel_event=cancel_event,
                on_event=on_event,
                on_thread_started=on_thread_started,
            )
        finally:
            await self._flush_pending()

        final = self._final_text(outcome)
        self._store.update_message(assistant.id, final)
        await self._store.save()
        return TurnReport(outcome=outcome, assistant_message_id=assistant.id, text=final)

    def _final_text(self, outcome: TurnOutcome) -> str:
        if outcome.status is TurnStatus.CANCELLED:
            return CANCELLED_TEXT
        if outcome.status is TurnStatus.FAILED:
            logger.error("Turn failed (%s): %s", outcome.failure, outcome.error)
            return FAILURE_TEXT[outcome.failure or FailureKind.UNEXPECTED]
        return outcome.final_text or NO_RESPONSE_TEXT

    async def _flush_pending(self) -> None:
        pending, self._pending_saves = self._pending_saves, []
        if pending:
            await asyncio.gather(*pending)
