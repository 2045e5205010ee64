"""Assemble the text payload sent to Codex for one turn."""
from __future__ import annotations

from dataclasses import dataclass

from codex_vault.engine.errors import PromptContextError
from codex_vault.shared.models.chat import ContextScope

VAULT_PREAMBLE = "\n".join([
    "Respond in the user's language.",
    "Keep it brief and to the point.",
    "This is an Obsidian vault. Notes are Markdown files in the working directory.",
    "Read-only mode: do not modify or create files.",
    "Search the vault for the notes relevant to the question and cite their paths.",
])

NOTE_PREAMBLE = "\n".join([
    "Respond in the user's language.",
    "Keep it brief and to the point.",
    "This is an Obsidian vault. Notes are Markdown files in the working directory.",
    "Read-only mode: do not modify or create files.",
    "Base your answer only on the referenced note. Do not invent facts.",
])

AUTH_CHECK_PROMPT = "Auth check.\nReply with OK."


@dataclass(frozen=True)
class NoteReference:
    """The note a current-note turn is about."""
    name: str
    path: str


def build_prompt(
    user_text: str,
    scope: ContextScope | str,
    reference: NoteReference | None = None,
) -> str:
    """Build the payload for *user_text* framed by *scope*.

    A current-note scope without *reference* raises PromptContextError;
    it is never silently downgraded to vault scope.
    """
    scope = ContextScope(scope)

    if scope is ContextScope.VAULT:
        return "\n".join([
            VAULT_PREAMBLE,
            "",
            "User question:",
            user_text,
        ])

    if reference is None:
        raise PromptContextError("current-note scope requires a note reference")

    return "\n".join([
        NOTE_PREAMBLE,
        "",
        f"Note: {reference.name}",
        f"Path: @{reference.path}",
        "",
        "User question:",
        user_text,
    ])
