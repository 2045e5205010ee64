"""codex-vault: resumable Codex CLI chat sessions for an Obsidian vault."""

__version__ = "0.1.0"
