"""AGENTS.md bootstrap: read-only guidance Codex picks up from the vault root."""
from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

AGENTS_FILE = "AGENTS.md"

AGENTS_CONTENT = (
    "# Obsidian vault instructions\n"
    "\n"
    "- This vault contains Markdown notes.\n"
    "- Read-only mode: do not modify or create files.\n"
    "- When answering questions about notes, use only the note text and do not invent facts.\n"
)

# Earlier releases also forbade commands and internet access, which
# conflicts with the internet-access setting.
LEGACY_AGENTS_CONTENT = (
    "# Obsidian vault instructions\n"
    "\n"
    "- This vault contains Markdown notes.\n"
    "- Read-only mode: do not modify or create files, do not run commands, "
    "and do not use the internet.\n"
    "- When answering questions about notes, use only the note text and do not invent facts.\n"
)


def ensure_vault_instructions(vault_dir: Path) -> Path | None:
    """Create AGENTS.md in *vault_dir*, or upgrade the legacy text.

    A user-edited file is left alone. Returns the file path, or None
    when it could not be written.
    """
    path = Path(vault_dir) / AGENTS_FILE
    try:
        if path.exists():
            if path.is_file() and path.read_text(encoding="utf-8") == LEGACY_AGENTS_CONTENT:
                path.write_text(AGENTS_CONTENT, encoding="utf-8")
                logger.info("Upgraded legacy %s", path)
            return path
        path.write_text(AGENTS_CONTENT, encoding="utf-8")
        logger.info("Created %s", path)
        return path
    except OSError as exc:
        logger.warning("Failed to prepare %s: %s", path, exc)
        return None
