"""Locate the Codex CLI and build an environment that can find it again.

Search order (first hit wins):
    1. Explicit override env vars (CODEX_PATH, CODEX_BIN)
    2. Each directory on PATH
    3. nvm bin directories (NVM_BIN, then $NVM_DIR/versions/node/*/bin)
    4. Well-known system install directories

Nothing in here raises for a missing executable: absence is returned
as None (or an empty list) and scan failures are logged at debug.
"""
from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

EXPLICIT_PATH_KEYS = ("CODEX_PATH", "CODEX_BIN")

# Executable names tried in every directory, keyed by platform family.
BIN_NAMES: dict[str, tuple[str, ...]] = {
    "posix": ("codex",),
    "win32": ("codex.exe", "codex.cmd", "codex.bat", "codex"),
}

SOURCE_PATH = "PATH"
SOURCE_NVM = "nvm"
SOURCE_SYSTEM = "system"


@dataclass(frozen=True)
class Candidate:
    """A discovered Codex executable offered to the user."""
    label: str
    path: str


def bin_names(platform: str | None = None) -> tuple[str, ...]:
    """Executable names to try for *platform* (defaults to sys.platform)."""
    platform = platform or sys.platform
    if platform.startswith("win"):
        return BIN_NAMES["win32"]
    return BIN_NAMES["posix"]


def fallback_dirs() -> list[str]:
    """Common install directories checked after PATH and nvm."""
    home = Path.home()
    return [
        "/opt/homebrew/bin",
        "/usr/local/bin",
        "/usr/bin",
        "/bin",
        "/usr/sbin",
        "/sbin",
        "/snap/bin",
        str(home / ".local" / "bin"),
        str(home / ".nix-profile" / "bin"),
    ]


def split_path(value: str | None) -> list[str]:
    if not value:
        return []
    return [entry for entry in value.split(os.pathsep) if entry]


def unique(items: Iterable[str]) -> list[str]:
    """Drop duplicates, keeping the first occurrence of each entry."""
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def _environ(env: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if env is None else env


def resolve_explicit_path(env: Mapping[str, str] | None = None) -> tuple[str, str] | None:
    """Return (key, path) for the first override env var that exists."""
    env = _environ(env)
    for key in EXPLICIT_PATH_KEYS:
        value = (env.get(key) or "").strip()
        if not value:
            continue
        if os.path.exists(value):
            return key, value
        logger.debug("Ignoring %s=%s: path does not exist", key, value)
    return None


def resolve_nvm_bins(env: Mapping[str, str] | None = None) -> list[str]:
    """One bin directory per installed nvm Node version.

    NVM_BIN (the active version) comes first. A missing or unreadable
    versions directory yields no entries.
    """
    env = _environ(env)
    dirs: list[str] = []
    nvm_bin = (env.get("NVM_BIN") or "").strip()
    if nvm_bin:
        dirs.append(nvm_bin)

    nvm_dir = (env.get("NVM_DIR") or "").strip() or str(Path.home() / ".nvm")
    versions_dir = Path(nvm_dir) / "versions" / "node"
    try:
        entries = sorted(versions_dir.iterdir())
    except OSError as exc:
        logger.debug("nvm versions dir %s not readable: %s", versions_dir, exc)
        return dirs

    for entry in entries:
        try:
            if entry.is_dir():
                dirs.append(str(entry / "bin"))
        except OSError:
            continue
    return dirs


def search_dirs(env: Mapping[str, str] | None = None) -> list[tuple[str, str]]:
    """Ordered (source, directory) pairs searched after the env override."""
    env = _environ(env)
    tagged = (
        [(SOURCE_PATH, d) for d in split_path(env.get("PATH"))]
        + [(SOURCE_NVM, d) for d in resolve_nvm_bins(env)]
        + [(SOURCE_SYSTEM, d) for d in fallback_dirs()]
    )
    seen: set[str] = set()
    result: list[tuple[str, str]] = []
    for source, directory in tagged:
        if directory in seen:
            continue
        seen.add(directory)
        result.append((source, directory))
    return result


def find_in_dir(directory: str, names: Iterable[str]) -> str | None:
    """First name variant that is a file inside *directory*."""
    for name in names:
        candidate = os.path.join(directory, name)
        try:
            if os.path.isfile(candidate):
                return candidate
        except OSError:
            continue
    return None


def resolve_executable_path(
    preferred: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    platform: str | None = None,
) -> str | None:
    """Resolve the Codex executable, or None if it cannot be found.

    An explicit *preferred* path always wins but is validated: a stale
    preferred path resolves to None instead of falling back to a search.
    """
    if preferred:
        if os.path.exists(preferred):
            return preferred
        logger.info("Configured codex path %s does not exist", preferred)
        return None

    explicit = resolve_explicit_path(env)
    if explicit is not None:
        return explicit[1]

    names = bin_names(platform)
    for _source, directory in search_dirs(env):
        hit = find_in_dir(directory, names)
        if hit:
            logger.debug("Resolved codex executable at %s", hit)
            return hit

    logger.info("Codex executable not found on PATH or fallback dirs")
    return None


def list_candidates(
    extra_dir: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    platform: str | None = None,
) -> list[Candidate]:
    """Every discoverable Codex install, deduplicated by path.

    Order: env override hit, *extra_dir* (e.g. a bundled bin folder),
    then every hit from the regular search directories.
    """
    names = bin_names(platform)
    found: list[Candidate] = []

    explicit = resolve_explicit_path(env)
    if explicit is not None:
        key, path = explicit
        found.append(Candidate(label=f"{key}: {path}", path=path))

    if extra_dir:
        hit = find_in_dir(extra_dir, names)
        if hit:
            found.append(Candidate(label=f"Bundled: {hit}", path=hit))

    for source, directory in search_dirs(env):
        hit = find_in_dir(directory, names)
        if hit:
            found.append(Candidate(label=f"{source}: {hit}", path=hit))

    seen: set[str] = set()
    result: list[Candidate] = []
    for candidate in found:
        if candidate.path in seen:
            continue
        seen.add(candidate.path)
        result.append(candidate)
    return result


def build_environment(
    resolved_path: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Copy of the environment whose PATH can find *resolved_path*.

    PATH becomes: resolved dir, override dir, nvm bins, original PATH,
    fallback dirs, with duplicates removed.
    """
    base = dict(_environ(env))

    explicit = resolve_explicit_path(base)
    explicit_dir = os.path.dirname(explicit[1]) if explicit else None
    resolved_dir = os.path.dirname(resolved_path) if resolved_path else None

    prefix = [d for d in (resolved_dir, explicit_dir) if d]
    base["PATH"] = os.pathsep.join(
        unique(
            prefix
            + resolve_nvm_bins(base)
            + split_path(base.get("PATH"))
            + fallback_dirs()
        )
    )
    return base


def executable_for_settings(
    codex_path_mode: str,
    codex_path: str | None,
    *,
    env: Mapping[str, str] | None = None,
) -> str | None:
    """Resolve the executable the way the path-selection setting asks for.

    "custom" validates the stored path, "auto" searches, "unset" means
    the user has not picked one yet.
    """
    if codex_path_mode == "custom":
        if not codex_path:
            return None
        return resolve_executable_path(codex_path, env=env)
    if codex_path_mode == "auto":
        return resolve_executable_path(env=env)
    return None
