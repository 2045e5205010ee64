"""Global Codex settings shared by every chat.

normalize_settings() is the only way a Settings value is produced from
untrusted input; it enforces the allowed options and the rule that web
search is off whenever internet access is off.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping

MODEL_OPTIONS = ("gpt-5.2-codex", "gpt-5.2")
REASONING_OPTIONS = ("low", "medium", "high", "xhigh")
PATH_MODE_OPTIONS = ("unset", "auto", "custom")


@dataclass(frozen=True)
class Settings:
    model: str = "gpt-5.2"
    reasoning: str = "low"
    codex_path_mode: str = "unset"  # "unset", "auto", "custom"
    codex_path: str | None = None
    internet_access: bool = False
    web_search: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "reasoning": self.reasoning,
            "codexPathMode": self.codex_path_mode,
            "codexPath": self.codex_path,
            "internetAccess": self.internet_access,
            "webSearch": self.web_search,
        }

    def merged(self, **changes: Any) -> Settings:
        """Apply snake_case overrides and normalize the result."""
        return normalize_settings(replace(self, **changes))


DEFAULT_SETTINGS = Settings()

_CAMEL_KEYS = {
    "codexPathMode": "codex_path_mode",
    "codexPath": "codex_path",
    "internetAccess": "internet_access",
    "webSearch": "web_search",
}


def _as_mapping(raw: Settings | Mapping[str, Any] | None) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, Settings):
        return {
            "model": raw.model,
            "reasoning": raw.reasoning,
            "codex_path_mode": raw.codex_path_mode,
            "codex_path": raw.codex_path,
            "internet_access": raw.internet_access,
            "web_search": raw.web_search,
        }
    if not isinstance(raw, Mapping):
        return {}
    return {_CAMEL_KEYS.get(k, k): v for k, v in raw.items()}


def normalize_settings(raw: Settings | Mapping[str, Any] | None) -> Settings:
    """Coerce stored or user-supplied settings into a valid Settings.

    Accepts camelCase (disk) or snake_case keys. Unknown values fall
    back to defaults; "custom" without a path degrades to "unset".
    """
    data = _as_mapping(raw)
    defaults = DEFAULT_SETTINGS

    model = data.get("model")
    if model not in MODEL_OPTIONS:
        model = defaults.model

    reasoning = data.get("reasoning")
    if reasoning not in REASONING_OPTIONS:
        reasoning = defaults.reasoning

    codex_path = data.get("codex_path")
    if isinstance(codex_path, str) and codex_path.strip():
        codex_path = codex_path.strip()
    else:
        codex_path = None

    mode = data.get("codex_path_mode")
    if mode not in PATH_MODE_OPTIONS:
        mode = "custom" if codex_path else defaults.codex_path_mode
    if mode == "custom" and not codex_path:
        mode = "unset"

    internet_access = data.get("internet_access")
    if not isinstance(internet_access, bool):
        internet_access = defaults.internet_access

    web_search = data.get("web_search")
    if not isinstance(web_search, bool):
        web_search = defaults.web_search

    return Settings(
        model=model,
        reasoning=reasoning,
        codex_path_mode=mode,
        codex_path=codex_path if mode == "custom" else None,
        internet_access=internet_access,
        web_search=web_search if internet_access else False,
    )
